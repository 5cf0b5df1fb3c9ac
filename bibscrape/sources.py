from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from .models import ScrapeMode
from .utils import split_expressions

logger = logging.getLogger(__name__)

Configuration = Tuple[Tuple[ScrapeMode, Tuple[str, ...]], ...]


@dataclass(frozen=True)
class Source:
    """A known publisher platform and the ordered strategies that find its PDF links."""

    name: str
    url_fragments: Tuple[str, ...] = ()
    configuration: Configuration = ()

    def matches(self, url: str) -> bool:
        return any(fragment in url for fragment in self.url_fragments)

    def configurations(self) -> Dict[ScrapeMode, List[str]]:
        return {mode: list(expressions) for mode, expressions in self.configuration}


UNKNOWN = Source(name="UNKNOWN")

ACM_ANCHORS = ("//a[@name='FullTextPDF']",)
IEEE_DOWNLOAD_ANCHORS = ("//a[contains(@class, 'stats-document-lh-action-downloadPdf_2')]",)
SCIENCEDIRECT_ANCHORS = (
    "//a[@id='pdfLink']",
    "//a[@class='download-pdf-link']",
)

BUILTIN_SOURCES: Tuple[Source, ...] = (
    Source(
        name="ACM",
        url_fragments=("doi.acm.org", "dl.acm.org"),
        configuration=((ScrapeMode.ANCHOR_PATH, ACM_ANCHORS),),
    ),
    Source(
        name="DOI",
        url_fragments=("dx.doi.org", "://doi.org/"),
        configuration=(
            (ScrapeMode.ANCHOR_PATH, ACM_ANCHORS),
            (ScrapeMode.FRAME_SOURCE, IEEE_DOWNLOAD_ANCHORS),
        ),
    ),
    Source(
        name="IEEE",
        url_fragments=("ieeexplore.ieee.org",),
        configuration=((ScrapeMode.FRAME_SOURCE, IEEE_DOWNLOAD_ANCHORS),),
    ),
    Source(
        name="SCIENCEDIRECT",
        url_fragments=("www.sciencedirect.com",),
        configuration=((ScrapeMode.ANCHOR_PATH, SCIENCEDIRECT_ANCHORS),),
    ),
)


class SourceRegistry:
    """First-match-wins lookup over a fixed, ordered list of sources."""

    def __init__(self, sources: Sequence[Source], unknown: Source = UNKNOWN) -> None:
        self._sources = tuple(sources)
        self._unknown = unknown

    @property
    def sources(self) -> Tuple[Source, ...]:
        return self._sources

    @property
    def unknown(self) -> Source:
        return self._unknown

    def classify(self, url: str) -> Source:
        for source in self._sources:
            if source.matches(url):
                return source
        return self._unknown


def source_from_dict(data: Mapping[str, Any]) -> Source:
    name = str(data.get("name", "")).strip() or "CUSTOM"
    fragments = tuple(split_expressions(data.get("match"), separator=","))
    configuration: List[Tuple[ScrapeMode, Tuple[str, ...]]] = []
    for mode_name, expressions in (data.get("modes") or {}).items():
        mode = ScrapeMode.from_name(str(mode_name), default=ScrapeMode.AUTO)
        if mode is ScrapeMode.AUTO:
            logger.warning("Ignoring unsupported mode %r for source %s", mode_name, name)
            continue
        configuration.append((mode, tuple(split_expressions(expressions))))
    return Source(name=name, url_fragments=fragments, configuration=tuple(configuration))


def default_registry(
    extra_sources: Iterable[Mapping[str, Any]] | None = None,
    unknown_fallback: bool = False,
) -> SourceRegistry:
    custom = [source_from_dict(item) for item in (extra_sources or [])]
    unknown = UNKNOWN
    if unknown_fallback:
        unknown = Source(name="UNKNOWN", configuration=((ScrapeMode.FRAME_SOURCE, ()),))
    return SourceRegistry([*custom, *BUILTIN_SOURCES], unknown=unknown)
