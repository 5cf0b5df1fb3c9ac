from __future__ import annotations

import logging
from typing import Optional, Sequence

from .fetchers import FetchError, HtmlPage, PageFetcher
from .models import ScrapeMode
from .sources import SourceRegistry

logger = logging.getLogger(__name__)


def is_pdf_source(src: str) -> bool:
    return ".pdf" in (src or "").lower()


def _fetch_page(fetcher: PageFetcher, url: str) -> Optional[HtmlPage]:
    try:
        page = fetcher.fetch(url)
    except FetchError as exc:
        logger.warning("Could not fetch landing page %s: %s", url, exc)
        return None
    if not page.is_document:
        page.close()
        logger.info("Landing page %s is not a document", url)
        return None
    return page


def find_anchor_link(fetcher: PageFetcher, url: str, expressions: Sequence[str]) -> Optional[str]:
    page = _fetch_page(fetcher, url)
    if page is None:
        return None
    for expression in expressions:
        logger.info("  trying path expression: %s", expression)
        element = page.first_matching_element(expression)
        href = element.get("href") if element is not None else None
        if href:
            return page.resolve(href)
    return None


def find_frame_link(fetcher: PageFetcher, url: str, expressions: Sequence[str]) -> Optional[str]:
    page = _fetch_page(fetcher, url)
    if page is None:
        return None

    # optional detour through an anchor first
    for expression in expressions:
        logger.info("  checking anchor redirection: %s", expression)
        element = page.first_matching_element(expression)
        href = element.get("href") if element is not None else None
        if not href:
            continue
        target = page.resolve(href)
        try:
            followed = fetcher.fetch(target)
        except FetchError as exc:
            logger.warning("Could not follow anchor %s: %s", target, exc)
            continue
        if not followed.is_document:
            followed.close()
            logger.info("  anchor leads to a resource: %s", target)
            return target
        logger.info("  anchor redirection to: %s", target)
        page = followed

    frames = page.frames()
    for index, src in enumerate(frames, start=1):
        logger.info("  checking frame %d/%d: %s", index, len(frames), src)
        if is_pdf_source(src):
            return page.resolve(src)
    return None


class LinkDiscoverer:
    """Finds the PDF link on a landing page.

    Holds the two long-lived page fetchers (scripting off and on) and the source
    registry consulted by ``AUTO``.
    """

    def __init__(
        self,
        plain_fetcher: PageFetcher,
        scripting_fetcher: PageFetcher,
        registry: SourceRegistry,
    ) -> None:
        self.plain_fetcher = plain_fetcher
        self.scripting_fetcher = scripting_fetcher
        self.registry = registry

    def discover(
        self,
        mode: ScrapeMode,
        fetcher: PageFetcher,
        url: str,
        expressions: Sequence[str] = (),
    ) -> Optional[str]:
        if mode is ScrapeMode.ANCHOR_PATH:
            logger.info("  %s fetching page: %s", mode.value, url)
            return find_anchor_link(fetcher, url, expressions)
        if mode is ScrapeMode.FRAME_SOURCE:
            logger.info("  %s fetching page: %s", mode.value, url)
            return find_frame_link(fetcher, url, expressions)
        return self._discover_auto(url)

    def discover_with_retry(
        self,
        mode: ScrapeMode,
        url: str,
        expressions: Sequence[str] = (),
    ) -> Optional[str]:
        found = self.discover(mode, self.plain_fetcher, url, expressions)
        if found:
            return found
        if not mode.allows_scripting_retry:
            return None
        logger.info("  retrying with JavaScript enabled...")
        return self.discover(mode, self.scripting_fetcher, url, expressions)

    def _discover_auto(self, url: str) -> Optional[str]:
        source = self.registry.classify(url)
        configurations = source.configurations()
        logger.info("  detected source: %s (modes=%d)", source.name, len(configurations))
        for mode, expressions in configurations.items():
            found = self.discover_with_retry(mode, url, expressions)
            if found:
                return found
        return None
