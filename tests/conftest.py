from __future__ import annotations

from collections.abc import Callable
from typing import Dict, List

import pytest

from bibscrape.fetchers import BinaryResource, FetchError, HtmlPage
from bibscrape.models import Record
from bibscrape.sources import default_registry
from bibscrape.strategies import LinkDiscoverer


class FakeFetcher:
    """Serves canned responses per URL; a list is consumed in order, the last one repeats.

    ``str`` becomes an HTML page, ``bytes`` a PDF resource, exceptions are raised.
    """

    def __init__(self, responses: Dict[str, object] | None = None, scripting: bool = False) -> None:
        self.scripting = scripting
        self.responses = {
            url: list(value) if isinstance(value, list) else [value] for url, value in (responses or {}).items()
        }
        self.calls: List[str] = []
        self.closed = False

    def __enter__(self) -> "FakeFetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.closed = True

    def fetch(self, url: str):
        self.calls.append(url)
        queue = self.responses.get(url)
        if not queue:
            raise FetchError(url, f"no stub for {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, bytes):
            return BinaryResource(url, "application/pdf", [item])
        if isinstance(item, str):
            return HtmlPage(url, item)
        return item


@pytest.fixture()
def fake_fetcher() -> type[FakeFetcher]:
    return FakeFetcher


@pytest.fixture()
def make_discoverer() -> Callable[..., LinkDiscoverer]:
    def _make(plain: FakeFetcher, scripting: FakeFetcher | None = None, registry=None) -> LinkDiscoverer:
        return LinkDiscoverer(plain, scripting or FakeFetcher(scripting=True), registry or default_registry())

    return _make


@pytest.fixture()
def make_record() -> Callable[..., Record]:
    def _make(ordinal: int, key: str = "", url: str = "", **fields: str) -> Record:
        data = dict(fields)
        if url:
            data["url"] = url
        return Record(ordinal=ordinal, key=key, entry_type="article", fields=data)

    return _make


class NoSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def no_sleep() -> NoSleep:
    return NoSleep()
