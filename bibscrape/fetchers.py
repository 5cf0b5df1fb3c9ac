from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator, List, Optional, Protocol, Union
from urllib.parse import urljoin

import requests
from lxml import etree
from lxml import html as lxml_html
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "bibscrape/1.0"
DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/pdf;q=0.8,*/*;q=0.7",
    "Accept-Language": "en-US,en;q=0.8",
}
CHUNK_SIZE = 4096
BROWSER_ENGINES = ("chromium", "firefox", "webkit")
_DOWNLOAD_MARKERS = ("Download is starting", "ERR_ABORTED")
_EMPTY_MARKUP = "<html><body></body></html>"


class FetchError(OSError):
    """A page or resource could not be retrieved."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url


class FailingStatusCode(FetchError):
    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(url, f"HTTP {status_code} for {url}")
        self.status_code = status_code


def is_document_type(content_type: str) -> bool:
    return "html" in (content_type or "").lower()


def _empty_document() -> etree._Element:
    return lxml_html.document_fromstring(_EMPTY_MARKUP)


def _parse_markup(markup: str) -> etree._Element:
    if not markup.strip():
        return _empty_document()
    try:
        return lxml_html.document_fromstring(markup)
    except ValueError:
        pass
    except etree.ParserError:
        return _empty_document()
    # str input carrying an XML encoding declaration
    parser = lxml_html.HTMLParser(encoding="utf-8")
    try:
        return lxml_html.document_fromstring(markup.encode("utf-8"), parser=parser)
    except etree.ParserError:
        return _empty_document()


class HtmlPage:
    """A fetched document: path expressions, frames and link resolution."""

    is_document = True

    def __init__(self, url: str, markup: str) -> None:
        self.url = url
        self.tree = _parse_markup(markup)
        base = str(self.tree.xpath("string(//base/@href)") or "").strip()
        self.base_url = urljoin(url, base) if base else url

    def first_matching_element(self, expression: str) -> Optional[etree._Element]:
        try:
            results = self.tree.xpath(expression)
        except etree.XPathError as exc:
            logger.warning("Invalid path expression %r: %s", expression, exc)
            return None
        if not isinstance(results, list):
            return None
        for item in results:
            if isinstance(item, etree._Element) and isinstance(item.tag, str):
                return item
        return None

    def frames(self) -> List[str]:
        return [str(src) for src in self.tree.xpath("//iframe/@src | //frame/@src")]

    def resolve(self, href: str) -> str:
        return urljoin(self.base_url, (href or "").strip())


class BinaryResource:
    """A non-document response whose body is read as a byte stream."""

    is_document = False

    def __init__(
        self,
        url: str,
        content_type: str,
        chunks: Iterable[bytes],
        close: Callable[[], None] | None = None,
    ) -> None:
        self.url = url
        self.content_type = content_type
        self._chunks = chunks
        self._close = close

    def content_stream(self) -> Iterator[bytes]:
        return iter(self._chunks)

    def close(self) -> None:
        if self._close is not None:
            self._close()
            self._close = None


Page = Union[HtmlPage, BinaryResource]


def build_page(url: str, markup: str) -> HtmlPage:
    try:
        return HtmlPage(url, markup)
    except (etree.LxmlError, ValueError) as exc:
        raise FetchError(url, f"Failed to parse page {url}: {exc}") from exc


class PageFetcher(Protocol):
    scripting: bool

    def fetch(self, url: str) -> Page:
        ...

    def __enter__(self) -> "PageFetcher":
        ...

    def __exit__(self, *exc_info: object) -> None:
        ...


def _iter_response(resp: requests.Response, url: str) -> Iterator[bytes]:
    try:
        for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
            if chunk:
                yield chunk
    except requests.RequestException as exc:
        raise FetchError(url, f"Failed reading response body from {url}: {exc}") from exc


class RequestsPageFetcher:
    """Plain HTTP fetcher; no client-side scripting."""

    scripting = False

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_sec: float = 60,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent, **DEFAULT_HEADERS})

    def __enter__(self) -> "RequestsPageFetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def fetch(self, url: str) -> Page:
        try:
            resp = self.session.get(url, timeout=self.timeout_sec, stream=True)
        except requests.RequestException as exc:
            raise FetchError(url, f"Request failed for {url}: {exc}") from exc

        final_url = resp.url or url
        if not resp.ok:
            resp.close()
            raise FailingStatusCode(final_url, resp.status_code)

        content_type = (resp.headers.get("content-type") or "").lower()
        if is_document_type(content_type):
            try:
                text = resp.text
            except requests.RequestException as exc:
                raise FetchError(url, f"Failed reading page {url}: {exc}") from exc
            finally:
                resp.close()
            return build_page(final_url, text)
        return BinaryResource(final_url, content_type, _iter_response(resp, final_url), close=resp.close)


class PlaywrightPageFetcher:
    """Headless browser fetcher with JavaScript enabled."""

    scripting = True

    def __init__(
        self,
        engine: str = "chromium",
        headless: bool = True,
        user_agent: str | None = None,
        timeout_sec: float = 60,
    ) -> None:
        self.engine = engine if engine in BROWSER_ENGINES else "chromium"
        self.headless = headless
        self.user_agent = user_agent
        self.timeout_ms = float(timeout_sec) * 1000
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    def __enter__(self) -> "PlaywrightPageFetcher":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def start(self) -> None:
        if self._page is not None:
            return
        logger.info("Starting headless %s (JavaScript enabled)", self.engine)
        context_args = {"java_script_enabled": True}
        if self.user_agent:
            context_args["user_agent"] = self.user_agent
        try:
            self._playwright = sync_playwright().start()
            launcher = getattr(self._playwright, self.engine)
            self._browser = launcher.launch(headless=self.headless)
            self._context = self._browser.new_context(**context_args)
            self._page = self._context.new_page()
        except PlaywrightError as exc:
            self.close()
            raise FetchError("", f"Failed to start headless {self.engine}: {exc}") from exc

    def close(self) -> None:
        if self._context is not None:
            self._context.close()
        if self._browser is not None:
            self._browser.close()
        if self._playwright is not None:
            self._playwright.stop()
        self._playwright = self._browser = self._context = self._page = None

    def fetch(self, url: str) -> Page:
        if self._page is None:
            raise FetchError(url, "Browser is not running")
        try:
            response = self._page.goto(url, wait_until="load", timeout=self.timeout_ms)
        except PlaywrightError as exc:
            if any(marker in str(exc) for marker in _DOWNLOAD_MARKERS):
                return self._fetch_raw(url)
            raise FetchError(url, f"Navigation failed for {url}: {exc}") from exc
        if response is None:
            raise FetchError(url, f"No response for {url}")
        if response.status >= 400:
            raise FailingStatusCode(response.url, response.status)

        content_type = (response.headers.get("content-type") or "").lower()
        try:
            if not is_document_type(content_type):
                return BinaryResource(response.url, content_type, [response.body()])
            return build_page(self._page.url, self._page.content())
        except PlaywrightError as exc:
            raise FetchError(url, f"Failed reading {url}: {exc}") from exc

    def _fetch_raw(self, url: str) -> Page:
        try:
            resp = self._context.request.get(url, timeout=self.timeout_ms)
        except PlaywrightError as exc:
            raise FetchError(url, f"Request failed for {url}: {exc}") from exc
        try:
            if not resp.ok:
                raise FailingStatusCode(resp.url, resp.status)
            content_type = (resp.headers.get("content-type") or "").lower()
            body = resp.body()
        except PlaywrightError as exc:
            raise FetchError(url, f"Failed reading {url}: {exc}") from exc
        finally:
            resp.dispose()
        if is_document_type(content_type):
            return build_page(resp.url, body.decode("utf-8", errors="replace"))
        return BinaryResource(resp.url, content_type, [body])
