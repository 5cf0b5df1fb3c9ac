from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from tqdm import tqdm

from .fetchers import BinaryResource, FailingStatusCode, FetchError, PageFetcher
from .ids import IdMethod
from .models import Record, ScrapeMode, Status
from .outputs import ResultSet, status_dir, write_entry_file
from .ranges import EntryRange
from .strategies import LinkDiscoverer
from .utils import remove_quietly

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SEC = 5.0

Sleep = Callable[[float], None]


@dataclass(frozen=True)
class DownloadResult:
    status: Status
    attempts: int


@dataclass(frozen=True)
class Outcome:
    status: Status
    identifier: str
    pdf_url: str = ""
    attempts: int = 0


def cool_down(seconds: float, sleep: Sleep = time.sleep) -> None:
    # time.sleep resumes by itself after a signal (PEP 475); only injected sleeps
    # raise InterruptedError. Ctrl-C still aborts the run with KeyboardInterrupt.
    try:
        sleep(seconds)
    except InterruptedError as exc:
        logger.warning("Cool-down interrupted, continuing: %s", exc)


def write_resource(resource: BinaryResource, out_path: Path) -> Status:
    """Stream a resource body into ``out_path``; a partial file is removed on failure."""
    try:
        chunks = resource.content_stream()
    except OSError as exc:
        logger.error("Failed to open input stream for %s: %s", resource.url, exc)
        return Status.INPUT_STREAM_ERROR

    try:
        handle = open(out_path, "wb")
    except OSError as exc:
        logger.error("Failed to open output file %s: %s", out_path, exc)
        return Status.OUTPUT_STREAM_ERROR

    status = Status.SUCCESS
    try:
        # buffered writes may only fail when the handle is flushed on close
        with handle:
            while True:
                try:
                    chunk = next(chunks, None)
                except OSError as exc:
                    logger.error("Failed to read from input stream %s: %s", resource.url, exc)
                    status = Status.INPUT_STREAM_ERROR
                    break
                if chunk is None:
                    break
                handle.write(chunk)
    except OSError as exc:
        logger.error("Failed to write to output stream %s: %s", out_path, exc)
        if status is Status.SUCCESS:
            status = Status.OUTPUT_STREAM_ERROR
    if status is not Status.SUCCESS:
        remove_quietly(out_path)
    return status


def download_pdf(
    fetcher: PageFetcher,
    url: str,
    out_path: Path,
    attempts: int = DEFAULT_ATTEMPTS,
    retry_delay_sec: float = DEFAULT_RETRY_DELAY_SEC,
    sleep: Sleep = time.sleep,
) -> DownloadResult:
    """Fetch ``url`` into ``out_path`` with up to ``attempts`` tries.

    A failing status code is retried after a cool-down; a document page instead
    of a resource stops immediately with ``INVALID_LINK``.
    """
    max_attempts = max(1, int(attempts))
    status = Status.FAILING_STATUS_CODE
    attempt = 0
    done = False
    while attempt < max_attempts and not done:
        if attempt > 0:
            cool_down(retry_delay_sec, sleep)
            logger.info("  retrying (%d/%d) to fetch PDF file from: %s", attempt + 1, max_attempts, url)
        attempt += 1

        try:
            resource = fetcher.fetch(url)
        except FailingStatusCode as exc:
            status = Status.FAILING_STATUS_CODE
            if attempt < max_attempts:
                logger.warning("%s; trying again in about %s seconds", exc, retry_delay_sec)
            else:
                logger.warning("%s; giving up", exc)
            continue
        except FetchError as exc:
            logger.error("Failed to fetch %s: %s", url, exc)
            status = Status.INPUT_STREAM_ERROR
            done = True
            continue

        if resource.is_document:
            status = Status.INVALID_LINK
            done = True
            continue

        try:
            status = write_resource(resource, out_path)
        finally:
            resource.close()
        done = True

    return DownloadResult(status=status, attempts=attempt)


def process_record(
    record: Record,
    identifier: str,
    discoverer: LinkDiscoverer,
    output_dir: Path,
    mode: ScrapeMode = ScrapeMode.AUTO,
    expressions: Sequence[str] = (),
    attempts: int = DEFAULT_ATTEMPTS,
    retry_delay_sec: float = DEFAULT_RETRY_DELAY_SEC,
    sleep: Sleep = time.sleep,
) -> Outcome:
    if not record.has_key:
        return Outcome(Status.NO_KEY, identifier)
    url = record.url
    if not url:
        return Outcome(Status.NO_URL, identifier)

    logger.info("  fetching URL to PDF file from: %s", url)
    pdf_url = discoverer.discover_with_retry(mode, url, [] if mode is ScrapeMode.AUTO else expressions)
    if not pdf_url:
        return Outcome(Status.LINK_NOT_FOUND, identifier)

    logger.info("  fetching PDF file from: %s", pdf_url)
    out_path = status_dir(output_dir, Status.SUCCESS) / f"{identifier}.pdf"
    result = download_pdf(
        discoverer.plain_fetcher,
        pdf_url,
        out_path,
        attempts=attempts,
        retry_delay_sec=retry_delay_sec,
        sleep=sleep,
    )
    return Outcome(result.status, identifier, pdf_url=pdf_url, attempts=result.attempts)


def scrape_records(
    records: Iterable[Record],
    discoverer: LinkDiscoverer,
    output_dir: Path,
    entry_range: EntryRange | None = None,
    id_method: IdMethod = IdMethod.ORDINAL_AND_KEY,
    start_number: int = 1,
    mode: ScrapeMode = ScrapeMode.AUTO,
    expressions: Sequence[str] = (),
    attempts: int = DEFAULT_ATTEMPTS,
    retry_delay_sec: float = DEFAULT_RETRY_DELAY_SEC,
    total: Optional[int] = None,
    progress: bool = False,
    sleep: Sleep = time.sleep,
) -> ResultSet:
    entry_range = entry_range or EntryRange()
    offset = start_number - 1
    results = ResultSet()

    selected = entry_range.select(records)
    expected = entry_range.count_within(total) if total is not None else None
    for ordinal, record in tqdm(selected, total=expected, desc="Scraping entries", disable=not progress):
        number = ordinal + offset
        if record.has_key:
            identifier = id_method.get_id(number, record.key, record)
            logger.info("processing entry %d: %s", number, record.key)
        else:
            identifier = IdMethod.ORDINAL.get_id(number, record.key, record)
            logger.info("processing entry %d: <no key>", number)

        outcome = process_record(
            record,
            identifier,
            discoverer,
            output_dir,
            mode=mode,
            expressions=expressions,
            attempts=attempts,
            retry_delay_sec=retry_delay_sec,
            sleep=sleep,
        )
        logger.info("  %s", outcome.status.value)
        results.record(
            outcome.status,
            record,
            identifier=outcome.identifier,
            pdf_url=outcome.pdf_url,
            attempts=outcome.attempts,
        )
        write_entry_file(record, outcome.status, outcome.identifier, output_dir)

    return results
