import errno
import logging
from pathlib import Path
from unittest.mock import patch

from bibscrape.download import cool_down, download_pdf, process_record, scrape_records, write_resource
from bibscrape.fetchers import BinaryResource, FailingStatusCode, FetchError
from bibscrape.ids import IdMethod
from bibscrape.models import ScrapeMode, Status
from bibscrape.ranges import parse_range

PDF_URL = "http://dl.acm.org/ft_gateway.cfm?id=1"
ACM_WITH_LINK = '<html><body><a name="FullTextPDF" href="/ft_gateway.cfm?id=1">PDF</a></body></html>'
ACM_WITHOUT_LINK = "<html><body><p>Sign in</p></body></html>"


def _broken_stream():
    yield b"%PDF-1.4"
    raise FetchError(PDF_URL, "connection reset")


def test_download_succeeds_on_first_attempt(tmp_path: Path, fake_fetcher, no_sleep) -> None:
    out = tmp_path / "1.pdf"
    result = download_pdf(fake_fetcher({PDF_URL: b"%PDF-1.4 body"}), PDF_URL, out, sleep=no_sleep)

    assert result.status is Status.SUCCESS
    assert result.attempts == 1
    assert out.read_bytes() == b"%PDF-1.4 body"
    assert no_sleep.calls == []


def test_download_retries_failing_status_codes(tmp_path: Path, fake_fetcher, no_sleep) -> None:
    fetcher = fake_fetcher(
        {PDF_URL: [FailingStatusCode(PDF_URL, 503), FailingStatusCode(PDF_URL, 503), b"%PDF-1.4"]}
    )

    result = download_pdf(fetcher, PDF_URL, tmp_path / "1.pdf", attempts=3, retry_delay_sec=5, sleep=no_sleep)

    assert result.status is Status.SUCCESS
    assert result.attempts == 3
    assert no_sleep.calls == [5, 5]


def test_download_gives_up_after_bounded_attempts(tmp_path: Path, fake_fetcher, no_sleep) -> None:
    fetcher = fake_fetcher({PDF_URL: FailingStatusCode(PDF_URL, 500)})
    out = tmp_path / "1.pdf"

    result = download_pdf(fetcher, PDF_URL, out, attempts=3, sleep=no_sleep)

    assert result.status is Status.FAILING_STATUS_CODE
    assert len(fetcher.calls) == 3
    assert len(no_sleep.calls) == 2
    assert not out.exists()


def test_download_document_is_invalid_link_without_retry(tmp_path: Path, fake_fetcher, no_sleep) -> None:
    fetcher = fake_fetcher({PDF_URL: ["<html><body>Purchase</body></html>", b"%PDF"]})

    result = download_pdf(fetcher, PDF_URL, tmp_path / "1.pdf", attempts=3, sleep=no_sleep)

    assert result.status is Status.INVALID_LINK
    assert result.attempts == 1
    assert len(fetcher.calls) == 1
    assert no_sleep.calls == []


def test_download_fetch_error_is_input_stream_error(tmp_path: Path, fake_fetcher, no_sleep) -> None:
    fetcher = fake_fetcher({PDF_URL: FetchError(PDF_URL, "timed out")})

    result = download_pdf(fetcher, PDF_URL, tmp_path / "1.pdf", sleep=no_sleep)

    assert result.status is Status.INPUT_STREAM_ERROR
    assert len(fetcher.calls) == 1


def test_download_read_failure_removes_partial_file(tmp_path: Path, fake_fetcher, no_sleep) -> None:
    fetcher = fake_fetcher({PDF_URL: BinaryResource(PDF_URL, "application/pdf", _broken_stream())})
    out = tmp_path / "1.pdf"

    result = download_pdf(fetcher, PDF_URL, out, sleep=no_sleep)

    assert result.status is Status.INPUT_STREAM_ERROR
    assert not out.exists()


def test_write_resource_output_failure(tmp_path: Path) -> None:
    resource = BinaryResource(PDF_URL, "application/pdf", [b"%PDF"])
    assert write_resource(resource, tmp_path / "missing" / "1.pdf") is Status.OUTPUT_STREAM_ERROR


class _FullDiskHandle:
    """Accepts buffered writes, then fails to flush them on close."""

    def __init__(self) -> None:
        self.written = []

    def write(self, data: bytes) -> int:
        self.written.append(data)
        return len(data)

    def __enter__(self) -> "_FullDiskHandle":
        return self

    def __exit__(self, *exc_info: object) -> None:
        raise OSError(errno.ENOSPC, "No space left on device")


def test_write_resource_failure_on_close_is_output_stream_error(tmp_path: Path) -> None:
    out = tmp_path / "1.pdf"
    out.write_bytes(b"partial")
    resource = BinaryResource(PDF_URL, "application/pdf", [b"%PDF-1.4"])

    with patch("bibscrape.download.open", create=True, return_value=_FullDiskHandle()):
        status = write_resource(resource, out)

    assert status is Status.OUTPUT_STREAM_ERROR
    assert not out.exists()


def test_full_disk_does_not_abort_the_run(tmp_path: Path, fake_fetcher, make_discoverer, make_record, no_sleep) -> None:
    plain = fake_fetcher({"http://dl.acm.org/x": ACM_WITH_LINK, PDF_URL: b"%PDF-1.4"})
    records = [make_record(1, key="k1", url="http://dl.acm.org/x"), make_record(2, key="k2")]

    with patch("bibscrape.download.open", create=True, return_value=_FullDiskHandle()):
        results = scrape_records(records, make_discoverer(plain), tmp_path, sleep=no_sleep)

    assert results.counts()[Status.OUTPUT_STREAM_ERROR] == 1
    assert results.counts()[Status.NO_URL] == 1


def test_cool_down_interruption_is_an_early_wake(caplog) -> None:
    def interrupted(seconds: float) -> None:
        raise InterruptedError("signal")

    with caplog.at_level(logging.WARNING):
        cool_down(5, interrupted)
    assert "interrupted" in caplog.text


def test_interrupted_cool_down_keeps_retrying(tmp_path: Path, fake_fetcher) -> None:
    sleeps = []

    def interrupted(seconds: float) -> None:
        sleeps.append(seconds)
        raise InterruptedError("signal")

    fetcher = fake_fetcher({PDF_URL: [FailingStatusCode(PDF_URL, 503), b"%PDF"]})
    result = download_pdf(fetcher, PDF_URL, tmp_path / "1.pdf", sleep=interrupted)

    assert result.status is Status.SUCCESS
    assert sleeps == [5.0]


def test_process_record_state_machine(tmp_path: Path, fake_fetcher, make_discoverer, make_record, no_sleep) -> None:
    discoverer = make_discoverer(fake_fetcher({"http://dl.acm.org/x": ACM_WITHOUT_LINK}))

    no_key = process_record(make_record(1, url="http://dl.acm.org/x"), "1", discoverer, tmp_path, sleep=no_sleep)
    no_url = process_record(make_record(2, key="k2"), "2_k2", discoverer, tmp_path, sleep=no_sleep)
    not_found = process_record(make_record(3, key="k1", url="http://dl.acm.org/x"), "3_k1", discoverer, tmp_path)

    assert no_key.status is Status.NO_KEY
    assert no_url.status is Status.NO_URL
    assert not_found.status is Status.LINK_NOT_FOUND


def test_process_record_downloads_into_success_directory(
    tmp_path: Path, fake_fetcher, make_discoverer, make_record, no_sleep
) -> None:
    plain = fake_fetcher({"http://dl.acm.org/x": ACM_WITH_LINK, PDF_URL: b"%PDF-1.4"})
    discoverer = make_discoverer(plain)

    outcome = process_record(make_record(1, key="k1", url="http://dl.acm.org/x"), "1_k1", discoverer, tmp_path)

    assert outcome.status is Status.SUCCESS
    assert outcome.pdf_url == PDF_URL
    assert (tmp_path / "SUCCESS" / "1_k1.pdf").read_bytes() == b"%PDF-1.4"


def test_process_record_passes_user_expressions(
    tmp_path: Path, fake_fetcher, make_discoverer, make_record, no_sleep
) -> None:
    url = "https://example.com/paper"
    page = '<html><body><a id="get" href="/paper.pdf">PDF</a></body></html>'
    discoverer = make_discoverer(fake_fetcher({url: page, "https://example.com/paper.pdf": b"%PDF"}))

    outcome = process_record(
        make_record(1, key="k", url=url),
        "1_k",
        discoverer,
        tmp_path,
        mode=ScrapeMode.ANCHOR_PATH,
        expressions=["//a[@id='get']"],
        sleep=no_sleep,
    )

    assert outcome.status is Status.SUCCESS


def test_scrape_records_respects_range(tmp_path: Path, fake_fetcher, make_discoverer, make_record, no_sleep) -> None:
    records = [make_record(n, key=f"k{n}") for n in range(1, 13)]

    results = scrape_records(
        records,
        make_discoverer(fake_fetcher()),
        tmp_path,
        entry_range=parse_range("4-9"),
        sleep=no_sleep,
    )

    processed = results.bucket(Status.NO_URL)
    assert [r.ordinal for r in processed] == [4, 5, 6, 7, 8, 9]
    assert results.total == 6 == parse_range("4-9").count_within(len(records))
    assert sorted(p.name for p in (tmp_path / "NO_URL").iterdir()) == sorted(f"{n}_k{n}.bib" for n in range(4, 10))


def test_scrape_records_classifies_every_entry(
    tmp_path: Path, fake_fetcher, make_discoverer, make_record, no_sleep
) -> None:
    plain = fake_fetcher(
        {
            "http://dl.acm.org/a": ACM_WITH_LINK,
            PDF_URL: b"%PDF-1.4",
            "http://dl.acm.org/b": ACM_WITHOUT_LINK,
        }
    )
    records = [
        make_record(1, key="a", url="http://dl.acm.org/a"),
        make_record(2, url="http://dl.acm.org/a"),
        make_record(3, key="b", url="http://dl.acm.org/b"),
        make_record(4, key="c"),
    ]

    results = scrape_records(records, make_discoverer(plain), tmp_path, start_number=10, sleep=no_sleep)

    assert results.counts()[Status.SUCCESS] == 1
    assert results.counts()[Status.NO_KEY] == 1
    assert results.counts()[Status.LINK_NOT_FOUND] == 1
    assert results.counts()[Status.NO_URL] == 1
    assert results.total == len(records)
    assert (tmp_path / "SUCCESS" / "10_a.pdf").exists()
    assert (tmp_path / "SUCCESS" / "10_a.bib").exists()
    assert (tmp_path / "NO_KEY" / "11.bib").exists()
    assert (tmp_path / "LINK_NOT_FOUND" / "12_b.bib").exists()
    assert (tmp_path / "NO_URL" / "13_c.bib").exists()


def test_scrape_records_uses_id_method(tmp_path: Path, fake_fetcher, make_discoverer, make_record, no_sleep) -> None:
    records = [make_record(1, key="Smith:2020")]

    results = scrape_records(
        records, make_discoverer(fake_fetcher()), tmp_path, id_method=IdMethod.ENCODED_KEY, sleep=no_sleep
    )

    assert results.rows[0]["identifier"] == "Smith%3A2020"
    assert (tmp_path / "NO_URL" / "Smith%3A2020.bib").exists()
