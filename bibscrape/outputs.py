from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

import pandas as pd

from .models import Record, Status
from .records import write_records
from .utils import ensure_dir

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = ["ordinal", "key", "identifier", "status", "url", "pdf_url", "attempts"]


class ResultSet:
    """Records bucketed by their terminal status, in classification order."""

    def __init__(self) -> None:
        self._buckets: Dict[Status, List[Record]] = {status: [] for status in Status}
        self._rows: List[Dict[str, object]] = []

    def record(self, status: Status, record: Record, **details: object) -> None:
        self._buckets[status].append(record)
        self._rows.append(
            {
                "ordinal": record.ordinal,
                "key": record.key,
                "identifier": details.get("identifier", ""),
                "status": status.value,
                "url": record.url,
                "pdf_url": details.get("pdf_url", ""),
                "attempts": details.get("attempts", 0),
            }
        )

    def bucket(self, status: Status) -> List[Record]:
        return list(self._buckets[status])

    def finalize(self) -> Dict[Status, List[Record]]:
        return {status: list(records) for status, records in self._buckets.items() if records}

    def counts(self) -> Dict[Status, int]:
        return {status: len(records) for status, records in self._buckets.items()}

    @property
    def rows(self) -> List[Dict[str, object]]:
        return list(self._rows)

    @property
    def total(self) -> int:
        return sum(len(records) for records in self._buckets.values())

    @property
    def succeeded(self) -> int:
        return len(self._buckets[Status.SUCCESS])

    @property
    def failed(self) -> int:
        return sum(len(records) for status, records in self._buckets.items() if status.is_failure)


def status_dir(output_dir: Path, status: Status) -> Path:
    return ensure_dir(output_dir / status.directory_name)


def status_database_path(source_file: Path, status: Status, output_dir: Path) -> Path:
    return output_dir / f"{source_file.stem}-{status.value}{source_file.suffix or '.bib'}"


def write_entry_file(record: Record, status: Status, identifier: str, output_dir: Path) -> Path | None:
    path = status_dir(output_dir, status) / f"{identifier}.bib"
    try:
        write_records([record], path)
    except OSError as exc:
        logger.error("Failed to write entry file %s: %s", path, exc)
        return None
    logger.info("  wrote entry file: %s", path)
    return path


def write_status_databases(results: ResultSet, source_file: Path, output_dir: Path) -> List[Path]:
    written: List[Path] = []
    for status, records in results.finalize().items():
        path = status_database_path(source_file, status, output_dir)
        logger.info("Writing %s database (%d entries) to: %s", status.value, len(records), path)
        try:
            write_records(records, path)
        except OSError as exc:
            logger.error("Failed to write database %s: %s", path, exc)
            continue
        written.append(path)
    return written


def write_summary_table(results: ResultSet, path: Path) -> None:
    df = pd.DataFrame(results.rows, columns=SUMMARY_COLUMNS)
    df.to_csv(path, index=False)


def check_integrity(results: ResultSet, expected: int) -> bool:
    succeeded = results.succeeded
    failed = results.failed
    logger.info("Successfully processed entries: %d", succeeded)
    for status, count in results.counts().items():
        if count and status.is_failure:
            logger.info(" - %d failed due to %s", count, status.value)
    total = succeeded + failed
    if total != expected:
        logger.warning(
            "Number of entries in range (%d) does not match processed entries (succeeded=%d, failed=%d, total=%d)",
            expected,
            succeeded,
            failed,
            total,
        )
        return False
    return True
