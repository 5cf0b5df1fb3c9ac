from __future__ import annotations

from pathlib import Path
from typing import Iterable, List

import bibtexparser
from bibtexparser.bibdatabase import BibDatabase
from bibtexparser.bparser import BibTexParser
from bibtexparser.bwriter import BibTexWriter

from .models import Record


class RecordStoreError(Exception):
    pass


def _new_parser() -> BibTexParser:
    return BibTexParser(
        ignore_nonstandard_types=False,
        homogenize_fields=False,
        common_strings=True,
    )


def parse_records(text: str) -> List[Record]:
    try:
        database = bibtexparser.loads(text, parser=_new_parser())
    except Exception as exc:
        raise RecordStoreError(f"Failed to parse BibTeX data: {exc}") from exc
    records: List[Record] = []
    for ordinal, entry in enumerate(database.entries, start=1):
        fields = {k: v for k, v in entry.items() if k not in ("ID", "ENTRYTYPE")}
        records.append(
            Record(
                ordinal=ordinal,
                key=str(entry.get("ID", "") or "").strip(),
                entry_type=str(entry.get("ENTRYTYPE", "misc") or "misc"),
                fields=fields,
            )
        )
    return records


def read_records(path: Path) -> List[Record]:
    if not path.exists():
        raise RecordStoreError(f"Input file does not exist: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RecordStoreError(f"Failed to read BibTeX file {path}: {exc}") from exc
    return parse_records(text)


def format_records(records: Iterable[Record]) -> str:
    database = BibDatabase()
    database.entries = [r.to_entry() for r in records]
    writer = BibTexWriter()
    writer.order_entries_by = None
    writer.indent = "  "
    return writer.write(database)


def write_records(records: Iterable[Record], path: Path) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(format_records(records))
