from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping


class Status(str, Enum):
    """Terminal classification of a processed record, in output order."""

    NO_KEY = "NO_KEY"
    NO_URL = "NO_URL"
    LINK_NOT_FOUND = "LINK_NOT_FOUND"
    INVALID_LINK = "INVALID_LINK"
    FAILING_STATUS_CODE = "FAILING_STATUS_CODE"
    INPUT_STREAM_ERROR = "INPUT_STREAM_ERROR"
    OUTPUT_STREAM_ERROR = "OUTPUT_STREAM_ERROR"
    SUCCESS = "SUCCESS"

    @property
    def directory_name(self) -> str:
        return self.value

    @property
    def is_failure(self) -> bool:
        return self is not Status.SUCCESS


class ScrapeMode(str, Enum):
    AUTO = "AUTO"
    ANCHOR_PATH = "ANCHOR_PATH"
    FRAME_SOURCE = "FRAME_SOURCE"

    @property
    def requires_expressions(self) -> bool:
        return self is ScrapeMode.ANCHOR_PATH

    @property
    def allows_scripting_retry(self) -> bool:
        return self is ScrapeMode.FRAME_SOURCE

    @classmethod
    def from_name(cls, value: str | None, default: "ScrapeMode | None" = None) -> "ScrapeMode":
        name = (value or "").strip().upper()
        aliases = {
            "XPATH_ANCHOR": cls.ANCHOR_PATH,
            "ANCHOR": cls.ANCHOR_PATH,
            "FRAME_SRC": cls.FRAME_SOURCE,
            "FRAME": cls.FRAME_SOURCE,
        }
        if name in aliases:
            return aliases[name]
        if name in cls.__members__:
            return cls[name]
        return default or cls.AUTO


@dataclass(frozen=True)
class Record:
    ordinal: int
    key: str = ""
    entry_type: str = "misc"
    fields: Mapping[str, str] = field(default_factory=dict)

    @property
    def has_key(self) -> bool:
        return bool(self.key.strip())

    @property
    def url(self) -> str:
        return str(self.fields.get("url", "") or "").strip()

    def to_entry(self) -> Dict[str, str]:
        entry = {k: str(v) for k, v in self.fields.items()}
        entry["ID"] = self.key
        entry["ENTRYTYPE"] = self.entry_type
        return entry
