from __future__ import annotations

import logging
from enum import Enum
from typing import Optional
from urllib.parse import quote

from .models import Record

logger = logging.getLogger(__name__)


class IdMethod(str, Enum):
    """How output files are named."""

    ORDINAL = "ORDINAL"
    ENCODED_KEY = "ENCODED_KEY"
    ORDINAL_AND_KEY = "ORDINAL_AND_KEY"

    def get_id(self, ordinal: int, key: str, record: Optional[Record] = None) -> str:
        if self is IdMethod.ORDINAL:
            return f"{ordinal}"
        if self is IdMethod.ENCODED_KEY:
            return _encode_key(ordinal, key)
        return f"{ordinal}_{_encode_key(ordinal, key)}"

    @classmethod
    def from_name(cls, value: str | None, default: "IdMethod | None" = None) -> "IdMethod":
        name = (value or "").strip().upper()
        aliases = {
            "ENTRY_NUMBER": cls.ORDINAL,
            "NUMBER": cls.ORDINAL,
            "URLENCODED_KEY": cls.ENCODED_KEY,
            "KEY": cls.ENCODED_KEY,
            "NUMBER_AND_KEY": cls.ORDINAL_AND_KEY,
        }
        if name in aliases:
            return aliases[name]
        if name in cls.__members__:
            return cls[name]
        return default or cls.ORDINAL_AND_KEY


def _encode_key(ordinal: int, key: str) -> str:
    try:
        return quote(key, safe="", encoding="utf-8", errors="strict")
    except UnicodeEncodeError:
        fallback = IdMethod.ORDINAL.get_id(ordinal, key)
        logger.warning("Failed to percent-encode key %r; falling back to %s", key, fallback)
        return fallback
