from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# "4-9" -> 4..9, "3" -> 3..inf, "25-INF" -> 25..inf, "INF" -> 1..inf
_RANGE_PATTERN = re.compile(r"([0-9]+)([^0-9]+)?([0-9]+)?([^0-9]*)?")


@dataclass(frozen=True)
class EntryRange:
    """Inclusive range of 1-based entry ordinals."""

    start: int = 1
    end: float = math.inf

    @property
    def bounded(self) -> bool:
        return not math.isinf(self.end)

    def admits(self, ordinal: int) -> bool:
        return self.start <= ordinal <= self.end

    def exceeded(self, ordinal: int) -> bool:
        return ordinal > self.end

    def select(self, items: Iterable[T]) -> Iterator[Tuple[int, T]]:
        """Yield ``(ordinal, item)`` pairs in range; stops consuming once past the end."""
        for ordinal, item in enumerate(items, start=1):
            if self.exceeded(ordinal):
                break
            if ordinal < self.start:
                continue
            yield ordinal, item

    def count_within(self, total: int) -> int:
        last = min(float(total), self.end)
        return max(0, int(last) - self.start + 1)

    def __str__(self) -> str:
        end = f"{int(self.end)}" if self.bounded else "END"
        return f"{self.start}-{end}"


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_range(text: str | None) -> EntryRange:
    """Parse ``"N"`` or ``"N-M"``; anything unparseable falls back to the unbounded range."""
    match = _RANGE_PATTERN.search(text or "")
    if not match:
        return EntryRange()
    start = max(1, _parse_int(match.group(1), 1))
    end: float = _parse_int(match.group(3), 0) if match.group(3) else math.inf
    if end < start:
        # kept as given: a reversed range admits no entry
        logger.warning("Range end %s precedes start %s; no entries will be processed", end, start)
    return EntryRange(start=start, end=end)
