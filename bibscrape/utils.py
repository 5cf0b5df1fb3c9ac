from __future__ import annotations

from pathlib import Path
from typing import Iterable, List


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_expressions(value: str | Iterable[str] | None, separator: str = ";") -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(separator) if separator else [value]
    else:
        parts = [str(v) for v in value]
    return [p.strip() for p in parts if p and p.strip()]


def remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        pass
