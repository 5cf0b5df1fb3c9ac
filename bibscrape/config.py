from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List

import yaml

from .ids import IdMethod
from .models import ScrapeMode
from .ranges import EntryRange, parse_range
from .utils import split_expressions


class ConfigError(ValueError):
    pass


def _as_number(section: Dict[str, Any], key: str, default: Any, cast: Callable[[Any], Any]) -> Any:
    value = section.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a number, got {value!r}") from exc


@dataclass
class Config:
    project: Dict[str, Any] = field(default_factory=dict)
    scrape: Dict[str, Any] = field(default_factory=dict)
    browser: Dict[str, Any] = field(default_factory=dict)

    @property
    def output_dir(self) -> Path:
        return Path(self.project.get("output_dir", "output"))

    @property
    def log_level(self) -> str:
        return str(self.project.get("log_level", "INFO")).upper()

    @property
    def progress(self) -> bool:
        return bool(self.project.get("progress", True))

    @property
    def mode(self) -> ScrapeMode:
        return ScrapeMode.from_name(self.scrape.get("mode"), default=ScrapeMode.AUTO)

    @property
    def expressions(self) -> List[str]:
        separator = str(self.scrape.get("xpath_split", ";"))
        return split_expressions(self.scrape.get("xpath"), separator=separator)

    @property
    def id_method(self) -> IdMethod:
        return IdMethod.from_name(self.scrape.get("id_method"), default=IdMethod.ORDINAL_AND_KEY)

    @property
    def start_number(self) -> int:
        return _as_number(self.scrape, "start_number", 1, int)

    @property
    def entry_range(self) -> EntryRange:
        value = self.scrape.get("range")
        return parse_range(str(value)) if value is not None else EntryRange()

    @property
    def attempts(self) -> int:
        return max(1, _as_number(self.scrape, "attempts", 3, int))

    @property
    def retry_delay_sec(self) -> float:
        return max(0.0, _as_number(self.scrape, "retry_delay_sec", 5.0, float))

    @property
    def unknown_fallback(self) -> bool:
        return bool(self.scrape.get("unknown_fallback", False))

    @property
    def extra_sources(self) -> List[Dict[str, Any]]:
        return list(self.scrape.get("sources") or [])

    @property
    def browser_engine(self) -> str:
        return str(self.browser.get("engine", "chromium")).strip().lower()

    @property
    def headless(self) -> bool:
        return bool(self.browser.get("headless", True))

    @property
    def user_agent(self) -> str:
        return str(self.browser.get("user_agent", "bibscrape/1.0"))

    @property
    def timeout_sec(self) -> float:
        return _as_number(self.browser, "timeout_sec", 60.0, float)

    def validate(self) -> None:
        if self.mode.requires_expressions and not self.expressions:
            raise ConfigError(f"{self.mode.value} requires at least one path expression (--xpath)")
        # surface malformed numbers before any record is processed
        for name in ("start_number", "attempts", "retry_delay_sec", "timeout_sec"):
            getattr(self, name)


def load_config(path: str | Path | None) -> Config:
    if path is None or not Path(path).exists():
        return Config()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return Config(
        project=dict(data.get("project") or {}),
        scrape=dict(data.get("scrape") or {}),
        browser=dict(data.get("browser") or {}),
    )
