from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv

from bibscrape.config import Config, ConfigError, load_config
from bibscrape.download import scrape_records
from bibscrape.fetchers import FetchError, PageFetcher, PlaywrightPageFetcher, RequestsPageFetcher
from bibscrape.outputs import ResultSet, check_integrity, write_status_databases, write_summary_table
from bibscrape.records import RecordStoreError, read_records
from bibscrape.sources import default_registry
from bibscrape.strategies import LinkDiscoverer
from bibscrape.utils import ensure_dir

logger = logging.getLogger("bibscrape")


def _plain_fetcher(cfg: Config) -> RequestsPageFetcher:
    return RequestsPageFetcher(user_agent=cfg.user_agent, timeout_sec=cfg.timeout_sec)


def _scripting_fetcher(cfg: Config) -> PlaywrightPageFetcher:
    return PlaywrightPageFetcher(
        engine=cfg.browser_engine,
        headless=cfg.headless,
        user_agent=cfg.user_agent,
        timeout_sec=cfg.timeout_sec,
    )


def run_scrape(
    cfg: Config,
    input_file: Path,
    plain_factory: Callable[[Config], PageFetcher] = _plain_fetcher,
    scripting_factory: Callable[[Config], PageFetcher] = _scripting_fetcher,
    sleep: Callable[[float], None] = time.sleep,
) -> ResultSet:
    cfg.validate()
    records = read_records(input_file)
    logger.info("Input file: %s (%d entries)", input_file, len(records))

    output_dir = ensure_dir(cfg.output_dir)
    entry_range = cfg.entry_range
    expected = entry_range.count_within(len(records))
    mode = cfg.mode
    expressions = cfg.expressions
    logger.info("Range to process: %s (%d entries)", entry_range, expected)
    logger.info("Output directory: %s", output_dir)
    logger.info("Scraping mode: %s", mode.value)
    for index, expression in enumerate(expressions, start=1):
        logger.info("Path expression %d: %s", index, expression)
    logger.info("ID method: %s (starting number %d)", cfg.id_method.value, cfg.start_number)

    registry = default_registry(cfg.extra_sources, unknown_fallback=cfg.unknown_fallback)
    with plain_factory(cfg) as plain, scripting_factory(cfg) as scripting:
        discoverer = LinkDiscoverer(plain, scripting, registry)
        results = scrape_records(
            records,
            discoverer,
            output_dir,
            entry_range=entry_range,
            id_method=cfg.id_method,
            start_number=cfg.start_number,
            mode=mode,
            expressions=expressions,
            attempts=cfg.attempts,
            retry_delay_sec=cfg.retry_delay_sec,
            total=len(records),
            progress=cfg.progress,
            sleep=sleep,
        )

    write_status_databases(results, input_file, output_dir)
    summary_path = output_dir / f"{input_file.stem}-summary.csv"
    write_summary_table(results, summary_path)
    logger.info("Wrote summary table: %s", summary_path)
    check_integrity(results, expected)
    return results


def _apply_overrides(cfg: Config, args: argparse.Namespace) -> Config:
    if args.out:
        cfg.project["output_dir"] = args.out
    if args.no_progress:
        cfg.project["progress"] = False
    overrides = {
        "range": args.range,
        "mode": args.mode,
        "xpath": args.xpath,
        "xpath_split": args.split,
        "id_method": args.id,
        "start_number": args.number,
        "attempts": args.attempts,
        "retry_delay_sec": args.retry_delay,
    }
    for key, value in overrides.items():
        if value is not None:
            cfg.scrape[key] = value
    if args.browser:
        cfg.browser["engine"] = args.browser
    return cfg


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Download the PDF files referenced by the entries of a BibTeX file")
    parser.add_argument("-f", "--file", required=True, help="The BibTeX file to process")
    parser.add_argument("-o", "--out", default=None, help="The output directory")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("-r", "--range", default=None, help='Entries to process (1 to N), e.g. "10-25" or just "15"')
    parser.add_argument("-m", "--mode", default=None, help="Scraping mode: AUTO, ANCHOR_PATH or FRAME_SOURCE")
    parser.add_argument("-x", "--xpath", default=None, help="XPath expression(s) to the PDF download link")
    parser.add_argument("-s", "--split", default=None, help='Separator for multiple XPath expressions (default ";")')
    parser.add_argument("-i", "--id", default=None, help="ID method: ORDINAL, ENCODED_KEY or ORDINAL_AND_KEY")
    parser.add_argument("-n", "--number", type=int, default=None, help="Starting number used by the ID method")
    parser.add_argument("-b", "--browser", default=None, help="Headless browser engine: chromium, firefox or webkit")
    parser.add_argument("--attempts", type=int, default=None, help="Download attempts per PDF (default 3)")
    parser.add_argument("--retry-delay", type=float, default=None, help="Seconds between download attempts (default 5)")
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(dotenv_path=Path(".env"), override=False)
    args = build_parser().parse_args(argv)

    try:
        cfg = _apply_overrides(load_config(args.config), args)
    except (ConfigError, OSError) as exc:
        print(f"ERROR: {exc}")
        return 2

    level = os.getenv("BIBSCRAPE_LOG_LEVEL", cfg.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    input_file = Path(args.file)
    try:
        run_scrape(cfg, input_file)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2
    except RecordStoreError as exc:
        logger.error("Failed to parse the BibTeX file %s: %s", input_file, exc)
        return 1
    except FetchError as exc:
        logger.error("Failed to start the page fetchers: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
