from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from .client import ApiClient
from .config import (
    DESTINATIONS,
    DOMAINS,
    ApiConfig,
    PipelineOptions,
    StoreConfig,
    rate_policy_from_env,
    validate_config,
)
from .pipeline import PipelineResult, RunContext, log_progress
from .processors import build_pipeline
from .store import open_store


logger = logging.getLogger("congresso_etl")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Extract, normalize and load Brazilian legislative open data."
    )
    p.add_argument("--term", type=int, default=57, help="Legislatura, e.g. 57")
    p.add_argument("--domain", choices=DOMAINS, default="despesas", help="What to ingest")
    p.add_argument("--entity", dest="entity_id", help="Single deputy/senator code")
    p.add_argument("--start-date", help="YYYY-MM-DD lower bound")
    p.add_argument("--end-date", help="YYYY-MM-DD upper bound")
    p.add_argument("--year", type=int, help="Expense year filter")
    p.add_argument("--month", type=int, help="Expense month filter")
    p.add_argument("--party", help="Party acronym filter, e.g. PT")
    p.add_argument("--state", help="State (UF) filter, e.g. SP")
    p.add_argument("--limit", type=int, default=0, help="Max entities (0 = all)")
    p.add_argument(
        "--concurrency", type=int, default=2, help="Entities extracted at once (default 2)"
    )
    p.add_argument(
        "--incremental",
        action="store_true",
        help="Fetch only the trailing window and merge into stored data",
    )
    p.add_argument("--destination", choices=DESTINATIONS, default="local")
    p.add_argument(
        "--output-dir",
        type=Path,
        default=Path("data") / "store",
        help="Root folder for --destination local",
    )
    p.add_argument("--logs-dir", type=Path, default=Path("logs"))
    p.add_argument("--dry-run", action="store_true", help="Extract and transform only")
    p.add_argument("--verbose", action="store_true", help="DEBUG logging")
    p.add_argument(
        "--no-progress", dest="show_progress", action="store_false", help="Hide progress bars"
    )
    return p.parse_args(argv)


def setup_logging(logs_dir: Path, tag: str, verbose: bool = False) -> Path:
    logs_dir.mkdir(parents=True, exist_ok=True)
    run_tag = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_path = logs_dir / f"congresso_{tag}_{run_tag}.log"

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
        handlers=[
            logging.FileHandler(log_path, encoding="utf-8"),
            logging.StreamHandler(sys.stdout),
        ],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger.info("Log file: %s", log_path)
    return log_path


def build_options(args: argparse.Namespace) -> PipelineOptions:
    return PipelineOptions(
        term=args.term,
        domain=args.domain,
        entity_id=args.entity_id,
        start_date=args.start_date,
        end_date=args.end_date,
        year=args.year,
        month=args.month,
        party=args.party,
        state=args.state,
        limit=args.limit,
        concurrency=args.concurrency,
        destination=args.destination,
        incremental=args.incremental,
        dry_run=args.dry_run,
        verbose=args.verbose,
        show_progress=args.show_progress,
    )


async def main_async(
    options: PipelineOptions, api_cfg: ApiConfig, store_cfg: StoreConfig
) -> PipelineResult:
    rate = rate_policy_from_env()
    store = open_store("memory" if options.dry_run else options.destination, store_cfg)
    try:
        async with ApiClient(api_cfg, rate) as api:
            ctx = RunContext(api=api, store=store, rate=rate, batch_size=store_cfg.batch_size)
            pipeline = build_pipeline(options, ctx)
            pipeline.on_progress(log_progress)
            return await pipeline.run()
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    options = build_options(args)
    setup_logging(args.logs_dir, f"{options.domain}_term{options.term}", options.verbose)

    api_cfg = ApiConfig.from_env()
    store_cfg = StoreConfig.from_env(output_dir=args.output_dir)
    problems = validate_config(api_cfg, store_cfg)
    if problems:
        for msg in problems:
            logger.error("Invalid configuration: %s", msg)
        return 1

    try:
        result = asyncio.run(main_async(options, api_cfg, store_cfg))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        return 130
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
