#!/usr/bin/env python3
"""
pipeline.py

Full rule-provider build for mihomo/Clash clients.

Pipeline stages:
  1. community    - Resolve a domain-list-community data directory (optional).
  2. fetch        - Download every category source concurrently.
  3. merge        - Canonicalize, deduplicate, blacklist-filter, and format.
  4. write        - Emit one `<name>.yaml` (or `<name>@<tag>.yaml`) per rule list.

A category whose sources did not all download is skipped; no partial rule
list is ever written for it.

Usage:
    python -m domains2providers.pipeline <output_dir> [--data <dlc_data_dir>] [--config <categories.json>]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from domains2providers import community, fetch_sources, merge, utils, writer
from domains2providers.config import DEFAULT_CATEGORIES, Category, ConfigError, load_categories


# ----------------------------------------
# Helpers
# ----------------------------------------
def _configure_logging() -> logging.Logger:
    """Return configured pipeline logger with a clean, single-line format."""
    logging.basicConfig(
        level=logging.INFO, format="%(message)s", force=True, stream=sys.stdout
    )
    return logging.getLogger("pipeline")


log = logging.getLogger("pipeline")


@dataclass
class RunReport:
    """What a run wrote and what it had to skip."""

    written: list[Path] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    stats: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def _failed_urls(
    category: Category, fetched: Mapping[str, Sequence[str] | fetch_sources.FetchError]
) -> list[str]:
    reasons = []
    for url in category.urls:
        outcome = fetched.get(url)
        if outcome is None:
            reasons.append(f"{url}: not fetched")
        elif isinstance(outcome, fetch_sources.FetchError):
            reasons.append(f"{url}: {outcome.reason}")
    return reasons


# ----------------------------------------
# Stages
# ----------------------------------------
def write_community(data_dir: Path, out_dir: Path, report: RunReport) -> None:
    """Resolve every list under data_dir and write one file per (list, tag)."""
    rule_sets = community.parse_directory(data_dir)
    resolved = community.resolve_all(rule_sets)
    for name, tags in resolved.items():
        for tag, rules in tags.items():
            path = writer.write_rule_list(out_dir / writer.output_filename(name, tag), rules)
            report.written.append(path)

    ads = community.collect_ads(resolved)
    path = writer.write_rule_list(
        out_dir / writer.output_filename(community.ADS_OUTPUT_NAME), ads
    )
    report.written.append(path)
    log.info(
        f"community: lists={len(rule_sets)} resolved={len(resolved)} "
        f"failed={len(rule_sets) - len(resolved)} ads_rules={len(ads)}"
    )


def write_categories(
    categories: Sequence[Category],
    fetched: Mapping[str, Sequence[str] | fetch_sources.FetchError],
    out_dir: Path,
    report: RunReport,
) -> None:
    """Build and write every category whose sources all downloaded."""
    for category in categories:
        reasons = _failed_urls(category, fetched)
        if reasons:
            report.failed[category.name] = "; ".join(reasons)
            log.error(f"Skipping {category.name}: {report.failed[category.name]}")
            continue

        stats: dict[str, Any] = {"category": category.name}
        rules = merge.build_rule_list(category, fetched, stats)  # type: ignore[arg-type]
        path = writer.write_rule_list(out_dir / writer.output_filename(category.name), rules)
        report.written.append(path)
        report.stats.append(stats)
        log.info(utils.format_stats(category.name, stats, utils.MERGE_SUMMARY_ORDER))


# ----------------------------------------
# Pipeline core
# ----------------------------------------
def transform(
    output_dir: str | Path,
    categories: Sequence[Category] = DEFAULT_CATEGORIES,
    data_dir: str | Path | None = None,
    *,
    concurrency: int = fetch_sources.DEFAULT_CONCURRENCY,
    timeout: int = fetch_sources.DEFAULT_TIMEOUT,
    retries: int = fetch_sources.DEFAULT_RETRIES,
    per_host_delay: float = fetch_sources.DEFAULT_PER_HOST_DELAY,
    fetched: Mapping[str, Sequence[str] | fetch_sources.FetchError] | None = None,
) -> RunReport:
    """
    Run the full build into output_dir.

    `fetched` may be supplied to skip the network stage (url -> lines).
    """
    run_start = time.perf_counter()
    out_path = Path(output_dir)
    out_path.mkdir(parents=True, exist_ok=True)
    report = RunReport()
    log.info("Starting pipeline run")

    if data_dir is not None:
        start = time.perf_counter()
        write_community(Path(data_dir), out_path, report)
        log.info(f"Finished community lists in {time.perf_counter() - start:.2f}s")

    if fetched is None:
        start = time.perf_counter()
        urls = [url for c in categories for url in c.urls]
        fetched = asyncio.run(
            fetch_sources.fetch_all(urls, concurrency, timeout, retries, per_host_delay)
        )
        log.info(f"Finished fetching {len(fetched)} sources in {time.perf_counter() - start:.2f}s")

    start = time.perf_counter()
    write_categories(categories, fetched, out_path, report)
    log.info(f"Finished categories in {time.perf_counter() - start:.2f}s")
    log.info(utils.format_summary("merge", report.stats, utils.MERGE_SUMMARY_ORDER))

    total_elapsed = time.perf_counter() - run_start
    log.info(
        f"Output saved to: {out_path} (files={len(report.written)} "
        f"failed_categories={len(report.failed)} total {total_elapsed:.2f}s)"
    )
    return report


# CLI entrypoint
# ----------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="domains2providers",
        description="Build rule-provider YAML files from remote lists and domain-list-community",
    )
    parser.add_argument("output_dir", help="Directory for generated .yaml files")
    parser.add_argument("--data", help="domain-list-community data directory")
    parser.add_argument("--config", help="JSON file with category definitions")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=fetch_sources.DEFAULT_CONCURRENCY,
        help="Max concurrent fetches",
    )
    parser.add_argument(
        "--retries", type=int, default=fetch_sources.DEFAULT_RETRIES, help="Retries per URL"
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=fetch_sources.DEFAULT_TIMEOUT,
        help="Request timeout (seconds)",
    )
    parser.add_argument(
        "--per-host-delay",
        type=float,
        default=fetch_sources.DEFAULT_PER_HOST_DELAY,
        help="Delay between requests to same host (seconds)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging()

    try:
        categories = load_categories(args.config) if args.config else list(DEFAULT_CATEGORIES)
        report = transform(
            args.output_dir,
            categories,
            args.data,
            concurrency=args.concurrency,
            timeout=args.timeout,
            retries=args.retries,
            per_host_delay=args.per_host_delay,
        )
    except ConfigError as exc:
        print(f"[CONFIG] {exc}", file=sys.stderr)
        return 2
    except Exception as exc:
        print(f"[FATAL] {exc}", file=sys.stderr)
        return 1
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
