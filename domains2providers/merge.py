#!/usr/bin/env python3
"""
merge.py

Canonicalize, deduplicate, blacklist-filter, and format rules for one category.

Stages (domain behavior):
  1. canonicalize   - classify every source line, keep bare domains in a set
  2. dedupe         - drop domains already covered by a parent in the set
  3. exclude        - drop domains equal to / under a blacklisted root
  4. format_rules   - prefix with '+.' and sort for stable diffs

ipcidr categories only go through classification; lines keep source order.

Usage:
    python -m domains2providers.merge BEHAVIOR <source.txt> [--blacklist <file.txt> ...]
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping, Sequence

from domains2providers import utils
from domains2providers.classify import BEHAVIOR_DOMAIN, BEHAVIOR_IPCIDR, DISCARD, classify

if TYPE_CHECKING:
    from domains2providers.config import Category

WILDCARD_PREFIX = utils.WILDCARD_PREFIX
MS_KEYS = utils.MERGE_STATS_KEYS

RuleList = tuple[str, ...]


# ----------------------------------------
# Core stages
# ----------------------------------------
def canonicalize(
    lines: Iterable[str],
    behavior: str = BEHAVIOR_DOMAIN,
    stats: dict[str, int] | None = None,
) -> set[str]:
    """Classify `lines` and return the set of accepted values."""
    result: set[str] = set()
    for line in lines:
        if stats is not None:
            stats[MS_KEYS.LINES_IN] = stats.get(MS_KEYS.LINES_IN, 0) + 1
        classified = classify(line, behavior)
        if classified is DISCARD:
            if stats is not None:
                stats[MS_KEYS.DISCARDED] = stats.get(MS_KEYS.DISCARDED, 0) + 1
            continue
        result.add(classified.value)
    return result


def dedupe(domains: Iterable[str]) -> set[str]:
    """
    Return the covering set of `domains`: no member is a subdomain of another.

    Example:
        dedupe({"qq.com", "www.qq.com", "mail.qq.com"}) -> {"qq.com"}
    """
    return utils.minimal_covering_set(domains)


def exclude(domains: Iterable[str], excluded: Iterable[str]) -> set[str]:
    """
    Drop every domain equal to, or a subdomain of, a domain in `excluded`.

    `excluded` is reduced to its covering set first so each candidate is only
    tested against minimal roots. A blacklisted child never removes its parent.
    """
    roots = frozenset(dedupe(excluded))
    if not roots:
        return set(domains)
    return {d for d in domains if not utils.is_covered(d, roots)}


def format_rules(domains: Iterable[str]) -> RuleList:
    """Prefix each domain with the wildcard marker and sort lexicographically."""
    return tuple(sorted(WILDCARD_PREFIX + d for d in domains))


def passthrough(lines: Iterable[str], stats: dict[str, int] | None = None) -> RuleList:
    """Return classified ipcidr lines in source order."""
    kept: list[str] = []
    for line in lines:
        if stats is not None:
            stats[MS_KEYS.LINES_IN] = stats.get(MS_KEYS.LINES_IN, 0) + 1
        classified = classify(line, BEHAVIOR_IPCIDR)
        if classified is DISCARD:
            if stats is not None:
                stats[MS_KEYS.DISCARDED] = stats.get(MS_KEYS.DISCARDED, 0) + 1
            continue
        kept.append(classified.value)
    return tuple(kept)


# ----------------------------------------
# Category pipeline
# ----------------------------------------
def _new_stats() -> dict[str, int]:
    return {key: 0 for key in utils.MERGE_SUMMARY_ORDER}


def _chain_sources(
    urls: Sequence[str], fetched: Mapping[str, Sequence[str]]
) -> Iterable[str]:
    for url in urls:
        yield from fetched[url]


def build_rules(
    behavior: str,
    source_lines: Iterable[str],
    blacklist_lines: Iterable[str] | None = None,
    stats: dict[str, int] | None = None,
) -> RuleList:
    """Run the full merge for one behavior over already-fetched lines."""
    if behavior not in utils.BEHAVIORS:
        raise ValueError(f"Unknown behavior: {behavior!r}")
    stats = stats if stats is not None else _new_stats()

    if behavior == BEHAVIOR_IPCIDR:
        rules = passthrough(source_lines, stats)
        stats[MS_KEYS.RULES_OUT] = len(rules)
        return rules

    domains = canonicalize(source_lines, BEHAVIOR_DOMAIN, stats)
    stats[MS_KEYS.UNIQUE] = len(domains)

    covering = dedupe(domains)
    stats[MS_KEYS.SUBDOMAINS_REMOVED] = len(domains) - len(covering)

    if blacklist_lines is not None:
        blacklist = dedupe(canonicalize(blacklist_lines, BEHAVIOR_DOMAIN))
        stats[MS_KEYS.BLACKLIST_IN] = len(blacklist)
        kept = exclude(covering, blacklist)
        stats[MS_KEYS.BLACKLISTED] = len(covering) - len(kept)
        covering = kept

    rules = format_rules(covering)
    stats[MS_KEYS.RULES_OUT] = len(rules)
    return rules


def build_rule_list(
    category: Category,
    fetched: Mapping[str, Sequence[str]],
    stats: dict[str, int] | None = None,
) -> RuleList:
    """
    Build the rule list for `category` from fetched source lines.

    `fetched` maps every source URL (and blacklist URL) of the category to its
    complete line sequence. A missing URL raises KeyError: categories with a
    failed fetch are aborted by the caller before reaching this point.
    """
    blacklist_lines = None
    if category.blacklist_sources:
        blacklist_lines = list(_chain_sources(category.blacklist_sources, fetched))
    return build_rules(
        category.behavior,
        _chain_sources(category.sources, fetched),
        blacklist_lines,
        stats,
    )


def _read_lines(path: str | Path) -> list[str]:
    with Path(path).open(encoding="utf-8-sig", errors="replace") as fh:
        return fh.read().splitlines()


def _print_summary(stats: dict[str, int]) -> None:
    print(utils.format_stats("merge", stats, utils.MERGE_SUMMARY_ORDER), file=sys.stderr)


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print(
            "Usage: python -m domains2providers.merge BEHAVIOR <source.txt> "
            "[--blacklist <file.txt> ...]",
            file=sys.stderr,
        )
        sys.exit(2)
    behavior_arg = sys.argv[1]
    args = sys.argv[2:]
    sources: list[str] = []
    blacklists: list[str] = []
    target = sources
    for arg in args:
        if arg == "--blacklist":
            target = blacklists
            continue
        target.append(arg)
    try:
        merge_stats = _new_stats()
        src_lines = [ln for p in sources for ln in _read_lines(p)]
        bl_lines = [ln for p in blacklists for ln in _read_lines(p)] if blacklists else None
        for rule in build_rules(behavior_arg, src_lines, bl_lines, merge_stats):
            print(rule)
        _print_summary(merge_stats)
    except Exception as exc:
        print(f"ERROR in merge: {exc}", file=sys.stderr)
        sys.exit(1)
