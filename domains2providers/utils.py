# utils.py
"""
Shared helpers for building rule-provider files.

This module provides core functionality for:
- Rule syntax constants (behaviors, wildcard marker, payload marker)
- Domain suffix walking and parent lookups
- Minimal covering sets (subdomain collapse)
- Statistics keys and one-line summaries for the CLI

Example Usage:
    from domains2providers.utils import minimal_covering_set

    minimal_covering_set({"qq.com", "www.qq.com"})  # Returns: {"qq.com"}
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Iterable, Iterator, Sequence


# -------------------------
# Constants
# -------------------------

BEHAVIOR_DOMAIN = "domain"
BEHAVIOR_IPCIDR = "ipcidr"
BEHAVIORS = frozenset({BEHAVIOR_DOMAIN, BEHAVIOR_IPCIDR})

WILDCARD_PREFIX = "+."
PAYLOAD_MARKER = "payload:"
LOOPBACK_ADDRESS = "127.0.0.1"

# Per-category statistics keys (avoid magic strings across modules)
MERGE_STATS_KEYS = SimpleNamespace(
    LINES_IN="lines_in",
    DISCARDED="discarded",
    UNIQUE="unique",
    SUBDOMAINS_REMOVED="subdomains_removed",
    BLACKLIST_IN="blacklist_in",
    BLACKLISTED="blacklisted",
    RULES_OUT="rules_out",
)

MERGE_SUMMARY_ORDER = (
    MERGE_STATS_KEYS.LINES_IN,
    MERGE_STATS_KEYS.DISCARDED,
    MERGE_STATS_KEYS.UNIQUE,
    MERGE_STATS_KEYS.SUBDOMAINS_REMOVED,
    MERGE_STATS_KEYS.BLACKLIST_IN,
    MERGE_STATS_KEYS.BLACKLISTED,
    MERGE_STATS_KEYS.RULES_OUT,
)


# -------------------------
# Stats helpers
# -------------------------


def summarize_stats(
    stats_list: list[dict[str, int | str]], keys: Sequence[str]
) -> dict[str, int]:
    """Aggregate totals for the provided keys across a list of stats dicts."""
    return {key: sum(int(s.get(key, 0)) for s in stats_list) for key in keys}


def format_summary(
    label: str, stats_list: list[dict[str, int | str]], keys: Sequence[str]
) -> str:
    """Return a space-joined summary string (`label: categories=N key=value ...`)."""
    totals = summarize_stats(stats_list, keys)
    parts = [f"{label}: categories={len(stats_list)}"]
    parts.extend(f"{key}={totals.get(key, 0)}" for key in keys)
    return " ".join(parts)


def format_stats(label: str, stats: dict[str, int | str], keys: Sequence[str]) -> str:
    """Return a one-line `label: key=value ...` string for a single stats dict."""
    parts = [f"{label}:"]
    parts.extend(f"{key}={stats.get(key, 0)}" for key in keys)
    return " ".join(parts)


# -------------------------
# Domain suffix helpers
# -------------------------


def label_count(domain: str) -> int:
    """Return the number of dot-separated labels in `domain`."""
    return domain.count(".") + 1


def walk_suffixes(domain: str) -> Iterator[str]:
    """
    Yield domain and successive parent suffixes (e.g., a.b.c -> a.b.c, b.c, c).

    Args:
        domain: Domain string to walk

    Yields:
        Domain and each parent suffix in order
    """
    if not domain:
        return
    cur = domain
    yield cur
    idx = cur.find(".")
    while idx != -1:
        cur = cur[idx + 1:]
        yield cur
        idx = cur.find(".")


def has_parent_domain(domain: str, domain_set: set[str] | frozenset[str]) -> bool:
    """
    Return True if any strict parent of `domain` exists in domain_set.

    Example:
        has_parent_domain("a.b.c", {"b.c"}) -> True
        has_parent_domain("b.c", {"b.c"}) -> False
    """
    if not domain or not domain_set:
        return False
    suffixes = walk_suffixes(domain)
    next(suffixes)
    return any(parent in domain_set for parent in suffixes)


def is_covered(domain: str, roots: set[str] | frozenset[str]) -> bool:
    """Return True if `domain` equals, or is a subdomain of, a member of `roots`."""
    if not domain or not roots:
        return False
    return any(suffix in roots for suffix in walk_suffixes(domain))


def minimal_covering_set(domains: Iterable[str]) -> set[str]:
    """
    Return the smallest subset that covers all domains (remove redundant subdomains).

    Candidates are visited by ascending label count, so every possible parent
    of a candidate has already been decided when the candidate is checked.

    Example:
        {"a.b.c", "b.c"} -> {"b.c"}
    """
    ordered = sorted(set(domains), key=lambda d: (label_count(d), d))
    minimal: set[str] = set()
    for domain in ordered:
        if not has_parent_domain(domain, minimal):
            minimal.add(domain)
    return minimal


# Exports
# -------------------------

__all__ = [
    # Functions
    "label_count",
    "walk_suffixes",
    "has_parent_domain",
    "is_covered",
    "minimal_covering_set",
    "summarize_stats",
    "format_summary",
    "format_stats",
    # Constants
    "BEHAVIOR_DOMAIN",
    "BEHAVIOR_IPCIDR",
    "BEHAVIORS",
    "WILDCARD_PREFIX",
    "PAYLOAD_MARKER",
    "LOOPBACK_ADDRESS",
    "MERGE_STATS_KEYS",
    "MERGE_SUMMARY_ORDER",
]
