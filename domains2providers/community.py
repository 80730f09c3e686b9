#!/usr/bin/env python3
"""
community.py

Parse and resolve a v2fly `domain-list-community` data directory.

Every file in the directory is a named rule set. Lines look like:

    # comment
    example.com                 (same as domain:example.com)
    domain:example.org @cn
    full:www.example.net @ads
    keyword:tracker
    regexp:^ad[0-9]\\.
    include:other-list @-ads

`include:` pulls in another rule set, optionally filtered by attributes
(`@attr` keeps entries carrying attr, `@-attr` drops them). Resolving a
rule set yields one rule list per tag: tag "" holds every rule, and each
attribute tag holds the rules carrying that attribute.

Domain entries become `+.<domain>` after subdomain collapse. Full entries
stay bare unless a kept domain already covers them. Keyword and regexp
entries have no domain-behavior equivalent and are dropped.

Usage:
    python -m domains2providers.community <data_dir> <name>
"""
from __future__ import annotations

import logging
import sys
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from domains2providers import merge, utils
from domains2providers.classify import BEHAVIOR_DOMAIN, DISCARD, classify

logger = logging.getLogger(__name__)

TYPE_DOMAIN = "domain"
TYPE_FULL = "full"
TYPE_KEYWORD = "keyword"
TYPE_REGEXP = "regexp"
TYPE_INCLUDE = "include"
ENTRY_TYPES = frozenset({TYPE_DOMAIN, TYPE_FULL, TYPE_KEYWORD, TYPE_REGEXP, TYPE_INCLUDE})

ADS_TAG = "ads"
ADS_ALL_LIST = "category-ads-all"
ADS_OUTPUT_NAME = "ads"


class ResolveError(Exception):
    """Raised when a rule set cannot be resolved (missing include, cycle)."""


@dataclass(frozen=True)
class Entry:
    """One parsed line of a rule-set file."""

    type: str
    value: str
    attrs: tuple[str, ...] = ()


# ----------------------------------------
# Parsing
# ----------------------------------------
def parse_line(line: str) -> Entry | None:
    """Parse one data line; return None for blanks, comments and unknown types."""
    s = line.split("#", 1)[0].strip()
    if not s:
        return None
    tokens = s.split()
    head = tokens[0]
    entry_type, sep, value = head.partition(":")
    if not sep:
        entry_type, value = TYPE_DOMAIN, head
    entry_type = entry_type.lower()
    if entry_type not in ENTRY_TYPES or not value:
        logger.debug("Skipping unsupported line: %s", line.strip())
        return None
    # '&affiliation' tokens only matter to the upstream build tool
    attrs = tuple(t[1:].lower() for t in tokens[1:] if t.startswith("@") and len(t) > 1)
    if entry_type != TYPE_REGEXP:
        value = value.lower()
    return Entry(entry_type, value, attrs)


def parse_lines(lines: Iterable[str]) -> list[Entry]:
    entries: list[Entry] = []
    for line in lines:
        entry = parse_line(line)
        if entry is not None:
            entries.append(entry)
    return entries


def parse_directory(directory: str | Path) -> dict[str, list[Entry]]:
    """Return {rule-set name: entries} for every file in `directory`."""
    base = Path(directory)
    if not base.is_dir():
        raise FileNotFoundError(f"Data directory not found: {directory}")
    rule_sets: dict[str, list[Entry]] = {}
    for path in sorted(base.iterdir(), key=lambda p: p.name.lower()):
        if not path.is_file() or path.name.startswith("."):
            continue
        with path.open(encoding="utf-8-sig", errors="replace") as fh:
            rule_sets[path.name.lower()] = parse_lines(fh)
    return rule_sets


# ----------------------------------------
# Resolution
# ----------------------------------------
def _matches_attrs(entry: Entry, filters: tuple[str, ...]) -> bool:
    for flt in filters:
        if flt.startswith("-"):
            if flt[1:] in entry.attrs:
                return False
        elif flt not in entry.attrs:
            return False
    return True


def expand(
    rule_sets: Mapping[str, list[Entry]], name: str, _stack: tuple[str, ...] = ()
) -> list[Entry]:
    """Return the entries of `name` with every include expanded recursively."""
    if name in _stack:
        chain = " -> ".join(_stack + (name,))
        raise ResolveError(f"include cycle: {chain}")
    if name not in rule_sets:
        if _stack:
            raise ResolveError(f"{_stack[-1]} includes unknown list {name!r}")
        raise ResolveError(f"unknown list {name!r}")

    stack = _stack + (name,)
    out: list[Entry] = []
    for entry in rule_sets[name]:
        if entry.type != TYPE_INCLUDE:
            out.append(entry)
            continue
        included = expand(rule_sets, entry.value, stack)
        out.extend(e for e in included if _matches_attrs(e, entry.attrs))
    return out


def _canonical(value: str) -> str | None:
    classified = classify(value, BEHAVIOR_DOMAIN)
    return None if classified is DISCARD else classified.value


def rules_from_domains(domains: Iterable[str], fulls: Iterable[str]) -> merge.RuleList:
    """Collapse domain (suffix) and full (exact) entries into sorted rules."""
    covering = merge.dedupe(domains)
    exact = {f for f in fulls if not utils.is_covered(f, covering)}
    return tuple(sorted(merge.format_rules(covering) + tuple(exact)))


def entries_to_rules(entries: Iterable[Entry]) -> merge.RuleList:
    domains: set[str] = set()
    fulls: set[str] = set()
    for entry in entries:
        if entry.type not in (TYPE_DOMAIN, TYPE_FULL):
            continue
        value = _canonical(entry.value)
        if value is None:
            continue
        (domains if entry.type == TYPE_DOMAIN else fulls).add(value)
    return rules_from_domains(domains, fulls)


def resolve(rule_sets: Mapping[str, list[Entry]], name: str) -> dict[str, merge.RuleList]:
    """
    Resolve `name` into {tag: rules}.

    Tag "" is always present (possibly empty); attribute tags appear only when
    at least one entry carries them.
    """
    entries = expand(rule_sets, name)
    grouped: dict[str, list[Entry]] = defaultdict(list)
    grouped[""] = entries
    for entry in entries:
        for attr in entry.attrs:
            grouped[attr].append(entry)
    return {tag: entries_to_rules(group) for tag, group in grouped.items()}


def resolve_all(
    rule_sets: Mapping[str, list[Entry]],
) -> dict[str, dict[str, merge.RuleList]]:
    """Resolve every rule set; sets that fail to resolve are logged and skipped."""
    resolved: dict[str, dict[str, merge.RuleList]] = {}
    for name in sorted(rule_sets):
        try:
            resolved[name] = resolve(rule_sets, name)
        except ResolveError as exc:
            logger.error("Resolve %s: %s", name, exc)
    return resolved


def collect_ads(resolved: Mapping[str, Mapping[str, merge.RuleList]]) -> merge.RuleList:
    """Union every `ads` tag plus the whole category-ads-all list."""
    domains: set[str] = set()
    fulls: set[str] = set()
    wildcard = utils.WILDCARD_PREFIX

    def _absorb(rules: Iterable[str]) -> None:
        for rule in rules:
            if rule.startswith(wildcard):
                domains.add(rule[len(wildcard):])
            else:
                fulls.add(rule)

    for name, tags in resolved.items():
        if ADS_TAG in tags:
            _absorb(tags[ADS_TAG])
        if name == ADS_ALL_LIST:
            _absorb(tags.get("", ()))
    return rules_from_domains(domains, fulls)


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python -m domains2providers.community <data_dir> <name>", file=sys.stderr)
        sys.exit(2)
    try:
        tags = resolve(parse_directory(sys.argv[1]), sys.argv[2].lower())
    except (FileNotFoundError, ResolveError) as exc:
        print(f"ERROR in community: {exc}", file=sys.stderr)
        sys.exit(1)
    for tag_name, tag_rules in sorted(tags.items()):
        print(f"[{tag_name or '*'}] {len(tag_rules)} rules")
        for rule in tag_rules:
            print(f"  {rule}")
