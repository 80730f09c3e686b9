#!/usr/bin/env python3
"""
classify.py

Classify raw source lines into bare domains, IP/CIDR rules, or discards.

Upstream lists mix several syntaxes (v2fly `domain:`/`full:` dumps, hosts
files, earlier `payload:` output, plain domains). Each line is matched against
ordered rule tables, first match wins:

  1. discard markers  - comments, regexes, localhost, YAML payload headers
  2. prefix table     - at most one known decoration removed
  3. annotation cut   - `:@attr` suffixes and trailing quotes dropped
  4. leading dot      - one leading '.' removed

Unrecognized syntax is discarded, never raised.

Usage:
    python -m domains2providers.classify BEHAVIOR < lines.txt
"""
from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from typing import Callable

from domains2providers import utils

BEHAVIOR_DOMAIN = utils.BEHAVIOR_DOMAIN
BEHAVIOR_IPCIDR = utils.BEHAVIOR_IPCIDR


@dataclass(frozen=True)
class Classified:
    """A classified line: `kind` is the behavior it was accepted under."""

    kind: str
    value: str


# Sentinel for lines that carry no rule
DISCARD = None


# -------------------------
# Rule tables
# -------------------------

# Any line containing one of these markers is dropped before behavior checks
DISCARD_MARKERS: tuple[str, ...] = (
    "#",
    "!",
    "regexp:",
    "localhost",
    utils.PAYLOAD_MARKER,
)

# Order is precedence, only the first match is stripped
DOMAIN_PREFIXES: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        re.escape("domain:"),
        re.escape("full:"),
        re.escape(utils.LOOPBACK_ADDRESS) + r"\s+",  # hosts files: any run of spaces/tabs
        re.escape('- "' + utils.WILDCARD_PREFIX),
        re.escape("- '" + utils.WILDCARD_PREFIX),
        re.escape(utils.WILDCARD_PREFIX),
    )
)

# `:@attr` annotations (v2fly text dumps) and quote residue end the domain
_ANNOTATION_RE = re.compile(r""":@|["']""")
_WHITESPACE_RE = re.compile(r"\s")


def _has_discard_marker(line: str) -> bool:
    return any(marker in line for marker in DISCARD_MARKERS)


def strip_known_prefix(line: str) -> str:
    """Remove the first matching prefix from DOMAIN_PREFIXES (at most one)."""
    for prefix in DOMAIN_PREFIXES:
        m = prefix.match(line)
        if m:
            return line[m.end():]
    return line


def truncate_annotation(line: str) -> str:
    """Cut the line at the first `:@` marker or quote character."""
    m = _ANNOTATION_RE.search(line)
    return line[: m.start()] if m else line


def strip_leading_dot(line: str) -> str:
    return line[1:] if line.startswith(".") else line


# Steps applied in order to a domain line after the prefix is stripped
_DOMAIN_STEPS: tuple[Callable[[str], str], ...] = (
    truncate_annotation,
    strip_leading_dot,
    str.lower,
)


def _classify_domain(line: str) -> Classified | None:
    candidate = strip_known_prefix(line)
    if not candidate:
        return DISCARD
    for step in _DOMAIN_STEPS:
        candidate = step(candidate)
    # a bare domain never carries a colon or whitespace
    if not candidate or ":" in candidate or _WHITESPACE_RE.search(candidate):
        return DISCARD
    return Classified(BEHAVIOR_DOMAIN, candidate)


def _classify_ipcidr(line: str) -> Classified | None:
    # colon-bearing lines are annotations in the legacy lists; IPv6 is dropped too
    if ":" in line:
        return DISCARD
    return Classified(BEHAVIOR_IPCIDR, line)


_BEHAVIOR_HANDLERS: dict[str, Callable[[str], Classified | None]] = {
    BEHAVIOR_DOMAIN: _classify_domain,
    BEHAVIOR_IPCIDR: _classify_ipcidr,
}


def classify(line: str, behavior: str) -> Classified | None:
    """
    Classify one line under `behavior` ("domain" or "ipcidr").

    Returns a Classified value, or DISCARD (None) when the line carries no rule.

    Examples:
        classify("full:ads.example.com", "domain").value -> "ads.example.com"
        classify(".example.org", "domain").value -> "example.org"
        classify("# comment", "domain") -> None
        classify("192.168.0.0/16", "ipcidr").value -> "192.168.0.0/16"
    """
    try:
        handler = _BEHAVIOR_HANDLERS[behavior]
    except KeyError:
        raise ValueError(f"Unknown behavior: {behavior!r}") from None

    s = line.strip()
    if not s or _has_discard_marker(s):
        return DISCARD
    return handler(s)


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(
            "Usage: python -m domains2providers.classify BEHAVIOR < lines.txt",
            file=sys.stderr,
        )
        sys.exit(2)
    behavior_arg = sys.argv[1]
    try:
        for raw in sys.stdin:
            result = classify(raw, behavior_arg)
            if result is not DISCARD:
                print(result.value)
    except ValueError as exc:
        print(f"ERROR in classify: {exc}", file=sys.stderr)
        sys.exit(2)
