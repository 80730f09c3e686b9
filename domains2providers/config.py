#!/usr/bin/env python3
"""
config.py

Category definitions for remote rule sources.

A category names one output file, the behavior used to parse its sources,
the source URLs, and optional blacklist URLs whose domains are removed from
the result. Categories are plain values passed into the pipeline; the
defaults below are only used when no config file is given.

Config file format (JSON):
    [
      {
        "name": "ntp",
        "behavior": "domain",
        "sources": ["https://example.org/ntp.txt"],
        "blacklist_sources": ["https://example.org/not-ntp.txt"]
      }
    ]

Usage:
    python -m domains2providers.config [categories.json]
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from domains2providers import utils


class ConfigError(Exception):
    """Raised when a category definition is invalid."""


@dataclass(frozen=True)
class Category:
    """
    One output rule set.

    Attributes:
        name: Output file stem (`<name>.yaml`).
        behavior: "domain" or "ipcidr".
        sources: Source URLs, read in order.
        blacklist_sources: URLs whose domains (and their subdomains) are removed.
    """

    name: str
    behavior: str
    sources: tuple[str, ...]
    blacklist_sources: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ConfigError("Category name must not be empty")
        if self.behavior not in utils.BEHAVIORS:
            raise ConfigError(
                f"Category {self.name!r}: unknown behavior {self.behavior!r} "
                f"(expected one of {', '.join(sorted(utils.BEHAVIORS))})"
            )
        if not self.sources:
            raise ConfigError(f"Category {self.name!r}: no sources")
        if self.blacklist_sources and self.behavior != utils.BEHAVIOR_DOMAIN:
            raise ConfigError(
                f"Category {self.name!r}: blacklist_sources require domain behavior"
            )
        # accept lists from callers, store tuples
        object.__setattr__(self, "sources", tuple(self.sources))
        object.__setattr__(self, "blacklist_sources", tuple(self.blacklist_sources))

    @property
    def urls(self) -> tuple[str, ...]:
        """All URLs this category depends on (sources, then blacklist)."""
        return self.sources + self.blacklist_sources


DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category(
        name="cn-ips",
        behavior=utils.BEHAVIOR_IPCIDR,
        sources=(
            "https://raw.githubusercontent.com/ChanthMiao/China-IPv4-List/refs/heads/release/cn.txt",
        ),
    ),
    Category(
        name="local-ips",
        behavior=utils.BEHAVIOR_IPCIDR,
        sources=(
            "https://raw.githubusercontent.com/v2fly/geoip/release/text/private.txt",
        ),
    ),
    Category(
        name="cn-max",
        behavior=utils.BEHAVIOR_DOMAIN,
        sources=(
            "https://raw.githubusercontent.com/blackmatrix7/ios_rule_script/refs/heads/release/rule/Clash/China/China_Domain.txt",
            "https://raw.githubusercontent.com/blackmatrix7/ios_rule_script/refs/heads/master/rule/Clash/ChinaMax/ChinaMax_Domain.txt",
        ),
    ),
    Category(
        name="ntp",
        behavior=utils.BEHAVIOR_DOMAIN,
        sources=(
            "https://raw.githubusercontent.com/gamesofts/clash-rules/refs/heads/master/ntp.txt",
        ),
    ),
)


def _string_list(entry: dict[str, Any], key: str, index: int) -> tuple[str, ...]:
    value = entry.get(key, [])
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"Entry #{index}: '{key}' must be a list of strings")
    return tuple(v.strip() for v in value if v.strip())


def parse_categories(data: Any) -> list[Category]:
    """Build categories from decoded JSON data (a list of objects)."""
    if not isinstance(data, list):
        raise ConfigError("Config must be a JSON list of category objects")
    categories: list[Category] = []
    seen: set[str] = set()
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ConfigError(f"Entry #{index}: expected an object")
        name = entry.get("name")
        behavior = entry.get("behavior", utils.BEHAVIOR_DOMAIN)
        if not isinstance(name, str) or not isinstance(behavior, str):
            raise ConfigError(f"Entry #{index}: 'name' and 'behavior' must be strings")
        if name in seen:
            raise ConfigError(f"Entry #{index}: duplicate category {name!r}")
        seen.add(name)
        categories.append(
            Category(
                name=name,
                behavior=behavior,
                sources=_string_list(entry, "sources", index),
                blacklist_sources=_string_list(entry, "blacklist_sources", index),
            )
        )
    return categories


def load_categories(path: str | Path) -> list[Category]:
    """Load categories from a JSON config file."""
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {p}") from None
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Config file {p} is not valid JSON: {exc}") from exc
    return parse_categories(data)


def dump_categories(categories: list[Category] | tuple[Category, ...]) -> str:
    """Serialize categories back to the JSON config format."""
    payload = []
    for c in categories:
        entry: dict[str, Any] = {
            "name": c.name,
            "behavior": c.behavior,
            "sources": list(c.sources),
        }
        if c.blacklist_sources:
            entry["blacklist_sources"] = list(c.blacklist_sources)
        payload.append(entry)
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


if __name__ == "__main__":
    try:
        cats = load_categories(sys.argv[1]) if len(sys.argv) > 1 else list(DEFAULT_CATEGORIES)
    except ConfigError as exc:
        print(f"ERROR in config: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.stdout.write(dump_categories(cats))
