#!/usr/bin/env python3
"""
writer.py

Write rule lists as rule-provider YAML files.

Output format:
    payload:
      - "+.example.com"
      - "+.sub.example.net"

An empty rule list is written as `payload: []`.

Files are written atomically (temp file in the target directory + replace) so
a client never reads a half-written provider.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Iterable

PAYLOAD_HEADER = "payload:\n"
# a bare `payload:` would load as null, not an empty list
EMPTY_PAYLOAD = "payload: []\n"
OUTPUT_SUFFIX = ".yaml"


def output_filename(name: str, tag: str = "") -> str:
    """Return `<name>.yaml`, or `<name>@<tag>.yaml` when a tag is given."""
    if tag:
        return f"{name}@{tag}{OUTPUT_SUFFIX}"
    return f"{name}{OUTPUT_SUFFIX}"


def render_payload(rules: Iterable[str]) -> str:
    """Render rules as a YAML mapping with a single `payload` sequence."""
    lines = [f'  - "{rule}"\n' for rule in rules]
    if not lines:
        return EMPTY_PAYLOAD
    return PAYLOAD_HEADER + "".join(lines)


def atomic_write_text(target: Path, text: str, encoding: str = "utf-8") -> None:
    """
    Atomically write `text` to `target`.

    Ensures the target directory exists and performs an atomic
    replacement of the file to avoid corruption on interruption.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        delete=False,
        dir=target.parent,
        prefix=".tmp_rules_",
        encoding=encoding,
        newline="\n",
    ) as tmp:
        tmp.write(text)
        tmp_path = Path(tmp.name)
    try:
        tmp_path.replace(target)
    except Exception:
        # Only unlink if replace failed (file still exists)
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise


def write_rule_list(path: str | Path, rules: Iterable[str]) -> Path:
    """Write `rules` to `path` in payload format and return the path."""
    target = Path(path)
    atomic_write_text(target, render_payload(rules))
    return target
