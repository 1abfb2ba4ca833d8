"""Store statistics and human-readable sizes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from aipm.memory.codec import Entity, decode_line, iter_lines
from aipm.memory.errors import DecodeError

_SIZE_RE = re.compile(r"^(\d+)(KB|MB|GB)?$")
_UNIT_BYTES = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}
_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB"]


@dataclass
class StoreStats:
    entity_count: int = 0
    relation_count: int = 0
    size_bytes: int = 0

    def __str__(self) -> str:
        return (
            f"{self.entity_count} entities, {self.relation_count} relations "
            f"({format_size(self.size_bytes)})"
        )


def store_stats(path: Path) -> StoreStats:
    """Count entities and relations. Undecodable lines are skipped, absent file is empty."""
    if not path.exists():
        return StoreStats()
    stats = StoreStats(size_bytes=path.stat().st_size)
    for _, text in iter_lines(path):
        try:
            record = decode_line(text)
        except DecodeError:
            continue
        if isinstance(record, Entity):
            stats.entity_count += 1
        else:
            stats.relation_count += 1
    return stats


def format_size(size: int) -> str:
    """1234567 -> '1 MB'. Integer division per step, like `du`-style summaries."""
    unit = 0
    while size > 1024 and unit < len(_SIZE_UNITS) - 1:
        size //= 1024
        unit += 1
    return f"{size} {_SIZE_UNITS[unit]}"


def parse_size(text: str) -> int:
    """'10MB' -> bytes. The unit defaults to MB."""
    match = _SIZE_RE.match(text.strip().upper())
    if not match:
        raise ValueError(f"Invalid size: {text!r} (expected e.g. 512KB, 10MB, 1GB)")
    number, unit = match.groups()
    return int(number) * _UNIT_BYTES[unit or "MB"]
