"""Shared store-building helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest


def entity_line(name: str, entity_type: str = "concept", observations=None, **extra) -> str:
    data = {
        "type": "entity",
        "name": name,
        "entityType": entity_type,
        "observations": observations if observations is not None else [],
    }
    data.update(extra)
    return json.dumps(data, separators=(",", ":"))


def relation_line(src: str, dst: str, relation_type: str = "relates_to") -> str:
    return json.dumps(
        {"type": "relation", "from": src, "to": dst, "relationType": relation_type},
        separators=(",", ":"),
    )


def write_store(path: Path, lines: list[str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return path


def read_lines(path: Path) -> list[str]:
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


@pytest.fixture
def make_store(tmp_path: Path):
    def _make(name: str, lines: list[str]) -> Path:
        return write_store(tmp_path / name, lines)

    return _make
