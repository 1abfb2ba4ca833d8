"""Store codec — record types + line decode/encode (no writes).

A store is UTF-8 text with one JSON object per line:
- ``{"type":"entity","name":...,"entityType":...,"observations":[...]}``
- ``{"type":"relation","from":...,"to":...,"relationType":...}``

Encoding is compact with a fixed key order so that decode -> encode is
byte-stable and merge output is reproducible.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from aipm.memory.errors import DecodeError, DecodeErrorKind

# Written by the external consumer before its first save, and by us as a placeholder.
EMPTY_STORE_MARKER = "{}"
EMPTY_STORE = EMPTY_STORE_MARKER + "\n"

ENTITY = "entity"
RELATION = "relation"


# ── Record types ──────────────────────────────────────────────


@dataclass
class Entity:
    """A named, typed record with free-form observations."""

    name: str
    entityType: str
    observations: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Relation:
    """A directed, typed edge between two entity names."""

    from_: str
    to: str
    relationType: str
    extra: dict[str, Any] = field(default_factory=dict)


Record = Entity | Relation

RelationKey = tuple[str, str, str]


def relation_key(relation: Relation) -> RelationKey:
    """Dedup key for a relation."""
    return (relation.from_, relation.to, relation.relationType)


# ── Decoding (line -> record) ─────────────────────────────────

_ENTITY_KEYS = ("type", "name", "entityType", "observations")
_RELATION_KEYS = ("type", "from", "to", "relationType")


def _string_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key, "")
    if not isinstance(value, str):
        raise DecodeError(
            DecodeErrorKind.MALFORMED, f"field {key!r} must be a string, got {type(value).__name__}"
        )
    return value


def decode_line(text: str | bytes) -> Record:
    """Parse one store line into an Entity or Relation.

    Raises DecodeError(MALFORMED) for invalid UTF-8, invalid JSON, a non-object
    value, a non-string name/type/endpoint or non-list observations, and
    DecodeError(UNKNOWN_KIND) for a missing or unrecognized ``type``. Missing
    fields are left empty here; the validator reports them.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(
                DecodeErrorKind.MALFORMED, f"invalid UTF-8 at byte {e.start}"
            ) from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(DecodeErrorKind.MALFORMED, f"invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise DecodeError(DecodeErrorKind.MALFORMED, "record is not a JSON object")

    kind = data.get("type")
    if kind == ENTITY:
        observations = data.get("observations", [])
        if observations is None:
            observations = []
        if not isinstance(observations, list):
            raise DecodeError(DecodeErrorKind.MALFORMED, "field 'observations' must be a list")
        return Entity(
            name=_string_field(data, "name"),
            entityType=_string_field(data, "entityType"),
            observations=observations,
            extra={k: v for k, v in data.items() if k not in _ENTITY_KEYS},
        )
    if kind == RELATION:
        return Relation(
            from_=_string_field(data, "from"),
            to=_string_field(data, "to"),
            relationType=_string_field(data, "relationType"),
            extra={k: v for k, v in data.items() if k not in _RELATION_KEYS},
        )
    if kind is None:
        raise DecodeError(DecodeErrorKind.UNKNOWN_KIND, "missing 'type' discriminator")
    raise DecodeError(DecodeErrorKind.UNKNOWN_KIND, f"unknown record type: {kind!r}")


# ── Encoding (record -> line) ─────────────────────────────────


def encode(record: Record) -> str:
    """Serialize a record as one compact JSON line (no trailing newline)."""
    if isinstance(record, Entity):
        data: dict[str, Any] = {
            "type": ENTITY,
            "name": record.name,
            "entityType": record.entityType,
            "observations": record.observations,
        }
    else:
        data = {
            "type": RELATION,
            "from": record.from_,
            "to": record.to,
            "relationType": record.relationType,
        }
    for key in sorted(record.extra):
        data[key] = record.extra[key]
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


# ── Streaming readers ─────────────────────────────────────────


_MARKER_BYTES = EMPTY_STORE_MARKER.encode()


def is_placeholder(text: bytes) -> bool:
    return text == _MARKER_BYTES


def iter_lines(path: Path, skip_placeholder: bool = True) -> Iterator[tuple[int, bytes]]:
    """Yield (line_no, raw line) for every non-blank line, one line in memory at a time.

    Lines stay undecoded so that a bad byte fails in ``decode_line`` for that
    line only. A leading ``{}`` placeholder is skipped unless
    ``skip_placeholder`` is false, so that an uninitialized store reads as empty.
    """
    seen_content = False
    with path.open("rb") as f:
        for line_no, raw in enumerate(f, start=1):
            text = raw.strip()
            if not text:
                continue
            if skip_placeholder and not seen_content and is_placeholder(text):
                seen_content = True
                continue
            seen_content = True
            yield line_no, text


def iter_records(path: Path) -> Iterator[Record]:
    """Yield decoded records, raising DecodeError (with line number) on the first bad line."""
    for line_no, text in iter_lines(path):
        try:
            yield decode_line(text)
        except DecodeError as e:
            raise DecodeError(e.kind, str(e), line=line_no) from e


def is_empty_store(path: Path) -> bool:
    """True if the file is absent, blank, or holds only the ``{}`` placeholder."""
    if not path.exists():
        return True
    for _ in iter_lines(path):
        return False
    return True
