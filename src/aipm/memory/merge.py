"""Merge engine — combine a local and a remote store in linear time.

Local entities are indexed by name; the remote store is streamed once and
conflicts are resolved against the index. Relations are deduplicated by
``(from, to, relationType)``. Local relations are picked up by a second pass
over the local file rather than being indexed up front.

The output is staged beside its destination and validated before it is
renamed into place, so a failed merge never becomes a snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from aipm.memory.atomic import staged_file, write_content
from aipm.memory.codec import (
    Entity,
    Record,
    RelationKey,
    encode,
    iter_records,
    relation_key,
)
from aipm.memory.errors import MergeValidationFailed
from aipm.memory.validator import DEFAULT_MAX_ERRORS, NamingPolicy, ValidationReport, validate

logger = logging.getLogger(__name__)

TIMESTAMP_FIELD = "timestamp"
_TIMESTAMP_OBSERVATION = "timestamp:"


class ConflictPolicy(str, Enum):
    REMOTE_WINS = "remote-wins"
    LOCAL_WINS = "local-wins"
    NEWEST_WINS = "newest-wins"


@dataclass
class MergeResult:
    output: Path
    entity_count: int
    relation_count: int
    conflicts: int
    duplicate_relations: int
    report: ValidationReport


# ── Conflict resolution ───────────────────────────────────────


def _coerce_timestamp(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return 0.0
    return 0.0


def entity_timestamp(entity: Entity) -> float:
    """Timestamp from a ``timestamp`` field or a ``timestamp: ...`` observation; 0 if absent."""
    if TIMESTAMP_FIELD in entity.extra:
        return _coerce_timestamp(entity.extra[TIMESTAMP_FIELD])
    for observation in entity.observations:
        if isinstance(observation, str) and observation.lower().startswith(_TIMESTAMP_OBSERVATION):
            return _coerce_timestamp(observation[len(_TIMESTAMP_OBSERVATION):])
    return 0.0


def resolve_conflict(local: Entity, remote: Entity, policy: ConflictPolicy) -> Entity:
    """Pick the surviving copy of a same-name entity."""
    if policy is ConflictPolicy.LOCAL_WINS:
        return local
    if policy is ConflictPolicy.NEWEST_WINS:
        # ties keep local
        return remote if entity_timestamp(remote) > entity_timestamp(local) else local
    return remote


# ── Merge passes ──────────────────────────────────────────────


class _MergePass:
    """State for one merge run; yields output records in order."""

    def __init__(self, local: Path, remote: Path, policy: ConflictPolicy) -> None:
        self.local = local
        self.remote = remote
        self.policy = policy
        self.seen_relations: set[RelationKey] = set()
        self.emitted_names: set[str] = set()
        self.conflicts = 0
        self.duplicate_relations = 0
        self.entity_count = 0
        self.relation_count = 0

    def _read(self, path: Path) -> Iterator[Record]:
        if not path.exists():
            logger.warning("Merge input %s does not exist, treating it as empty", path)
            return iter(())
        return iter_records(path)

    def records(self) -> Iterator[Record]:
        # 1. Index local entities
        index: dict[str, Entity] = {}
        for record in self._read(self.local):
            if isinstance(record, Entity):
                index[record.name] = record

        # 2. Stream remote, resolving against the index
        for record in self._read(self.remote):
            if isinstance(record, Entity):
                if record.name in self.emitted_names:
                    logger.debug("Skipping repeated remote entity %s", record.name)
                    continue
                local_entity = index.pop(record.name, None)
                if local_entity is not None:
                    self.conflicts += 1
                    record = resolve_conflict(local_entity, record, self.policy)
                yield self._emit_entity(record)
            elif self._claim_relation(record):
                yield record

        # 3. Local-only entities
        for entity in index.values():
            if entity.name in self.emitted_names:
                continue
            yield self._emit_entity(entity)

        # 4. Second local pass for relations
        for record in self._read(self.local):
            if not isinstance(record, Entity) and self._claim_relation(record):
                yield record

    def _emit_entity(self, entity: Entity) -> Entity:
        self.emitted_names.add(entity.name)
        self.entity_count += 1
        return entity

    def _claim_relation(self, relation: Record) -> bool:
        key = relation_key(relation)
        if key in self.seen_relations:
            self.duplicate_relations += 1
            return False
        self.seen_relations.add(key)
        self.relation_count += 1
        return True


def merge_stores(
    local: Path,
    remote: Path,
    output: Path,
    *,
    policy: ConflictPolicy | str = ConflictPolicy.REMOTE_WINS,
    naming_policy: NamingPolicy | None = None,
    max_errors: int = DEFAULT_MAX_ERRORS,
) -> MergeResult:
    """Merge ``local`` and ``remote`` into ``output``.

    ``output`` may be the same path as ``local``: both inputs are fully read
    before the staged result is renamed into place. Raises DecodeError if an
    input line cannot be decoded and MergeValidationFailed if the result does
    not validate; in both cases ``output`` is untouched.
    """
    policy = ConflictPolicy(policy)
    merge = _MergePass(local, remote, policy)

    with staged_file(output) as staged:
        write_content(staged, (encode(record) + "\n" for record in merge.records()))
        report = validate(staged, naming_policy, max_errors=max_errors)
        if not report.is_valid:
            logger.error("Merge of %s and %s failed validation: %s", local, remote, report.summary())
            raise MergeValidationFailed(report, f"merge result invalid: {report.summary()}")

    logger.info(
        "Merged %s + %s -> %s (%d entities, %d relations, %d conflicts, policy=%s)",
        local,
        remote,
        output,
        merge.entity_count,
        merge.relation_count,
        merge.conflicts,
        policy.value,
    )
    return MergeResult(
        output=output,
        entity_count=merge.entity_count,
        relation_count=merge.relation_count,
        conflicts=merge.conflicts,
        duplicate_relations=merge.duplicate_relations,
        report=report,
    )
