"""Selective store rewrites: partial revert from history, prefix purge.

``revert_partial`` brings a subset of entities (by name pattern) back from an
older snapshot, typically one extracted from a past commit, while keeping
everything else current. ``purge_prefix`` strips a context's entities out of
a shared store that should never have held them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from aipm.memory.atomic import staged_file, write_content
from aipm.memory.codec import Entity, Record, RelationKey, encode, iter_records, relation_key
from aipm.memory.errors import ValidationError
from aipm.memory.snapshot import backup
from aipm.memory.validator import NamingPolicy, ValidationReport, validate

logger = logging.getLogger(__name__)


@dataclass
class RewriteResult:
    path: Path
    entities_changed: int
    relations_changed: int
    report: ValidationReport


def _write_validated(
    output: Path, records: list[Record], naming_policy: NamingPolicy | None
) -> ValidationReport:
    with staged_file(output) as staged:
        write_content(staged, (encode(r) + "\n" for r in records))
        report = validate(staged, naming_policy)
        if not report.is_valid:
            raise ValidationError(report, f"{output}: {report.summary()}")
    report.path = output
    return report


def revert_partial(
    historical: Path,
    current: Path,
    pattern: str,
    output: Path | None = None,
    naming_policy: NamingPolicy | None = None,
) -> RewriteResult:
    """Replace entities matching ``pattern`` (regex, searched in the name) with their historical versions.

    Relations touching a matching entity come from the historical store;
    all other relations stay as they are in the current store.
    """
    matcher = re.compile(pattern)
    output = output or current

    def touches(record: Record) -> bool:
        if isinstance(record, Entity):
            return bool(matcher.search(record.name))
        return bool(matcher.search(record.from_) or matcher.search(record.to))

    kept: list[Record] = []
    current_relations: list[Record] = []
    for record in iter_records(current) if current.exists() else ():
        if touches(record):
            continue
        if isinstance(record, Entity):
            kept.append(record)
        else:
            current_relations.append(record)

    restored_entities: list[Record] = []
    restored_relations: list[Record] = []
    for record in iter_records(historical):
        if not touches(record):
            continue
        if isinstance(record, Entity):
            restored_entities.append(record)
        else:
            restored_relations.append(record)

    seen: set[RelationKey] = set()
    relations: list[Record] = []
    for relation in current_relations + restored_relations:
        key = relation_key(relation)
        if key not in seen:
            seen.add(key)
            relations.append(relation)

    report = _write_validated(output, kept + restored_entities + relations, naming_policy)
    logger.info(
        "Partially reverted %s from %s (pattern=%s, %d entities restored)",
        output,
        historical,
        pattern,
        len(restored_entities),
    )
    return RewriteResult(
        path=output,
        entities_changed=len(restored_entities),
        relations_changed=len(restored_relations),
        report=report,
    )


def purge_prefix(store: Path, prefix: str, backup_path: Path) -> RewriteResult:
    """Remove all entities named ``prefix*`` and every relation touching one.

    The store is backed up to ``backup_path`` first.
    """
    if not prefix:
        raise ValueError("Refusing to purge with an empty prefix")
    backup(store, backup_path)

    kept: list[Record] = []
    removed_entities = 0
    removed_relations = 0
    for record in iter_records(store) if store.exists() else ():
        if isinstance(record, Entity):
            if record.name.startswith(prefix):
                removed_entities += 1
                continue
        elif record.from_.startswith(prefix) or record.to.startswith(prefix):
            removed_relations += 1
            continue
        kept.append(record)

    report = _write_validated(store, kept, None)
    logger.info(
        "Purged %d entities and %d relations with prefix %s from %s (backup at %s)",
        removed_entities,
        removed_relations,
        prefix,
        store,
        backup_path,
    )
    return RewriteResult(
        path=store,
        entities_changed=removed_entities,
        relations_changed=removed_relations,
        report=report,
    )
