"""Snapshot manager — backup, restore, load and save of the live store.

Snapshots live at ``<workspace>/.memory/local_memory.json`` (framework) or
``<workspace>/<Project>/.memory/local_memory.json``, with ``backup.json``
beside them. Every write goes through atomic replace, and every read that
feeds a write is validated first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from aipm.memory.atomic import atomic_copy, staged_file, write_content, write_empty_store
from aipm.memory.errors import RestoreFailed, ValidationError
from aipm.memory.validator import DEFAULT_MAX_ERRORS, NamingPolicy, ValidationReport, validate

logger = logging.getLogger(__name__)

MEMORY_DIR_NAME = ".memory"
SNAPSHOT_FILE_NAME = "local_memory.json"
BACKUP_FILE_NAME = "backup.json"

Context = Literal["framework", "project"]


@dataclass(frozen=True)
class SnapshotPaths:
    """Resolved snapshot/backup locations for one context."""

    context: Context
    project: str | None
    memory_dir: Path
    snapshot: Path
    backup: Path

    @classmethod
    def for_context(
        cls, workspace: Path, context: Context, project: str | None = None
    ) -> SnapshotPaths:
        if context == "framework":
            memory_dir = workspace / MEMORY_DIR_NAME
            project = None
        elif context == "project":
            if not project:
                raise ValueError("project context requires a project name")
            memory_dir = workspace / project / MEMORY_DIR_NAME
        else:
            raise ValueError(f"Unknown context: {context!r} (expected 'framework' or 'project')")
        return cls(
            context=context,
            project=project,
            memory_dir=memory_dir,
            snapshot=memory_dir / SNAPSHOT_FILE_NAME,
            backup=memory_dir / BACKUP_FILE_NAME,
        )

    @property
    def label(self) -> str:
        return "framework" if self.context == "framework" else f"project:{self.project}"


def _empty_report(path: Path) -> ValidationReport:
    return ValidationReport(path=path)


# ── Primitives ────────────────────────────────────────────────


def backup(
    live_path: Path, backup_path: Path, policy: NamingPolicy | None = None
) -> ValidationReport:
    """Copy the live store to backup_path byte for byte. An absent live store backs up as empty."""
    if not live_path.exists():
        write_empty_store(backup_path)
        logger.info("No live store at %s, wrote empty backup %s", live_path, backup_path)
        return _empty_report(backup_path)

    report = validate(live_path, policy)
    report.raise_for_errors()
    atomic_copy(live_path, backup_path)
    logger.info(
        "Backed up %s -> %s (%d entities, %d relations)",
        live_path,
        backup_path,
        report.entity_count,
        report.relation_count,
    )
    return report


def restore(backup_path: Path, live_path: Path, delete_backup: bool = True) -> None:
    """Copy the backup onto the live store, then delete the backup.

    Raises RestoreFailed (naming the backup) if the backup is missing or the
    copy fails; the backup is never removed on failure.
    """
    if not backup_path.exists():
        raise RestoreFailed(backup_path, f"No backup found for {live_path}")
    try:
        atomic_copy(backup_path, live_path)
    except OSError as e:
        logger.error("Failed to restore %s: %s", live_path, e)
        logger.warning("Backup preserved at: %s", backup_path)
        raise RestoreFailed(backup_path, f"Failed to restore {live_path}: {e}") from e

    if delete_backup:
        backup_path.unlink(missing_ok=True)
    logger.info("Restored %s from %s", live_path, backup_path)


def load(
    snapshot_path: Path,
    live_path: Path,
    policy: NamingPolicy | None = None,
    *,
    max_errors: int = DEFAULT_MAX_ERRORS,
    max_size_bytes: int | None = None,
) -> ValidationReport:
    """Validate a snapshot and copy it onto the live store.

    A context without a snapshot yet loads as an empty store. An invalid
    snapshot raises ValidationError and the live store is not touched.
    """
    if not snapshot_path.exists():
        write_empty_store(live_path)
        logger.info("No snapshot at %s, starting with an empty live store", snapshot_path)
        return _empty_report(live_path)

    report = validate(
        snapshot_path, policy, max_errors=max_errors, max_size_bytes=max_size_bytes
    )
    if not report.is_valid:
        logger.error("Refusing to load %s: %s", snapshot_path, report.summary())
        raise ValidationError(report)
    atomic_copy(snapshot_path, live_path)
    logger.info(
        "Loaded %s -> %s (%d entities, %d relations)",
        snapshot_path,
        live_path,
        report.entity_count,
        report.relation_count,
    )
    return report


def save(
    live_path: Path,
    snapshot_path: Path,
    policy: NamingPolicy | None = None,
    *,
    max_errors: int = DEFAULT_MAX_ERRORS,
    max_size_bytes: int | None = None,
) -> ValidationReport:
    """Copy the live store to the snapshot, validating the copy before it lands.

    A copy that fails validation is removed and the previous snapshot, if
    any, is left as it was.
    """
    if not live_path.exists():
        logger.warning("No live store at %s to save, writing empty snapshot", live_path)
        write_empty_store(snapshot_path)
        return _empty_report(snapshot_path)

    content = live_path.read_bytes()
    with staged_file(snapshot_path) as staged:
        write_content(staged, content)
        report = validate(staged, policy, max_errors=max_errors, max_size_bytes=max_size_bytes)
        if not report.is_valid:
            logger.error("Saved copy of %s failed validation: %s", live_path, report.summary())
            raise ValidationError(report, f"{snapshot_path}: {report.summary()}")

    report.path = snapshot_path
    logger.info(
        "Saved %s -> %s (%d entities, %d relations)",
        live_path,
        snapshot_path,
        report.entity_count,
        report.relation_count,
    )
    return report
