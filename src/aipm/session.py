"""Memory session orchestrator — one context's pass through the live store.

Session start:
1. Back up the live store (whatever the assistant last had)
2. Optionally merge a peer snapshot (pulled by version control) into ours
3. Load the context snapshot into the live store
4. Hand the live store off to the assistant

Session stop:
1. Wait for the assistant to release the live store (timeout is non-fatal)
2. Save the live store back into the context snapshot
3. Restore the backup into the live store

All session state lives on the MemorySession instance. A session record
(Markdown + YAML frontmatter) is kept under ``.memory/sessions/``.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import frontmatter

from aipm.config import AipmConfig
from aipm.memory import snapshot
from aipm.memory.atomic import atomic_replace
from aipm.memory.handoff import HandoffCoordinator, ReleaseOutcome
from aipm.memory.merge import MergeResult, merge_stores
from aipm.memory.snapshot import Context, SnapshotPaths
from aipm.memory.stats import store_stats
from aipm.memory.validator import ValidationReport

logger = logging.getLogger(__name__)

SESSIONS_DIR_NAME = "sessions"


def _slugify(name: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9_-]+", "-", name).strip("-")
    return slug or "unnamed"


def new_session_id(context: Context, project: str | None = None) -> str:
    label = project if context == "project" and project else context
    return f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{_slugify(label)}"


class MemorySession:
    """Backup → (merge) → load → handoff ... reclaim → save → restore."""

    def __init__(
        self,
        config: AipmConfig,
        context: Context,
        project: str | None = None,
        *,
        coordinator: HandoffCoordinator | None = None,
        session_id: str | None = None,
    ) -> None:
        self.config = config
        self.paths = SnapshotPaths.for_context(config.workspace, context, project)
        self.live_path = config.live_store_path
        self.policy = config.memory.naming_policy()
        self.coordinator = coordinator or HandoffCoordinator(
            self.live_path,
            settle_delay=config.handoff.settle_delay,
            poll_interval=config.handoff.poll_interval,
        )
        self.session_id = session_id or new_session_id(context, project)
        self.merge_result: MergeResult | None = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def record_path(self) -> Path:
        return (
            self.config.workspace
            / snapshot.MEMORY_DIR_NAME
            / SESSIONS_DIR_NAME
            / f"{self.session_id}.md"
        )

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self, remote_snapshot: Path | None = None) -> ValidationReport:
        """Back up the live store, load this context's snapshot and hand it off."""
        if self._active:
            raise RuntimeError(f"Session {self.session_id} already started")

        logger.info("Starting session %s (%s)", self.session_id, self.paths.label)
        snapshot.backup(self.live_path, self.paths.backup)
        try:
            if remote_snapshot is not None:
                self.merge_result = merge_stores(
                    self.paths.snapshot,
                    remote_snapshot,
                    self.paths.snapshot,
                    policy=self.config.merge.conflict_policy,
                    naming_policy=self.policy,
                    max_errors=self.config.memory.max_errors,
                )
            report = snapshot.load(
                self.paths.snapshot,
                self.live_path,
                self.policy,
                max_errors=self.config.memory.max_errors,
                max_size_bytes=self.config.memory.max_size_bytes,
            )
        except Exception:
            self._report_recovery_artifact()
            raise

        self.coordinator.prepare_for_handoff()
        self._active = True
        self._write_record(
            status="active",
            started=datetime.now().isoformat(timespec="seconds"),
            entities=report.entity_count,
            relations=report.relation_count,
        )
        return report

    def stop(self, timeout: float | None = None) -> ValidationReport:
        """Reclaim the live store, save it into the snapshot and restore the backup."""
        if not self._active:
            raise RuntimeError("No active session — call start() first")

        outcome = self.coordinator.await_release(
            self.config.handoff.timeout if timeout is None else timeout
        )
        try:
            report = snapshot.save(
                self.live_path,
                self.paths.snapshot,
                self.policy,
                max_errors=self.config.memory.max_errors,
                max_size_bytes=self.config.memory.max_size_bytes,
            )
            snapshot.restore(self.paths.backup, self.live_path)
        except Exception:
            self._report_recovery_artifact()
            self._write_record(status="failed", ended=datetime.now().isoformat(timespec="seconds"))
            raise
        finally:
            self.coordinator.reset()
            self._active = False

        stats = store_stats(self.paths.snapshot)
        self._write_record(
            status="complete",
            ended=datetime.now().isoformat(timespec="seconds"),
            release=outcome.value,
            entities=stats.entity_count,
            relations=stats.relation_count,
            note=f"Saved {stats}",
        )
        if outcome is ReleaseOutcome.TIMEOUT_EXCEEDED:
            logger.warning("Session %s saved without a confirmed release", self.session_id)
        logger.info("Session %s ended: %s", self.session_id, stats)
        return report

    # ── Internal helpers ──────────────────────────────────────

    def _report_recovery_artifact(self) -> None:
        if self.paths.backup.exists():
            logger.error(
                "Session %s failed; original live store preserved at: %s",
                self.session_id,
                self.paths.backup,
            )

    def _write_record(self, note: str | None = None, **fields: Any) -> None:
        """Create or update the session record's frontmatter."""
        path = self.record_path
        if path.exists():
            post = frontmatter.load(str(path))
        else:
            post = frontmatter.Post(
                f"# Session {self.session_id}\n",
                id=self.session_id,
                context=self.paths.context,
                project=self.paths.project,
            )
        for key, value in fields.items():
            post[key] = value
        if note:
            post.content = post.content.rstrip() + f"\n\n- {note}\n"
        atomic_replace(path, frontmatter.dumps(post) + "\n")


def read_session_record(path: Path) -> dict[str, Any]:
    """Return a session record's metadata."""
    return dict(frontmatter.load(str(path)).metadata)
