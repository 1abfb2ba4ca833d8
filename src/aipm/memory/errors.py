"""Error taxonomy for the memory engine.

Filesystem failures are plain ``OSError`` and propagate unchanged; everything
here is raised on top of the store format or the snapshot workflow.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aipm.memory.validator import ValidationReport


class StoreError(Exception):
    """Base class for memory store errors."""


class DecodeErrorKind(str, Enum):
    MALFORMED = "malformed"
    UNKNOWN_KIND = "unknown_kind"


class DecodeError(StoreError):
    """A single store line could not be decoded into a record."""

    def __init__(self, kind: DecodeErrorKind, message: str, line: int | None = None) -> None:
        self.kind = kind
        self.line = line
        where = f"line {line}: " if line is not None else ""
        super().__init__(f"{where}{message}")


class ValidationError(StoreError):
    """A store file failed validation. The full report is attached."""

    def __init__(self, report: ValidationReport, message: str | None = None) -> None:
        self.report = report
        super().__init__(message or f"{report.path}: {report.summary()}")


class MergeValidationFailed(ValidationError):
    """The assembled merge output failed validation and was discarded."""


class RestoreFailed(StoreError):
    """Restoring the live store from a backup failed. The backup is kept."""

    def __init__(self, backup_path: Path, reason: str) -> None:
        self.backup_path = backup_path
        super().__init__(f"{reason} (backup preserved at {backup_path})")
