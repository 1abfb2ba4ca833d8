"""Streaming store validation — well-formedness, required fields, naming policy.

One pass over the file through the codec. Errors are collected up to a cap;
once the cap is hit the pass stops so a corrupt file costs a bounded amount
of work.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

from aipm.memory.codec import Entity, Relation, decode_line, is_placeholder, iter_lines
from aipm.memory.errors import DecodeError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ERRORS = 10
UNCATEGORIZED_MODES = ("warn", "error", "ignore")

_CATEGORY_RE = re.compile(r"^[A-Z]+$")


class IssueKind(str, Enum):
    MALFORMED = "malformed"
    UNKNOWN_KIND = "unknown_kind"
    MISSING_FIELD = "missing_field"
    BAD_PREFIX = "bad_prefix"
    UNCATEGORIZED = "uncategorized"
    DUPLICATE_ENTITY = "duplicate_entity"
    TOO_MANY_ERRORS = "too_many_errors"
    SIZE_PRESSURE = "size_pressure"
    STRAY_PLACEHOLDER = "stray_placeholder"


@dataclass
class ValidationIssue:
    kind: IssueKind
    message: str
    line: int | None = None

    def __str__(self) -> str:
        if self.line is None:
            return f"{self.kind.value}: {self.message}"
        return f"line {self.line}: {self.kind.value}: {self.message}"


@dataclass
class NamingPolicy:
    """Entity naming rules for one context.

    An empty ``expected_prefix`` disables the prefix check (used for the
    shared live store, which may hold any context's entities). The category
    is the upper-case segment after the prefix: ``AIPM_DECISION_X`` has
    category ``DECISION`` under prefix ``AIPM_``.
    """

    expected_prefix: str = ""
    case_insensitive: bool = False
    strict_duplicates: bool = False
    categories: list[str] = field(default_factory=list)
    strict_categories: bool = False
    allow_dynamic: bool = False
    uncategorized: Literal["warn", "error", "ignore"] = "warn"

    def has_prefix(self, name: str) -> bool:
        if not self.expected_prefix:
            return True
        if self.case_insensitive:
            return name.lower().startswith(self.expected_prefix.lower())
        return name.startswith(self.expected_prefix)

    def category_of(self, name: str) -> str | None:
        """Return the category segment, or None when the name has none."""
        rest = name[len(self.expected_prefix):]
        if "_" not in rest:
            return None
        return rest.split("_", 1)[0]

    def is_categorized(self, name: str) -> bool:
        category = self.category_of(name)
        if category is None:
            return False
        if self.case_insensitive:
            known = {c.upper() for c in self.categories}
            category = category.upper()
        else:
            known = set(self.categories)
        if category in known:
            return True
        return self.allow_dynamic and bool(_CATEGORY_RE.match(category))


@dataclass
class ValidationReport:
    path: Path
    entity_count: int = 0
    relation_count: int = 0
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    lines_scanned: int = 0
    aborted: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        if self.is_valid:
            return f"valid ({self.entity_count} entities, {self.relation_count} relations)"
        head = "; ".join(str(e) for e in self.errors[:3])
        more = f" (+{len(self.errors) - 3} more)" if len(self.errors) > 3 else ""
        return f"{len(self.errors)} error(s): {head}{more}"

    def raise_for_errors(self) -> None:
        if not self.is_valid:
            raise ValidationError(self)


class _TooManyErrors(Exception):
    pass


class _Collector:
    """Accumulates issues into a report and stops the pass at the cap."""

    def __init__(self, report: ValidationReport, max_errors: int) -> None:
        self.report = report
        self.max_errors = max_errors

    def error(self, kind: IssueKind, message: str, line: int | None) -> None:
        self.report.errors.append(ValidationIssue(kind, message, line))
        if len(self.report.errors) >= self.max_errors:
            raise _TooManyErrors

    def warn(self, kind: IssueKind, message: str, line: int | None = None) -> None:
        self.report.warnings.append(ValidationIssue(kind, message, line))


def validate(
    path: Path,
    naming_policy: NamingPolicy | None = None,
    *,
    max_errors: int = DEFAULT_MAX_ERRORS,
    max_size_bytes: int | None = None,
) -> ValidationReport:
    """Validate a store file in a single streaming pass.

    Raises OSError if the file cannot be read; everything else lands in the
    returned report.
    """
    policy = naming_policy or NamingPolicy()
    report = ValidationReport(path=path)
    collector = _Collector(report, max_errors)

    size = path.stat().st_size
    if max_size_bytes is not None and size > max_size_bytes:
        collector.warn(
            IssueKind.SIZE_PRESSURE,
            f"store is {size} bytes, above the {max_size_bytes} byte limit",
        )
        logger.warning("Memory store %s is large (%d bytes)", path, size)

    seen_names: set[str] = set()
    first_line = True
    placeholder_line: int | None = None
    try:
        for line_no, text in iter_lines(path, skip_placeholder=False):
            report.lines_scanned = line_no
            if first_line:
                first_line = False
                if is_placeholder(text):
                    placeholder_line = line_no
                    continue
            if placeholder_line is not None:
                # records appended after the consumer's empty-store marker
                collector.warn(
                    IssueKind.STRAY_PLACEHOLDER,
                    "'{}' placeholder is followed by records",
                    placeholder_line,
                )
                placeholder_line = None
            try:
                record = decode_line(text)
            except DecodeError as e:
                kind = IssueKind(e.kind.value)
                collector.error(kind, str(e), line_no)
                continue
            if isinstance(record, Entity):
                report.entity_count += 1
                _check_entity(record, policy, collector, line_no, seen_names)
            else:
                report.relation_count += 1
                _check_relation(record, collector, line_no)
    except _TooManyErrors:
        report.aborted = True
        report.errors.append(
            ValidationIssue(
                IssueKind.TOO_MANY_ERRORS,
                f"stopped after {max_errors} errors",
                report.lines_scanned,
            )
        )
        logger.warning("Validation of %s aborted at line %d", path, report.lines_scanned)

    logger.debug("Validated %s: %s", path, report.summary())
    return report


def _check_entity(
    entity: Entity,
    policy: NamingPolicy,
    collector: _Collector,
    line_no: int,
    seen_names: set[str],
) -> None:
    if not isinstance(entity.name, str) or not entity.name:
        collector.error(IssueKind.MISSING_FIELD, "entity has no 'name'", line_no)
        return
    if not isinstance(entity.entityType, str) or not entity.entityType:
        collector.error(
            IssueKind.MISSING_FIELD, f"entity {entity.name!r} has no 'entityType'", line_no
        )
    if not isinstance(entity.observations, list) or not all(
        isinstance(o, str) for o in entity.observations
    ):
        collector.error(
            IssueKind.MALFORMED,
            f"entity {entity.name!r} observations must be a list of strings",
            line_no,
        )

    if not policy.has_prefix(entity.name):
        collector.error(
            IssueKind.BAD_PREFIX,
            f"entity {entity.name!r} does not start with {policy.expected_prefix!r}",
            line_no,
        )
    elif policy.strict_categories and policy.categories and not policy.is_categorized(entity.name):
        message = f"entity {entity.name!r} has no known category"
        if policy.uncategorized == "error":
            collector.error(IssueKind.UNCATEGORIZED, message, line_no)
        elif policy.uncategorized == "warn":
            collector.warn(IssueKind.UNCATEGORIZED, message, line_no)

    if policy.strict_duplicates:
        if entity.name in seen_names:
            collector.error(
                IssueKind.DUPLICATE_ENTITY, f"duplicate entity {entity.name!r}", line_no
            )
        seen_names.add(entity.name)


def _check_relation(relation: Relation, collector: _Collector, line_no: int) -> None:
    for label, value in (
        ("from", relation.from_),
        ("to", relation.to),
        ("relationType", relation.relationType),
    ):
        if not isinstance(value, str) or not value:
            collector.error(IssueKind.MISSING_FIELD, f"relation has no {label!r}", line_no)
