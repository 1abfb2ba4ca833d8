"""Configuration loading from environment variables and aipm.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from aipm.memory.merge import ConflictPolicy
from aipm.memory.stats import parse_size
from aipm.memory.validator import UNCATEGORIZED_MODES, NamingPolicy

_CONFIG_FILENAME = "aipm.toml"
_DEFAULT_CATEGORIES = ["CONTEXT", "DECISION", "LEARNING", "TASK", "REVIEW"]


@dataclass
class MemoryConfig:
    """Entity naming and validation limits."""

    entity_prefix: str = "AIPM_"
    categories: list[str] = field(default_factory=lambda: list(_DEFAULT_CATEGORIES))
    strict: bool = True
    allow_dynamic: bool = False
    uncategorized: str = "warn"
    case_insensitive: bool = True
    strict_duplicates: bool = False
    max_errors: int = 10
    max_size: str = "10MB"

    @property
    def max_size_bytes(self) -> int:
        return parse_size(self.max_size)

    def naming_policy(self) -> NamingPolicy:
        return NamingPolicy(
            expected_prefix=self.entity_prefix,
            case_insensitive=self.case_insensitive,
            strict_duplicates=self.strict_duplicates,
            categories=list(self.categories),
            strict_categories=self.strict,
            allow_dynamic=self.allow_dynamic,
            uncategorized=self.uncategorized,
        )


@dataclass
class MergeConfig:
    """Merge behavior."""

    conflict_policy: ConflictPolicy = ConflictPolicy.REMOTE_WINS


@dataclass
class HandoffConfig:
    """Timing of the live store handoff."""

    settle_delay: float = 0.5
    poll_interval: float = 0.5
    timeout: float = 30.0


@dataclass
class AipmConfig:
    """Top-level AIPM configuration."""

    memory: MemoryConfig = field(default_factory=MemoryConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    handoff: HandoffConfig = field(default_factory=HandoffConfig)
    workspace: Path = field(default_factory=Path.cwd)
    live_store: str = ".aipm/memory.json"
    log_level: str = "INFO"

    @property
    def live_store_path(self) -> Path:
        path = Path(self.live_store)
        return path if path.is_absolute() else self.workspace / path


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(config_path: Path | None = None) -> AipmConfig:
    """Load configuration from environment variables and optional aipm.toml.

    Priority: environment variables > aipm.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.aipm/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".aipm" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    memory_data = file_data.get("memory", {})
    merge_data = file_data.get("merge", {})
    handoff_data = file_data.get("handoff", {})

    memory = MemoryConfig(
        entity_prefix=os.getenv("AIPM_ENTITY_PREFIX", memory_data.get("entity_prefix", "AIPM_")),
        categories=memory_data.get("categories", list(_DEFAULT_CATEGORIES)),
        strict=memory_data.get("strict", True),
        allow_dynamic=memory_data.get("allow_dynamic", False),
        uncategorized=memory_data.get("uncategorized", "warn"),
        case_insensitive=memory_data.get("case_insensitive", True),
        strict_duplicates=_env_bool(
            "AIPM_STRICT_DUPLICATES", memory_data.get("strict_duplicates", False)
        ),
        max_errors=int(memory_data.get("max_errors", 10)),
        max_size=os.getenv("AIPM_MAX_SIZE", memory_data.get("max_size", "10MB")),
    )
    # Fail early on bad values rather than at the first validation.
    parse_size(memory.max_size)
    if memory.uncategorized not in UNCATEGORIZED_MODES:
        raise ValueError(
            f"Invalid uncategorized mode: {memory.uncategorized!r} "
            f"(expected one of: {', '.join(UNCATEGORIZED_MODES)})"
        )

    config = AipmConfig(
        memory=memory,
        merge=MergeConfig(
            conflict_policy=ConflictPolicy(
                os.getenv(
                    "AIPM_CONFLICT_POLICY",
                    merge_data.get("conflict_policy", ConflictPolicy.REMOTE_WINS.value),
                )
            ),
        ),
        handoff=HandoffConfig(
            settle_delay=float(handoff_data.get("settle_delay", 0.5)),
            poll_interval=float(handoff_data.get("poll_interval", 0.5)),
            timeout=float(os.getenv("AIPM_HANDOFF_TIMEOUT", handoff_data.get("timeout", 30.0))),
        ),
        workspace=Path(os.getenv("AIPM_WORKSPACE", file_data.get("workspace", str(Path.cwd())))),
        live_store=os.getenv("AIPM_LIVE_STORE", file_data.get("live_store", ".aipm/memory.json")),
        log_level=os.getenv("AIPM_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
