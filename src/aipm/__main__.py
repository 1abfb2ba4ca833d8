"""Entry point: python -m aipm <command>

- "validate PATH":                 Validate a store against the configured naming policy
- "stats PATH":                    Entity/relation counts and size
- "merge LOCAL REMOTE OUT [POL]":  Merge two stores (remote-wins|local-wins|newest-wins)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from aipm.config import AipmConfig, load_config
from aipm.memory.errors import StoreError


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_validate(config: AipmConfig, path: Path) -> int:
    from aipm.memory.validator import validate

    report = validate(
        path,
        config.memory.naming_policy(),
        max_errors=config.memory.max_errors,
        max_size_bytes=config.memory.max_size_bytes,
    )
    print(f"{path}: {report.summary()}")
    for issue in report.errors:
        print(f"  error: {issue}")
    for issue in report.warnings:
        print(f"  warning: {issue}")
    return 0 if report.is_valid else 1


def _run_stats(path: Path) -> int:
    from aipm.memory.stats import store_stats

    print(f"{path}: {store_stats(path)}")
    return 0


def _run_merge(config: AipmConfig, args: list[str]) -> int:
    from aipm.memory.merge import merge_stores

    local, remote, output = (Path(a) for a in args[:3])
    policy = args[3] if len(args) > 3 else config.merge.conflict_policy
    result = merge_stores(
        local,
        remote,
        output,
        policy=policy,
        naming_policy=config.memory.naming_policy(),
        max_errors=config.memory.max_errors,
    )
    print(
        f"{output}: {result.entity_count} entities, {result.relation_count} relations "
        f"({result.conflicts} conflicts resolved)"
    )
    return 0


def _usage() -> int:
    print("Usage: python -m aipm [validate|stats|merge] ...")
    print("  validate PATH                 — Validate a memory store")
    print("  stats PATH                    — Show entity/relation counts")
    print("  merge LOCAL REMOTE OUT [POL]  — Merge two stores into OUT")
    return 1


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if not args:
        return _usage()

    cmd, rest = args[0], args[1:]
    try:
        config = load_config()
        _setup_logging(config.log_level)
        if cmd == "validate" and len(rest) == 1:
            return _run_validate(config, Path(rest[0]))
        if cmd == "stats" and len(rest) == 1:
            return _run_stats(Path(rest[0]))
        if cmd == "merge" and len(rest) in (3, 4):
            return _run_merge(config, rest)
    except (StoreError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return _usage()


if __name__ == "__main__":
    sys.exit(main())
