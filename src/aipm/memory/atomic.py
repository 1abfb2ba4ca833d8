"""Atomic file operations — write to a temp file beside the target, then rename.

An observer of the target path sees either the old content or the complete
new content, never a partial write. Nothing here takes a file lock.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from aipm.memory.codec import EMPTY_STORE

logger = logging.getLogger(__name__)

ContentSource = str | bytes | Iterable[str]


def _target_mode(target: Path) -> int:
    try:
        return stat.S_IMODE(target.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


@contextmanager
def staged_file(target: Path) -> Iterator[Path]:
    """Yield a temp path in target's directory; rename it onto target on clean exit.

    The temp name carries the pid plus a random suffix so concurrent callers
    never collide. The replacement keeps the target's permission bits, or
    gets the umask default when the target is new. On any exception
    (KeyboardInterrupt included) the temp file is removed and the target is
    left untouched.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.{os.getpid()}.",
        suffix=".tmp",
    )
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        yield tmp_path
        os.chmod(tmp_path, _target_mode(target))
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_content(path: Path, content_source: ContentSource) -> None:
    """Write content to path and fsync it. Iterables are streamed chunk by chunk."""
    if isinstance(content_source, bytes):
        with path.open("wb") as f:
            f.write(content_source)
            f.flush()
            os.fsync(f.fileno())
        return
    with path.open("w", encoding="utf-8", newline="\n") as f:
        if isinstance(content_source, str):
            f.write(content_source)
        else:
            for chunk in content_source:
                f.write(chunk)
        f.flush()
        os.fsync(f.fileno())


def atomic_replace(target_path: Path, content_source: ContentSource) -> None:
    """Replace target_path with content_source atomically."""
    with staged_file(target_path) as tmp:
        write_content(tmp, content_source)
    logger.debug("Atomically replaced %s", target_path)


def atomic_copy(source_path: Path, target_path: Path) -> None:
    """Copy source_path onto target_path atomically (byte-exact)."""
    atomic_replace(target_path, source_path.read_bytes())


def write_empty_store(path: Path) -> None:
    """Write the ``{}`` empty-store placeholder."""
    atomic_replace(path, EMPTY_STORE)
