"""
Advisory lock files.

One non-blocking exclusive ``flock`` per scope: the global lock guards
install/uninstall of the global root, the project lock guards mutations of
one workspace. A held lock fails fast instead of waiting.
"""

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog

from ..errors import LockError

logger = structlog.get_logger()


def missing_dirs(path: Path) -> list[Path]:
    """Directories that ``path.mkdir(parents=True)`` would create, deepest first."""
    missing: list[Path] = []
    current = Path(path)
    while not current.exists() and current != current.parent:
        missing.append(current)
        current = current.parent
    return missing


def remove_empty_dirs(dirs: list[Path]) -> None:
    """Remove each directory, deepest first, stopping at the first non-empty one."""
    for directory in dirs:
        if not directory.is_dir() or any(directory.iterdir()):
            break
        directory.rmdir()


@contextmanager
def exclusive_lock(path: Path, what: str = "dsmj-ai", discard_on_error: bool = False) -> Iterator[Path]:
    """Hold an exclusive lock on ``path`` for the duration of the block.

    With ``discard_on_error``, a failing block also removes the lock file and
    any directories created for it, so a failed command leaves no trace.

    Raises:
        LockError: another process holds the lock.
    """
    path = Path(path)
    created = missing_dirs(path.parent)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise LockError(
                f"Another {what} operation is running (lock held on {path})"
            ) from None
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.debug("lock.acquired", path=str(path))
        try:
            yield path
        except BaseException:
            if discard_on_error and created:
                path.unlink(missing_ok=True)
                remove_empty_dirs(created)
                logger.debug("lock.discarded", path=str(path))
            raise
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("lock.released", path=str(path))
    finally:
        os.close(fd)
