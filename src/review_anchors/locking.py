"""Exclusive OS-level file locks serializing read-modify-write of a store."""

import contextlib
import os
import sys
import time
from collections.abc import Generator
from pathlib import Path

try:
    import fcntl  # Unix
except ImportError:
    fcntl = None  # type: ignore[assignment]

try:
    import msvcrt  # Windows
except ImportError:
    msvcrt = None  # type: ignore[assignment]

MAX_BACKOFF = 0.1  # seconds


class StoreLockTimeout(Exception):  # noqa: N818
    """Raised when the store lock cannot be acquired in time."""

    pass


@contextlib.contextmanager
def file_lock(path: Path, timeout: float = 5.0) -> Generator[None, None, None]:
    """
    Hold an exclusive lock on path for the duration of the context.

    The lock file is created (never truncated) along with its parent
    directories. Locks are per open file: taking the same lock twice from one
    process blocks until timeout.

    Args:
        path: Lock file path (typically a sibling of the data file)
        timeout: Maximum seconds to wait for the lock

    Raises:
        StoreLockTimeout: If the lock is not acquired within timeout
        OSError: If the lock file cannot be opened
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "a+", encoding="utf-8") as lock_file:
        fd = lock_file.fileno()
        _acquire(fd, path, timeout)
        try:
            yield
        finally:
            _release(fd)


def _try_lock(fd: int) -> bool:
    try:
        if sys.platform == "win32":
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
        else:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        # BlockingIOError on Unix, PermissionError/OSError on Windows
        return False
    return True


def _acquire(fd: int, path: Path, timeout: float) -> None:
    start_time = time.monotonic()
    attempt = 0
    while not _try_lock(fd):
        elapsed = time.monotonic() - start_time
        if elapsed >= timeout:
            raise StoreLockTimeout(f"Failed to lock {path} after {timeout:.1f} seconds")
        # Exponential backoff capped at MAX_BACKOFF
        time.sleep(min(0.01 * (2**attempt), MAX_BACKOFF))
        attempt += 1


def _release(fd: int) -> None:
    if sys.platform == "win32":
        with contextlib.suppress(OSError):
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
    else:
        with contextlib.suppress(OSError):
            fcntl.flock(fd, fcntl.LOCK_UN)
