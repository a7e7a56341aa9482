"""Advisory file locking for host-wide critical sections.

Serialises devhost processes that touch the same piece of host state, most
notably the tmux "probe then create" sequence in the session launcher: two
launchers started at once for the same session name would otherwise both see
"absent" and both try to create it.

Philosophy:
- Standard library only (fcntl)
- Exponential backoff for contention handling
- Context manager for automatic cleanup

Public API:
    acquire_file_lock: Context manager for acquiring an exclusive lock
    LockTimeoutError: Raised when the lock cannot be acquired within timeout

Example:
    >>> from devhost.file_lock_manager import acquire_file_lock
    >>> lock = Path("~/.devhost/locks/session-dev.lock").expanduser()
    >>> with acquire_file_lock(lock, timeout=5.0, operation="session create"):
    ...     ...  # only one process runs here at a time
"""

import fcntl
import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)

__all__ = ["LockTimeoutError", "acquire_file_lock"]


class LockTimeoutError(Exception):
    """Raised when file lock cannot be acquired within timeout period."""


@contextmanager
def acquire_file_lock(
    lock_path: Path,
    timeout: float = 5.0,
    operation: str = "file operation",
) -> Generator[None, None, None]:
    """Acquire an exclusive advisory lock with exponential backoff.

    The lock file (and its parent directory) is created if missing. The
    file itself is only a rendezvous point; nothing is written to it.

    Args:
        lock_path: Path of the lock file
        timeout: Maximum seconds to wait for lock acquisition
        operation: Description of operation (used in error messages)

    Raises:
        LockTimeoutError: If lock cannot be acquired within timeout
        PermissionError: If the lock file cannot be opened
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "a") as file_handle:
        _acquire_lock_with_backoff(file_handle, lock_path, timeout, operation)
        try:
            yield
        finally:
            _release_lock(file_handle)


def _acquire_lock_with_backoff(
    file_handle: TextIO,
    lock_path: Path,
    timeout: float,
    operation: str,
) -> None:
    """Try a non-blocking flock, backing off 0.1s, 0.2s, 0.4s ... capped at 2s."""
    start_time = time.monotonic()
    delay = 0.1

    while True:
        try:
            fcntl.flock(file_handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            logger.debug(f"Acquired lock for {operation}: {lock_path}")
            return
        except BlockingIOError:
            pass

        elapsed = time.monotonic() - start_time
        if elapsed >= timeout:
            raise LockTimeoutError(
                f"Failed to acquire file lock for {operation} after {timeout} seconds. "
                f"File: {lock_path}. Another devhost process may be holding the lock."
            )

        time.sleep(min(delay, timeout - elapsed))
        delay = min(delay * 2, 2.0)


def _release_lock(file_handle: TextIO) -> None:
    try:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        logger.debug(f"Error during lock cleanup: {e}")
