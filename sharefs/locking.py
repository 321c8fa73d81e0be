"""Exclusive locking for a local cache directory.

A ``DirectoryLock`` guards every read, write, eviction and clear performed on
one cache directory. It layers two mechanisms:

    - an in-process ``threading.RLock`` so that worker threads and the
      caller's thread never interleave partial writes
    - an advisory OS file lock (fcntl on Unix, msvcrt on Windows) on a
      sibling ``.lock`` file, held while the in-process lock is held

The lock file lives next to the cache directory rather than inside it, so
that clearing the cache (which removes the directory) never removes the lock
that protects the clear.

Example:

    >>> from sharefs.locking import DirectoryLock
    >>> lock = DirectoryLock(Path("/tmp/sharefs-cache"))
    >>> with lock.acquire(timeout=5.0):
    ...     write_entry()

"""

from __future__ import annotations

import errno
import platform
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

_CONTENTION_ERRNOS = frozenset(
    code
    for code in (
        errno.EAGAIN,
        errno.EWOULDBLOCK,
        errno.EACCES,
        getattr(errno, "EDEADLOCK", None),
    )
    if code is not None
)


class LockError(IOError):
    """Raised when file locking operations fail."""

    def __init__(self, message: str, *, lock_path: Path | None = None) -> None:
        """Initialize lock error with optional path context."""
        if lock_path:
            detail = f"{message}: {lock_path}"
        else:
            detail = message
        super().__init__(detail)
        self.message = message
        self.lock_path = lock_path


def _is_contention(exc: OSError) -> bool:
    """Return True when a non-blocking lock failed because another holder has it."""
    return isinstance(exc, BlockingIOError) or exc.errno in _CONTENTION_ERRNOS


def lock_path_for(directory: Path) -> Path:
    """Return the sibling lock file used for ``directory``."""
    directory = Path(directory)
    return directory.with_name(f"{directory.name}.lock")


class DirectoryLock:
    """Re-entrant exclusive lock over one directory.

    The thread that holds the lock may acquire it again; other threads block
    until it is released or their timeout expires.
    """

    def __init__(self, directory: Path) -> None:
        """Initialize the lock for ``directory``.

        Args:
            directory: Directory being protected. The lock file is created
                beside it on first acquisition.

        """
        self.directory = Path(directory)
        self.lock_path = lock_path_for(self.directory)
        self._thread_lock = threading.RLock()
        self._lock_file: IO[str] | None = None
        self._depth = 0

    @contextmanager
    def acquire(self, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for the duration of the block.

        Args:
            timeout: Seconds to wait. ``None`` waits indefinitely.

        Raises:
            TimeoutError: If the lock cannot be acquired within ``timeout``.
            LockError: If the OS lock cannot be applied.

        """
        wait = -1 if timeout is None else max(timeout, 0.0)
        deadline = None if timeout is None else time.monotonic() + wait
        if not self._thread_lock.acquire(timeout=wait):
            message = f"Could not acquire lock within {timeout} seconds"
            raise TimeoutError(f"{message}: {self.lock_path}")
        try:
            if self._depth == 0:
                self._acquire_file_lock(deadline)
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._release_file_lock()
        finally:
            self._thread_lock.release()

    @property
    def is_held(self) -> bool:
        """Return True while some thread holds the lock."""
        return self._depth > 0

    def _acquire_file_lock(self, deadline: float | None) -> None:
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = open(self.lock_path, "a", encoding="utf-8")  # noqa: SIM115
        except OSError as e:
            message = f"Cannot open lock file: {e}"
            raise LockError(message, lock_path=self.lock_path) from e

        while True:
            try:
                self._apply_lock(lock_file)
            except OSError as e:
                if not _is_contention(e):
                    lock_file.close()
                    message = f"Failed to acquire lock: {e}"
                    raise LockError(message, lock_path=self.lock_path) from e
                if deadline is not None and time.monotonic() >= deadline:
                    lock_file.close()
                    message = "Could not acquire lock before timeout"
                    raise TimeoutError(f"{message}: {self.lock_path}") from e
                time.sleep(0.05)
            else:
                self._lock_file = lock_file
                return

    def _release_file_lock(self) -> None:
        lock_file, self._lock_file = self._lock_file, None
        if lock_file is None:
            return
        try:
            self._unlock_file(lock_file)
        finally:
            try:
                lock_file.close()
            except OSError as e:
                message = f"Failed to release lock: {e}"
                raise LockError(message, lock_path=self.lock_path) from e

    @staticmethod
    def _apply_lock(file_obj: IO[str]) -> None:
        """Apply a non-blocking platform-specific exclusive lock."""
        if platform.system() == "Windows":
            import msvcrt

            msvcrt.locking(file_obj.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(file_obj.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

    @staticmethod
    def _unlock_file(file_obj: IO[str]) -> None:
        """Remove the platform-specific lock; unlock errors are ignored."""
        if platform.system() == "Windows":
            import msvcrt

            try:
                msvcrt.locking(file_obj.fileno(), msvcrt.LK_UNLCK, 1)
            except OSError:
                pass
        else:
            import fcntl

            try:
                fcntl.flock(file_obj.fileno(), fcntl.LOCK_UN)
            except OSError:
                pass
