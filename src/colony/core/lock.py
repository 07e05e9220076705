"""Exclusive ownership of a colony directory.

Only one orchestrator process may write a registry at a time; the registry is
held in memory, so a second writer would silently overwrite the first one's
changes. The owner holds an ``flock`` on ``colony.lock`` for its lifetime.
"""

import fcntl
import os
from pathlib import Path

from ..utils.logging import ConflictError, LogContext, get_logger

logger = get_logger(__name__, LogContext.REGISTRY)


class ColonyLock:
    """Non-blocking, process-wide lock on a colony directory."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._handle = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def owner_pid(self) -> int | None:
        """Pid recorded by the current (or last) owner."""
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            ConflictError: if another process owns the colony directory
        """
        if self._handle is not None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            owner = self.owner_pid()
            raise ConflictError(
                f"Colony directory {self.path.parent} is in use by another "
                f"orchestrator (pid {owner if owner is not None else 'unknown'})",
                context={"lock": str(self.path), "owner_pid": owner},
            ) from None

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        logger.debug("Colony lock acquired", path=str(self.path))

    def release(self) -> None:
        """Give the lock up; the lock file stays for diagnostics."""
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        logger.debug("Colony lock released", path=str(self.path))

    def __enter__(self) -> "ColonyLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
