"""Supervisor interface shared by all process manager backends."""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import Path


class Supervisor(ABC):
    """Starts and stops named, long-running instance processes."""

    name = "abstract"

    @abstractmethod
    async def start(
        self,
        name: str,
        path: Path,
        entrypoint: Sequence[str],
        environment: Mapping[str, str] | None = None,
    ) -> None:
        """Start *entrypoint* in *path* under *name*.

        Raises:
            SupervisorError: if the process manager refuses or fails
        """

    @abstractmethod
    async def stop(self, name: str) -> bool:
        """Stop the process registered as *name*.

        Stopping a name that is not running is not an error.

        Returns:
            True if a process was stopped, False if there was nothing to stop
        """

    @abstractmethod
    async def is_running(self, name: str) -> bool:
        """Whether a process is currently registered as *name*."""
