"""Supervisor that runs instances as detached child processes.

Pid files under ``pid_dir`` let a restarted orchestrator stop processes
started by its predecessor.
"""

import asyncio
import os
import subprocess  # nosec B404
from collections.abc import Mapping, Sequence
from pathlib import Path

from ..utils.logging import LogContext, SupervisorError, get_logger
from ..utils.process import is_pid_running, terminate_process_tree
from .base import Supervisor

logger = get_logger(__name__, LogContext.SUPERVISOR)

LOG_FILE_NAME = "colony.log"


class ProcessSupervisor(Supervisor):
    """Spawns each instance in its own session and tracks it by pid file."""

    name = "process"

    def __init__(self, pid_dir: Path, stop_timeout: float = 10.0):
        self.pid_dir = Path(pid_dir)
        self.stop_timeout = stop_timeout

    def pid_file(self, name: str) -> Path:
        """Where the pid of instance *name* is recorded."""
        return self.pid_dir / f"{name}.pid"

    def _read_pid(self, name: str) -> int | None:
        try:
            return int(self.pid_file(name).read_text().strip())
        except (OSError, ValueError):
            return None

    async def start(
        self,
        name: str,
        path: Path,
        entrypoint: Sequence[str],
        environment: Mapping[str, str] | None = None,
    ) -> None:
        """Launch *entrypoint* detached, logging to ``colony.log`` in *path*."""
        if await self.is_running(name):
            raise SupervisorError(
                f"Process for {name} is already running", context={"instance": name}
            )

        env = os.environ.copy()
        if environment:
            env.update(environment)

        def _spawn() -> int:
            self.pid_dir.mkdir(parents=True, exist_ok=True)
            with open(path / LOG_FILE_NAME, "ab") as log:
                process = subprocess.Popen(  # nosec B603
                    list(entrypoint),
                    cwd=path,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            self.pid_file(name).write_text(str(process.pid))
            return process.pid

        try:
            pid = await asyncio.to_thread(_spawn)
        except OSError as e:
            raise SupervisorError(
                f"Failed to start process for {name}: {e}", context={"instance": name}
            ) from e

        logger.info("Instance process started", instance=name, pid=pid)

    async def stop(self, name: str) -> bool:
        """Terminate the recorded process tree and forget the pid."""
        pid = self._read_pid(name)
        if pid is None:
            logger.info("No process recorded, nothing to stop", instance=name)
            return False

        stopped = await asyncio.to_thread(terminate_process_tree, pid, self.stop_timeout)
        self.pid_file(name).unlink(missing_ok=True)

        if stopped:
            logger.info("Instance process stopped", instance=name, pid=pid)
        else:
            logger.info("Process already gone, nothing to stop", instance=name, pid=pid)
        return stopped

    async def is_running(self, name: str) -> bool:
        """Whether the recorded pid is alive."""
        pid = self._read_pid(name)
        return pid is not None and is_pid_running(pid)
