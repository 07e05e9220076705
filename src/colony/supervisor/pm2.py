"""pm2-backed supervisor, driving the pm2 CLI."""

import json
from collections.abc import Mapping, Sequence
from pathlib import Path

from ..utils.logging import LogContext, SupervisorError, get_logger
from ..utils.process import ProcessError, run_command
from .base import Supervisor

logger = get_logger(__name__, LogContext.SUPERVISOR)


class Pm2Supervisor(Supervisor):
    """Registers each instance as a pm2 process named after it."""

    name = "pm2"

    def __init__(self, pm2_path: str = "pm2", timeout: float = 60.0):
        self.pm2_path = pm2_path
        self.timeout = timeout

    async def start(
        self,
        name: str,
        path: Path,
        entrypoint: Sequence[str],
        environment: Mapping[str, str] | None = None,
    ) -> None:
        """``pm2 start <program> --name <name> -- <args>`` inside *path*."""
        program, *args = entrypoint
        command = [self.pm2_path, "start", program, "--name", name]
        if args:
            command += ["--", *args]

        try:
            await run_command(command, cwd=path, environment=environment, timeout=self.timeout)
        except ProcessError as e:
            raise SupervisorError(
                f"pm2 failed to start {name}: {e}",
                context={"instance": name, "output": e.output},
            ) from e
        logger.info("pm2 process started", instance=name)

    async def stop(self, name: str) -> bool:
        """``pm2 delete <name>``; a non-zero exit means it was not registered."""
        try:
            await run_command(
                [self.pm2_path, "delete", name], cwd=Path.cwd(), timeout=self.timeout
            )
        except ProcessError as e:
            logger.info("pm2 process not running, nothing to stop", instance=name, error=str(e))
            return False
        logger.info("pm2 process deleted", instance=name)
        return True

    async def is_running(self, name: str) -> bool:
        """Look the process up in ``pm2 jlist``."""
        try:
            result = await run_command(
                [self.pm2_path, "jlist"], cwd=Path.cwd(), timeout=self.timeout
            )
            processes = json.loads(result.output)
        except (ProcessError, ValueError) as e:
            logger.debug("Could not query pm2", error=str(e))
            return False

        for process in processes if isinstance(processes, list) else []:
            if process.get("name") == name:
                status = (process.get("pm2_env") or {}).get("status")
                return status == "online"
        return False
