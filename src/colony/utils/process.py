"""Subprocess helpers for the external tools the orchestrator drives."""

import asyncio
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import psutil

from .logging import LogContext, get_logger

logger = get_logger(__name__, LogContext.PROCESS)

# Keep the tail of a failing command's output for the error message.
OUTPUT_TAIL_CHARS = 2000


class ProcessError(Exception):
    """Exception raised when an external command fails."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] | None = None,
        return_code: int | None = None,
        output: str = "",
    ):
        """Initialize ProcessError.

        Args:
            message: Error message
            command: The command that failed
            return_code: Exit status, None when the command never ran or timed out
            output: Captured (tail of) combined stdout/stderr
        """
        super().__init__(message)
        self.command = list(command) if command else []
        self.return_code = return_code
        self.output = output


@dataclass
class CommandResult:
    """Outcome of a finished external command."""

    command: list[str]
    return_code: int
    output: str
    duration: float


async def run_command(
    command: Sequence[str],
    cwd: Path,
    environment: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run *command* in *cwd* and wait for it to finish.

    The child gets its own session so that a timeout or a cancelled pipeline
    can take down everything it spawned (npm likes to fork).

    Raises:
        ProcessError: if the command cannot be started, exits non-zero or times out
    """
    if not command:
        raise ProcessError("Empty command")

    env = os.environ.copy()
    if environment:
        env.update(environment)

    loop = asyncio.get_running_loop()
    started = loop.time()
    logger.debug("Running command", command=list(command), cwd=str(cwd))

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
    except OSError as e:
        raise ProcessError(
            f"Failed to start {command[0]}: {e}", command=command
        ) from e

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError as e:
        await _reap(process)
        raise ProcessError(
            f"{' '.join(command)} timed out after {timeout}s", command=command
        ) from e
    except asyncio.CancelledError:
        await asyncio.shield(_reap(process))
        raise

    output = stdout.decode(errors="replace") if stdout else ""
    duration = loop.time() - started
    return_code = process.returncode if process.returncode is not None else -1

    if return_code != 0:
        tail = output[-OUTPUT_TAIL_CHARS:]
        raise ProcessError(
            f"{' '.join(command)} exited with code {return_code}",
            command=command,
            return_code=return_code,
            output=tail,
        )

    logger.debug(
        "Command finished",
        command=list(command),
        return_code=return_code,
        duration=duration,
    )
    return CommandResult(
        command=list(command), return_code=return_code, output=output, duration=duration
    )


async def _reap(process: asyncio.subprocess.Process) -> None:
    await asyncio.to_thread(terminate_process_tree, process.pid)
    await process.wait()


def terminate_process_tree(pid: int, timeout: float = 10.0) -> bool:
    """Terminate *pid* and all of its descendants.

    Sends SIGTERM first and SIGKILL to whatever survives *timeout* seconds.

    Returns:
        True if a process was found and signalled, False if it was already gone
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return False

    try:
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        children = []

    processes = [*children, parent]
    for proc in processes:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _, alive = psutil.wait_procs(processes, timeout=timeout)
    for proc in alive:
        logger.warning("Process ignored SIGTERM, killing", pid=proc.pid)
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass

    return True


def is_pid_running(pid: int) -> bool:
    """Return True if *pid* exists and is not a zombie."""
    try:
        proc = psutil.Process(pid)
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
