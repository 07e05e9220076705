"""
Tmux-backed supervisor.

Each instance runs in its own detached tmux session named
``<prefix>-<instance name>``, so processes outlive the orchestrator and an
operator can attach to watch one.
"""

import asyncio
import shlex
from collections.abc import Mapping, Sequence
from pathlib import Path

import libtmux
from libtmux.exc import LibTmuxException

from ..utils.logging import LogContext, SupervisorError, get_logger
from .base import Supervisor

logger = get_logger(__name__, LogContext.SUPERVISOR)

_SESSION_ESCAPES = {"_": "__", ".": "_d", ":": "_c"}


class TmuxSupervisor(Supervisor):
    """Runs each instance in a dedicated tmux session."""

    name = "tmux"

    def __init__(self, session_prefix: str = "colony", server: libtmux.Server | None = None):
        """Initialize tmux supervisor.

        Args:
            session_prefix: Prefix for session names
            server: tmux server to use; the default server when None
        """
        self._server = server
        self._session_prefix = session_prefix

    @property
    def server(self) -> libtmux.Server:
        """The tmux server, created on first use."""
        if self._server is None:
            self._server = libtmux.Server()
        return self._server

    def session_name(self, name: str) -> str:
        """tmux session name for instance *name*.

        tmux forbids '.' and ':' in session names. They are escaped with '_',
        which is itself doubled, so distinct instance names never share a
        session (``a.b`` is ``a_db``, ``a_b`` is ``a__b``).
        """
        safe = "".join(_SESSION_ESCAPES.get(char, char) for char in name)
        return f"{self._session_prefix}-{safe}"

    async def start(
        self,
        name: str,
        path: Path,
        entrypoint: Sequence[str],
        environment: Mapping[str, str] | None = None,
    ) -> None:
        """Create a detached session running *entrypoint*."""
        session_name = self.session_name(name)

        def _start() -> None:
            if self.server.has_session(session_name):
                raise SupervisorError(
                    f"Session {session_name} already exists",
                    context={"instance": name},
                )
            self.server.new_session(
                session_name=session_name,
                start_directory=str(path),
                window_command=shlex.join(entrypoint),
                environment=dict(environment) if environment else None,
                attach=False,
            )

        try:
            await asyncio.to_thread(_start)
        except LibTmuxException as e:
            raise SupervisorError(
                f"Failed to create session {session_name}: {e}",
                context={"instance": name},
            ) from e

        logger.info("Tmux session created", session_name=session_name, instance=name)

    async def stop(self, name: str) -> bool:
        """Kill the instance's session if it exists."""
        session_name = self.session_name(name)

        def _stop() -> bool:
            if not self.server.has_session(session_name):
                return False
            self.server.kill_session(session_name)
            return True

        try:
            stopped = await asyncio.to_thread(_stop)
        except LibTmuxException as e:
            # The tmux server itself may be gone, in which case so is the session.
            logger.warning(
                "Could not stop tmux session", session_name=session_name, error=str(e)
            )
            return False

        if stopped:
            logger.info("Tmux session destroyed", session_name=session_name)
        else:
            logger.info("Tmux session not running, nothing to stop", session_name=session_name)
        return stopped

    async def is_running(self, name: str) -> bool:
        """Whether the instance's session exists."""
        try:
            return await asyncio.to_thread(self.server.has_session, self.session_name(name))
        except LibTmuxException:
            return False
