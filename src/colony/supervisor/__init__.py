"""
Process supervisor adapters.

This package hides the external process manager behind ``Supervisor``:
- ``tmux``: one detached tmux session per instance (default)
- ``pm2``: the pm2 process manager
- ``process``: detached child processes tracked by pid file
"""

from ..config.loader import ColonyConfig
from ..utils.logging import ConfigurationError
from .base import Supervisor
from .pm2 import Pm2Supervisor
from .process import ProcessSupervisor
from .tmux import TmuxSupervisor


def create_supervisor(config: ColonyConfig) -> Supervisor:
    """Build the supervisor selected by ``config.supervisor``."""
    if config.supervisor == "tmux":
        return TmuxSupervisor(session_prefix=config.session_prefix)
    if config.supervisor == "pm2":
        return Pm2Supervisor(pm2_path=config.pm2_path)
    if config.supervisor == "process":
        return ProcessSupervisor(pid_dir=config.colony_path / "pids")
    raise ConfigurationError(f"Unknown supervisor '{config.supervisor}'")


__all__ = [
    "Pm2Supervisor",
    "ProcessSupervisor",
    "Supervisor",
    "TmuxSupervisor",
    "create_supervisor",
]
