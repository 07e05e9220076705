"""
External toolchain used to provision an instance.

Each pipeline stage talks to one capability:
- ``Cloner``: materialise a species checkout
- ``DependencyInstaller``: install its dependencies locally
- ``Configurator``: write the instance-local config artifact
- ``Builder``: compile/bundle the checkout

The default implementations drive git (through GitPython) and the configured
install/build commands.
"""

import asyncio
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from ..config.loader import ColonyConfig
from ..utils.logging import LogContext, get_logger
from ..utils.process import CommandResult, run_command
from .git_operations import GitRepository
from .instance import Instance

logger = get_logger(__name__, LogContext.PIPELINE)


class Cloner(ABC):
    """Creates the checkout of a species."""

    @abstractmethod
    async def clone(self, species: str, destination: Path) -> None:
        """Check *species* out into *destination*, which must not exist."""


class DependencyInstaller(ABC):
    """Installs dependencies inside a checkout."""

    @abstractmethod
    async def install(self, path: Path) -> None:
        """Install the dependencies of the checkout at *path*."""


class Configurator(ABC):
    """Writes the configuration an instance reads at start-up."""

    @abstractmethod
    async def configure(self, instance: Instance) -> Path:
        """Write *instance*'s config artifact and return its path."""


class Builder(ABC):
    """Builds a checkout."""

    @abstractmethod
    async def build(self, path: Path) -> None:
        """Build the checkout at *path*."""


class GitCloner(Cloner):
    """Clones a single branch of the orchestrator's repository.

    The clone runs in a worker thread, which cancellation cannot stop. A
    cancelled clone is therefore waited for and its checkout removed before
    the cancellation propagates, so nothing writes to the destination
    afterwards.
    """

    def __init__(self, repository: GitRepository, timeout: float | None = None):
        self.repository = repository
        self.timeout = timeout

    async def clone(self, species: str, destination: Path) -> None:
        existed = destination.exists()
        destination.parent.mkdir(parents=True, exist_ok=True)
        worker = asyncio.ensure_future(
            asyncio.to_thread(
                self.repository.clone_branch, species, destination, self.timeout
            )
        )
        try:
            sha = await asyncio.shield(worker)
        except asyncio.CancelledError:
            await asyncio.shield(self._discard(worker, destination, existed))
            raise
        logger.info("Checkout ready", species=species, path=str(destination), sha=sha)

    async def _discard(
        self, worker: asyncio.Future, destination: Path, existed: bool
    ) -> None:
        await asyncio.gather(worker, return_exceptions=True)
        if existed or not destination.exists():
            return
        try:
            await asyncio.to_thread(shutil.rmtree, destination)
            logger.info("Removed checkout of cancelled clone", path=str(destination))
        except OSError as e:
            logger.warning(
                "Could not remove checkout of cancelled clone",
                path=str(destination),
                error=str(e),
            )


class _CommandStep:
    """Runs one configured command in a checkout, bounded by a timeout."""

    def __init__(self, command: Sequence[str], timeout: float | None = None):
        self.command = list(command)
        self.timeout = timeout

    async def _run(self, path: Path) -> CommandResult | None:
        if not self.command:
            logger.info("No command configured, skipping", path=str(path))
            return None
        result = await run_command(self.command, cwd=path, timeout=self.timeout)
        logger.debug(
            "Command output",
            command=self.command,
            duration=round(result.duration, 3),
            output_tail=result.output[-500:],
        )
        return result


class CommandInstaller(_CommandStep, DependencyInstaller):
    """Runs the install command (``npm install`` by default)."""

    async def install(self, path: Path) -> None:
        await self._run(path)


class CommandBuilder(_CommandStep, Builder):
    """Runs the build command (``npm run build`` by default)."""

    async def build(self, path: Path) -> None:
        await self._run(path)


class EnvFileConfigurator(Configurator):
    """Writes a dotenv file with the instance's port, mode and data store."""

    def __init__(
        self,
        file_name: str = ".env",
        execution_mode: str = "production",
        database_url: str = "file:./amoeba.db",
    ):
        self.file_name = file_name
        self.execution_mode = execution_mode
        self.database_url = database_url

    def render(self, instance: Instance) -> str:
        """Contents of the env file for *instance*."""
        values = {
            "PORT": str(instance.port),
            "NODE_ENV": self.execution_mode,
            "DATABASE_URL": self.database_url,
        }
        return "".join(f"{key}={value}\n" for key, value in values.items())

    async def configure(self, instance: Instance) -> Path:
        target = Path(instance.path) / self.file_name
        await asyncio.to_thread(_atomic_write, target, self.render(instance))
        logger.info("Env file written", instance=instance.name, path=str(target))
        return target


def _atomic_write(target: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, target)
    finally:
        tmp_path.unlink(missing_ok=True)


def default_toolchain(
    config: ColonyConfig, repository: GitRepository
) -> tuple[Cloner, DependencyInstaller, Configurator, Builder]:
    """Build the stock capabilities described by *config*."""
    timeout = config.command_timeout or None
    return (
        GitCloner(repository, timeout=timeout),
        CommandInstaller(config.install_command, timeout=timeout),
        EnvFileConfigurator(
            file_name=config.env_file_name,
            execution_mode=config.execution_mode,
            database_url=config.database_url,
        ),
        CommandBuilder(config.build_command, timeout=timeout),
    )
