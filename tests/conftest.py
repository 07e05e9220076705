"""
Pytest configuration and shared fixtures for colony tests.
"""

import asyncio
import threading
from collections.abc import AsyncGenerator
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from git import Repo

from colony.config.loader import ColonyConfig
from colony.core.instance import Instance
from colony.core.orchestrator import Colony
from colony.core.pipeline import ProvisioningPipeline
from colony.core.registry import RegistryStore
from colony.core.toolchain import (
    Builder,
    Cloner,
    DependencyInstaller,
    EnvFileConfigurator,
)
from colony.supervisor.base import Supervisor


class FakeSupervisor(Supervisor):
    """In-memory supervisor recording what it was asked to do."""

    name = "fake"

    def __init__(self):
        self.running: dict[str, list[str]] = {}
        self.started: list[str] = []
        self.stopped: list[str] = []
        self.start_error: Exception | None = None
        self.stop_error: Exception | None = None

    async def start(self, name, path, entrypoint, environment=None):
        if self.start_error is not None:
            raise self.start_error
        self.started.append(name)
        self.running[name] = list(entrypoint)

    async def stop(self, name):
        self.stopped.append(name)
        if self.stop_error is not None:
            raise self.stop_error
        return self.running.pop(name, None) is not None

    async def is_running(self, name):
        return name in self.running


class FakeStep:
    """Records calls; can be made to fail or to block until released."""

    def __init__(self):
        self.calls: list[object] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    def block(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    async def _step(self, target: object) -> None:
        self.calls.append(target)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error


class FakeCloner(FakeStep, Cloner):
    async def clone(self, species, destination):
        await self._step(species)
        destination.mkdir(parents=True)
        (destination / "package.json").write_text('{"name": "organism"}')


class FakeInstaller(FakeStep, DependencyInstaller):
    async def install(self, path):
        await self._step(path)


class FakeBuilder(FakeStep, Builder):
    async def build(self, path):
        await self._step(path)


class SlowRepository:
    """Stands in for GitRepository; the clone blocks until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()

    def clone_branch(self, branch, destination, timeout=None):
        destination.mkdir()
        self.started.set()
        self.release.wait(10)
        (destination / "package.json").write_text("{}")
        return "abc123"


@pytest.fixture
def colony_config(tmp_path: Path) -> ColonyConfig:
    """Configuration rooted in a temporary directory."""
    return ColonyConfig(
        repo_path=str(tmp_path),
        colony_dir=str(tmp_path / "colony"),
        supervisor="process",
    )


@pytest.fixture
def fake_supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def toolchain() -> SimpleNamespace:
    """Fake clone/install/build steps plus the real env file writer."""
    return SimpleNamespace(
        cloner=FakeCloner(),
        installer=FakeInstaller(),
        configurator=EnvFileConfigurator(),
        builder=FakeBuilder(),
    )


@pytest.fixture
def registry(colony_config: ColonyConfig) -> RegistryStore:
    store = RegistryStore(colony_config.registry_path)
    store.load()
    return store


@pytest.fixture
def pipeline(registry, fake_supervisor, toolchain, colony_config) -> ProvisioningPipeline:
    return ProvisioningPipeline(
        registry=registry,
        supervisor=fake_supervisor,
        cloner=toolchain.cloner,
        installer=toolchain.installer,
        configurator=toolchain.configurator,
        builder=toolchain.builder,
        entrypoint=colony_config.start_command,
        cleanup_failed=colony_config.cleanup_failed_spawns,
    )


@pytest.fixture
def species_resolver() -> Mock:
    resolver = Mock()
    resolver.list_species = AsyncMock(return_value=["main", "feature/dark-mode"])
    return resolver


@pytest.fixture
def colony(colony_config, registry, species_resolver, fake_supervisor, pipeline) -> Colony:
    """A colony wired to fakes; not started."""
    return Colony(
        colony_config,
        registry=registry,
        species_resolver=species_resolver,
        supervisor=fake_supervisor,
        pipeline=pipeline,
    )


@pytest_asyncio.fixture
async def started_colony(colony: Colony) -> AsyncGenerator[Colony, None]:
    """A started colony, shut down after the test."""
    await colony.start()
    yield colony
    await colony.shutdown()


def make_instance(name: str = "alpha", port: int = 3001, **kwargs) -> Instance:
    """Build a registry entry with sensible defaults."""
    values = {
        "species": "main",
        "path": f"/tmp/colony/instances/{name}",
        "created": "2024-01-01T00:00:00.000000+00:00",
    }
    values.update(kwargs)
    return Instance(name=name, port=port, **values)


@pytest.fixture
def instance_factory():
    return make_instance


@pytest.fixture
def temp_git_repo(tmp_path: Path) -> tuple[Path, Path]:
    """An origin repository with two branches and a clone of it.

    Returns:
        (origin path, clone path); the clone has ``origin`` pointing at the
        origin, so both branches show up as remote branches.
    """
    origin_path = tmp_path / "origin"
    origin_path.mkdir()
    origin = Repo.init(origin_path, initial_branch="main")
    with origin.config_writer() as writer:
        writer.set_value("user", "name", "Colony Tests")
        writer.set_value("user", "email", "tests@colony.invalid")

    readme = origin_path / "README.md"
    readme.write_text("# Organism\n")
    origin.index.add([str(readme)])
    origin.index.commit("Initial commit")

    origin.git.checkout("-b", "feature/dark-mode")
    (origin_path / "theme.txt").write_text("dark\n")
    origin.index.add([str(origin_path / "theme.txt")])
    origin.index.commit("Dark mode")
    origin.git.checkout("main")

    clone_path = tmp_path / "checkout"
    Repo.clone_from(str(origin_path), str(clone_path))
    return origin_path, clone_path


@pytest.fixture
def slow_repository():
    """A repository whose clones block until ``release`` is set."""
    repository = SlowRepository()
    yield repository
    repository.release.set()
