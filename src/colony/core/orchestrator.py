"""
Colony orchestrator: the list/species/spawn/kill API.

The registry is the single source of truth. ``spawn`` reserves a name and a
port inside one registry mutation and hands the rest of the work to a
background ``asyncio.Task`` running the provisioning pipeline; ``kill``
cancels that task, stops the process and removes the entry. Tasks are keyed
by instance name, so a kill always finds the pipeline it has to cancel.
"""

import asyncio
import shutil
from pathlib import Path
from typing import Any

from ..config.loader import ColonyConfig
from ..supervisor import create_supervisor
from ..supervisor.base import Supervisor
from ..utils.logging import (
    ConflictError,
    LogContext,
    NotFoundError,
    ValidationError,
    get_logger,
)
from .enums import InstanceStatus
from .git_operations import GitRepository, SpeciesResolver
from .instance import Instance, utc_timestamp, validate_name, validate_species
from .lock import ColonyLock
from .pipeline import ProvisioningPipeline
from .ports import next_free_port
from .registry import RegistryStore

logger = get_logger(__name__, LogContext.COLONY)


class Colony:
    """Provisions, tracks and tears down colony instances."""

    def __init__(
        self,
        config: ColonyConfig,
        registry: RegistryStore | None = None,
        species_resolver: SpeciesResolver | None = None,
        supervisor: Supervisor | None = None,
        pipeline: ProvisioningPipeline | None = None,
        lock: ColonyLock | None = None,
    ) -> None:
        """Initialize the colony.

        Args:
            config: Colony configuration
            registry: Registry store; one at ``config.registry_path`` by default
            species_resolver: Species source; the configured repository by default
            supervisor: Process manager; ``config.supervisor`` by default
            pipeline: Provisioning pipeline; the stock toolchain by default
            lock: Ownership lock of the colony directory
        """
        self.config = config
        self.registry = registry or RegistryStore(config.registry_path)
        repository = GitRepository(config.repo_path, config.clone_url)
        self.species_resolver = species_resolver or SpeciesResolver(repository)
        self.supervisor = supervisor or create_supervisor(config)
        self.pipeline = pipeline or ProvisioningPipeline.from_config(
            config, self.registry, self.supervisor, repository
        )
        self.lock = lock or ColonyLock(config.colony_path / "colony.lock")
        self._tasks: dict[str, asyncio.Task] = {}
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def start(self, exclusive: bool = True, reconcile: bool = True) -> None:
        """Load the registry and take ownership of the colony directory.

        Args:
            exclusive: Acquire the colony lock; required to spawn or kill
            reconcile: Mark spawns interrupted by a previous process as failed
        """
        if exclusive:
            self.lock.acquire()
        try:
            instances = self.registry.load()
            if reconcile:
                await self.registry.reconcile_interrupted()
        except Exception:
            self.lock.release()
            raise

        self._initialized = True
        logger.info(
            "Colony started",
            registry=str(self.registry.path),
            instance_count=len(instances),
            supervisor=self.supervisor.name,
        )

    async def shutdown(self) -> None:
        """Cancel outstanding pipelines and release the colony directory.

        Interrupted entries stay ``spawning`` on disk and are reconciled by
        the next ``start``.
        """
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled provisioning tasks", count=len(tasks))
        self._tasks.clear()
        self.lock.release()
        self._initialized = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_instances(self) -> list[dict[str, Any]]:
        """All registered instances, in registration order, with their url."""
        return [
            instance.to_public_dict(self.config.public_host, self.config.url_scheme)
            for instance in self.registry.snapshot()
        ]

    def get_instance(self, name: str) -> Instance | None:
        return self.registry.get(name)

    async def list_species(self) -> list[str]:
        """Branches new instances can be spawned from."""
        return await self.species_resolver.list_species()

    async def process_states(self) -> dict[str, bool]:
        """Whether the supervisor currently runs each registered instance."""
        states: dict[str, bool] = {}
        for instance in self.registry.snapshot():
            try:
                states[instance.name] = await self.supervisor.is_running(instance.name)
            except Exception as e:
                logger.warning(
                    "Could not query process state", instance=instance.name, error=str(e)
                )
                states[instance.name] = False
        return states

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def spawn(self, species: Any, name: Any) -> Instance:
        """Reserve *name* and a port, then provision in the background.

        Returns:
            The ``spawning`` entry as recorded in the registry

        Raises:
            ValidationError: if species or name is missing or malformed
            ConflictError: if *name* is registered in any status
        """
        species = validate_species(species)
        name = validate_name(name)
        path = self.config.instances_path / name

        def _reserve(instances: list[Instance]) -> Instance:
            if any(existing.name == name for existing in instances):
                raise ConflictError(
                    f"Instance '{name}' already exists", context={"instance": name}
                )
            port = next_free_port(
                (existing.port for existing in instances), self.config.base_port
            )
            instance = Instance(
                name=name,
                species=species,
                port=port,
                path=str(path),
                created=utc_timestamp(),
                status=InstanceStatus.SPAWNING,
            )
            instances.append(instance)
            return instance

        instance = await self.registry.mutate(_reserve)
        logger.info(
            "Instance reserved",
            instance=name,
            species=species,
            port=instance.port,
            path=str(path),
        )

        task = asyncio.create_task(self.pipeline.run(instance), name=f"spawn-{name}")
        self._tasks[name] = task
        task.add_done_callback(lambda done: self._forget_task(name, done))
        return instance

    async def wait(self, name: str) -> Instance | None:
        """Wait for the pipeline of *name* to finish and return its entry."""
        task = self._tasks.get(name)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.registry.get(name)

    async def kill(self, name: Any, purge: bool | None = None) -> None:
        """Stop instance *name* and remove it from the registry.

        Args:
            name: Instance to remove
            purge: Delete the checkout as well; ``config.purge_on_kill`` when None

        Raises:
            ValidationError: if name is missing
            NotFoundError: if *name* is not registered
        """
        # Existing entries are killable even if they predate name validation.
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Name is required", context={"field": "name"})
        name = name.strip()
        instance = self.registry.get(name)
        if instance is None:
            raise NotFoundError(f"Instance '{name}' not found", context={"instance": name})

        await self._cancel_pipeline(name)

        try:
            await self.supervisor.stop(name)
        except Exception as e:
            logger.warning("Could not stop process, removing anyway", instance=name, error=str(e))

        def _remove(instances: list[Instance]) -> Instance:
            for index, existing in enumerate(instances):
                if existing.name == name:
                    return instances.pop(index)
            raise NotFoundError(f"Instance '{name}' not found", context={"instance": name})

        removed = await self.registry.mutate(_remove)

        purge = self.config.purge_on_kill if purge is None else purge
        if purge:
            await self._purge(removed)

        logger.info(
            "Instance killed",
            instance=name,
            port=removed.port,
            purged=purge,
            frozen_path=None if purge else removed.path,
        )

    # ------------------------------------------------------------------
    async def _cancel_pipeline(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Provisioning cancelled", instance=name)

    def _forget_task(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Provisioning task crashed", exception=task.exception(), instance=name
            )

    async def _purge(self, instance: Instance) -> None:
        path = Path(instance.path)
        if not path.exists():
            return
        try:
            await asyncio.to_thread(shutil.rmtree, path)
            logger.info("Instance files purged", instance=instance.name, path=str(path))
        except OSError as e:
            logger.warning(
                "Could not purge instance files",
                instance=instance.name,
                path=str(path),
                error=str(e),
            )
