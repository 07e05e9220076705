"""
Provisioning pipeline: turns a reserved ``spawning`` entry into a running
instance.

Stages run in order (cloning, installing, configuring, building, starting)
and every transition is persisted through the registry before the stage
starts. A transition only applies to the registration the pipeline was
started for; if that entry has been killed (and possibly re-spawned under the
same name) the pipeline stops without touching anything else.

Long-running work never happens under the registry lock.
"""

import asyncio
import shutil
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from ..config.loader import ColonyConfig
from ..supervisor.base import Supervisor
from ..utils.logging import LogContext, ProvisioningError, get_logger
from ..utils.process import ProcessError
from .enums import InstanceStatus, PipelineStage
from .git_operations import GitRepository
from .instance import Instance
from .registry import RegistryStore
from .toolchain import Builder, Cloner, Configurator, DependencyInstaller, default_toolchain

logger = get_logger(__name__, LogContext.PIPELINE)

# Registry entries keep the error short; the full output goes to the log.
MAX_ERROR_LENGTH = 500


class PipelineAborted(Exception):
    """The registration this pipeline works for no longer exists."""

    pass


class ProvisioningPipeline:
    """Runs the provisioning stages for one instance at a time."""

    def __init__(
        self,
        registry: RegistryStore,
        supervisor: Supervisor,
        cloner: Cloner,
        installer: DependencyInstaller,
        configurator: Configurator,
        builder: Builder,
        entrypoint: list[str],
        cleanup_failed: bool = True,
    ):
        self.registry = registry
        self.supervisor = supervisor
        self.cloner = cloner
        self.installer = installer
        self.configurator = configurator
        self.builder = builder
        self.entrypoint = list(entrypoint)
        self.cleanup_failed = cleanup_failed

    @classmethod
    def from_config(
        cls,
        config: ColonyConfig,
        registry: RegistryStore,
        supervisor: Supervisor,
        repository: GitRepository,
    ) -> "ProvisioningPipeline":
        """Pipeline using the stock toolchain described by *config*."""
        cloner, installer, configurator, builder = default_toolchain(config, repository)
        return cls(
            registry=registry,
            supervisor=supervisor,
            cloner=cloner,
            installer=installer,
            configurator=configurator,
            builder=builder,
            entrypoint=config.start_command,
            cleanup_failed=config.cleanup_failed_spawns,
        )

    async def run(self, instance: Instance) -> InstanceStatus | None:
        """Provision *instance* until it is running or has failed.

        Returns:
            The terminal status written to the registry, or None if the
            registration disappeared while provisioning
        """
        path = Path(instance.path)
        owns_path = not path.exists()
        started_at = time.monotonic()

        stages: list[tuple[PipelineStage, Callable[[], Awaitable[object]]]] = [
            (PipelineStage.CLONING, lambda: self.cloner.clone(instance.species, path)),
            (PipelineStage.INSTALLING, lambda: self.installer.install(path)),
            (PipelineStage.CONFIGURING, lambda: self.configurator.configure(instance)),
            (PipelineStage.BUILDING, lambda: self.builder.build(path)),
            (
                PipelineStage.STARTING,
                lambda: self.supervisor.start(instance.name, path, self.entrypoint),
            ),
        ]

        logger.info(
            "Provisioning started",
            instance=instance.name,
            species=instance.species,
            port=instance.port,
        )

        stage = None
        process_started = False
        try:
            for stage, action in stages:
                await self._transition(instance, InstanceStatus.SPAWNING, stage)
                try:
                    await self._run_stage(instance, stage, action)
                except ProvisioningError as e:
                    await self._fail(instance, e, owns_path)
                    return InstanceStatus.ERROR
                process_started = stage == PipelineStage.STARTING

            await self._transition(instance, InstanceStatus.RUNNING, None)
        except PipelineAborted:
            logger.info(
                "Registration gone, abandoning provisioning",
                instance=instance.name,
                stage=stage.value if stage else None,
            )
            # Only a process this pipeline started is ours to stop.
            if process_started:
                await self._stop_quietly(instance.name)
            return None

        logger.info(
            "Instance running",
            instance=instance.name,
            port=instance.port,
            duration=round(time.monotonic() - started_at, 3),
        )
        return InstanceStatus.RUNNING

    async def _run_stage(
        self,
        instance: Instance,
        stage: PipelineStage,
        action: Callable[[], Awaitable[object]],
    ) -> None:
        stage_started = time.monotonic()
        logger.info("Stage started", instance=instance.name, stage=stage.value)
        try:
            await action()
        except asyncio.CancelledError:
            logger.info("Stage cancelled", instance=instance.name, stage=stage.value)
            raise
        except Exception as e:
            output = e.output if isinstance(e, ProcessError) else None
            logger.error(
                "Stage failed",
                exception=e,
                instance=instance.name,
                stage=stage.value,
                output_tail=output,
            )
            raise ProvisioningError(
                str(e) or type(e).__name__,
                stage=stage.value,
                context={"instance": instance.name},
            ) from e

        logger.info(
            "Stage completed",
            instance=instance.name,
            stage=stage.value,
            duration=round(time.monotonic() - stage_started, 3),
        )

    async def _transition(
        self,
        instance: Instance,
        status: InstanceStatus,
        stage: PipelineStage | None,
        error: str | None = None,
    ) -> None:
        def _apply(instances: list[Instance]) -> None:
            for index, current in enumerate(instances):
                if current.is_same_registration(instance):
                    instances[index] = current.with_status(status, stage=stage, error=error)
                    return
            raise PipelineAborted(instance.name)

        await self.registry.mutate(_apply)

    async def _fail(self, instance: Instance, error: ProvisioningError, owns_path: bool) -> None:
        # A failed start launched nothing, and whatever holds the name is not ours.
        stage = PipelineStage(error.stage)
        if owns_path and self.cleanup_failed:
            await self._remove_checkout(instance)

        message = f"{stage.value} failed: {error.message}"[:MAX_ERROR_LENGTH]
        await self._transition(instance, InstanceStatus.ERROR, stage, error=message)
        logger.warning(
            "Provisioning failed", instance=instance.name, stage=stage.value, error=message
        )

    async def _stop_quietly(self, name: str) -> None:
        try:
            await self.supervisor.stop(name)
        except Exception as e:
            logger.warning("Could not stop process", instance=name, error=str(e))

    async def _remove_checkout(self, instance: Instance) -> None:
        path = Path(instance.path)
        if not path.exists():
            return
        try:
            await asyncio.to_thread(shutil.rmtree, path)
            logger.info("Removed checkout of failed spawn", instance=instance.name, path=str(path))
        except OSError as e:
            logger.warning(
                "Could not remove checkout", instance=instance.name, path=str(path), error=str(e)
            )
