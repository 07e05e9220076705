"""Unit tests for the provisioning pipeline."""

import asyncio
import json
from pathlib import Path

import pytest

from colony.core.enums import InstanceStatus, PipelineStage
from colony.utils.logging import SupervisorError
from colony.utils.process import ProcessError


@pytest.fixture
def spawning(colony_config, instance_factory):
    """A spawning entry whose checkout lives in the colony directory."""
    return instance_factory(
        "alpha", 3001, path=str(colony_config.instances_path / "alpha")
    )


async def register(registry, instance):
    await registry.mutate(lambda instances: instances.append(instance))


def persisted(registry, name):
    data = json.loads(registry.path.read_text())
    return next(entry for entry in data["instances"] if entry["name"] == name)


class TestSuccessfulProvisioning:
    """Test cases for a pipeline that runs to completion."""

    @pytest.mark.asyncio
    async def test_runs_all_stages_and_marks_running(
        self, pipeline, registry, spawning, toolchain, fake_supervisor, colony_config
    ):
        await register(registry, spawning)

        status = await pipeline.run(spawning)

        assert status == InstanceStatus.RUNNING
        entry = registry.get("alpha")
        assert entry.status == InstanceStatus.RUNNING
        assert entry.stage is None
        assert entry.error is None
        assert entry.created == spawning.created
        assert persisted(registry, "alpha")["status"] == "running"

        path = Path(spawning.path)
        assert toolchain.cloner.calls == ["main"]
        assert toolchain.installer.calls == [path]
        assert toolchain.builder.calls == [path]
        assert (path / ".env").read_text().startswith("PORT=3001\n")
        assert fake_supervisor.running == {"alpha": colony_config.start_command}

    @pytest.mark.asyncio
    async def test_stage_is_persisted_before_it_runs(
        self, pipeline, registry, spawning, toolchain
    ):
        await register(registry, spawning)
        gate = toolchain.builder.block()

        task = asyncio.create_task(pipeline.run(spawning))
        await toolchain.builder.entered.wait()

        entry = registry.get("alpha")
        assert entry.status == InstanceStatus.SPAWNING
        assert entry.stage == PipelineStage.BUILDING
        on_disk = persisted(registry, "alpha")
        assert on_disk["status"] == "spawning"
        assert on_disk["stage"] == "building"

        gate.set()
        assert await task == InstanceStatus.RUNNING

    @pytest.mark.asyncio
    async def test_registry_lock_not_held_while_stage_runs(
        self, pipeline, registry, spawning, toolchain, instance_factory
    ):
        await register(registry, spawning)
        gate = toolchain.installer.block()
        task = asyncio.create_task(pipeline.run(spawning))
        await toolchain.installer.entered.wait()

        await asyncio.wait_for(
            register(registry, instance_factory("beta", 3002)), timeout=1
        )

        gate.set()
        await task
        assert [instance.name for instance in registry.snapshot()] == ["alpha", "beta"]


class TestFailedProvisioning:
    """Test cases for stage failures."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("step", "stage", "error"),
        [
            ("cloner", PipelineStage.CLONING, RuntimeError("branch not found")),
            ("installer", PipelineStage.INSTALLING, ProcessError("npm install exited with code 1")),
            ("builder", PipelineStage.BUILDING, ProcessError("npm run build timed out after 5s")),
        ],
    )
    async def test_stage_failure_is_recorded(
        self, pipeline, registry, spawning, toolchain, fake_supervisor, step, stage, error
    ):
        await register(registry, spawning)
        getattr(toolchain, step).error = error

        status = await pipeline.run(spawning)

        assert status == InstanceStatus.ERROR
        entry = registry.get("alpha")
        assert entry.status == InstanceStatus.ERROR
        assert entry.stage == stage
        assert str(error) in entry.error
        assert entry.error.startswith(f"{stage.value} failed")
        assert persisted(registry, "alpha")["status"] == "error"
        assert fake_supervisor.started == []

    @pytest.mark.asyncio
    async def test_later_stages_do_not_run(self, pipeline, registry, spawning, toolchain):
        await register(registry, spawning)
        toolchain.installer.error = ProcessError("npm install exited with code 1")

        await pipeline.run(spawning)

        assert toolchain.builder.calls == []

    @pytest.mark.asyncio
    async def test_start_failure(self, pipeline, registry, spawning, fake_supervisor):
        await register(registry, spawning)
        fake_supervisor.start_error = SupervisorError("pm2 failed to start alpha")

        status = await pipeline.run(spawning)

        assert status == InstanceStatus.ERROR
        entry = registry.get("alpha")
        assert entry.stage == PipelineStage.STARTING
        assert "pm2 failed to start alpha" in entry.error
        assert fake_supervisor.stopped == []

    @pytest.mark.asyncio
    async def test_failed_checkout_is_removed(self, pipeline, registry, spawning, toolchain):
        await register(registry, spawning)
        toolchain.builder.error = ProcessError("npm run build exited with code 2")

        await pipeline.run(spawning)

        assert not Path(spawning.path).exists()

    @pytest.mark.asyncio
    async def test_failed_checkout_kept_when_cleanup_disabled(
        self, pipeline, registry, spawning, toolchain
    ):
        pipeline.cleanup_failed = False
        await register(registry, spawning)
        toolchain.builder.error = ProcessError("npm run build exited with code 2")

        await pipeline.run(spawning)

        assert (Path(spawning.path) / "package.json").exists()

    @pytest.mark.asyncio
    async def test_preexisting_directory_is_never_removed(
        self, pipeline, registry, spawning
    ):
        path = Path(spawning.path)
        path.mkdir(parents=True)
        (path / "precious.txt").write_text("keep me")
        await register(registry, spawning)

        status = await pipeline.run(spawning)

        assert status == InstanceStatus.ERROR
        assert registry.get("alpha").stage == PipelineStage.CLONING
        assert (path / "precious.txt").read_text() == "keep me"

    @pytest.mark.asyncio
    async def test_error_message_is_truncated(self, pipeline, registry, spawning, toolchain):
        await register(registry, spawning)
        toolchain.builder.error = ProcessError("x" * 5000)

        await pipeline.run(spawning)

        assert len(registry.get("alpha").error) <= 500


class TestAbandonedProvisioning:
    """Test cases for registrations that disappear mid-flight."""

    @pytest.mark.asyncio
    async def test_removed_entry_aborts_silently(
        self, pipeline, registry, spawning, toolchain, fake_supervisor
    ):
        await register(registry, spawning)
        gate = toolchain.installer.block()
        task = asyncio.create_task(pipeline.run(spawning))
        await toolchain.installer.entered.wait()

        await registry.mutate(lambda instances: instances.clear())
        gate.set()

        assert await task is None
        assert registry.snapshot() == []
        assert toolchain.builder.calls == []
        assert fake_supervisor.started == []

    @pytest.mark.asyncio
    async def test_new_registration_with_same_name_is_untouched(
        self, pipeline, registry, spawning, toolchain, instance_factory
    ):
        await register(registry, spawning)
        gate = toolchain.installer.block()
        task = asyncio.create_task(pipeline.run(spawning))
        await toolchain.installer.entered.wait()

        replacement = instance_factory(
            "alpha", 3001, path=spawning.path, created="2030-01-01T00:00:00+00:00"
        )

        def _respawn(instances):
            instances.clear()
            instances.append(replacement)

        await registry.mutate(_respawn)
        gate.set()

        assert await task is None
        assert registry.get("alpha") == replacement

    @pytest.mark.asyncio
    async def test_cancellation_propagates_without_writes(
        self, pipeline, registry, spawning, toolchain
    ):
        await register(registry, spawning)
        toolchain.builder.block()
        task = asyncio.create_task(pipeline.run(spawning))
        await toolchain.builder.entered.wait()
        before = registry.path.read_text()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert registry.path.read_text() == before
        assert registry.get("alpha").stage == PipelineStage.BUILDING

    @pytest.mark.asyncio
    async def test_abort_before_start_stops_nothing(
        self, pipeline, registry, spawning, toolchain, fake_supervisor
    ):
        await register(registry, spawning)
        gate = toolchain.builder.block()
        task = asyncio.create_task(pipeline.run(spawning))
        await toolchain.builder.entered.wait()

        await registry.mutate(lambda instances: instances.clear())
        gate.set()

        assert await task is None
        assert fake_supervisor.started == []
        assert fake_supervisor.stopped == []

    @pytest.mark.asyncio
    async def test_abort_after_start_stops_own_process(
        self, pipeline, registry, spawning, fake_supervisor
    ):
        await register(registry, spawning)
        original_start = fake_supervisor.start

        async def start_then_vanish(name, path, entrypoint, environment=None):
            await original_start(name, path, entrypoint, environment)
            await registry.mutate(lambda instances: instances.clear())

        fake_supervisor.start = start_then_vanish

        assert await pipeline.run(spawning) is None
        assert fake_supervisor.stopped == ["alpha"]
        assert fake_supervisor.running == {}
