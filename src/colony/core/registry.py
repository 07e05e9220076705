"""
Durable registry of colony instances.

The registry is a single JSON document (``registry.json``) read once at
startup and held in memory. Every change goes through ``RegistryStore.mutate``,
which serialises writers with an ``asyncio.Lock`` and persists the new state
with write-temp-then-rename before returning, so:

- two concurrent spawns can never observe the same free port,
- a crash mid-write leaves either the old or the new file, never a mix,
- readers always see a complete snapshot.
"""

import asyncio
import json
import os
import tempfile
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

from ..utils.logging import LogContext, RegistryError, get_logger
from .enums import InstanceStatus
from .instance import Instance

logger = get_logger(__name__, LogContext.REGISTRY)

T = TypeVar("T")

INTERRUPTED_MESSAGE = "provisioning interrupted"


class RegistryStore:
    """Single-writer store for the instance registry."""

    def __init__(self, path: Path):
        """Initialize the store.

        Args:
            path: Location of the registry file; its directory is created on first write
        """
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._instances: list[Instance] = []
        self._loaded = False

    @property
    def loaded(self) -> bool:
        """Whether ``load`` has run."""
        return self._loaded

    def load(self) -> list[Instance]:
        """Read the registry file into memory and return the snapshot.

        A missing file yields an empty registry. An unreadable or corrupt file
        also yields an empty registry, is logged as corruption and moved aside
        so the next write cannot destroy it.
        """
        self._instances = self._read_file()
        self._loaded = True
        return list(self._instances)

    def snapshot(self) -> list[Instance]:
        """Return a consistent copy of all entries in insertion order.

        Raises:
            RegistryError: if the registry has not been loaded
        """
        if not self._loaded:
            raise RegistryError("Registry has not been loaded")
        return list(self._instances)

    def get(self, name: str) -> Instance | None:
        """Return the entry registered under *name*, if any."""
        for instance in self.snapshot():
            if instance.name == name:
                return instance
        return None

    async def mutate(self, fn: Callable[[list[Instance]], T]) -> T:
        """Apply *fn* to a working copy of the entries and persist the result.

        *fn* may modify the list in place (entries themselves are immutable)
        and its return value is passed through. If *fn* raises, neither the
        in-memory state nor the file changes. The new state is durable on
        disk before this coroutine returns.
        """
        async with self._lock:
            if not self._loaded:
                self.load()

            working = list(self._instances)
            result = fn(working)

            if working != self._instances:
                _check_unique(working)
                self._write_file(working)
                self._instances = working

            return result

    async def reconcile_interrupted(self) -> list[str]:
        """Mark entries left ``spawning`` by a previous process as failed.

        Returns:
            Names of the entries that were marked as errored
        """

        def _reconcile(instances: list[Instance]) -> list[str]:
            names = []
            for index, instance in enumerate(instances):
                if instance.status == InstanceStatus.SPAWNING:
                    instances[index] = instance.with_status(
                        InstanceStatus.ERROR,
                        stage=instance.stage,
                        error=INTERRUPTED_MESSAGE,
                    )
                    names.append(instance.name)
            return names

        names = await self.mutate(_reconcile)
        if names:
            logger.warning(
                "Marked interrupted spawns as failed", instances=names, count=len(names)
            )
        return names

    # ------------------------------------------------------------------
    def _read_file(self) -> list[Instance]:
        if not self.path.exists():
            logger.info("Registry file absent, starting empty", path=str(self.path))
            return []

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            entries = raw.get("instances") if isinstance(raw, dict) else None
            if not isinstance(entries, list):
                raise RegistryError("Registry document has no 'instances' list")
            instances = [Instance.from_dict(entry) for entry in entries]
        except (OSError, ValueError, RegistryError) as e:
            logger.error(
                "Registry file corrupt, starting empty",
                path=str(self.path),
                error=str(e),
            )
            self._quarantine()
            return []

        return _drop_duplicates(instances)

    def _quarantine(self) -> None:
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            os.replace(self.path, target)
            logger.warning("Moved corrupt registry aside", target=str(target))
        except OSError as e:
            logger.error("Could not move corrupt registry aside", error=str(e))

    def _write_file(self, instances: list[Instance]) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        payload = {"instances": [instance.to_dict() for instance in instances]}

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{self.path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
            _fsync_directory(directory)
        except OSError as e:
            raise RegistryError(f"Failed to write registry {self.path}: {e}") from e
        finally:
            tmp_path.unlink(missing_ok=True)


def _check_unique(instances: list[Instance]) -> None:
    names: set[str] = set()
    ports: set[int] = set()
    for instance in instances:
        if instance.name in names:
            raise RegistryError(f"Duplicate instance name '{instance.name}'")
        if instance.port in ports:
            raise RegistryError(f"Duplicate port {instance.port}")
        names.add(instance.name)
        ports.add(instance.port)


def _drop_duplicates(instances: list[Instance]) -> list[Instance]:
    kept: list[Instance] = []
    names: set[str] = set()
    ports: set[int] = set()
    for instance in instances:
        if instance.name in names or instance.port in ports:
            logger.warning(
                "Dropping duplicate registry entry",
                instance=instance.name,
                port=instance.port,
            )
            continue
        names.add(instance.name)
        ports.add(instance.port)
        kept.append(instance)
    return kept


def _fsync_directory(directory: Path) -> None:
    # Makes the rename itself durable; not supported everywhere (e.g. Windows).
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)
