"""The instance record kept in the colony registry."""

import re
from dataclasses import asdict, dataclass, replace
from datetime import UTC, datetime
from typing import Any

from ..utils.logging import RegistryError, ValidationError
from .enums import InstanceStatus, PipelineStage

# Names end up as directory names and supervisor process names.
NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")

# Branch names may contain slashes but must not look like git options.
SPECIES_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._/-]{0,254}$")


def validate_name(name: Any) -> str:
    """Return *name* stripped, or raise ValidationError."""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required", context={"field": "name"})
    name = name.strip()
    if not NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid name '{name}': use letters, digits, '.', '_' or '-' "
            "(max 64 characters, must start with a letter or digit)",
            context={"field": "name"},
        )
    return name


def validate_species(species: Any) -> str:
    """Return *species* stripped, or raise ValidationError."""
    if not isinstance(species, str) or not species.strip():
        raise ValidationError("Species is required", context={"field": "species"})
    species = species.strip()
    if not SPECIES_PATTERN.match(species) or ".." in species:
        raise ValidationError(
            f"Invalid species '{species}'", context={"field": "species"}
        )
    return species


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string with microseconds."""
    return datetime.now(UTC).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class Instance:
    """One provisioned worker and the resources it owns.

    ``created`` doubles as the identity token of a registration: a pipeline
    only ever touches the entry whose name *and* created timestamp match the
    one it was started for.
    """

    name: str
    species: str
    port: int
    path: str
    created: str
    status: InstanceStatus = InstanceStatus.SPAWNING
    stage: PipelineStage | None = None
    error: str | None = None

    def is_same_registration(self, other: "Instance") -> bool:
        """True if *other* is this registration (not a later one reusing the name)."""
        return self.name == other.name and self.created == other.created

    def with_status(
        self,
        status: InstanceStatus,
        stage: PipelineStage | None = None,
        error: str | None = None,
    ) -> "Instance":
        """Return a copy with the mutable fields replaced."""
        return replace(self, status=status, stage=stage, error=error)

    def url(self, host: str = "localhost", scheme: str = "http") -> str:
        """Address the instance is reachable at; never persisted."""
        return f"{scheme}://{host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        """Serialise for the registry file."""
        data = asdict(self)
        data["status"] = self.status.value
        data["stage"] = self.stage.value if self.stage else None
        return data

    def to_public_dict(self, host: str = "localhost", scheme: str = "http") -> dict[str, Any]:
        """Serialise for API consumers, including the derived url."""
        data = self.to_dict()
        data["url"] = self.url(host, scheme)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Instance":
        """Build an instance from a registry entry.

        Raises:
            RegistryError: if the entry is not a valid instance record
        """
        if not isinstance(data, dict):
            raise RegistryError("Registry entry must be a mapping")

        try:
            species = data.get("species", data.get("branch"))
            stage = data.get("stage")
            port = data["port"]
            if isinstance(port, bool) or not isinstance(port, int):
                raise TypeError("port must be an integer")
            return cls(
                name=str(data["name"]),
                species=str(species) if species is not None else "",
                port=port,
                path=str(data["path"]),
                created=str(data["created"]),
                status=InstanceStatus(data.get("status", InstanceStatus.STOPPED.value)),
                stage=PipelineStage(stage) if stage else None,
                error=data.get("error"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RegistryError(f"Invalid registry entry {data!r}: {e}") from e
