"""Port allocation for colony instances."""

from collections.abc import Iterable

from ..utils.logging import RegistryError

MAX_PORT = 65535


def next_free_port(occupied: Iterable[int], base_port: int) -> int:
    """Return the lowest port at or above *base_port* not in *occupied*.

    Ports freed by killed instances are handed out again before any higher
    port. Callers must hold the registry's write lock so the result cannot go
    stale before it is recorded.

    Raises:
        RegistryError: if every port from *base_port* to 65535 is taken
    """
    if not 1 <= base_port <= MAX_PORT:
        raise RegistryError(f"Base port {base_port} is not a valid TCP port")

    used = set(occupied)
    candidate = base_port
    while candidate in used:
        candidate += 1

    if candidate > MAX_PORT:
        raise RegistryError(f"No free port left at or above {base_port}")
    return candidate
