"""Colony: provisions and supervises one running instance per species branch."""

__version__ = "0.1.0"
__author__ = "Colony Team"

from .core.instance import Instance
from .core.orchestrator import Colony

__all__ = ["Colony", "Instance", "__version__"]
