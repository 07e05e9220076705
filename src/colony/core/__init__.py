"""Core orchestration functionality."""

from .enums import InstanceStatus, PipelineStage
from .instance import Instance
from .orchestrator import Colony
from .registry import RegistryStore

__all__ = ["Colony", "Instance", "InstanceStatus", "PipelineStage", "RegistryStore"]
