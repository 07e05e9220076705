"""Shared enums for the colony orchestrator."""

from enum import Enum


class InstanceStatus(str, Enum):
    """Persisted status of an instance."""

    SPAWNING = "spawning"
    RUNNING = "running"
    ERROR = "error"
    STOPPED = "stopped"


class PipelineStage(str, Enum):
    """Stages of the provisioning pipeline, in execution order."""

    CLONING = "cloning"
    INSTALLING = "installing"
    CONFIGURING = "configuring"
    BUILDING = "building"
    STARTING = "starting"
