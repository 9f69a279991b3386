"""Resource kernel data models."""

from resource_kernel.models.events import EventKind, ResourceEvent
from resource_kernel.models.policy import ConvergePolicy, RunConfig
from resource_kernel.models.report import (
    ActionOutcome,
    ActionStatus,
    AttributeChange,
    ConvergenceReport,
    ResourceState,
)

__all__ = [
    "ActionOutcome",
    "ActionStatus",
    "AttributeChange",
    "ConvergePolicy",
    "ConvergenceReport",
    "EventKind",
    "ResourceEvent",
    "ResourceState",
    "RunConfig",
]
