"""Convergence Report — the outcome of converging one resource instance."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ResourceState(str, Enum):
    """Lifecycle of a resource instance within one run."""
    CREATED = "created"
    DESIRED_SET = "desired_set"
    LOADING = "loading"
    LOADED = "loaded"
    NOT_EXISTS = "not_exists"
    LOAD_FAILED = "load_failed"
    CONVERGING = "converging"
    CONVERGED = "converged"
    CONVERGED_WITH_WARNINGS = "converged_with_warnings"
    CONVERGE_FAILED = "converge_failed"


class ActionStatus(str, Enum):
    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"
    WARNED = "warned"       # Failure downgraded to a warning by policy


class AttributeChange(BaseModel):
    """A desired value that differs from the observed one."""

    name: str
    desired: Any = None
    observed: Any = None
    observed_absent: bool = False


class ActionOutcome(BaseModel):
    """What happened to one declared convergence action."""

    name: str
    owns: List[str]
    status: ActionStatus
    triggered_by: List[str] = []
    detail: Any = None                      # Whatever the action body returned
    error: Optional[str] = None
    duration_seconds: float = 0.0


class ConvergenceReport(BaseModel):
    """Result of one converge() call."""

    run_id: str
    resource_type: str
    resource: str
    identity: Dict[str, Any]
    state: ResourceState
    existed: bool
    changes: List[AttributeChange] = []
    actions: List[ActionOutcome] = []
    warnings: List[str] = []
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def changed_attributes(self) -> List[str]:
        return [c.name for c in self.changes]

    @property
    def executed_actions(self) -> List[str]:
        return [
            a.name for a in self.actions
            if a.status in (ActionStatus.EXECUTED, ActionStatus.WARNED)
        ]

    @property
    def updated(self) -> bool:
        """True if any action body ran to completion."""
        return any(a.status == ActionStatus.EXECUTED for a in self.actions)

    @property
    def failed(self) -> bool:
        return self.state == ResourceState.CONVERGE_FAILED

    def describe(self) -> str:
        """
        Human-readable summary, one header line per run plus one line per change:

            update file[/tmp/x.txt]
              set content to 'hello' (was 'bye')
        """
        if not self.changes:
            return f"skip {self.resource}: no values changed"

        verb = "update" if self.existed else "create"
        lines = [f"{verb} {self.resource}"]
        width = max(len(c.name) for c in self.changes)
        for change in self.changes:
            line = f"  set {change.name.ljust(width)} to {change.desired!r}"
            if not change.observed_absent:
                line += f" (was {change.observed!r})"
            lines.append(line)
        for warning in self.warnings:
            lines.append(f"  warning: {warning}")
        return "\n".join(lines)
