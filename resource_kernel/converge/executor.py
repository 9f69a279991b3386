"""
Convergence Executor — runs only the actions whose inputs changed.

Behavioral Contract:
- Load completes before the diff; the diff completes before any action runs.
- Actions run in declaration order, each iff its owned attributes intersect
  the changed set. An action owning nothing owns every attribute.
- Action bodies are called as body(desired, observed). Whatever they return
  is kept as the action's detail in the report.
- After an action succeeds, the observed record adopts the desired values of
  the attributes that triggered it, so converging again without external
  change executes nothing.
- A failing action aborts the remaining actions and raises
  ConvergenceActionError carrying the report, unless the instance's policy
  accepts permission errors and the failure is one, in which case it is
  logged as a warning and convergence continues.
- LoadError propagates unchanged.
"""

import time
from datetime import datetime
from typing import Any, List

from resource_kernel.converge.diff import compute_changes, to_plain
from resource_kernel.errors import (
    ConvergenceActionError,
    ResourceStateError,
    is_permission_failure,
)
from resource_kernel.models.events import EventKind
from resource_kernel.models.report import (
    ActionOutcome,
    ActionStatus,
    ConvergenceReport,
    ResourceState,
)


class ConvergenceExecutor:
    """Diffs one instance and fires the triggered convergence actions."""

    def __init__(self, events: Any):
        self.events = events

    def converge(self, instance: Any, run_id: str) -> ConvergenceReport:
        if instance.state == ResourceState.CONVERGING:
            raise ResourceStateError(f"{instance.label} is already converging", instance)

        started_at = datetime.utcnow()
        start_time = time.monotonic()

        # Load, then diff. A LoadError stops here and reaches the caller.
        observed = instance.observed()
        existed = observed.exists
        changes = compute_changes(instance)
        changed_names = [c.name for c in changes]

        report = ConvergenceReport(
            run_id=run_id,
            resource_type=instance.resource_type.name,
            resource=instance.label,
            identity={k: to_plain(v) for k, v in instance.identity.items()},
            state=ResourceState.CONVERGING,
            existed=existed,
            changes=changes,
            started_at=started_at,
        )

        instance.state = ResourceState.CONVERGING
        self.events.record(
            instance.label,
            EventKind.CONVERGE_STARTED,
            detail=", ".join(changed_names) if changed_names else "no changes",
        )

        all_names = instance.resource_type.attribute_names
        try:
            for action in instance.resource_type.actions:
                triggered = action.triggered_by(changed_names, all_names)
                if not triggered:
                    report.actions.append(self._skip(instance, action))
                    continue
                outcome = self._run(instance, observed, action, triggered, report)
                report.actions.append(outcome)
        except ConvergenceActionError as e:
            self._finish(report, start_time, ResourceState.CONVERGE_FAILED)
            instance.state = ResourceState.CONVERGE_FAILED
            self.events.record(instance.label, EventKind.CONVERGE_FAILED, detail=str(e.cause))
            e.report = report
            raise

        final_state = (
            ResourceState.CONVERGED_WITH_WARNINGS if report.warnings
            else ResourceState.CONVERGED
        )
        self._finish(report, start_time, final_state)
        instance.state = final_state
        self.events.record(
            instance.label,
            EventKind.CONVERGE_SUCCEEDED,
            detail=", ".join(report.executed_actions) or "up to date",
        )
        return report

    def _skip(self, instance: Any, action: Any) -> ActionOutcome:
        self.events.record(
            instance.label, EventKind.ACTION_SKIPPED, action=action.name,
            detail="no owned values changed",
        )
        return ActionOutcome(
            name=action.name,
            owns=list(action.owns),
            status=ActionStatus.SKIPPED,
        )

    def _run(
        self,
        instance: Any,
        observed: Any,
        action: Any,
        triggered: List[str],
        report: ConvergenceReport,
    ) -> ActionOutcome:
        self.events.record(
            instance.label, EventKind.ACTION_STARTED, action=action.name,
            detail=", ".join(triggered),
        )
        start = time.monotonic()
        try:
            detail = action.body(instance, observed)
        except Exception as e:
            elapsed = round(time.monotonic() - start, 3)
            if instance.policy.permission_error_acceptable and is_permission_failure(e):
                message = f"{action.name}: permission denied: {e}"
                report.warnings.append(message)
                self.events.record(
                    instance.label, EventKind.ACTION_WARNED, action=action.name, detail=str(e),
                )
                return ActionOutcome(
                    name=action.name,
                    owns=list(action.owns),
                    status=ActionStatus.WARNED,
                    triggered_by=triggered,
                    error=str(e),
                    duration_seconds=elapsed,
                )
            self.events.record(
                instance.label, EventKind.ACTION_FAILED, action=action.name, detail=str(e),
            )
            report.actions.append(
                ActionOutcome(
                    name=action.name,
                    owns=list(action.owns),
                    status=ActionStatus.FAILED,
                    triggered_by=triggered,
                    error=str(e),
                    duration_seconds=elapsed,
                )
            )
            raise ConvergenceActionError(
                f"{instance.label}: action {action.name} failed: {e}",
                resource=instance,
                action=action.name,
                cause=e,
            ) from e

        elapsed = round(time.monotonic() - start, 3)
        # The real world now matches what was asked for these attributes.
        observed._refresh({name: instance.desired_values[name] for name in triggered})
        self.events.record(instance.label, EventKind.ACTION_SUCCEEDED, action=action.name)
        return ActionOutcome(
            name=action.name,
            owns=list(action.owns),
            status=ActionStatus.EXECUTED,
            triggered_by=triggered,
            detail=to_plain(detail),
            duration_seconds=elapsed,
        )

    def _finish(self, report: ConvergenceReport, start_time: float, state: ResourceState) -> None:
        report.state = state
        report.finished_at = datetime.utcnow()
        report.duration_seconds = round(time.monotonic() - start_time, 3)
