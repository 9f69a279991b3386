"""
Run Context — the explicit per-run state of the kernel.

Holds the Identity Cache, the run configuration, the lifecycle event log,
the convergence executor and (optionally) the convergence ledger. Nothing
is kept at process level: a new RunContext is a new run.

Resolution forms:
    ctx.resolve(File, "/tmp/x")                  positional required identity
    ctx.resolve(Gem, registry, "rake")           several positional identities
    ctx.resolve(User, "bob@example.com")         lone scalar, routed by shape
    ctx.resolve(File, path="/tmp/x", mode=0o644) named identity plus desired values
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from resource_kernel.converge.diff import to_plain
from resource_kernel.converge.executor import ConvergenceExecutor
from resource_kernel.errors import ConvergenceActionError, LoadError
from resource_kernel.ledger.store import ConvergenceLedger
from resource_kernel.models.events import EventKind, ResourceEvent
from resource_kernel.models.policy import RunConfig
from resource_kernel.models.report import ConvergenceReport, ResourceState
from resource_kernel.runtime.cache import IdentityCache
from resource_kernel.runtime.events import ResourceEventLog
from resource_kernel.runtime.instance import ResourceInstance

logger = logging.getLogger(__name__)


class RunContext:
    """One reconciliation run: resolve instances, then converge them."""

    def __init__(
        self,
        config: Optional[RunConfig] = None,
        ledger: Optional[ConvergenceLedger] = None,
    ):
        self.config = config or RunConfig()
        self.run_id = f"run_{uuid4().hex[:12]}"
        self.cache = IdentityCache()
        self.events = ResourceEventLog(self.run_id, enabled=self.config.record_events)
        self.executor = ConvergenceExecutor(self.events)
        if ledger is None and self.config.ledger_path:
            ledger = ConvergenceLedger(db_path=self.config.ledger_path)
        self.ledger = ledger
        self._reports: List[ConvergenceReport] = []

    @property
    def instances(self) -> List[ResourceInstance]:
        """Every resolved instance, in resolution order."""
        return list(self.cache)

    @property
    def reports(self) -> List[ConvergenceReport]:
        return list(self._reports)

    # --- Resolution ---

    def resolve(self, resource_type: Any, *args: Any, **values: Any) -> ResourceInstance:
        """Return the run's single instance for an identity, creating it on first use."""
        return self._resolve(resource_type, args, values)

    def resolve_nested(
        self, parent: ResourceInstance, nested: Any, args: Sequence[Any], values: Dict[str, Any]
    ) -> ResourceInstance:
        """Resolve a child type on behalf of a parent instance (see ResourceInstance.child)."""
        return self._resolve(
            nested.resource_type, tuple(args), values, parent=parent, inherit=nested.inherit,
        )

    def _resolve(
        self,
        resource_type: Any,
        args: Sequence[Any],
        values: Dict[str, Any],
        parent: Optional[ResourceInstance] = None,
        inherit: Optional[Dict[str, str]] = None,
    ) -> ResourceInstance:
        identity_values: Dict[str, Any] = {}
        desired_values: Dict[str, Any] = {}
        for name, value in values.items():
            if resource_type.attribute(name).identity:
                identity_values[name] = value
            else:
                desired_values[name] = value

        candidate = ResourceInstance(resource_type, self, parent=parent, inherit=inherit)
        self._bind_positionals(candidate, args, identity_values)
        candidate._define_identity(identity_values)

        key = (resource_type, candidate.identity_key)
        instance, created = self.cache.get_or_create(key, lambda: candidate)
        if created:
            self.events.record(instance.label, EventKind.CREATED)
        for name, value in desired_values.items():
            instance.set(name, value)
        return instance

    def _bind_positionals(
        self, candidate: ResourceInstance, args: Sequence[Any], identity_values: Dict[str, Any]
    ) -> None:
        resource_type = candidate.resource_type
        if not args:
            return

        # A lone scalar may target any unset identity attribute, chosen by shape.
        open_names = [
            d.name for d in resource_type.identity_attributes if d.name not in identity_values
        ]
        if len(args) == 1 and any(
            resource_type.attribute(n).matches is not None for n in open_names
        ):
            target = resource_type.route_scalar(args[0], candidate, exclude=identity_values)
            if target is None:
                raise TypeError(
                    f"{resource_type.name}: {args[0]!r} does not match any identity attribute"
                )
            identity_values[target.name] = args[0]
            return

        required = [
            d.name for d in resource_type.required_identity_attributes
            if d.name not in identity_values
        ]
        if len(args) > len(required):
            raise TypeError(
                f"{resource_type.name}: too many identity arguments "
                f"({len(args)} for {len(required)})"
            )
        for name, value in zip(required, args):
            identity_values[name] = value

    def get(self, resource_type: Any, *identity: Any) -> Optional[ResourceInstance]:
        """Look up an already resolved instance by its coerced identity tuple."""
        return self.cache.get((resource_type, tuple(identity)))

    def evict(self, instance: ResourceInstance) -> bool:
        """
        Drop an instance from the run so the next resolve creates a fresh one,
        e.g. to retry after a LoadError.
        """
        key = (instance.resource_type, instance.identity_key)
        if self.cache.get(key) is not instance:
            return False
        return self.cache.evict(key)

    # --- Convergence ---

    def converge(self, instance: ResourceInstance) -> ConvergenceReport:
        """
        Converge one instance. Raises LoadError or ConvergenceActionError;
        the latter carries the partial report.
        """
        try:
            report = self.executor.converge(instance, self.run_id)
        except ConvergenceActionError as e:
            if e.report is not None:
                self._record(e.report)
            raise
        self._record(report)
        return report

    def converge_all(
        self, instances: Optional[Sequence[ResourceInstance]] = None
    ) -> List[ConvergenceReport]:
        """
        Converge instances in the given order (default: resolution order).
        Failures are captured into reports instead of raised.
        """
        targets = list(instances) if instances is not None else self.instances
        reports = []
        for instance in targets:
            try:
                reports.append(self.converge(instance))
            except ConvergenceActionError as e:
                logger.error("Convergence of %s failed: %s", instance.label, e)
                reports.append(e.report)
            except LoadError as e:
                logger.error("Loading %s failed: %s", instance.label, e)
                report = self._load_failure_report(instance, e)
                self._record(report)
                reports.append(report)
            else:
                continue
            if self.config.stop_on_failure:
                break
        return reports

    def _load_failure_report(self, instance: ResourceInstance, error: LoadError) -> ConvergenceReport:
        now = datetime.utcnow()
        return ConvergenceReport(
            run_id=self.run_id,
            resource_type=instance.resource_type.name,
            resource=instance.label,
            identity={k: to_plain(v) for k, v in instance.identity.items()},
            state=ResourceState.LOAD_FAILED,
            existed=False,
            warnings=[str(error)],
            started_at=now,
            finished_at=now,
        )

    def _record(self, report: ConvergenceReport) -> None:
        self._reports.append(report)
        if self.ledger is not None:
            self.ledger.append(report)

    # --- Introspection ---

    def events_for(self, instance: ResourceInstance) -> List[ResourceEvent]:
        return self.events.for_resource(instance.label)

    def summary(self) -> Dict[str, Any]:
        """Counts of instances by state, for run-level reporting."""
        counts: Dict[str, int] = {}
        for instance in self.cache:
            counts[instance.state.value] = counts.get(instance.state.value, 0) + 1
        return {
            "run_id": self.run_id,
            "instances": len(self.cache),
            "reports": len(self._reports),
            "states": counts,
        }
