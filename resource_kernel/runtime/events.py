"""
Resource Event Log — the lifecycle event stream of one run.

Every load, per-attribute load, action and convergence outcome is recorded
as a ResourceEvent and mirrored to the standard logging module.
"""

import logging
from datetime import datetime
from typing import List, Optional

from resource_kernel.models.events import EventKind, ResourceEvent

logger = logging.getLogger(__name__)

_LEVELS = {
    EventKind.ACTION_SUCCEEDED: logging.INFO,
    EventKind.ACTION_WARNED: logging.WARNING,
    EventKind.ACTION_FAILED: logging.ERROR,
    EventKind.LOAD_FAILED: logging.ERROR,
    EventKind.LOAD_VALUE_FAILED: logging.ERROR,
    EventKind.CONVERGE_FAILED: logging.ERROR,
}


class ResourceEventLog:
    """Append-only, in-memory event stream for one run."""

    def __init__(self, run_id: str, enabled: bool = True):
        self.run_id = run_id
        self.enabled = enabled
        self._events: List[ResourceEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    def record(
        self,
        resource: str,
        kind: EventKind,
        attribute: Optional[str] = None,
        action: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> Optional[ResourceEvent]:
        """Record an event. Logging happens even when recording is disabled."""
        level = _LEVELS.get(kind, logging.DEBUG)
        if logger.isEnabledFor(level):
            subject = resource
            if attribute:
                subject = f"{resource}.{attribute}"
            if action:
                subject = f"{subject} action {action}"
            message = f"{kind.value}: {subject}"
            if detail:
                message = f"{message}: {detail}"
            logger.log(level, message)

        if not self.enabled:
            return None
        event = ResourceEvent(
            run_id=self.run_id,
            resource=resource,
            kind=kind,
            attribute=attribute,
            action=action,
            detail=detail,
            occurred_at=datetime.utcnow(),
        )
        self._events.append(event)
        return event

    @property
    def events(self) -> List[ResourceEvent]:
        return list(self._events)

    def for_resource(self, resource: str) -> List[ResourceEvent]:
        return [e for e in self._events if e.resource == resource]

    def of_kind(self, kind: EventKind) -> List[ResourceEvent]:
        return [e for e in self._events if e.kind == kind]

    def clear(self) -> None:
        self._events.clear()
