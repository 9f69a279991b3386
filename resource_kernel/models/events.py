"""Resource lifecycle events."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class EventKind(str, Enum):
    CREATED = "created"
    LOAD_STARTED = "load_started"
    LOAD_SUCCEEDED = "load_succeeded"
    LOAD_FAILED = "load_failed"
    LOAD_VALUE_STARTED = "load_value_started"
    LOAD_VALUE_SUCCEEDED = "load_value_succeeded"
    LOAD_VALUE_FAILED = "load_value_failed"
    CONVERGE_STARTED = "converge_started"
    ACTION_SKIPPED = "action_skipped"
    ACTION_STARTED = "action_started"
    ACTION_SUCCEEDED = "action_succeeded"
    ACTION_FAILED = "action_failed"
    ACTION_WARNED = "action_warned"
    CONVERGE_SUCCEEDED = "converge_succeeded"
    CONVERGE_FAILED = "converge_failed"


class ResourceEvent(BaseModel):
    """One entry in a run's lifecycle event stream."""

    run_id: str
    resource: str                           # e.g. "file[/tmp/x.txt]"
    kind: EventKind
    attribute: Optional[str] = None
    action: Optional[str] = None
    detail: Optional[str] = None
    occurred_at: datetime
