"""Events exchanged over the EventBus.

Inbound events (source changes, approval decisions) are delivered
at-least-once, so every handler that consumes them must be idempotent.
The purge events form the explicit channel between the orchestrator and
the Purge Controller.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    SOURCE_CHANGED = "source_changed"
    APPROVAL_STATE_CHANGED = "approval_state_changed"
    PURGE_REQUESTED = "purge_requested"
    PURGE_COMPLETED = "purge_completed"
    PURGE_FAILED = "purge_failed"


class ApprovalOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class EventBase(BaseModel):
    """Fields shared by every event."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    service: str
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_kind: EventKind


class SourceChangedEvent(EventBase):
    """A reference was updated in the watched repository."""

    event_kind: EventKind = EventKind.SOURCE_CHANGED
    repository: str
    branch: str
    reference_event: str = "referenceUpdated"
    commit_id: str = ""


class ApprovalStateChangedEvent(EventBase):
    """A human accepted or rejected a pending approval."""

    event_kind: EventKind = EventKind.APPROVAL_STATE_CHANGED
    run_id: str
    outcome: ApprovalOutcome
    decided_by: str = ""
    comment: str = ""


class PurgeRequestedEvent(EventBase):
    """Tear down the staging resources of a rejected run."""

    event_kind: EventKind = EventKind.PURGE_REQUESTED
    run_id: str
    staging_id: str | None
    policy_id: str | None
    version: str = ""


class PurgeCompletedEvent(EventBase):
    event_kind: EventKind = EventKind.PURGE_COMPLETED
    run_id: str
    version: str = ""


class PurgeFailedEvent(EventBase):
    event_kind: EventKind = EventKind.PURGE_FAILED
    run_id: str
    error_code: str
    error_message: str
    staging_id: str | None = None
    policy_id: str | None = None


# Registry for deserialization by event_kind
EVENT_TYPE_MAP: dict[EventKind, type[EventBase]] = {
    EventKind.SOURCE_CHANGED: SourceChangedEvent,
    EventKind.APPROVAL_STATE_CHANGED: ApprovalStateChangedEvent,
    EventKind.PURGE_REQUESTED: PurgeRequestedEvent,
    EventKind.PURGE_COMPLETED: PurgeCompletedEvent,
    EventKind.PURGE_FAILED: PurgeFailedEvent,
}
