"""Typed records exchanged between the calendar sync components."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_EVENT_TITLE = "Untitled"


class SyncStatus(StrEnum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"
    LOCAL_ONLY = "local_only"


class EventType(StrEnum):
    """Category tag for a local calendar row."""

    MANUAL = "manual"
    TASK_DUE = "task_due"
    SCHEDULED_CALL = "scheduled_call"
    DEADLINE = "deadline"
    COURT_DATE = "court_date"
    MEETING = "meeting"


class PullAction(StrEnum):
    """Outcome of applying one remote change to the local store."""

    DELETED = "deleted"
    NOOP = "noop"
    UPDATED = "updated"
    INSERTED = "inserted"
    SUPPRESSED = "suppressed"
    RELINKED = "relinked"
    SKIPPED = "skipped"


class RunStatus(StrEnum):
    COMPLETED = "completed"
    NOT_CONNECTED = "not_connected"
    FAILED = "failed"
    BUSY = "busy"


def _strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class EventContent(BaseModel):
    """Fields mirrored between a local row and its remote counterpart."""

    title: str = DEFAULT_EVENT_TITLE
    description: str | None = None
    location: str | None = None
    start_time: datetime
    end_time: datetime
    all_day: bool = False

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, value: Any) -> str:
        if value is None:
            return DEFAULT_EVENT_TITLE
        normalized = str(value).strip()
        return normalized or DEFAULT_EVENT_TITLE

    @field_validator("description", "location")
    @classmethod
    def _normalize_optional_text(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class LocalCalendarEvent(EventContent):
    """One ``calendar_events`` row."""

    model_config = ConfigDict(extra="forbid")

    id: UUID
    remote_id: str | None = None
    event_type: EventType = EventType.MANUAL
    color: str | None = None
    matter_id: UUID | None = None
    task_id: UUID | None = None
    remote_etag: str | None = None
    remote_updated_at: datetime | None = None
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: str | None = None
    last_synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _validate_sync_state(self) -> LocalCalendarEvent:
        if (
            self.sync_status == SyncStatus.SYNCED
            and self.remote_id is not None
            and self.remote_etag is None
        ):
            raise ValueError("synced rows linked to a remote event must carry a remote etag")
        if self.sync_status == SyncStatus.ERROR and not self.sync_error:
            raise ValueError("rows in error state must carry an error message")
        return self


class NewLocalEvent(EventContent):
    """Input for an application-created local event."""

    model_config = ConfigDict(extra="forbid")

    event_type: EventType = EventType.MANUAL
    color: str | None = None
    matter_id: UUID | None = None
    task_id: UUID | None = None


class RemoteChange(BaseModel):
    """One entry from a remote change listing.

    Cancelled changes carry identity only. Active changes carry content; the
    start or end may still be missing when the remote payload is malformed.
    """

    model_config = ConfigDict(extra="forbid")

    remote_id: str = Field(min_length=1)
    cancelled: bool = False
    title: str | None = None
    description: str | None = None
    location: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    all_day: bool = False
    etag: str | None = None
    updated_at: datetime | None = None
    origin_local_id: str | None = None

    @field_validator("remote_id")
    @classmethod
    def _normalize_remote_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("remote_id must be a non-empty string")
        return normalized

    @field_validator("origin_local_id")
    @classmethod
    def _normalize_origin(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    def content(self) -> EventContent | None:
        """Return the mirrored content, or None when a boundary is missing."""
        if self.start_time is None or self.end_time is None:
            return None
        return EventContent(
            title=self.title,
            description=self.description,
            location=self.location,
            start_time=self.start_time,
            end_time=self.end_time,
            all_day=self.all_day,
        )


class ItemFailure(BaseModel):
    """One item that could not be reconciled during a run."""

    direction: Literal["pull", "push"]
    item_id: str
    error: str


class RemoteChangeBatch(BaseModel):
    """Every change reported since a cursor, plus the cursor to store next.

    Items the listing returned but that could not be parsed land in
    ``rejected`` so the caller can count them.
    """

    model_config = ConfigDict(extra="forbid")

    changes: list[RemoteChange] = Field(default_factory=list)
    rejected: list[ItemFailure] = Field(default_factory=list)
    next_cursor: str
    full_sync: bool = False

    @field_validator("next_cursor")
    @classmethod
    def _require_cursor(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("next_cursor must be a non-empty string")
        return normalized


class RemoteEventRef(BaseModel):
    """Identity and version of a remote event after a create or update."""

    remote_id: str = Field(min_length=1)
    etag: str = Field(min_length=1)
    updated_at: datetime | None = None


class SyncCursor(BaseModel):
    token: str = Field(min_length=1)
    last_sync_at: datetime | None = None


class CalendarConnection(BaseModel):
    """Per-account connection settings, including the stored refresh credential."""

    account_id: str = Field(min_length=1)
    refresh_token: str | None = None
    calendar_id: str = "primary"
    sync_token: str | None = None
    last_sync_at: datetime | None = None

    @field_validator("refresh_token", "sync_token")
    @classmethod
    def _normalize_tokens(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @property
    def connected(self) -> bool:
        return self.refresh_token is not None


class PushResult(BaseModel):
    local_id: UUID
    action: Literal["created", "updated", "failed"]
    remote_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.action != "failed"


class RunSummary(BaseModel):
    """Outcome of one reconciliation run."""

    status: RunStatus
    message: str
    pulled: int = 0
    pushed: int = 0
    errors: int = 0
    full_resync: bool = False
    pull_error: str | None = None
    push_error: str | None = None
    failures: list[ItemFailure] = Field(default_factory=list)
