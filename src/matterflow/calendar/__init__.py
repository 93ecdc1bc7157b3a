"""Bidirectional Google Calendar reconciliation."""

from __future__ import annotations

from .engine import ReconciliationDriver
from .errors import (
    ApplyError,
    AuthorizationError,
    CalendarSyncError,
    CredentialError,
    CursorExpiredError,
    NotConnectedError,
    RemoteCallError,
    RunInProgressError,
    TokenRefreshError,
)
from .models import (
    CalendarConnection,
    EventType,
    LocalCalendarEvent,
    NewLocalEvent,
    PullAction,
    PushResult,
    RemoteChange,
    RemoteChangeBatch,
    RunStatus,
    RunSummary,
    SyncCursor,
    SyncStatus,
)
from .trigger import TriggerBoundary

__all__ = [
    "ApplyError",
    "AuthorizationError",
    "CalendarConnection",
    "CalendarSyncError",
    "CredentialError",
    "CursorExpiredError",
    "EventType",
    "LocalCalendarEvent",
    "NewLocalEvent",
    "NotConnectedError",
    "PullAction",
    "PushResult",
    "ReconciliationDriver",
    "RemoteCallError",
    "RemoteChange",
    "RemoteChangeBatch",
    "RunInProgressError",
    "RunStatus",
    "RunSummary",
    "SyncCursor",
    "SyncStatus",
    "TokenRefreshError",
    "TriggerBoundary",
]
