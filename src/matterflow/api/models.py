"""Pydantic response models for the calendar sync API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from matterflow.calendar.models import RunStatus, RunSummary


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


class SyncRunResponse(BaseModel):
    """Body returned by the scheduled trigger endpoint."""

    status: RunStatus
    message: str
    pulled: int
    pushed: int
    errors: int

    @classmethod
    def from_summary(cls, summary: RunSummary) -> SyncRunResponse:
        return cls(
            status=summary.status,
            message=summary.message,
            pulled=summary.pulled,
            pushed=summary.pushed,
            errors=summary.errors,
        )


class SyncStatusResponse(BaseModel):
    account_id: str
    connected: bool
    calendar_id: str | None = None
    last_sync_at: datetime | None = None
    has_cursor: bool = False
    outstanding: int = 0
