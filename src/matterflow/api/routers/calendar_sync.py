"""Scheduled calendar sync endpoints.

Provides a single router mounted at ``/api/cron/calendar-sync``. Every
endpoint requires ``Authorization: Bearer <cron secret>``.

Run status codes:
- ``completed`` / ``not_connected`` → 200
- ``busy`` → 409 (another run holds the account lease)
- ``failed`` → 500 with whatever counts the run produced
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from matterflow.api.deps import SyncService
from matterflow.api.models import SyncRunResponse, SyncStatusResponse
from matterflow.calendar.models import RunStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron/calendar-sync", tags=["calendar-sync"])

_STATUS_CODES = {
    RunStatus.COMPLETED: 200,
    RunStatus.NOT_CONNECTED: 200,
    RunStatus.BUSY: 409,
    RunStatus.FAILED: 500,
}


def _get_sync_service() -> SyncService:
    """Dependency stub -- overridden at app startup or in tests."""
    raise RuntimeError("SyncService not initialized")


async def _run_sync(service: SyncService, authorization: str | None) -> JSONResponse:
    summary = await service.trigger.invoke(authorization)
    body = SyncRunResponse.from_summary(summary)
    return JSONResponse(
        status_code=_STATUS_CODES[summary.status],
        content=body.model_dump(mode="json"),
    )


@router.get("", response_model=SyncRunResponse)
async def trigger_sync_get(
    authorization: str | None = Header(default=None),
    service: SyncService = Depends(_get_sync_service),
) -> JSONResponse:
    """Run one reconciliation pass (scheduler entry point)."""
    return await _run_sync(service, authorization)


@router.post("", response_model=SyncRunResponse)
async def trigger_sync_post(
    authorization: str | None = Header(default=None),
    service: SyncService = Depends(_get_sync_service),
) -> JSONResponse:
    return await _run_sync(service, authorization)


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    authorization: str | None = Header(default=None),
    service: SyncService = Depends(_get_sync_service),
) -> SyncStatusResponse:
    """Report connection state, cursor presence, and the outstanding push backlog."""
    service.trigger.authorize(authorization)
    account_id = service.trigger.account_id
    connection = await service.connections.load_connection(account_id)
    outstanding = await service.events.count_outstanding()
    if connection is None:
        return SyncStatusResponse(account_id=account_id, connected=False, outstanding=outstanding)
    return SyncStatusResponse(
        account_id=account_id,
        connected=connection.connected,
        calendar_id=connection.calendar_id,
        last_sync_at=connection.last_sync_at,
        has_cursor=connection.sync_token is not None,
        outstanding=outstanding,
    )
