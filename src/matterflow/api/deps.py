"""Dependency wiring for the calendar sync API.

Routers declare stub dependencies that raise until ``wire_sync_dependencies``
overrides them with the process-wide ``SyncService``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import asyncpg
from fastapi import FastAPI

from matterflow.calendar.connections import ConnectionStore, PostgresConnectionStore
from matterflow.calendar.cursor_store import PostgresCursorStore
from matterflow.calendar.engine import ReconciliationDriver, RemoteClientFactory
from matterflow.calendar.errors import NotConnectedError
from matterflow.calendar.google import GoogleCalendarClient
from matterflow.calendar.models import CalendarConnection
from matterflow.calendar.remote import RemoteCalendar
from matterflow.calendar.repository import PostgresEventRepository
from matterflow.calendar.trigger import TriggerBoundary
from matterflow.config import SyncServiceConfig

logger = logging.getLogger(__name__)


class OutstandingCounter(Protocol):
    async def count_outstanding(self) -> int: ...


@dataclass
class SyncService:
    """Everything the routers need to serve one configured account."""

    trigger: TriggerBoundary
    connections: ConnectionStore
    events: OutstandingCounter


def google_client_factory(config: SyncServiceConfig) -> RemoteClientFactory:
    """Build Google clients from the app's OAuth registration and a stored refresh token."""

    def _factory(connection: CalendarConnection) -> RemoteCalendar:
        if connection.refresh_token is None:
            raise NotConnectedError(connection.account_id)
        return GoogleCalendarClient(
            client_id=config.google.client_id,
            client_secret=config.google.client_secret,
            refresh_token=connection.refresh_token,
            timeout_seconds=config.sync.request_timeout_seconds,
        )

    return _factory


def build_sync_service(config: SyncServiceConfig, pool: asyncpg.Pool) -> SyncService:
    connections = PostgresConnectionStore(
        pool, default_calendar_id=config.google.default_calendar_id
    )
    repository = PostgresEventRepository(pool)
    driver = ReconciliationDriver(
        connections=connections,
        cursor_store=PostgresCursorStore(pool),
        repository=repository,
        client_factory=google_client_factory(config),
        push_batch_size=config.sync.push_batch_size,
        full_sync_window_days=config.sync.full_sync_window_days,
        delete_orphaned_remote_events=config.sync.delete_orphaned_remote_events,
    )
    trigger = TriggerBoundary(
        driver=driver,
        account_id=config.sync.account_id,
        cron_secret=config.trigger.cron_secret,
    )
    if config.trigger.cron_secret is None:
        logger.warning("trigger.cron_secret is not set; every sync trigger will be rejected")
    return SyncService(trigger=trigger, connections=connections, events=repository)


def wire_sync_dependencies(app: FastAPI, service: SyncService) -> None:
    """Override router-level ``_get_sync_service`` stubs with *service*."""
    from matterflow.api.routers import calendar_sync

    app.state.sync_service = service
    app.dependency_overrides[calendar_sync._get_sync_service] = lambda: service
