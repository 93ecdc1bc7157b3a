"""Shared test doubles for the calendar sync test suite.

In-memory stand-ins for the Postgres stores and the remote calendar. They
honour the same contracts as the real implementations (including model
validation of every row write) so the driver and resolver can be exercised
without a database or network.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest

from matterflow.calendar.engine import ReconciliationDriver
from matterflow.calendar.errors import ApplyError, RunInProgressError
from matterflow.calendar.models import (
    CalendarConnection,
    EventContent,
    EventType,
    LocalCalendarEvent,
    NewLocalEvent,
    RemoteChangeBatch,
    RemoteEventRef,
    SyncCursor,
    SyncStatus,
)
from matterflow.calendar.remote import RemoteCalendar

ACCOUNT_ID = "practice"
BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class InMemoryEventRepository:
    """Dict-backed ``EventRepository``.

    ``fail_remote_ids`` makes pull writes for those remote ids raise
    ``ApplyError``; ``fail_ops`` does the same for whole operations.
    """

    def __init__(self) -> None:
        self.rows: dict[UUID, LocalCalendarEvent] = {}
        self.fail_remote_ids: set[str] = set()
        self.fail_ops: set[str] = set()
        self._clock = itertools.count()

    def _check(self, op: str, remote_id: str | None = None) -> None:
        if op in self.fail_ops or (remote_id is not None and remote_id in self.fail_remote_ids):
            raise ApplyError(f"{op} failed: simulated constraint violation")

    def _replace(self, event_id: UUID, **updates: Any) -> None:
        current = self.rows[event_id]
        self.rows[event_id] = LocalCalendarEvent.model_validate(
            {**current.model_dump(), **updates}
        )

    def add(self, **fields: Any) -> LocalCalendarEvent:
        """Seed a row; missing fields get sensible defaults and increasing created_at."""
        tick = next(self._clock)
        data: dict[str, Any] = {
            "id": uuid4(),
            "title": "Seeded event",
            "start_time": BASE_TIME + timedelta(days=1),
            "end_time": BASE_TIME + timedelta(days=1, hours=1),
            "created_at": BASE_TIME + timedelta(seconds=tick),
        }
        data.update(fields)
        event = LocalCalendarEvent.model_validate(data)
        self.rows[event.id] = event
        return event

    async def get(self, event_id: UUID) -> LocalCalendarEvent | None:
        return self.rows.get(event_id)

    async def find_by_remote_id(self, remote_id: str) -> LocalCalendarEvent | None:
        for row in self.rows.values():
            if row.remote_id == remote_id:
                return row
        return None

    async def list_outstanding(self, limit: int) -> list[LocalCalendarEvent]:
        self._check("list_outstanding")
        outstanding = [
            row
            for row in self.rows.values()
            if row.sync_status in (SyncStatus.PENDING, SyncStatus.ERROR)
        ]
        outstanding.sort(key=lambda row: row.created_at or BASE_TIME)
        return outstanding[:limit]

    async def count_outstanding(self) -> int:
        return len(await self.list_outstanding(limit=len(self.rows) or 1))

    async def insert_from_remote(
        self,
        *,
        remote_id: str,
        content: EventContent,
        etag: str | None,
        remote_updated_at: datetime | None,
        synced_at: datetime,
    ) -> LocalCalendarEvent:
        self._check("insert_from_remote", remote_id)
        return self.add(
            remote_id=remote_id,
            **content.model_dump(),
            event_type=EventType.MANUAL,
            sync_status=SyncStatus.SYNCED,
            remote_etag=etag,
            remote_updated_at=remote_updated_at,
            last_synced_at=synced_at,
        )

    async def apply_remote(
        self,
        event_id: UUID,
        *,
        content: EventContent,
        etag: str | None,
        remote_updated_at: datetime | None,
        synced_at: datetime,
    ) -> None:
        self._check("apply_remote", self.rows[event_id].remote_id)
        self._replace(
            event_id,
            **content.model_dump(),
            remote_etag=etag,
            remote_updated_at=remote_updated_at,
            sync_status=SyncStatus.SYNCED,
            sync_error=None,
            last_synced_at=synced_at,
        )

    async def link_remote(
        self,
        event_id: UUID,
        *,
        remote_id: str,
        etag: str | None,
        remote_updated_at: datetime | None,
    ) -> None:
        self._check("link_remote", remote_id)
        if self.rows[event_id].remote_id is None:
            self._replace(
                event_id, remote_id=remote_id, remote_etag=etag, remote_updated_at=remote_updated_at
            )

    async def mark_synced(
        self,
        event_id: UUID,
        *,
        remote_id: str,
        etag: str,
        remote_updated_at: datetime | None,
        synced_at: datetime,
    ) -> None:
        self._check("mark_synced")
        self._replace(
            event_id,
            remote_id=remote_id,
            remote_etag=etag,
            remote_updated_at=remote_updated_at,
            sync_status=SyncStatus.SYNCED,
            sync_error=None,
            last_synced_at=synced_at,
        )

    async def mark_error(self, event_id: UUID, message: str) -> None:
        self._check("mark_error")
        self._replace(event_id, sync_status=SyncStatus.ERROR, sync_error=message)

    async def delete(self, event_id: UUID) -> bool:
        self._check("delete", self.rows[event_id].remote_id if event_id in self.rows else None)
        return self.rows.pop(event_id, None) is not None

    async def update_local_event(
        self, event_id: UUID, event: NewLocalEvent, *, connected: bool
    ) -> LocalCalendarEvent | None:
        self._check("update_local_event")
        if event_id not in self.rows:
            return None
        self._replace(
            event_id,
            **event.model_dump(),
            sync_status=SyncStatus.PENDING if connected else SyncStatus.LOCAL_ONLY,
            sync_error=None,
        )
        return self.rows[event_id]


class InMemoryCursorStore:
    def __init__(self) -> None:
        self.cursors: dict[str, SyncCursor] = {}
        self.saves: list[tuple[str, str]] = []
        self.fail_save = False
        self._locks: dict[str, asyncio.Lock] = {}

    async def load(self, account_id: str) -> SyncCursor | None:
        return self.cursors.get(account_id)

    async def save(self, account_id: str, token: str, synced_at: datetime) -> None:
        if self.fail_save:
            raise ApplyError("cursor save failed")
        self.saves.append((account_id, token))
        self.cursors[account_id] = SyncCursor(token=token, last_sync_at=synced_at)

    @asynccontextmanager
    async def lease(self, account_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(account_id, asyncio.Lock())
        if lock.locked():
            raise RunInProgressError(account_id)
        async with lock:
            yield


class InMemoryConnectionStore:
    def __init__(self) -> None:
        self.connections: dict[str, CalendarConnection] = {}

    def connect(self, account_id: str = ACCOUNT_ID, **fields: Any) -> CalendarConnection:
        fields.setdefault("refresh_token", "refresh-token")
        connection = CalendarConnection(account_id=account_id, **fields)
        self.connections[account_id] = connection
        return connection

    async def load_connection(self, account_id: str) -> CalendarConnection | None:
        return self.connections.get(account_id)


class FakeRemoteCalendar(RemoteCalendar):
    """Scripted remote calendar.

    ``fetch_results`` / ``create_results`` / ``update_results`` are consumed in
    order; an Exception entry is raised instead of returned. When a create or
    update script is exhausted a fresh ``remote-N`` / ``etag-N`` ref is issued.
    """

    def __init__(self) -> None:
        self.fetch_results: list[RemoteChangeBatch | Exception] = []
        self.create_results: list[RemoteEventRef | Exception] = []
        self.update_results: list[RemoteEventRef | Exception] = []
        self.delete_results: list[Exception | None] = []
        self.fetch_cursors: list[str | None] = []
        self.created: list[LocalCalendarEvent] = []
        self.updated: list[tuple[str, LocalCalendarEvent]] = []
        self.deleted: list[str] = []
        self.calls: list[str] = []
        self.shutdown_calls = 0
        self.fetch_gate: asyncio.Event | None = None
        self._ids = itertools.count(1)

    @property
    def name(self) -> str:
        return "fake"

    @staticmethod
    def _next(script: list[Any]) -> Any:
        item = script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch_changes(
        self,
        calendar_id: str,
        *,
        cursor: str | None,
        full_sync_window_days: int,
    ) -> RemoteChangeBatch:
        self.calls.append("fetch_changes")
        self.fetch_cursors.append(cursor)
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if not self.fetch_results:
            return RemoteChangeBatch(changes=[], next_cursor=f"cursor-{next(self._ids)}")
        return self._next(self.fetch_results)

    async def create_event(self, calendar_id: str, event: LocalCalendarEvent) -> RemoteEventRef:
        self.calls.append("create_event")
        self.created.append(event)
        if self.create_results:
            return self._next(self.create_results)
        n = next(self._ids)
        return RemoteEventRef(remote_id=f"remote-{n}", etag=f"etag-{n}")

    async def update_event(
        self, calendar_id: str, remote_id: str, event: LocalCalendarEvent
    ) -> RemoteEventRef:
        self.calls.append("update_event")
        self.updated.append((remote_id, event))
        if self.update_results:
            return self._next(self.update_results)
        return RemoteEventRef(remote_id=remote_id, etag=f"etag-{next(self._ids)}")

    async def delete_event(self, calendar_id: str, remote_id: str) -> None:
        self.calls.append("delete_event")
        self.deleted.append(remote_id)
        if self.delete_results:
            self._next(self.delete_results)

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


@pytest.fixture
def repository() -> InMemoryEventRepository:
    return InMemoryEventRepository()


@pytest.fixture
def cursor_store() -> InMemoryCursorStore:
    return InMemoryCursorStore()


@pytest.fixture
def connection_store() -> InMemoryConnectionStore:
    store = InMemoryConnectionStore()
    store.connect()
    return store


@pytest.fixture
def remote() -> FakeRemoteCalendar:
    return FakeRemoteCalendar()


@pytest.fixture
def make_driver(
    repository: InMemoryEventRepository,
    cursor_store: InMemoryCursorStore,
    connection_store: InMemoryConnectionStore,
    remote: FakeRemoteCalendar,
) -> Callable[..., ReconciliationDriver]:
    """Build a driver wired to the shared doubles; kwargs override driver options."""

    def _make(**kwargs: Any) -> ReconciliationDriver:
        kwargs.setdefault("client_factory", lambda connection: remote)
        kwargs.setdefault("clock", lambda: BASE_TIME)
        return ReconciliationDriver(
            connections=connection_store,
            cursor_store=cursor_store,
            repository=repository,
            **kwargs,
        )

    return _make
