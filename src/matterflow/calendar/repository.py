"""Local calendar event repository backed by ``calendar_events``."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import asyncpg

from matterflow.calendar.errors import ApplyError, truncate_message
from matterflow.calendar.models import (
    EventContent,
    EventType,
    LocalCalendarEvent,
    NewLocalEvent,
    SyncStatus,
)
from matterflow.calendar.schema import EVENTS_TABLE

logger = logging.getLogger(__name__)

OUTSTANDING_STATUSES = (SyncStatus.PENDING.value, SyncStatus.ERROR.value)

_EVENT_COLUMNS = """
    id, google_calendar_event_id, title, description, location, start_time, end_time,
    all_day, matter_id, task_id, event_type, color, sync_status, sync_error,
    last_synced_at, google_etag, google_updated_at, created_at, updated_at
"""


class EventRepository(Protocol):
    async def get(self, event_id: UUID) -> LocalCalendarEvent | None: ...

    async def find_by_remote_id(self, remote_id: str) -> LocalCalendarEvent | None: ...

    async def list_outstanding(self, limit: int) -> list[LocalCalendarEvent]: ...

    async def insert_from_remote(
        self,
        *,
        remote_id: str,
        content: EventContent,
        etag: str | None,
        remote_updated_at: datetime | None,
        synced_at: datetime,
    ) -> LocalCalendarEvent: ...

    async def apply_remote(
        self,
        event_id: UUID,
        *,
        content: EventContent,
        etag: str | None,
        remote_updated_at: datetime | None,
        synced_at: datetime,
    ) -> None: ...

    async def link_remote(
        self,
        event_id: UUID,
        *,
        remote_id: str,
        etag: str | None,
        remote_updated_at: datetime | None,
    ) -> None: ...

    async def mark_synced(
        self,
        event_id: UUID,
        *,
        remote_id: str,
        etag: str,
        remote_updated_at: datetime | None,
        synced_at: datetime,
    ) -> None: ...

    async def mark_error(self, event_id: UUID, message: str) -> None: ...

    async def delete(self, event_id: UUID) -> bool: ...


def _row_to_event(row: Any) -> LocalCalendarEvent:
    """Map a ``calendar_events`` record onto the typed model."""
    data = dict(row)
    return LocalCalendarEvent(
        id=data["id"],
        remote_id=data["google_calendar_event_id"],
        title=data["title"],
        description=data["description"],
        location=data["location"],
        start_time=data["start_time"],
        end_time=data["end_time"],
        all_day=data["all_day"],
        matter_id=data["matter_id"],
        task_id=data["task_id"],
        event_type=data["event_type"],
        color=data["color"],
        sync_status=data["sync_status"],
        sync_error=data["sync_error"],
        last_synced_at=data["last_synced_at"],
        remote_etag=data["google_etag"],
        remote_updated_at=data["google_updated_at"],
        created_at=data["created_at"],
        updated_at=data["updated_at"],
    )


@asynccontextmanager
async def _local_write(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except asyncpg.PostgresError as exc:
        raise ApplyError(f"{operation} failed: {truncate_message(str(exc))}") from exc


class PostgresEventRepository:
    """CRUD over ``calendar_events`` with sync-state tagging.

    Every write is a single statement, so a row is never left half-updated.
    Database failures surface as ``ApplyError``.

    ``create_local_event`` and ``update_local_event`` are the entry points for
    application edits; the remaining writes belong to the sync engine.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self, event_id: UUID) -> LocalCalendarEvent | None:
        row = await self._pool.fetchrow(
            f"SELECT {_EVENT_COLUMNS} FROM {EVENTS_TABLE} WHERE id = $1", event_id
        )
        return _row_to_event(row) if row is not None else None

    async def find_by_remote_id(self, remote_id: str) -> LocalCalendarEvent | None:
        row = await self._pool.fetchrow(
            f"SELECT {_EVENT_COLUMNS} FROM {EVENTS_TABLE} WHERE google_calendar_event_id = $1",
            remote_id,
        )
        return _row_to_event(row) if row is not None else None

    async def list_outstanding(self, limit: int) -> list[LocalCalendarEvent]:
        """Return up to *limit* ``pending``/``error`` rows, oldest first."""
        rows = await self._pool.fetch(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM {EVENTS_TABLE}
            WHERE sync_status = ANY($1::text[])
            ORDER BY created_at ASC, id ASC
            LIMIT $2
            """,
            list(OUTSTANDING_STATUSES),
            limit,
        )
        return [_row_to_event(row) for row in rows]

    async def count_outstanding(self) -> int:
        count = await self._pool.fetchval(
            f"SELECT count(*) FROM {EVENTS_TABLE} WHERE sync_status = ANY($1::text[])",
            list(OUTSTANDING_STATUSES),
        )
        return int(count or 0)

    async def insert_from_remote(
        self,
        *,
        remote_id: str,
        content: EventContent,
        etag: str | None,
        remote_updated_at: datetime | None,
        synced_at: datetime,
    ) -> LocalCalendarEvent:
        """Insert a remote-originated row directly as ``synced``.

        A concurrent insert for the same remote id resolves to an update, so
        applying the same change twice converges on one row.
        """
        async with _local_write("insert_from_remote"):
            row = await self._pool.fetchrow(
                f"""
                INSERT INTO {EVENTS_TABLE} (
                    google_calendar_event_id, title, description, location,
                    start_time, end_time, all_day, event_type, sync_status,
                    google_etag, google_updated_at, last_synced_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, 'synced', $9, $10, $11)
                ON CONFLICT (google_calendar_event_id) DO UPDATE
                    SET title = EXCLUDED.title,
                        description = EXCLUDED.description,
                        location = EXCLUDED.location,
                        start_time = EXCLUDED.start_time,
                        end_time = EXCLUDED.end_time,
                        all_day = EXCLUDED.all_day,
                        sync_status = 'synced',
                        sync_error = NULL,
                        google_etag = EXCLUDED.google_etag,
                        google_updated_at = EXCLUDED.google_updated_at,
                        last_synced_at = EXCLUDED.last_synced_at,
                        updated_at = now()
                RETURNING {_EVENT_COLUMNS}
                """,
                remote_id,
                content.title,
                content.description,
                content.location,
                content.start_time,
                content.end_time,
                content.all_day,
                EventType.MANUAL.value,
                etag,
                remote_updated_at,
                synced_at,
            )
        return _row_to_event(row)

    async def apply_remote(
        self,
        event_id: UUID,
        *,
        content: EventContent,
        etag: str | None,
        remote_updated_at: datetime | None,
        synced_at: datetime,
    ) -> None:
        """Overwrite content and remote metadata, marking the row ``synced``."""
        async with _local_write("apply_remote"):
            await self._pool.execute(
                f"""
                UPDATE {EVENTS_TABLE}
                SET title = $2,
                    description = $3,
                    location = $4,
                    start_time = $5,
                    end_time = $6,
                    all_day = $7,
                    google_etag = $8,
                    google_updated_at = $9,
                    sync_status = 'synced',
                    sync_error = NULL,
                    last_synced_at = $10,
                    updated_at = now()
                WHERE id = $1
                """,
                event_id,
                content.title,
                content.description,
                content.location,
                content.start_time,
                content.end_time,
                content.all_day,
                etag,
                remote_updated_at,
                synced_at,
            )

    async def link_remote(
        self,
        event_id: UUID,
        *,
        remote_id: str,
        etag: str | None,
        remote_updated_at: datetime | None,
    ) -> None:
        """Attach a remote identity without changing sync status or content.

        Only rows still lacking a linkage are touched.
        """
        async with _local_write("link_remote"):
            await self._pool.execute(
                f"""
                UPDATE {EVENTS_TABLE}
                SET google_calendar_event_id = $2,
                    google_etag = $3,
                    google_updated_at = $4,
                    updated_at = now()
                WHERE id = $1 AND google_calendar_event_id IS NULL
                """,
                event_id,
                remote_id,
                etag,
                remote_updated_at,
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
        async with _local_write("mark_synced"):
            await self._pool.execute(
                f"""
                UPDATE {EVENTS_TABLE}
                SET google_calendar_event_id = $2,
                    google_etag = $3,
                    google_updated_at = $4,
                    sync_status = 'synced',
                    sync_error = NULL,
                    last_synced_at = $5,
                    updated_at = now()
                WHERE id = $1
                """,
                event_id,
                remote_id,
                etag,
                remote_updated_at,
                synced_at,
            )

    async def mark_error(self, event_id: UUID, message: str) -> None:
        """Record a push failure; the remote linkage is left as it was."""
        async with _local_write("mark_error"):
            await self._pool.execute(
                f"""
                UPDATE {EVENTS_TABLE}
                SET sync_status = 'error', sync_error = $2, updated_at = now()
                WHERE id = $1
                """,
                event_id,
                truncate_message(message) or "unknown error",
            )

    async def delete(self, event_id: UUID) -> bool:
        async with _local_write("delete"):
            result = await self._pool.execute(
                f"DELETE FROM {EVENTS_TABLE} WHERE id = $1", event_id
            )
        return result.endswith(" 1")

    async def create_local_event(
        self, event: NewLocalEvent, *, connected: bool
    ) -> LocalCalendarEvent:
        """Insert an application-created row.

        With a connected account the row enters as ``pending`` and is picked
        up by the next push; otherwise it is ``local_only`` and never pushed.
        """
        status = SyncStatus.PENDING if connected else SyncStatus.LOCAL_ONLY
        async with _local_write("create_local_event"):
            row = await self._pool.fetchrow(
                f"""
                INSERT INTO {EVENTS_TABLE} (
                    title, description, location, start_time, end_time, all_day,
                    event_type, color, matter_id, task_id, sync_status
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                RETURNING {_EVENT_COLUMNS}
                """,
                event.title,
                event.description,
                event.location,
                event.start_time,
                event.end_time,
                event.all_day,
                event.event_type.value,
                event.color,
                event.matter_id,
                event.task_id,
                status.value,
            )
        logger.debug("Created local calendar event %s (%s)", row["id"], status)
        return _row_to_event(row)

    async def update_local_event(
        self, event_id: UUID, event: NewLocalEvent, *, connected: bool
    ) -> LocalCalendarEvent | None:
        """Overwrite a row with user-edited content.

        The row goes back to ``pending`` so the next push sends the edit; the
        remote linkage is kept, so a linked row is updated remotely rather than
        duplicated. Without a connection the row becomes ``local_only``.
        Returns None when no row has *event_id*.
        """
        status = SyncStatus.PENDING if connected else SyncStatus.LOCAL_ONLY
        async with _local_write("update_local_event"):
            row = await self._pool.fetchrow(
                f"""
                UPDATE {EVENTS_TABLE}
                SET title = $2,
                    description = $3,
                    location = $4,
                    start_time = $5,
                    end_time = $6,
                    all_day = $7,
                    event_type = $8,
                    color = $9,
                    matter_id = $10,
                    task_id = $11,
                    sync_status = $12,
                    sync_error = NULL,
                    updated_at = now()
                WHERE id = $1
                RETURNING {_EVENT_COLUMNS}
                """,
                event_id,
                event.title,
                event.description,
                event.location,
                event.start_time,
                event.end_time,
                event.all_day,
                event.event_type.value,
                event.color,
                event.matter_id,
                event.task_id,
                status.value,
            )
        if row is None:
            return None
        logger.debug("Updated local calendar event %s (%s)", event_id, status)
        return _row_to_event(row)
