"""Idempotent DDL for the calendar sync tables."""

from __future__ import annotations

import asyncpg

CONNECTIONS_TABLE = "calendar_connections"
EVENTS_TABLE = "calendar_events"

_CONNECTIONS_TABLE_DDL = f"""
CREATE TABLE IF NOT EXISTS {CONNECTIONS_TABLE} (
    account_id     TEXT PRIMARY KEY,
    refresh_token  TEXT,
    calendar_id    TEXT NOT NULL DEFAULT 'primary',
    sync_token     TEXT,
    last_sync_at   TIMESTAMPTZ,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at     TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_EVENTS_TABLE_DDL = f"""
CREATE TABLE IF NOT EXISTS {EVENTS_TABLE} (
    id                        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    google_calendar_event_id  TEXT UNIQUE,
    title                     TEXT NOT NULL,
    description               TEXT,
    location                  TEXT,
    start_time                TIMESTAMPTZ NOT NULL,
    end_time                  TIMESTAMPTZ NOT NULL,
    all_day                   BOOLEAN NOT NULL DEFAULT false,
    matter_id                 UUID,
    task_id                   UUID,
    event_type                TEXT NOT NULL DEFAULT 'manual'
        CHECK (event_type IN (
            'manual', 'task_due', 'scheduled_call', 'deadline', 'court_date', 'meeting'
        )),
    color                     TEXT,
    sync_status               TEXT NOT NULL DEFAULT 'pending'
        CHECK (sync_status IN ('pending', 'synced', 'error', 'local_only')),
    sync_error                TEXT,
    last_synced_at            TIMESTAMPTZ,
    google_etag               TEXT,
    google_updated_at         TIMESTAMPTZ,
    created_at                TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at                TIMESTAMPTZ NOT NULL DEFAULT now(),
    CHECK (sync_status <> 'error' OR sync_error IS NOT NULL),
    CHECK (
        sync_status <> 'synced'
        OR google_calendar_event_id IS NULL
        OR google_etag IS NOT NULL
    )
)
"""

_EVENTS_INDEX_DDL = (
    f"CREATE INDEX IF NOT EXISTS ix_calendar_events_start_time ON {EVENTS_TABLE} (start_time)",
    f"CREATE INDEX IF NOT EXISTS ix_calendar_events_task_id ON {EVENTS_TABLE} (task_id)",
    f"""
    CREATE INDEX IF NOT EXISTS ix_calendar_events_outstanding
    ON {EVENTS_TABLE} (created_at)
    WHERE sync_status IN ('pending', 'error')
    """,
)


async def ensure_calendar_schema(pool: asyncpg.Pool) -> None:
    """Create the connection and event tables if they do not exist."""
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(_CONNECTIONS_TABLE_DDL)
            await conn.execute(_EVENTS_TABLE_DDL)
            for ddl in _EVENTS_INDEX_DDL:
                await conn.execute(ddl)
