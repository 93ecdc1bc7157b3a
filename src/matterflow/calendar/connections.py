"""Per-account calendar connection settings."""

from __future__ import annotations

import logging
from typing import Protocol

import asyncpg

from matterflow.calendar.models import CalendarConnection
from matterflow.calendar.schema import CONNECTIONS_TABLE

logger = logging.getLogger(__name__)


class ConnectionStore(Protocol):
    async def load_connection(self, account_id: str) -> CalendarConnection | None: ...


class PostgresConnectionStore:
    """Reads and writes ``calendar_connections`` rows.

    The sync engine only reads. ``save_connection`` and ``disconnect`` are
    called by the application when an account grants or revokes access.
    """

    def __init__(self, pool: asyncpg.Pool, *, default_calendar_id: str = "primary") -> None:
        self._pool = pool
        self._default_calendar_id = default_calendar_id

    async def load_connection(self, account_id: str) -> CalendarConnection | None:
        row = await self._pool.fetchrow(
            f"""
            SELECT account_id, refresh_token, calendar_id, sync_token, last_sync_at
            FROM {CONNECTIONS_TABLE}
            WHERE account_id = $1
            """,
            account_id,
        )
        if row is None:
            return None
        return CalendarConnection(**dict(row))

    async def save_connection(
        self,
        account_id: str,
        *,
        refresh_token: str,
        calendar_id: str | None = None,
    ) -> CalendarConnection:
        """Store a refresh credential for *account_id*.

        Switching to a different calendar discards the stored cursor.
        """
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO {CONNECTIONS_TABLE} (account_id, refresh_token, calendar_id)
            VALUES ($1, $2, $3)
            ON CONFLICT (account_id) DO UPDATE
                SET refresh_token = EXCLUDED.refresh_token,
                    calendar_id = EXCLUDED.calendar_id,
                    sync_token = CASE
                        WHEN {CONNECTIONS_TABLE}.calendar_id = EXCLUDED.calendar_id
                        THEN {CONNECTIONS_TABLE}.sync_token
                    END,
                    updated_at = now()
            RETURNING account_id, refresh_token, calendar_id, sync_token, last_sync_at
            """,
            account_id,
            refresh_token,
            calendar_id or self._default_calendar_id,
        )
        logger.info(
            "Calendar connection saved for account=%s calendar=%s", account_id, row["calendar_id"]
        )
        return CalendarConnection(**dict(row))

    async def disconnect(self, account_id: str) -> None:
        """Forget the refresh credential and cursor; local rows are kept."""
        await self._pool.execute(
            f"""
            UPDATE {CONNECTIONS_TABLE}
            SET refresh_token = NULL, sync_token = NULL, updated_at = now()
            WHERE account_id = $1
            """,
            account_id,
        )
        logger.info("Calendar connection removed for account=%s", account_id)
