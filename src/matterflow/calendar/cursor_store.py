"""Sync cursor persistence and the per-account run lease.

The cursor lives on the account's ``calendar_connections`` row rather than
in a table of its own. The lease is a PostgreSQL session advisory lock held
on a dedicated pool connection for the duration of a run, so two triggers
racing for the same account cannot both reconcile it.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Protocol

import asyncpg

from matterflow.calendar.errors import RunInProgressError
from matterflow.calendar.models import SyncCursor
from matterflow.calendar.schema import CONNECTIONS_TABLE

logger = logging.getLogger(__name__)

LEASE_KEY_PREFIX = "calendar-sync:"


class CursorStore(Protocol):
    async def load(self, account_id: str) -> SyncCursor | None: ...

    async def save(self, account_id: str, token: str, synced_at: datetime) -> None: ...

    def lease(self, account_id: str) -> AbstractAsyncContextManager[None]: ...


class PostgresCursorStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def load(self, account_id: str) -> SyncCursor | None:
        row = await self._pool.fetchrow(
            f"SELECT sync_token, last_sync_at FROM {CONNECTIONS_TABLE} WHERE account_id = $1",
            account_id,
        )
        if row is None or not row["sync_token"]:
            return None
        return SyncCursor(token=row["sync_token"], last_sync_at=row["last_sync_at"])

    async def save(self, account_id: str, token: str, synced_at: datetime) -> None:
        """Replace the cursor and last-sync instant in a single row update."""
        await self._pool.execute(
            f"""
            UPDATE {CONNECTIONS_TABLE}
            SET sync_token = $2, last_sync_at = $3, updated_at = now()
            WHERE account_id = $1
            """,
            account_id,
            token,
            synced_at,
        )

    @asynccontextmanager
    async def lease(self, account_id: str) -> AsyncIterator[None]:
        """Hold the account's run lease or raise ``RunInProgressError``."""
        key = f"{LEASE_KEY_PREFIX}{account_id}"
        async with self._pool.acquire() as conn:
            acquired = await conn.fetchval("SELECT pg_try_advisory_lock(hashtext($1))", key)
            if not acquired:
                raise RunInProgressError(account_id)
            try:
                yield
            finally:
                await conn.execute("SELECT pg_advisory_unlock(hashtext($1))", key)
