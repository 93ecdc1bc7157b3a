"""Unit tests for DB connection parameter parsing and wiring."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from matterflow.db import Database, normalize_schema_name

pytestmark = pytest.mark.unit


def test_from_env_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    """DATABASE_URL supplies host, credentials and sslmode."""
    monkeypatch.setenv(
        "DATABASE_URL", "postgres://svc:pw@db.internal:6543/postgres?sslmode=disable"
    )

    db = Database.from_env("matterflow", schema="calendar")

    assert (db.host, db.port, db.user, db.password) == ("db.internal", 6543, "svc", "pw")
    assert db.ssl == "disable"
    assert db.schema == "calendar"


def test_from_env_postgres_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("POSTGRES_USER", raising=False)
    monkeypatch.setenv("POSTGRES_HOST", "pg")
    monkeypatch.setenv("POSTGRES_PORT", "5433")
    monkeypatch.setenv("POSTGRES_SSLMODE", "VERIFY-FULL")

    db = Database.from_env("matterflow")

    assert db.host == "pg"
    assert db.port == 5433
    assert db.user == "matterflow"
    assert db.ssl == "verify-full"


def test_invalid_sslmode_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("POSTGRES_SSLMODE", "sometimes")

    assert Database.from_env("matterflow").ssl is None


@pytest.mark.parametrize("value,expected", [(None, None), ("  ", None), (" cal_1 ", "cal_1")])
def test_normalize_schema_name(value, expected) -> None:
    assert normalize_schema_name(value) == expected


def test_normalize_schema_name_rejects_non_identifiers() -> None:
    with pytest.raises(ValueError, match="Invalid schema name"):
        normalize_schema_name("cal-1; drop")


@patch("matterflow.db.asyncpg.create_pool", new_callable=AsyncMock)
async def test_connect_sets_search_path_and_ssl(mock_create_pool: AsyncMock) -> None:
    pool = AsyncMock()
    mock_create_pool.return_value = pool

    db = Database(db_name="matterflow", schema="calendar", ssl="require")
    out = await db.connect()

    assert out is pool
    assert db.require_pool() is pool
    kwargs = mock_create_pool.await_args.kwargs
    assert kwargs["ssl"] == "require"
    assert kwargs["server_settings"] == {"search_path": "calendar,public"}


def test_require_pool_before_connect_raises() -> None:
    with pytest.raises(RuntimeError, match="no active connection pool"):
        Database(db_name="matterflow").require_pool()
