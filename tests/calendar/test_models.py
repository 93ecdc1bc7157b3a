from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from pydantic import ValidationError

from matterflow.calendar.errors import RemoteCallError, truncate_message
from matterflow.calendar.models import (
    CalendarConnection,
    LocalCalendarEvent,
    RemoteChange,
    RemoteChangeBatch,
    SyncStatus,
)

pytestmark = pytest.mark.unit

START = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)


def _row(**overrides) -> LocalCalendarEvent:
    fields = {"id": uuid4(), "title": "Meeting", "start_time": START, "end_time": START}
    fields.update(overrides)
    return LocalCalendarEvent(**fields)


class TestLocalCalendarEvent:
    def test_blank_title_defaults(self):
        assert _row(title="   ").title == "Untitled"

    def test_synced_linked_row_requires_etag(self):
        with pytest.raises(ValidationError, match="remote etag"):
            _row(remote_id="R1", sync_status=SyncStatus.SYNCED)

    def test_error_row_requires_message(self):
        with pytest.raises(ValidationError, match="error message"):
            _row(sync_status=SyncStatus.ERROR)

    def test_unknown_fields_are_rejected(self):
        with pytest.raises(ValidationError):
            _row(google_id="R1")


class TestRemoteChange:
    def test_content_requires_both_boundaries(self):
        assert RemoteChange(remote_id="R1", start_time=START).content() is None

    def test_blank_origin_marker_is_dropped(self):
        assert RemoteChange(remote_id="R1", origin_local_id="  ").origin_local_id is None

    def test_blank_remote_id_is_rejected(self):
        with pytest.raises(ValidationError):
            RemoteChange(remote_id="  ")

    def test_batch_requires_cursor(self):
        with pytest.raises(ValidationError):
            RemoteChangeBatch(changes=[], next_cursor=" ")


class TestCalendarConnection:
    def test_blank_refresh_token_is_not_connected(self):
        assert CalendarConnection(account_id="practice", refresh_token=" ").connected is False


class TestErrorMessages:
    def test_truncate_collapses_whitespace_and_limits_length(self):
        message = truncate_message("a\n  b " + "x" * 300)

        assert len(message) == 200
        assert message.startswith("a b x")
        assert message.endswith("...")

    def test_remote_call_error_message_is_truncated(self):
        exc = RemoteCallError(status_code=None, message="y" * 500)

        assert len(exc.message) == 200
        assert "no response" in str(exc)
