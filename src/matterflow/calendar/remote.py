"""Remote calendar contract used by the reconciliation driver."""

from __future__ import annotations

import abc

from matterflow.calendar.models import LocalCalendarEvent, RemoteChangeBatch, RemoteEventRef


class RemoteCalendar(abc.ABC):
    """Provider contract for one connected account's calendar."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Stable provider name."""
        ...

    @abc.abstractmethod
    async def fetch_changes(
        self,
        calendar_id: str,
        *,
        cursor: str | None,
        full_sync_window_days: int,
    ) -> RemoteChangeBatch:
        """List every change since *cursor*, or a bounded full window without one.

        Raises ``CursorExpiredError`` when the service rejects *cursor*, and
        ``RemoteCallError`` for any other failure.
        """
        ...

    @abc.abstractmethod
    async def create_event(self, calendar_id: str, event: LocalCalendarEvent) -> RemoteEventRef:
        """Create a remote copy of *event* tagged with its local id."""
        ...

    @abc.abstractmethod
    async def update_event(
        self, calendar_id: str, remote_id: str, event: LocalCalendarEvent
    ) -> RemoteEventRef:
        """Replace the remote event addressed by *remote_id*."""
        ...

    @abc.abstractmethod
    async def delete_event(self, calendar_id: str, remote_id: str) -> None:
        """Delete a remote event; an already-missing event is not an error."""
        ...

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Release provider resources."""
        ...
