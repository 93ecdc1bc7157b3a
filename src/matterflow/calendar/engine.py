"""Reconciliation driver: one pull-then-push pass for a connected account."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from matterflow.calendar.connections import ConnectionStore
from matterflow.calendar.cursor_store import CursorStore
from matterflow.calendar.errors import (
    CalendarSyncError,
    CursorExpiredError,
    RemoteCallError,
    RunInProgressError,
    truncate_message,
)
from matterflow.calendar.models import (
    CalendarConnection,
    ItemFailure,
    PullAction,
    RemoteChangeBatch,
    RunStatus,
    RunSummary,
)
from matterflow.calendar.remote import RemoteCalendar
from matterflow.calendar.repository import EventRepository
from matterflow.calendar.resolver import resolve_pull, resolve_push
from matterflow.core.logging import set_account_context
from matterflow.core.metrics import SyncMetrics
from matterflow.core.telemetry import get_tracer

logger = logging.getLogger(__name__)

DEFAULT_PUSH_BATCH_SIZE = 50
DEFAULT_FULL_SYNC_WINDOW_DAYS = 30

MESSAGE_COMPLETED = "Calendar sync complete"
MESSAGE_NOT_CONNECTED = "Google account not connected"
MESSAGE_BUSY = "Calendar sync already in progress"

RemoteClientFactory = Callable[[CalendarConnection], RemoteCalendar]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, RemoteCallError):
        return exc.message
    return truncate_message(str(exc) or type(exc).__name__)


@dataclass
class _RunTally:
    pulled: int = 0
    pushed: int = 0
    errors: int = 0
    full_resync: bool = False
    pull_error: str | None = None
    push_error: str | None = None
    failures: list[ItemFailure] = field(default_factory=list)

    def fail(self, direction: str, item_id: str, error: str) -> None:
        self.errors += 1
        self.failures.append(ItemFailure(direction=direction, item_id=item_id, error=error))

    def summary(self) -> RunSummary:
        aborted = list(dict.fromkeys(e for e in (self.pull_error, self.push_error) if e))
        message = MESSAGE_COMPLETED
        if aborted:
            message = f"Calendar sync failed: {'; '.join(aborted)}"
        return RunSummary(
            status=RunStatus.FAILED if aborted else RunStatus.COMPLETED,
            message=message,
            pulled=self.pulled,
            pushed=self.pushed,
            errors=self.errors,
            full_resync=self.full_resync,
            pull_error=self.pull_error,
            push_error=self.push_error,
            failures=self.failures,
        )


class ReconciliationDriver:
    """Runs one reconciliation pass per call.

    The pull phase mirrors remote changes into the local store and then
    advances the cursor; the push phase always follows, even when pull
    aborted. Item failures are isolated and collected into the summary.
    """

    def __init__(
        self,
        *,
        connections: ConnectionStore,
        cursor_store: CursorStore,
        repository: EventRepository,
        client_factory: RemoteClientFactory,
        push_batch_size: int = DEFAULT_PUSH_BATCH_SIZE,
        full_sync_window_days: int = DEFAULT_FULL_SYNC_WINDOW_DAYS,
        delete_orphaned_remote_events: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if push_batch_size < 1:
            raise ValueError("push_batch_size must be at least 1")
        self._connections = connections
        self._cursor_store = cursor_store
        self._repository = repository
        self._client_factory = client_factory
        self._push_batch_size = push_batch_size
        self._full_sync_window_days = full_sync_window_days
        self._delete_orphans = delete_orphaned_remote_events
        self._clock = clock
        self._tracer = get_tracer()

    async def run(self, account_id: str) -> RunSummary:
        set_account_context(account_id)
        metrics = SyncMetrics(account_id)
        started = time.monotonic()

        with self._tracer.start_as_current_span("calendar_sync.run") as span:
            span.set_attribute("calendar_sync.account", account_id)
            summary = await self._run(account_id)
            span.set_attribute("calendar_sync.status", summary.status.value)
            span.set_attribute("calendar_sync.pulled", summary.pulled)
            span.set_attribute("calendar_sync.pushed", summary.pushed)
            span.set_attribute("calendar_sync.errors", summary.errors)

        metrics.record_run(summary.status.value, (time.monotonic() - started) * 1000)
        metrics.record_items("pull", "ok", summary.pulled)
        metrics.record_items("push", "ok", summary.pushed)
        for failure in summary.failures:
            metrics.record_items(failure.direction, "error")
        return summary

    async def _run(self, account_id: str) -> RunSummary:
        try:
            connection = await self._connections.load_connection(account_id)
        except Exception as exc:
            return self._aborted("Failed to load calendar connection", exc)
        if connection is None or not connection.connected:
            logger.info("Calendar sync skipped: account not connected")
            return RunSummary(status=RunStatus.NOT_CONNECTED, message=MESSAGE_NOT_CONNECTED)

        try:
            async with self._cursor_store.lease(account_id):
                summary = await self._run_locked(connection)
        except RunInProgressError:
            logger.warning("Calendar sync skipped: another run holds the lease")
            return RunSummary(status=RunStatus.BUSY, message=MESSAGE_BUSY)
        except Exception as exc:
            return self._aborted("Calendar sync run aborted", exc)

        logger.info(
            "Calendar sync finished: status=%s pulled=%d pushed=%d errors=%d full_resync=%s",
            summary.status,
            summary.pulled,
            summary.pushed,
            summary.errors,
            summary.full_resync,
        )
        return summary

    def _aborted(self, context: str, exc: Exception) -> RunSummary:
        message = f"{context}: {_describe(exc)}"
        logger.error("Calendar sync aborted: %s", message, exc_info=True)
        return RunSummary(
            status=RunStatus.FAILED,
            message=f"Calendar sync failed: {message}",
            pull_error=message,
            push_error=message,
        )

    async def _run_locked(self, connection: CalendarConnection) -> RunSummary:
        tally = _RunTally()
        try:
            remote = self._client_factory(connection)
        except CalendarSyncError as exc:
            message = _describe(exc)
            logger.error("Calendar sync cannot build a remote client: %s", message)
            tally.pull_error = message
            tally.push_error = message
            return tally.summary()

        try:
            with self._tracer.start_as_current_span("calendar_sync.pull"):
                await self._pull_phase(connection, remote, tally)
            with self._tracer.start_as_current_span("calendar_sync.push"):
                await self._push_phase(connection, remote, tally)
        finally:
            await remote.shutdown()
        return tally.summary()

    async def _fetch(
        self,
        remote: RemoteCalendar,
        calendar_id: str,
        cursor: str | None,
        tally: _RunTally,
    ) -> RemoteChangeBatch:
        try:
            return await remote.fetch_changes(
                calendar_id, cursor=cursor, full_sync_window_days=self._full_sync_window_days
            )
        except CursorExpiredError:
            if cursor is None:
                raise
            logger.warning("Calendar sync cursor expired; falling back to a full resync")
            tally.full_resync = True
            # The stored cursor is only replaced after this retry succeeds.
            return await remote.fetch_changes(
                calendar_id, cursor=None, full_sync_window_days=self._full_sync_window_days
            )

    async def _pull_phase(
        self,
        connection: CalendarConnection,
        remote: RemoteCalendar,
        tally: _RunTally,
    ) -> None:
        account_id = connection.account_id
        try:
            stored = await self._cursor_store.load(account_id)
            batch = await self._fetch(
                remote, connection.calendar_id, stored.token if stored else None, tally
            )
        except Exception as exc:
            tally.pull_error = _describe(exc)
            logger.error("Calendar pull phase aborted: %s", tally.pull_error)
            return

        for rejected in batch.rejected:
            tally.fail(rejected.direction, rejected.item_id, rejected.error)

        for change in batch.changes:
            try:
                action = await resolve_pull(change, self._repository, now=self._clock())
                if action is PullAction.SUPPRESSED and self._delete_orphans:
                    await remote.delete_event(connection.calendar_id, change.remote_id)
                    logger.info("Deleted orphaned remote event %s", change.remote_id)
            except Exception as exc:
                logger.warning(
                    "Failed to apply remote change %s: %s", change.remote_id, exc, exc_info=True
                )
                tally.fail("pull", change.remote_id, _describe(exc))
                continue
            tally.pulled += 1

        try:
            await self._cursor_store.save(account_id, batch.next_cursor, self._clock())
        except Exception as exc:
            tally.pull_error = f"Failed to persist sync cursor: {_describe(exc)}"
            logger.error("Calendar pull phase aborted: %s", tally.pull_error)

    async def _push_phase(
        self,
        connection: CalendarConnection,
        remote: RemoteCalendar,
        tally: _RunTally,
    ) -> None:
        try:
            outstanding = await self._repository.list_outstanding(self._push_batch_size)
        except Exception as exc:
            tally.push_error = f"Failed to load outstanding events: {_describe(exc)}"
            logger.error("Calendar push phase aborted: %s", tally.push_error)
            return

        for event in outstanding:
            try:
                result = await resolve_push(
                    event,
                    remote,
                    self._repository,
                    calendar_id=connection.calendar_id,
                    now=self._clock(),
                )
            except Exception as exc:
                logger.warning("Failed to push local event %s: %s", event.id, exc, exc_info=True)
                tally.fail("push", str(event.id), _describe(exc))
                continue

            if result.ok:
                tally.pushed += 1
            else:
                tally.fail("push", str(event.id), result.error or "push failed")
