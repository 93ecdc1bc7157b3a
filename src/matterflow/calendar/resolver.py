"""Merge policy for applying remote changes locally and pushing local changes out.

Pull is the authoritative mirror of remote state for rows the local store
already links to. A remote event carrying this system's origin marker but no
linked local row means the local row was deleted, and it is not re-created.
Push only visits rows the repository reports as outstanding.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from matterflow.calendar.errors import RemoteCallError
from matterflow.calendar.models import (
    LocalCalendarEvent,
    PullAction,
    PushResult,
    RemoteChange,
)
from matterflow.calendar.remote import RemoteCalendar
from matterflow.calendar.repository import EventRepository

logger = logging.getLogger(__name__)


def _parse_local_id(value: str | None) -> UUID | None:
    if value is None:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


async def resolve_pull(
    change: RemoteChange,
    repository: EventRepository,
    *,
    now: datetime,
) -> PullAction:
    """Apply one remote change to the local store.

    Local write failures propagate (as ``ApplyError``) for the caller to
    isolate per item.
    """
    existing = await repository.find_by_remote_id(change.remote_id)

    if change.cancelled:
        if existing is None:
            return PullAction.NOOP
        await repository.delete(existing.id)
        logger.debug("Deleted local event %s (remote %s cancelled)", existing.id, change.remote_id)
        return PullAction.DELETED

    content = change.content()
    if content is None:
        logger.debug("Remote event %s has no start/end; skipping", change.remote_id)
        return PullAction.SKIPPED

    if existing is not None:
        await repository.apply_remote(
            existing.id,
            content=content,
            etag=change.etag,
            remote_updated_at=change.updated_at,
            synced_at=now,
        )
        return PullAction.UPDATED

    if change.origin_local_id is None:
        await repository.insert_from_remote(
            remote_id=change.remote_id,
            content=content,
            etag=change.etag,
            remote_updated_at=change.updated_at,
            synced_at=now,
        )
        return PullAction.INSERTED

    # Pushed from here earlier. If the row survived but its linkage write was
    # lost, re-attach it so the next push updates instead of duplicating.
    origin_id = _parse_local_id(change.origin_local_id)
    origin = await repository.get(origin_id) if origin_id is not None else None
    if origin is not None and origin.remote_id is None:
        await repository.link_remote(
            origin.id,
            remote_id=change.remote_id,
            etag=change.etag,
            remote_updated_at=change.updated_at,
        )
        logger.info("Re-linked local event %s to remote %s", origin.id, change.remote_id)
        return PullAction.RELINKED

    logger.debug(
        "Remote %s originated locally as %s, which no longer exists; not re-creating",
        change.remote_id,
        change.origin_local_id,
    )
    return PullAction.SUPPRESSED


async def resolve_push(
    event: LocalCalendarEvent,
    remote: RemoteCalendar,
    repository: EventRepository,
    *,
    calendar_id: str,
    now: datetime,
) -> PushResult:
    """Create or update the remote copy of one outstanding local row.

    Remote failures are written back onto the row as ``error`` and reported
    in the result. Local write failures propagate.
    """
    try:
        if event.remote_id is None:
            ref = await remote.create_event(calendar_id, event)
            action = "created"
        else:
            ref = await remote.update_event(calendar_id, event.remote_id, event)
            action = "updated"
    except RemoteCallError as exc:
        await repository.mark_error(event.id, exc.message)
        logger.warning("Push failed for local event %s: %s", event.id, exc.message)
        return PushResult(
            local_id=event.id, action="failed", remote_id=event.remote_id, error=exc.message
        )

    await repository.mark_synced(
        event.id,
        remote_id=ref.remote_id,
        etag=ref.etag,
        remote_updated_at=ref.updated_at,
        synced_at=now,
    )
    return PushResult(local_id=event.id, action=action, remote_id=ref.remote_id)
