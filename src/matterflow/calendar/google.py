"""Google Calendar v3 client used for reconciliation.

Exchanges a stored refresh token for short-lived access tokens, lists
changes through the ``syncToken`` / ``nextSyncToken`` flow, and writes local
events back as remote events tagged with their local id in
``extendedProperties.private``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, date, datetime, timedelta
from typing import Any
from urllib.parse import quote

import httpx

from matterflow.calendar.errors import (
    CredentialError,
    CursorExpiredError,
    RemoteCallError,
    TokenRefreshError,
    truncate_message,
)
from matterflow.calendar.models import (
    ItemFailure,
    LocalCalendarEvent,
    RemoteChange,
    RemoteChangeBatch,
    RemoteEventRef,
)
from matterflow.calendar.remote import RemoteCalendar

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

PAGE_SIZE = 250

ORIGIN_PRIVATE_KEY = "matterflow_id"
MATTER_PRIVATE_KEY = "matter_id"
TASK_PRIVATE_KEY = "task_id"
EVENT_TYPE_PRIVATE_KEY = "event_type"

RATE_LIMIT_RETRY_STATUS_CODES = frozenset({429, 503})
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0


def _redact_credential_values(message: str) -> str:
    """Mask token and secret values that may appear in error text."""
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|token)\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        message,
    )
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    return re.sub(r"(?i)\bBearer\s+[A-Za-z0-9._~+/=-]+", "Bearer [REDACTED]", redacted)


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    message: str | None = None
    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            candidate = error_payload.get("message")
            if isinstance(candidate, str) and candidate.strip():
                message = candidate
        elif isinstance(error_payload, str) and error_payload.strip():
            description = payload.get("error_description")
            message = (
                f"{error_payload}: {description}"
                if isinstance(description, str) and description.strip()
                else error_payload
            )

    if message is None:
        message = response.text.strip() or "Request failed without an error payload"
    return " ".join(_redact_credential_values(message).split())[:200]


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return 3600
    if isinstance(value, int | float):
        return int(value) if value > 0 else 3600
    return 3600


def _google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Google Calendar returned an invalid dateTime: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _parse_google_event_boundary(payload: Any) -> tuple[datetime | None, bool]:
    """Return ``(instant, is_date_only)`` for a Google start/end object.

    Date-only boundaries (all-day events) become midnight UTC.
    """
    if not isinstance(payload, dict):
        return None, False

    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return _parse_google_datetime(date_time), False

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed = date.fromisoformat(date_value.strip())
        except ValueError as exc:
            raise ValueError(
                f"Google Calendar returned an invalid date value: {date_value}"
            ) from exc
        return datetime(parsed.year, parsed.month, parsed.day, tzinfo=UTC), True

    return None, False


def _extract_origin_local_id(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    private_payload = payload.get("private")
    if not isinstance(private_payload, dict):
        return None
    value = private_payload.get(ORIGIN_PRIVATE_KEY)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def google_event_to_remote_change(item: dict[str, Any]) -> RemoteChange | None:
    """Convert one ``items[]`` entry; entries without an id are dropped."""
    remote_id = _optional_text(item.get("id"))
    if remote_id is None:
        return None

    status = item.get("status")
    if isinstance(status, str) and status.strip().lower() == "cancelled":
        return RemoteChange(remote_id=remote_id, cancelled=True)

    start_time, start_is_date = _parse_google_event_boundary(item.get("start"))
    end_time, _ = _parse_google_event_boundary(item.get("end"))

    updated_raw = _optional_text(item.get("updated"))
    return RemoteChange(
        remote_id=remote_id,
        title=_optional_text(item.get("summary")),
        description=_optional_text(item.get("description")),
        location=_optional_text(item.get("location")),
        start_time=start_time,
        end_time=end_time,
        all_day=start_is_date,
        etag=_optional_text(item.get("etag")),
        updated_at=_parse_google_datetime(updated_raw) if updated_raw else None,
        origin_local_id=_extract_origin_local_id(item.get("extendedProperties")),
    )


def _event_boundary(value: datetime, all_day: bool) -> dict[str, str]:
    if all_day:
        return {"date": value.astimezone(UTC).date().isoformat()}
    return {"dateTime": _google_rfc3339(value)}


def build_event_body(event: LocalCalendarEvent) -> dict[str, Any]:
    """Render a local row as a full Google event resource."""
    private: dict[str, str] = {
        ORIGIN_PRIVATE_KEY: str(event.id),
        EVENT_TYPE_PRIVATE_KEY: event.event_type.value,
    }
    if event.matter_id is not None:
        private[MATTER_PRIVATE_KEY] = str(event.matter_id)
    if event.task_id is not None:
        private[TASK_PRIVATE_KEY] = str(event.task_id)

    body: dict[str, Any] = {
        "summary": event.title,
        "start": _event_boundary(event.start_time, event.all_day),
        "end": _event_boundary(event.end_time, event.all_day),
        "extendedProperties": {"private": private},
    }
    if event.description is not None:
        body["description"] = event.description
    if event.location is not None:
        body["location"] = event.location
    return body


def _event_ref_from_payload(payload: dict[str, Any]) -> RemoteEventRef:
    remote_id = _optional_text(payload.get("id"))
    etag = _optional_text(payload.get("etag"))
    if remote_id is None or etag is None:
        raise RemoteCallError(
            status_code=None,
            message="Google Calendar response is missing the event id or etag",
        )
    updated_raw = _optional_text(payload.get("updated"))
    return RemoteEventRef(
        remote_id=remote_id,
        etag=etag,
        updated_at=_parse_google_datetime(updated_raw) if updated_raw else None,
    )


class GoogleOAuthClient:
    """Refresh-token OAuth helper with lightweight access-token caching."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        if not client_id or not client_secret:
            raise CredentialError("Google OAuth client_id and client_secret must be configured")
        if not refresh_token:
            raise CredentialError("A Google refresh token is required")
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._http_client = http_client
        self._access_token: str | None = None
        self._access_token_expires_at: datetime | None = None
        self._refresh_lock = asyncio.Lock()

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        if not force_refresh and self._token_is_fresh():
            assert self._access_token is not None
            return self._access_token

        async with self._refresh_lock:
            if not force_refresh and self._token_is_fresh():
                assert self._access_token is not None
                return self._access_token

            await self._refresh_access_token()
            assert self._access_token is not None
            return self._access_token

    def _token_is_fresh(self) -> bool:
        if self._access_token is None or self._access_token_expires_at is None:
            return False
        return datetime.now(UTC) < self._access_token_expires_at

    async def _refresh_access_token(self) -> None:
        try:
            response = await self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": self._refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(
                status_code=None,
                message=f"Google OAuth token refresh request failed: {type(exc).__name__}",
            ) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TokenRefreshError(
                status_code=response.status_code,
                message=(
                    f"Google OAuth token refresh failed: {_safe_google_error_message(response)}"
                ),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenRefreshError(
                status_code=response.status_code,
                message="Google OAuth token endpoint returned invalid JSON",
            ) from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise TokenRefreshError(
                status_code=response.status_code,
                message="Google OAuth token response is missing a non-empty access_token",
            )

        expires_in_seconds = _coerce_expires_in_seconds(payload.get("expires_in"))
        # Refresh early to avoid edge-of-expiration failures.
        refresh_ttl_seconds = max(expires_in_seconds - 60, 30)

        self._access_token = access_token.strip()
        self._access_token_expires_at = datetime.now(UTC) + timedelta(seconds=refresh_ttl_seconds)


class GoogleCalendarClient(RemoteCalendar):
    """Google provider with OAuth refresh-token and authenticated request helpers."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._oauth = GoogleOAuthClient(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
            http_client=self._http_client,
        )

    @property
    def name(self) -> str:
        return "google"

    async def _request_google_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._request_with_bearer(
            method=method, path=path, params=params, json_body=json_body
        )
        self._raise_for_status(response)
        return self._json_payload(response)

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 200 or response.status_code >= 300:
            raise RemoteCallError(
                status_code=response.status_code,
                message=_safe_google_error_message(response),
            )

    @staticmethod
    def _json_payload(response: httpx.Response) -> dict[str, Any]:
        if response.status_code == 204:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteCallError(
                status_code=response.status_code,
                message="Google Calendar API returned invalid JSON for a successful response",
            ) from exc
        if not isinstance(payload, dict):
            raise RemoteCallError(
                status_code=response.status_code,
                message="Google Calendar API returned an unexpected JSON payload shape",
            )
        return payload

    async def _request_with_bearer(
        self,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}{path}"

        response = await self._request_once(
            method=method, url=url, params=params, json_body=json_body, force_refresh=False
        )

        if response.status_code == 401:
            response = await self._request_once(
                method=method, url=url, params=params, json_body=json_body, force_refresh=True
            )

        retry = 0
        while (
            response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES
        ):
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            retry_after_header = response.headers.get("Retry-After")
            if response.status_code == 429 and retry_after_header is not None:
                try:
                    backoff = float(retry_after_header)
                except ValueError:
                    pass
            logger.warning(
                "Calendar API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await asyncio.sleep(backoff)
            response = await self._request_once(
                method=method, url=url, params=params, json_body=json_body, force_refresh=False
            )
            retry += 1

        return response

    async def _request_once(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        force_refresh: bool,
    ) -> httpx.Response:
        access_token = await self._oauth.get_access_token(force_refresh=force_refresh)
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException as exc:
            raise RemoteCallError(
                status_code=None, message=f"Google Calendar request timed out ({method} {url})"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteCallError(
                status_code=None,
                message=f"Google Calendar request failed: {type(exc).__name__}: {exc}",
            ) from exc

    async def fetch_changes(
        self,
        calendar_id: str,
        *,
        cursor: str | None,
        full_sync_window_days: int,
    ) -> RemoteChangeBatch:
        """Fetch changes using Google's syncToken / nextSyncToken flow.

        Performs a windowed full listing when ``cursor`` is ``None``.
        Pages are followed until Google hands back a ``nextSyncToken``.

        Raises:
            CursorExpiredError: When Google answers 410 Gone to a cursor request.
            RemoteCallError: For every other failure.
        """
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        params: dict[str, Any] = {
            "showDeleted": True,
            "singleEvents": False,
            "maxResults": PAGE_SIZE,
        }
        if cursor is not None:
            params["syncToken"] = cursor
        else:
            window_start = datetime.now(UTC) - timedelta(days=full_sync_window_days)
            params["timeMin"] = _google_rfc3339(window_start)

        changes: list[RemoteChange] = []
        rejected: list[ItemFailure] = []
        next_page_token: str | None = None
        next_sync_token: str | None = None

        while True:
            if next_page_token is not None:
                params["pageToken"] = next_page_token

            response = await self._request_with_bearer(method="GET", path=path, params=params)

            if response.status_code == 410 and cursor is not None:
                raise CursorExpiredError(
                    f"Sync token expired for calendar '{calendar_id}'; full re-sync required"
                )
            self._raise_for_status(response)
            payload = self._json_payload(response)

            items = payload.get("items")
            if isinstance(items, list):
                for item in items:
                    if not isinstance(item, dict):
                        continue
                    try:
                        change = google_event_to_remote_change(item)
                    except ValueError as exc:
                        logger.warning("Unparseable Google event %r: %s", item.get("id"), exc)
                        rejected.append(
                            ItemFailure(
                                direction="pull",
                                item_id=str(item.get("id")),
                                error=truncate_message(f"Unparseable remote event: {exc}"),
                            )
                        )
                        continue
                    if change is not None:
                        changes.append(change)

            next_page_token = _optional_text(payload.get("nextPageToken"))
            candidate_sync_token = _optional_text(payload.get("nextSyncToken"))
            if candidate_sync_token is not None:
                next_sync_token = candidate_sync_token

            if next_page_token is None:
                break

        if next_sync_token is None:
            raise RemoteCallError(
                status_code=None,
                message=f"Google Calendar listing for '{calendar_id}' did not return nextSyncToken",
            )

        logger.debug(
            "Fetched %d change(s) for calendar=%s (full_sync=%s)",
            len(changes),
            calendar_id,
            cursor is None,
        )
        return RemoteChangeBatch(
            changes=changes,
            rejected=rejected,
            next_cursor=next_sync_token,
            full_sync=cursor is None,
        )

    async def create_event(self, calendar_id: str, event: LocalCalendarEvent) -> RemoteEventRef:
        payload = await self._request_google_json(
            "POST",
            f"/calendars/{quote(calendar_id, safe='')}/events",
            json_body=build_event_body(event),
        )
        return _event_ref_from_payload(payload)

    async def update_event(
        self, calendar_id: str, remote_id: str, event: LocalCalendarEvent
    ) -> RemoteEventRef:
        payload = await self._request_google_json(
            "PUT",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(remote_id, safe='')}",
            json_body=build_event_body(event),
        )
        return _event_ref_from_payload(payload)

    async def delete_event(self, calendar_id: str, remote_id: str) -> None:
        response = await self._request_with_bearer(
            method="DELETE",
            path=f"/calendars/{quote(calendar_id, safe='')}/events/{quote(remote_id, safe='')}",
        )
        # Already gone on the remote side.
        if response.status_code in (404, 410):
            return
        self._raise_for_status(response)

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
