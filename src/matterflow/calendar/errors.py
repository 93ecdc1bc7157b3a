"""Error taxonomy for calendar reconciliation."""

from __future__ import annotations

MAX_ERROR_MESSAGE_LENGTH = 200


def truncate_message(message: str, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    message = " ".join(message.split())
    if len(message) <= limit:
        return message
    return message[: limit - 3] + "..."


class CalendarSyncError(RuntimeError):
    """Base calendar sync error."""


class NotConnectedError(CalendarSyncError):
    """Raised when an account has no stored refresh credential."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Calendar account {account_id!r} is not connected")


class CredentialError(CalendarSyncError):
    """Raised when OAuth client credentials are missing or unusable."""


class CursorExpiredError(CalendarSyncError):
    """Raised when the remote service rejects an incremental sync cursor."""


class RemoteCallError(CalendarSyncError):
    """Raised when a remote calendar call fails (transport, timeout, or non-2xx)."""

    def __init__(self, *, status_code: int | None, message: str) -> None:
        self.status_code = status_code
        self.message = truncate_message(message)
        status = status_code if status_code is not None else "no response"
        super().__init__(f"Google Calendar request failed ({status}): {self.message}")


class TokenRefreshError(RemoteCallError):
    """Raised when the refresh-token exchange fails or is revoked."""


class AuthorizationError(CalendarSyncError):
    """Raised when a trigger invocation lacks a valid shared secret."""


class ApplyError(CalendarSyncError):
    """Raised when writing one item to the local event store fails."""


class RunInProgressError(CalendarSyncError):
    """Raised when another reconciliation run already holds the account lease."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"A calendar sync run is already in progress for {account_id!r}")
