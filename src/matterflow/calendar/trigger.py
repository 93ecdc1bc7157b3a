"""Authenticated entry point for scheduled reconciliation runs."""

from __future__ import annotations

import logging
import secrets

from matterflow.calendar.engine import ReconciliationDriver
from matterflow.calendar.errors import AuthorizationError
from matterflow.calendar.models import RunSummary

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def verify_bearer_secret(authorization: str | None, expected_secret: str | None) -> None:
    """Raise ``AuthorizationError`` unless *authorization* carries the shared secret.

    An unconfigured secret rejects every caller.
    """
    if not expected_secret:
        raise AuthorizationError("Trigger secret is not configured")
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise AuthorizationError("Missing bearer credential")
    presented = authorization[len(BEARER_PREFIX) :].strip()
    if not secrets.compare_digest(presented.encode(), expected_secret.encode()):
        raise AuthorizationError("Invalid bearer credential")


class TriggerBoundary:
    """Checks the shared secret, then runs the driver for the configured account."""

    def __init__(
        self,
        *,
        driver: ReconciliationDriver,
        account_id: str,
        cron_secret: str | None,
    ) -> None:
        self._driver = driver
        self._account_id = account_id
        self._cron_secret = cron_secret

    @property
    def account_id(self) -> str:
        return self._account_id

    def authorize(self, authorization: str | None) -> None:
        try:
            verify_bearer_secret(authorization, self._cron_secret)
        except AuthorizationError as exc:
            logger.warning("Rejected calendar sync trigger: %s", exc)
            raise

    async def invoke(self, authorization: str | None) -> RunSummary:
        self.authorize(authorization)
        return await self._driver.run(self._account_id)
