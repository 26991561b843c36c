"""Notification handler — verify, persist, hand off, mark processed.

`accept` runs inside the webhook request and never raises: every outcome
maps to an AcceptStatus the router turns into a 200 body. The deletion itself
runs later on the DeletionWorker via `process`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from src.deletion.engine import DeletionEngine
from src.deletion.stores import NotificationStore
from src.deletion.worker import DeletionWorker
from src.schemas.notifications import DeletionEvent, parse_deletion_event
from src.security.verification import VerificationConfigError, extract_presented_token, verify

logger = logging.getLogger(__name__)


class AcceptStatus(str, Enum):
    OK = "ok"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    UNVERIFIED = "unverified"
    ERROR = "error"


@dataclass(frozen=True)
class AcceptResult:
    status: AcceptStatus
    notification_id: str | None = None
    verified: bool = False


class NotificationHandler:
    """Orchestrates one inbound deletion notification."""

    def __init__(
        self,
        engine: DeletionEngine,
        notifications: NotificationStore,
        worker: DeletionWorker,
        *,
        verification_token: str | None,
        reject_unverified: bool = False,
    ) -> None:
        self._engine = engine
        self._notifications = notifications
        self._worker = worker
        self._verification_token = verification_token
        self._reject_unverified = reject_unverified

    def check_token(self, headers: Mapping[str, str]) -> bool:
        presented = extract_presented_token(headers)
        try:
            verified = verify(presented, self._verification_token)
        except VerificationConfigError:
            logger.error("EBAY_VERIFICATION_TOKEN not set — cannot verify notification sender")
            return False
        if not verified:
            logger.warning("Invalid verification token received")
        return verified

    async def accept(self, payload: Any, headers: Mapping[str, str]) -> AcceptResult:
        """Verify and record a notification, then queue its deletion."""
        try:
            return await self._accept(payload, headers)
        except Exception:
            logger.exception("Error processing notification")
            return AcceptResult(status=AcceptStatus.ERROR)

    async def _accept(self, payload: Any, headers: Mapping[str, str]) -> AcceptResult:
        verified = self.check_token(headers)
        rejected = not verified and self._reject_unverified

        event = parse_deletion_event(payload)
        if event is None:
            status = AcceptStatus.UNVERIFIED if rejected else AcceptStatus.IGNORED
            return AcceptResult(status=status, verified=verified)

        if rejected:
            await self._record_rejected(event)
            return AcceptResult(status=AcceptStatus.UNVERIFIED, notification_id=event.notification_id)

        identity = event.identity
        logger.info("Processing deletion request for user: %s, ID: %s", identity.username, identity.user_id)

        recorded = True
        try:
            notification, created = await self._notifications.save(event, verified=verified)
        except Exception:
            logger.exception("Failed to save deletion notification %s", event.notification_id)
            recorded = False
        else:
            if not created and notification.processed:
                logger.info("Notification %s already processed — skipping", event.notification_id)
                return AcceptResult(
                    status=AcceptStatus.DUPLICATE,
                    notification_id=event.notification_id,
                    verified=verified,
                )

        await self._worker.submit(self.process(event, recorded=recorded))
        return AcceptResult(status=AcceptStatus.OK, notification_id=event.notification_id, verified=verified)

    async def _record_rejected(self, event: DeletionEvent) -> None:
        """Keep an unverified delivery on file without running the deletion."""
        logger.warning("Rejected unverified notification %s", event.notification_id)
        try:
            await self._notifications.save(event, verified=False)
        except Exception:
            logger.exception("Failed to record rejected notification %s", event.notification_id)

    async def process(self, event: DeletionEvent, *, recorded: bool = True) -> None:
        """Run the deletion engine, then flag the notification processed.

        The notification is marked processed whether the run succeeded, finished
        with errors, or failed; the DeletionLog carries the outcome.
        """
        try:
            await self._engine.run(event.identity)
        except Exception:
            logger.exception("Deletion run failed for notification %s", event.notification_id)

        if not recorded:
            return

        try:
            await self._notifications.mark_processed(event.notification_id, datetime.now(UTC))
        except Exception:
            logger.exception("Failed to mark notification %s processed", event.notification_id)
