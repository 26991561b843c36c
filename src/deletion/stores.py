"""Durable records of deletion notifications and deletion runs.

Both stores take an async session factory and open one short transaction
per operation, so every state change is committed before the caller moves on.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.deletion import DeletionLog
from src.models.enums import DeletionLogStatus
from src.models.notification import DeletionNotification
from src.schemas.deletion import DeletionStatistics, Identity
from src.schemas.notifications import DeletionEvent

logger = logging.getLogger(__name__)

NOTIFICATIONS_TABLE = DeletionNotification.__tablename__
DELETION_LOGS_TABLE = DeletionLog.__tablename__


class NotificationStore:
    """Owns the DeletionNotification lifecycle: save once, mark processed once."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, event: DeletionEvent, *, verified: bool = True) -> tuple[DeletionNotification, bool]:
        """Persist a notification. Returns (row, created).

        A re-delivered notification id returns the existing row with created=False;
        a verified re-delivery upgrades a row first stored as unverified.
        """
        body = event.notification
        subject = body.data

        async with self._session_factory() as db:
            existing = await self._get(db, event.notification_id)
            if existing is not None:
                if verified and not existing.verified:
                    existing.verified = True
                    await db.commit()
                return existing, False

            notification = DeletionNotification(
                notification_id=event.notification_id,
                username=subject.username,
                user_id=subject.user_id,
                eias_token=subject.eias_token,
                event_date=body.event_date,
                publish_date=body.publish_date,
                publish_attempt_count=body.publish_attempt_count,
                raw_notification=event.raw,
                verified=verified,
                processed=False,
            )
            db.add(notification)
            try:
                await db.commit()
            except IntegrityError:
                # Concurrent re-delivery won the insert
                await db.rollback()
                existing = await self._get(db, event.notification_id)
                if existing is None:
                    raise
                return existing, False

        logger.info("Saved deletion notification: %s (verified=%s)", event.notification_id, verified)
        return notification, True

    async def mark_processed(self, notification_id: str, processed_at: datetime | None = None) -> bool:
        """Flag a notification as processed. Returns False if no row matched."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(DeletionNotification)
                .where(DeletionNotification.notification_id == notification_id)
                .values(processed=True, processed_at=processed_at or datetime.now(UTC))
            )
            await db.commit()

        updated = bool(result.rowcount)  # type: ignore[attr-defined]
        if not updated:
            logger.warning("No notification %s to mark processed", notification_id)
        return updated

    @staticmethod
    async def _get(db: AsyncSession, notification_id: str) -> DeletionNotification | None:
        result = await db.execute(
            select(DeletionNotification).where(DeletionNotification.notification_id == notification_id)
        )
        return result.scalar_one_or_none()


class DeletionLogStore:
    """Audit trail of deletion runs. One row per run, started -> terminal exactly once."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def start(self, identity: Identity, started_at: datetime | None = None) -> uuid.UUID:
        """Create the `started` row that anchors a run. Errors propagate."""
        started_at = started_at or datetime.now(UTC)
        async with self._session_factory() as db:
            log = DeletionLog(
                username=identity.username,
                user_id=identity.user_id,
                eias_token=identity.eias_token,
                status=DeletionLogStatus.STARTED.value,
                details={"start_time": started_at.isoformat()},
            )
            db.add(log)
            await db.commit()
            log_id = log.id

        logger.info("Created deletion log %s for user %s", log_id, identity.user_id)
        return log_id

    async def finish(
        self,
        log_id: uuid.UUID,
        stats: DeletionStatistics,
        completed_at: datetime | None = None,
    ) -> DeletionLogStatus:
        """Close a run as completed or completed_with_errors, attaching the statistics."""
        status = (
            DeletionLogStatus.COMPLETED_WITH_ERRORS if stats.has_errors else DeletionLogStatus.COMPLETED
        )
        completed_at = completed_at or datetime.now(UTC)
        await self._close(
            log_id,
            status,
            {"completion_time": completed_at.isoformat(), "statistics": stats.to_dict()},
        )
        return status

    async def fail(self, log_id: uuid.UUID, error: BaseException) -> None:
        """Close a run as failed with the error that stopped it."""
        await self._close(
            log_id,
            DeletionLogStatus.FAILED,
            {
                "error": str(error),
                "error_type": type(error).__name__,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )

    async def _close(self, log_id: uuid.UUID, status: DeletionLogStatus, extra: dict[str, Any]) -> None:
        async with self._session_factory() as db:
            log = await db.get(DeletionLog, log_id)
            if log is None:
                msg = f"Deletion log {log_id} not found"
                raise LookupError(msg)
            log.transition(status)
            log.details = {**(log.details or {}), **extra}
            await db.commit()

        logger.info("Deletion log %s -> %s", log_id, status.value)
