"""DeletionNotification model — every inbound account-deletion webhook.

The raw payload is kept verbatim for audit and reprocessing.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class DeletionNotification(TimestampMixin, Base):
    """An account-deletion notification received from the marketplace."""

    __tablename__ = "deletion_notifications"

    # Re-delivery detection
    notification_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Subject identity
    username: Mapped[str | None] = mapped_column(String(255), index=True)
    user_id: Mapped[str | None] = mapped_column(String(255), index=True)
    eias_token: Mapped[str | None] = mapped_column(String(500))

    # Platform timing
    event_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    publish_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    publish_attempt_count: Mapped[int | None] = mapped_column(Integer)

    raw_notification: Mapped[dict[str, Any] | None]

    # Whether the sender presented the shared verification token
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Processing state
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<DeletionNotification id={self.notification_id} processed={self.processed}>"
