"""DeletionLog model — compliance evidence for every deletion run."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import DeletionLogStatus


class InvalidStatusTransition(Exception):
    """Raised when a DeletionLog would move backwards or out of a terminal status."""


class DeletionLog(TimestampMixin, Base):
    """One execution of the deletion engine for one subject. Retained indefinitely."""

    __tablename__ = "deletion_logs"

    # Subject identity
    username: Mapped[str | None] = mapped_column(String(255), index=True)
    user_id: Mapped[str | None] = mapped_column(String(255), index=True)
    eias_token: Mapped[str | None] = mapped_column(String(500))

    # Status tracking
    status: Mapped[str] = mapped_column(
        String(30), default=DeletionLogStatus.STARTED.value, nullable=False
    )
    deletion_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Timing, statistics, error info
    details: Mapped[dict[str, Any] | None]

    def transition(self, target: DeletionLogStatus) -> None:
        """Move to a terminal status, refusing anything but started -> terminal."""
        current = DeletionLogStatus(self.status)
        if not current.can_transition_to(target):
            msg = f"DeletionLog {self.id}: cannot move from {current.value} to {target.value}"
            raise InvalidStatusTransition(msg)
        self.status = target.value

    def __repr__(self) -> str:
        return f"<DeletionLog user={self.user_id} status={self.status}>"
