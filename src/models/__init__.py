"""SQLAlchemy ORM models for the deletion hook.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.base import Base
from src.models.deletion import DeletionLog, InvalidStatusTransition
from src.models.enums import DeletionLogStatus, DeletionPolicy
from src.models.notification import DeletionNotification

__all__ = [
    # Base
    "Base",
    # Models
    "DeletionNotification",
    "DeletionLog",
    # Enums
    "DeletionLogStatus",
    "DeletionPolicy",
    # Errors
    "InvalidStatusTransition",
]
