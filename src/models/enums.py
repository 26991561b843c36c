"""Domain enums used across SQLAlchemy models and the deletion engine.

All enums use str mixin for JSON serialization.
"""

from __future__ import annotations

from enum import Enum


class DeletionLogStatus(str, Enum):
    """Lifecycle of one deletion run. Only started -> terminal is allowed."""

    STARTED = "started"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not DeletionLogStatus.STARTED

    def can_transition_to(self, target: DeletionLogStatus) -> bool:
        """Forward-only: started may move to any terminal status, nothing else moves."""
        return self is DeletionLogStatus.STARTED and target.is_terminal


class DeletionPolicy(str, Enum):
    """What happens to a record that matches the identity predicate."""

    DELETE = "delete"
    ANONYMIZE = "anonymize"
