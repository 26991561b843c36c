"""Identity and statistics types for the deletion engine."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class Identity:
    """The (username, user id, secondary token) triple of a subject to purge."""

    username: str | None = None
    user_id: str | None = None
    eias_token: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.username or self.user_id or self.eias_token)

    @property
    def lock_key(self) -> str:
        """Stable key used to serialize runs for the same subject."""
        for prefix, value in (("uid", self.user_id), ("uname", self.username), ("eias", self.eias_token)):
            if value:
                return f"{prefix}:{value}"
        return "anonymous"

    def value_of(self, attribute: str) -> str | None:
        return getattr(self, attribute)


@dataclass(frozen=True)
class CollectionError:
    collection: str
    error: str


@dataclass(frozen=True)
class CollectionOutcome:
    """Result of processing one collection."""

    collection: str
    matched: int = 0
    deleted: int = 0
    anonymized: int = 0
    error: str | None = None


@dataclass
class DeletionStatistics:
    """Aggregate over all collections of one run."""

    collections_scanned: int = 0
    documents_deleted: int = 0
    documents_anonymized: int = 0
    errors: list[CollectionError] = field(default_factory=list)

    def add(self, outcome: CollectionOutcome) -> None:
        self.collections_scanned += 1
        self.documents_deleted += outcome.deleted
        self.documents_anonymized += outcome.anonymized
        if outcome.error is not None:
            self.errors.append(CollectionError(collection=outcome.collection, error=outcome.error))

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[CollectionOutcome]) -> DeletionStatistics:
        stats = cls()
        for outcome in outcomes:
            stats.add(outcome)
        return stats

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
