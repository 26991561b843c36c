"""Deletion engine — purges one subject's records from every eligible table.

A run:
1. anchors itself with a `started` DeletionLog row (failure aborts the run);
2. enumerates collections, skipping system tables and the two log tables;
3. processes each collection independently and concurrently (bounded,
   with a per-collection timeout): find matches, then delete or anonymize,
   and after anonymizing confirm nothing still matches;
4. folds per-collection outcomes into DeletionStatistics;
5. closes the log exactly once: completed / completed_with_errors, or
   failed if anything outside the per-collection work broke.

A collection that errors or times out is recorded and never stops the others.
Runs for the same identity are serialized through IdentityLocks.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from src.config import DeletionSettings
from src.deletion.locks import IdentityLocks, LocalIdentityLocks
from src.deletion.stores import DELETION_LOGS_TABLE, NOTIFICATIONS_TABLE, DeletionLogStore
from src.models.enums import DeletionPolicy
from src.schemas.deletion import CollectionOutcome, DeletionStatistics, Identity
from src.storage.interface import DataStore, FieldMatch, MatchPredicate

logger = logging.getLogger(__name__)

# Never purged: deleting from these would corrupt the audit trail.
PROTECTED_COLLECTIONS: frozenset[str] = frozenset({NOTIFICATIONS_TABLE, DELETION_LOGS_TABLE})

REDACTED = "DELETED_USER"


def build_match_predicate(identity: Identity, candidate_fields: Mapping[str, Sequence[str]]) -> MatchPredicate:
    """OR-predicate over every candidate field whose identity value is known."""
    matches: list[FieldMatch] = []
    for attribute, fields in candidate_fields.items():
        value = identity.value_of(attribute)
        if not value:
            continue
        matches.extend(FieldMatch(field=name, value=value) for name in fields)
    return MatchPredicate(matches=tuple(matches))


def build_anonymization_patch(
    candidate_fields: Mapping[str, Sequence[str]],
    null_fields: Iterable[str],
    removed_at: datetime,
) -> dict[str, Any]:
    """Placeholder values for every identity field plus removal markers.

    Dotted names ("user.id") address nested values; stores replace them only
    where the path already exists.
    """
    patch: dict[str, Any] = {}
    for attribute, fields in candidate_fields.items():
        for name in fields:
            if attribute == "user_id":
                patch[name] = f"{REDACTED}_{secrets.token_hex(4)}"
            else:
                patch[name] = REDACTED
    for name in null_fields:
        patch[name] = None
    patch["personal_data_removed"] = True
    patch["personal_data_removed_at"] = removed_at
    return patch


class DeletionEngine:
    """Propagates an account deletion across the data store."""

    def __init__(
        self,
        store: DataStore,
        log_store: DeletionLogStore,
        *,
        candidate_fields: Mapping[str, Sequence[str]],
        policy: DeletionPolicy = DeletionPolicy.DELETE,
        anonymize_collections: Iterable[str] = (),
        anonymize_null_fields: Iterable[str] = (),
        excluded_prefixes: Iterable[str] = ("system.",),
        excluded_collections: Iterable[str] = (),
        max_concurrency: int = 4,
        collection_timeout: float | None = 30.0,
        locks: IdentityLocks | None = None,
    ) -> None:
        self._store = store
        self._log_store = log_store
        self._candidate_fields = {k: list(v) for k, v in candidate_fields.items()}
        self._policy = policy
        self._anonymize_collections = frozenset(anonymize_collections)
        self._anonymize_null_fields = list(anonymize_null_fields)
        self._excluded_prefixes = tuple(excluded_prefixes)
        self._excluded_collections = frozenset(excluded_collections) | PROTECTED_COLLECTIONS
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._collection_timeout = collection_timeout
        self._locks = locks or LocalIdentityLocks()

    @classmethod
    def from_settings(
        cls,
        store: DataStore,
        log_store: DeletionLogStore,
        settings: DeletionSettings,
        locks: IdentityLocks | None = None,
    ) -> DeletionEngine:
        return cls(
            store,
            log_store,
            candidate_fields=settings.deletion_candidate_fields,
            policy=DeletionPolicy(settings.deletion_policy),
            anonymize_collections=settings.deletion_anonymize_collections,
            anonymize_null_fields=settings.deletion_anonymize_null_fields,
            excluded_prefixes=settings.deletion_excluded_prefixes,
            excluded_collections=settings.deletion_excluded_collections,
            max_concurrency=settings.deletion_max_concurrency,
            collection_timeout=settings.deletion_collection_timeout,
            locks=locks,
        )

    def is_eligible(self, collection: str) -> bool:
        if collection in self._excluded_collections:
            return False
        return not collection.startswith(self._excluded_prefixes)

    def policy_for(self, collection: str) -> DeletionPolicy:
        if collection in self._anonymize_collections:
            return DeletionPolicy.ANONYMIZE
        return self._policy

    async def run(self, identity: Identity) -> DeletionStatistics:
        """Purge every record matching `identity` and return the run statistics.

        Raises:
            Exception: the log row could not be created, or the run failed
                outside the per-collection work (the log is then `failed`).
        """
        async with self._locks.hold(identity.lock_key):
            return await self._run(identity)

    async def _run(self, identity: Identity) -> DeletionStatistics:
        logger.info("Starting deletion process for user: %s (%s)", identity.username, identity.user_id)

        # Anchor first: nothing is deleted without a log row to account for it.
        log_id = await self._log_store.start(identity, datetime.now(UTC))

        try:
            names = await self._store.list_collections()
            eligible = [name for name in names if self.is_eligible(name)]
            logger.info("Scanning %d of %d collections for user data", len(eligible), len(names))

            predicate = build_match_predicate(identity, self._candidate_fields)
            outcomes = await asyncio.gather(
                *(self._process_collection(name, predicate) for name in eligible)
            )
            stats = DeletionStatistics.from_outcomes(outcomes)
            status = await self._log_store.finish(log_id, stats, datetime.now(UTC))
        except Exception as exc:
            logger.exception("Error during deletion process for user %s", identity.user_id)
            try:
                await self._log_store.fail(log_id, exc)
            except Exception:
                logger.exception("Failed to update deletion log %s", log_id)
            raise

        logger.info(
            "Completed deletion process for user %s: status=%s scanned=%d deleted=%d anonymized=%d errors=%d",
            identity.user_id,
            status.value,
            stats.collections_scanned,
            stats.documents_deleted,
            stats.documents_anonymized,
            len(stats.errors),
        )
        return stats

    async def _process_collection(self, collection: str, predicate: MatchPredicate) -> CollectionOutcome:
        """Never raises: any failure becomes this collection's error."""
        async with self._semaphore:
            try:
                return await asyncio.wait_for(
                    self._purge(collection, predicate),
                    timeout=self._collection_timeout,
                )
            except TimeoutError:
                message = f"Timed out after {self._collection_timeout}s"
            except Exception as exc:
                message = str(exc) or type(exc).__name__
        logger.error("Error processing collection %s: %s", collection, message)
        return CollectionOutcome(collection=collection, error=message)

    async def _purge(self, collection: str, predicate: MatchPredicate) -> CollectionOutcome:
        if predicate.is_empty:
            return CollectionOutcome(collection=collection)

        records = await self._store.find(collection, predicate)
        matched = len(records)
        logger.debug("Found %d documents in %s", matched, collection)
        if not matched:
            return CollectionOutcome(collection=collection)

        if self.policy_for(collection) is DeletionPolicy.ANONYMIZE:
            patch = build_anonymization_patch(
                self._candidate_fields, self._anonymize_null_fields, datetime.now(UTC)
            )
            count = await self._store.update_many(collection, predicate, patch)
            logger.info("Anonymized %d documents in %s", count, collection)

            # Whatever still matches kept an identifying field the patch could not reach.
            remaining = len(await self._store.find(collection, predicate))
            if remaining:
                message = f"{remaining} of {matched} matching documents still identifiable after anonymization"
                return CollectionOutcome(collection=collection, matched=matched, anonymized=count, error=message)
            return CollectionOutcome(collection=collection, matched=matched, anonymized=count)

        count = await self._store.delete_many(collection, predicate)
        logger.info("Deleted %d documents from %s", count, collection)
        return CollectionOutcome(collection=collection, matched=matched, deleted=count)
