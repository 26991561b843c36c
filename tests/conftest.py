"""Shared fixtures: an in-memory DataStore and deletion event payloads."""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections.abc import Mapping
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.models.enums import DeletionLogStatus
from src.schemas.deletion import DeletionStatistics
from src.storage.interface import MatchPredicate, apply_patch


class FakeDataStore:
    """Dict-of-lists document store implementing the DataStore protocol.

    `fail_on` maps a collection name to the exception raised by any call on it;
    `delay` maps a collection name to seconds slept before answering.
    """

    def __init__(self, collections: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.collections: dict[str, list[dict[str, Any]]] = copy.deepcopy(collections or {})
        self.fail_on: dict[str, Exception] = {}
        self.fail_delete_on: dict[str, Exception] = {}
        self.delay: dict[str, float] = {}
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0

    async def list_collections(self) -> list[str]:
        return list(self.collections)

    async def _enter(self, op: str, collection: str) -> None:
        self.calls.append((op, collection))
        if collection in self.fail_on:
            raise self.fail_on[collection]
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay.get(collection, 0))
        finally:
            self.active -= 1

    async def find(self, collection: str, predicate: MatchPredicate) -> list[dict[str, Any]]:
        await self._enter("find", collection)
        return [doc for doc in self.collections[collection] if predicate.matches_record(doc)]

    async def delete_many(self, collection: str, predicate: MatchPredicate) -> int:
        await self._enter("delete_many", collection)
        if collection in self.fail_delete_on:
            raise self.fail_delete_on[collection]
        docs = self.collections[collection]
        keep = [doc for doc in docs if not predicate.matches_record(doc)]
        self.collections[collection] = keep
        return len(docs) - len(keep)

    async def update_many(
        self, collection: str, predicate: MatchPredicate, patch: Mapping[str, Any]
    ) -> int:
        await self._enter("update_many", collection)
        count = 0
        for doc in self.collections[collection]:
            if predicate.matches_record(doc):
                apply_patch(doc, patch)
                count += 1
        return count


@pytest.fixture()
def log_store():
    """A DeletionLogStore double recording start/finish/fail calls."""
    store = AsyncMock()
    store.start = AsyncMock(side_effect=lambda *a, **kw: uuid.uuid4())

    async def _finish(log_id, stats: DeletionStatistics, completed_at=None):
        if stats.has_errors:
            return DeletionLogStatus.COMPLETED_WITH_ERRORS
        return DeletionLogStatus.COMPLETED

    store.finish = AsyncMock(side_effect=_finish)
    store.fail = AsyncMock()
    return store


def make_deletion_payload(
    notification_id: str = "49feeaeb-4982-42d9-a377-9645b8479411",
    username: str | None = "test_user",
    user_id: str | None = "ma8vp1jySJC",
    eias_token: str | None = "nY+sHZ2PrBmdj6wVnY+sEZ2PrA2dj6wJnY+gAZGEpwmdj6x9nY+seQ==",
    topic: str = "MARKETPLACE_ACCOUNT_DELETION",
) -> dict[str, Any]:
    """Build an eBay MARKETPLACE_ACCOUNT_DELETION webhook body."""
    data: dict[str, Any] = {}
    if username is not None:
        data["username"] = username
    if user_id is not None:
        data["userId"] = user_id
    if eias_token is not None:
        data["eiasToken"] = eias_token
    return {
        "metadata": {
            "topic": topic,
            "schemaVersion": "1.0",
            "deprecated": False,
        },
        "notification": {
            "notificationId": notification_id,
            "eventDate": "2021-03-19T20:43:59.462Z",
            "publishDate": "2021-03-19T20:43:59.679Z",
            "publishAttemptCount": 1,
            "data": data,
        },
    }


@pytest.fixture()
def deletion_payload() -> dict[str, Any]:
    return make_deletion_payload()


@pytest.fixture()
def payload_factory():
    return make_deletion_payload


SEED_COLLECTIONS: dict[str, list[dict[str, Any]]] = {
    "orders": [
        {"userId": "u1", "item": "lamp"},
        {"userId": "someone_else", "item": "desk"},
        {"user": {"id": "u1"}, "item": "chair"},
    ],
    "profiles": [
        {"username": "alice", "email": "alice@example.com"},
        {"username": "bob", "email": "bob@example.com"},
    ],
    "tokens": [{"eiasToken": "tok1"}],
    "products": [{"sku": "A-1"}],
    "system.indexes": [{"userId": "u1"}],
    "deletion_logs": [{"user_id": "u1"}],
    "deletion_notifications": [{"user_id": "u1", "username": "alice"}],
}


@pytest.fixture()
def data_store() -> FakeDataStore:
    return FakeDataStore(SEED_COLLECTIONS)


@pytest.fixture()
def store_factory():
    """Build a FakeDataStore from a seed; None means SEED_COLLECTIONS."""

    def _make(seed: dict[str, list[dict[str, Any]]] | None = None) -> FakeDataStore:
        return FakeDataStore(SEED_COLLECTIONS if seed is None else seed)

    return _make
