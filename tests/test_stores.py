"""Tests for NotificationStore and DeletionLogStore."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.deletion.stores import DeletionLogStore, NotificationStore
from src.models.deletion import DeletionLog, InvalidStatusTransition
from src.models.enums import DeletionLogStatus
from src.models.notification import DeletionNotification
from src.schemas.deletion import CollectionError, DeletionStatistics, Identity
from src.schemas.notifications import parse_deletion_event

# ── Helpers ──────────────────────────────────────────────────────────


def _make_db():
    """Build a mock AsyncSession that assigns ids on add()."""
    db = AsyncMock()

    def _add(obj):
        if getattr(obj, "id", None) is None:
            obj.id = uuid.uuid4()

    db.add = MagicMock(side_effect=_add)
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db


def _make_factory(db):
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=db)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


def _scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _started_log(**details) -> DeletionLog:
    return DeletionLog(
        id=uuid.uuid4(),
        username="alice",
        user_id="u1",
        status=DeletionLogStatus.STARTED.value,
        details={"start_time": "2026-01-01T00:00:00+00:00", **details},
    )


# ── NotificationStore ────────────────────────────────────────────────


class TestNotificationStore:
    @pytest.mark.asyncio()
    async def test_save_new_notification(self, deletion_payload):
        db = _make_db()
        db.execute = AsyncMock(return_value=_scalar_result(None))
        store = NotificationStore(_make_factory(db))
        event = parse_deletion_event(deletion_payload)

        row, created = await store.save(event)

        assert created is True
        db.add.assert_called_once()
        db.commit.assert_awaited_once()
        assert row.notification_id == "49feeaeb-4982-42d9-a377-9645b8479411"
        assert row.username == "test_user"
        assert row.user_id == "ma8vp1jySJC"
        assert row.eias_token.startswith("nY+sHZ2")
        assert row.publish_attempt_count == 1
        assert row.event_date == datetime(2021, 3, 19, 20, 43, 59, 462000, tzinfo=UTC)
        assert row.raw_notification == deletion_payload
        assert row.processed is False
        assert row.verified is True

    @pytest.mark.asyncio()
    async def test_save_returns_existing_on_redelivery(self, deletion_payload):
        existing = DeletionNotification(
            notification_id="49feeaeb-4982-42d9-a377-9645b8479411", processed=True, verified=True
        )
        db = _make_db()
        db.execute = AsyncMock(return_value=_scalar_result(existing))
        store = NotificationStore(_make_factory(db))

        row, created = await store.save(parse_deletion_event(deletion_payload))

        assert created is False
        assert row is existing
        db.add.assert_not_called()

    @pytest.mark.asyncio()
    async def test_save_unverified_notification(self, deletion_payload):
        db = _make_db()
        db.execute = AsyncMock(return_value=_scalar_result(None))
        store = NotificationStore(_make_factory(db))

        row, created = await store.save(parse_deletion_event(deletion_payload), verified=False)

        assert created is True
        assert row.verified is False
        assert row.processed is False

    @pytest.mark.asyncio()
    async def test_verified_redelivery_upgrades_unverified_row(self, deletion_payload):
        existing = DeletionNotification(notification_id="49feeaeb-4982-42d9-a377-9645b8479411", verified=False)
        db = _make_db()
        db.execute = AsyncMock(return_value=_scalar_result(existing))
        store = NotificationStore(_make_factory(db))

        row, created = await store.save(parse_deletion_event(deletion_payload), verified=True)

        assert created is False
        assert row.verified is True
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_unverified_redelivery_leaves_row_alone(self, deletion_payload):
        existing = DeletionNotification(notification_id="49feeaeb-4982-42d9-a377-9645b8479411", verified=True)
        db = _make_db()
        db.execute = AsyncMock(return_value=_scalar_result(existing))
        store = NotificationStore(_make_factory(db))

        row, _ = await store.save(parse_deletion_event(deletion_payload), verified=False)

        assert row.verified is True
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_save_race_on_unique_index(self, deletion_payload):
        existing = DeletionNotification(notification_id="49feeaeb-4982-42d9-a377-9645b8479411")
        db = _make_db()
        db.execute = AsyncMock(side_effect=[_scalar_result(None), _scalar_result(existing)])
        db.commit = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))
        store = NotificationStore(_make_factory(db))

        row, created = await store.save(parse_deletion_event(deletion_payload))

        assert created is False
        assert row is existing
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_mark_processed(self):
        db = _make_db()
        result = MagicMock()
        result.rowcount = 1
        db.execute = AsyncMock(return_value=result)
        store = NotificationStore(_make_factory(db))

        assert await store.mark_processed("n-1") is True
        db.commit.assert_awaited_once()
        stmt = str(db.execute.call_args[0][0])
        assert "UPDATE deletion_notifications" in stmt

    @pytest.mark.asyncio()
    async def test_mark_processed_unknown_id(self):
        db = _make_db()
        result = MagicMock()
        result.rowcount = 0
        db.execute = AsyncMock(return_value=result)
        store = NotificationStore(_make_factory(db))

        assert await store.mark_processed("missing") is False


# ── DeletionLogStore ─────────────────────────────────────────────────


class TestDeletionLogStore:
    @pytest.mark.asyncio()
    async def test_start_creates_started_row(self):
        db = _make_db()
        store = DeletionLogStore(_make_factory(db))
        started = datetime(2026, 1, 1, tzinfo=UTC)

        log_id = await store.start(Identity(username="alice", user_id="u1", eias_token="t"), started)

        log = db.add.call_args[0][0]
        assert isinstance(log, DeletionLog)
        assert log.id == log_id
        assert log.status == DeletionLogStatus.STARTED.value
        assert log.user_id == "u1"
        assert log.details == {"start_time": started.isoformat()}
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_start_failure_propagates(self):
        db = _make_db()
        db.commit.side_effect = RuntimeError("db down")
        store = DeletionLogStore(_make_factory(db))

        with pytest.raises(RuntimeError):
            await store.start(Identity(user_id="u1"))

    @pytest.mark.asyncio()
    async def test_finish_completed(self):
        log = _started_log()
        db = _make_db()
        db.get = AsyncMock(return_value=log)
        store = DeletionLogStore(_make_factory(db))
        stats = DeletionStatistics(collections_scanned=3, documents_deleted=5)

        status = await store.finish(log.id, stats)

        assert status is DeletionLogStatus.COMPLETED
        assert log.status == "completed"
        assert log.details["start_time"] == "2026-01-01T00:00:00+00:00"
        assert log.details["statistics"] == {
            "collections_scanned": 3,
            "documents_deleted": 5,
            "documents_anonymized": 0,
            "errors": [],
        }
        assert "completion_time" in log.details
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_finish_with_errors(self):
        log = _started_log()
        db = _make_db()
        db.get = AsyncMock(return_value=log)
        store = DeletionLogStore(_make_factory(db))
        stats = DeletionStatistics(
            collections_scanned=2,
            errors=[CollectionError(collection="orders", error="boom")],
        )

        status = await store.finish(log.id, stats)

        assert status is DeletionLogStatus.COMPLETED_WITH_ERRORS
        assert log.details["statistics"]["errors"] == [{"collection": "orders", "error": "boom"}]

    @pytest.mark.asyncio()
    async def test_fail_records_error(self):
        log = _started_log()
        db = _make_db()
        db.get = AsyncMock(return_value=log)
        store = DeletionLogStore(_make_factory(db))

        await store.fail(log.id, ConnectionError("lost"))

        assert log.status == "failed"
        assert log.details["error"] == "lost"
        assert log.details["error_type"] == "ConnectionError"

    @pytest.mark.asyncio()
    async def test_terminal_log_never_reverts(self):
        log = _started_log()
        log.status = DeletionLogStatus.COMPLETED.value
        db = _make_db()
        db.get = AsyncMock(return_value=log)
        store = DeletionLogStore(_make_factory(db))

        with pytest.raises(InvalidStatusTransition):
            await store.fail(log.id, RuntimeError("late"))

        assert log.status == "completed"
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_missing_log(self):
        db = _make_db()
        db.get = AsyncMock(return_value=None)
        store = DeletionLogStore(_make_factory(db))

        with pytest.raises(LookupError):
            await store.finish(uuid.uuid4(), DeletionStatistics())


class TestStatusTransitions:
    @pytest.mark.parametrize(
        "target",
        [DeletionLogStatus.COMPLETED, DeletionLogStatus.COMPLETED_WITH_ERRORS, DeletionLogStatus.FAILED],
    )
    def test_started_to_terminal(self, target):
        assert DeletionLogStatus.STARTED.can_transition_to(target)

    def test_started_to_started(self):
        assert not DeletionLogStatus.STARTED.can_transition_to(DeletionLogStatus.STARTED)

    @pytest.mark.parametrize(
        "current",
        [DeletionLogStatus.COMPLETED, DeletionLogStatus.COMPLETED_WITH_ERRORS, DeletionLogStatus.FAILED],
    )
    def test_terminal_is_final(self, current):
        for target in DeletionLogStatus:
            assert not current.can_transition_to(target)
