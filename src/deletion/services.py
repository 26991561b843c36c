"""Wires the deletion components together from settings and an open Database."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.config import Settings
from src.db.engine import Database
from src.deletion.engine import DeletionEngine
from src.deletion.handler import NotificationHandler
from src.deletion.locks import IdentityLocks, LocalIdentityLocks, RedisIdentityLocks
from src.deletion.stores import DeletionLogStore, NotificationStore
from src.deletion.worker import DeletionWorker
from src.storage.sql import SqlDataStore

logger = logging.getLogger(__name__)


@dataclass
class DeletionServices:
    engine: DeletionEngine
    notifications: NotificationStore
    deletion_logs: DeletionLogStore
    worker: DeletionWorker
    handler: NotificationHandler


def build_locks(settings: Settings, database: Database) -> IdentityLocks:
    if settings.deletion.deletion_lock_backend == "redis":
        logger.info("Using Redis identity locks")
        return RedisIdentityLocks(database.redis, timeout=settings.deletion.deletion_lock_timeout)
    return LocalIdentityLocks()


def build_services(settings: Settings, database: Database) -> DeletionServices:
    notifications = NotificationStore(database.session_factory)
    deletion_logs = DeletionLogStore(database.session_factory)
    engine = DeletionEngine.from_settings(
        SqlDataStore(database.engine),
        deletion_logs,
        settings.deletion,
        locks=build_locks(settings, database),
    )
    worker = DeletionWorker(concurrency=settings.deletion.deletion_worker_count)
    handler = NotificationHandler(
        engine,
        notifications,
        worker,
        verification_token=settings.marketplace.ebay_verification_token,
        reject_unverified=settings.marketplace.marketplace_reject_unverified,
    )
    return DeletionServices(
        engine=engine,
        notifications=notifications,
        deletion_logs=deletion_logs,
        worker=worker,
        handler=handler,
    )
