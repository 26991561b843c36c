"""Marketplace webhook payloads.

eBay delivers a nested JSON body:

    {
      "metadata": {"topic": "MARKETPLACE_ACCOUNT_DELETION", "schemaVersion": "1.0", ...},
      "notification": {
        "notificationId": "...",
        "eventDate": "...", "publishDate": "...", "publishAttemptCount": 1,
        "data": {"username": "...", "userId": "...", "eiasToken": "..."}
      }
    }

Anything that does not parse into DeletionEvent is acknowledged but not processed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.schemas.deletion import Identity

logger = logging.getLogger(__name__)

ACCOUNT_DELETION_TOPIC = "MARKETPLACE_ACCOUNT_DELETION"


class NotificationMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    topic: str
    schema_version: str | None = Field(default=None, alias="schemaVersion")
    deprecated: bool | None = None


class DeletionSubject(BaseModel):
    """The `notification.data` block identifying the closed account."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    username: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    eias_token: str | None = Field(default=None, alias="eiasToken")


class NotificationBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    notification_id: str = Field(alias="notificationId", min_length=1)
    event_date: datetime | None = Field(default=None, alias="eventDate")
    publish_date: datetime | None = Field(default=None, alias="publishDate")
    publish_attempt_count: int | None = Field(default=None, alias="publishAttemptCount")
    data: DeletionSubject


class DeletionEvent(BaseModel):
    """A well-formed account deletion event plus the verbatim body it came from."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    metadata: NotificationMetadata
    notification: NotificationBody
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def notification_id(self) -> str:
        return self.notification.notification_id

    @property
    def identity(self) -> Identity:
        subject = self.notification.data
        return Identity(
            username=subject.username,
            user_id=subject.user_id,
            eias_token=subject.eias_token,
        )


def parse_deletion_event(payload: Any) -> DeletionEvent | None:
    """Return a DeletionEvent, or None for any other payload shape.

    Never raises: unexpected shapes are logged and left to the caller to acknowledge.
    """
    if not isinstance(payload, dict):
        logger.warning("Notification payload is not a JSON object: %r", type(payload).__name__)
        return None

    try:
        event = DeletionEvent.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Received notification with unexpected format (%d errors)", exc.error_count())
        return None

    if event.metadata.topic != ACCOUNT_DELETION_TOPIC:
        logger.warning("Ignoring notification with topic %s", event.metadata.topic)
        return None

    if event.identity.is_empty:
        logger.warning("Deletion notification %s carries no user identifiers", event.notification_id)
        return None

    event.raw = payload
    return event
