"""In-memory storage for the development backend.

Holds the message log and the feature catalog for one app instance.
"""

import logging
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from devtwin.models.schemas import FeatureRecord, MessageLogRecord

logger = logging.getLogger(__name__)

MAX_PENDING_MESSAGES = 1000


class FeatureCreate(BaseModel):
    """Payload for creating a feature.

    Attributes:
        feature_name: Display name of the feature.
        feature_description: Free-form description.
        links: Named resource links (github, figma, notion, fireflies).
    """

    feature_name: str = Field(..., min_length=1)
    feature_description: str = ""
    links: dict[str, str] = Field(default_factory=dict)


class StoredFeature(FeatureRecord):
    """Feature row with the fields only the backend needs."""

    feature_description: str = ""
    links: dict[str, str] = Field(default_factory=dict)


class StoredMessage(MessageLogRecord):
    """Message log row with its generated id."""

    id: str


class BackendStore:
    """Message log and feature catalog kept in process memory.

    A logged message is kept only until its answer is streamed. At most
    max_pending_messages unanswered messages are held; the oldest are
    dropped first.
    """

    def __init__(self, max_pending_messages: int = MAX_PENDING_MESSAGES) -> None:
        self._max_pending = max_pending_messages
        self._messages: dict[str, StoredMessage] = {}
        self._features: dict[str, StoredFeature] = {}

    @property
    def pending_messages(self) -> int:
        return len(self._messages)

    def insert_message(self, record: MessageLogRecord) -> StoredMessage:
        stored = StoredMessage(id=str(uuid.uuid4()), **record.model_dump())
        self._messages[stored.id] = stored
        while len(self._messages) > self._max_pending:
            dropped = next(iter(self._messages))
            del self._messages[dropped]
            logger.warning(f"Dropped unanswered message {dropped}: pending limit reached")
        return stored

    def take_message(self, message_id: str) -> StoredMessage | None:
        """Remove and return a message so its answer is streamed once."""
        return self._messages.pop(message_id, None)

    def create_feature(self, payload: FeatureCreate) -> StoredFeature:
        feature = StoredFeature(
            id=str(uuid.uuid4()),
            created_at=datetime.now(timezone.utc),
            **payload.model_dump(),
        )
        self._features[feature.id] = feature
        return feature

    def get_feature(self, feature_id: str) -> StoredFeature | None:
        return self._features.get(feature_id)

    def list_features(self) -> list[StoredFeature]:
        """Features ordered by creation time, newest first."""
        # Reversed insertion order keeps same-instant rows newest first
        return sorted(
            reversed(list(self._features.values())),
            key=lambda f: f.created_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
