from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Sent as feat_id when no feature is selected
DEFAULT_FEATURE_ID = "default"


class Author(str, Enum):
    """Who wrote a message."""

    USER = "user"
    ASSISTANT = "assistant"


class DispatchStatus(str, Enum):
    """Outcome of a single send."""

    IGNORED = "ignored"
    REJECTED = "rejected"
    COMPLETED = "completed"
    STREAMING = "streaming"
    FAILED = "failed"


class FeatureContext(BaseModel):
    """A feature that scopes the backend's context retrieval.

    Attributes:
        id: Catalog identifier, sent as feat_id / feature_id.
        display_name: Human readable feature name.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str


class Message(BaseModel):
    """A single message in the conversation timeline.

    Messages are frozen. Streaming updates produce a new copy via
    model_copy, so a rendered list is never mutated underneath the UI.

    Attributes:
        id: Unique within a session, orders by creation time.
        content: Message text (markdown for the assistant).
        author: user or assistant.
        created_at: Creation timestamp (UTC).
        feature: Feature context attached when the message was sent.
        finalized: False only for an assistant message still streaming.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    content: str = ""
    author: Author
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    feature: FeatureContext | None = None
    finalized: bool = True

    @property
    def is_user(self) -> bool:
        return self.author is Author.USER


class CompletionRequest(BaseModel):
    """Request payload for the completion webhook.

    Field aliases match the backend's wire names.

    Attributes:
        chat_input: The user's message.
        feat_id: Selected feature id or "default".
        session_id: Conversation identifier.
    """

    model_config = ConfigDict(populate_by_name=True)

    chat_input: str = Field(..., min_length=1, alias="chatInput")
    feat_id: str = Field(DEFAULT_FEATURE_ID, min_length=1)
    session_id: str = Field(..., min_length=1, alias="sessionId")

    @field_validator("chat_input", mode="before")
    @classmethod
    def strip_chat_input(cls, v: str) -> str:
        """Strip whitespace from message before validation."""
        if isinstance(v, str):
            return v.strip()
        return v


class CompletionReply(BaseModel):
    """Single JSON reply from the completion webhook.

    Attributes:
        success: Whether the backend produced an answer.
        response: The answer text.
        reference_links: Optional links cited by the answer.
    """

    success: bool
    response: str = ""
    reference_links: list[str] | None = None


class MessageLogRecord(BaseModel):
    """Row inserted into the durable message log.

    Attributes:
        content: Message text.
        feature_id: Selected feature id or "default".
        is_user: Always true for outbound messages.
        timestamp: ISO 8601 creation time.
    """

    content: str = Field(..., min_length=1)
    feature_id: str = DEFAULT_FEATURE_ID
    is_user: bool = True
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FragmentEvent(BaseModel):
    """One push-channel event carrying a fragment of the answer.

    Attributes:
        chunk: Text to append to the streaming message.
        done: Set on the terminal event of a stream.
    """

    chunk: str = ""
    done: bool = False


class FeatureRecord(BaseModel):
    """Feature catalog row as served by the backend."""

    id: str
    feature_name: str = Field(..., min_length=1)
    created_at: datetime | None = None

    def to_context(self) -> FeatureContext:
        return FeatureContext(id=self.id, display_name=self.feature_name)


class DispatchResult(BaseModel):
    """Outcome of OutboundDispatcher.send.

    Attributes:
        status: What happened to the send.
        user_message_id: Id of the appended user message, if any.
        assistant_message_id: Id of the assistant placeholder, if any.
    """

    status: DispatchStatus
    user_message_id: str | None = None
    assistant_message_id: str | None = None
