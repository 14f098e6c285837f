"""Pydantic models shared by the chat core, the transports and the backend.

Models:
    - Message: one entry of the conversation timeline
    - FeatureContext: a selectable feature scoping the assistant's context
    - CompletionRequest / CompletionReply: webhook request and reply
    - MessageLogRecord: durable message log insert
    - FragmentEvent: one push-channel event
    - FeatureRecord: feature catalog row
    - DispatchResult: outcome of a send
"""

from devtwin.models.schemas import (
    DEFAULT_FEATURE_ID,
    Author,
    CompletionReply,
    CompletionRequest,
    DispatchResult,
    DispatchStatus,
    FeatureContext,
    FeatureRecord,
    FragmentEvent,
    Message,
    MessageLogRecord,
)

__all__ = [
    "DEFAULT_FEATURE_ID",
    "Author",
    "CompletionReply",
    "CompletionRequest",
    "DispatchResult",
    "DispatchStatus",
    "FeatureContext",
    "FeatureRecord",
    "FragmentEvent",
    "Message",
    "MessageLogRecord",
]
