"""Conversation state for the active session.

The message list is an immutable tuple of frozen messages. Every change
builds a new tuple and swaps it in, then notifies listeners, so the
renderer always sees a complete snapshot.
"""

import logging
import time
from collections.abc import Callable

from devtwin.models.schemas import Author, FeatureContext, Message

logger = logging.getLogger(__name__)

StateListener = Callable[["ConversationState"], None]


class MessageFrozenError(Exception):
    """Raised when updating a user message or a finalized assistant message."""

    pass


class ConversationState:
    """Ordered messages of one session plus the streaming placeholder."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._messages: tuple[Message, ...] = ()
        self._listeners: list[StateListener] = []
        self._last_stamp = 0

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    @property
    def streaming(self) -> Message | None:
        """The non-finalized assistant message, if one exists."""
        for message in reversed(self._messages):
            if not message.finalized:
                return message
        return None

    def get(self, message_id: str) -> Message | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def add_user_message(self, content: str, feature: FeatureContext | None = None) -> Message:
        message = Message(
            id=self._next_id(),
            content=content,
            author=Author.USER,
            feature=feature,
        )
        self._commit(self._messages + (message,))
        return message

    def add_placeholder(self, feature: FeatureContext | None = None) -> Message:
        """Append an empty, non-finalized assistant message.

        Raises:
            MessageFrozenError: If another assistant message is still streaming.
        """
        if self.streaming is not None:
            raise MessageFrozenError("An assistant message is already streaming")
        message = Message(
            id=self._next_id(),
            author=Author.ASSISTANT,
            feature=feature,
            finalized=False,
        )
        self._commit(self._messages + (message,))
        return message

    def update(
        self,
        message_id: str,
        *,
        content: str | None = None,
        finalized: bool | None = None,
    ) -> Message:
        """Replace a streaming message with an updated copy.

        Raises:
            KeyError: If no message has this id.
            MessageFrozenError: If the message is a user message or finalized.
        """
        current = self.get(message_id)
        if current is None:
            raise KeyError(message_id)
        if current.finalized:
            raise MessageFrozenError(f"Message {message_id} is immutable")

        changes: dict[str, object] = {}
        if content is not None:
            changes["content"] = content
        if finalized is not None:
            changes["finalized"] = finalized
        updated = current.model_copy(update=changes)
        self._commit(tuple(updated if m.id == message_id else m for m in self._messages))
        return updated

    def reset(self, session_id: str) -> None:
        """Switch to another session, replacing the whole list atomically."""
        self._session_id = session_id
        self._commit(())

    def _next_id(self) -> str:
        # Nanosecond stamps, forced strictly increasing within the session
        stamp = max(time.time_ns(), self._last_stamp + 1)
        self._last_stamp = stamp
        return str(stamp)

    def _commit(self, messages: tuple[Message, ...]) -> None:
        self._messages = messages
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Conversation state listener failed")
