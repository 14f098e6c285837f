"""Streaming reconciler: folds fragments into the assistant placeholder.

Fragments are applied in arrival order with no reordering buffer; a single
push channel delivers in order. Once a handle is finalized, failed or
discarded, anything addressed to it is a silent no-op.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from devtwin.chat.state import ConversationState
from devtwin.chat.subscriptions import SubscriptionRef

logger = logging.getLogger(__name__)


@dataclass
class StreamHandle:
    """Binds an in-flight response to its target message.

    Attributes:
        target_message_id: Id of the streaming assistant placeholder.
        created_at: When the response started.
        deadline: When any subscription for this response is torn down.
        subscription_ref: Push-channel subscription, if one was opened.
    """

    target_message_id: str
    created_at: datetime
    deadline: datetime
    subscription_ref: SubscriptionRef | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class StreamingReconciler:
    """Applies fragments, final payloads and failures to Conversation State."""

    def __init__(self, state: ConversationState) -> None:
        self._state = state
        self._live: set[str] = set()

    def open(self, target_message_id: str, timeout_seconds: float) -> StreamHandle:
        now = datetime.now(timezone.utc)
        handle = StreamHandle(
            target_message_id=target_message_id,
            created_at=now,
            deadline=now + timedelta(seconds=timeout_seconds),
        )
        self._live.add(handle.id)
        return handle

    def is_live(self, handle: StreamHandle) -> bool:
        """True while the handle's target is still a streaming message."""
        if handle.id not in self._live:
            return False
        target = self._state.get(handle.target_message_id)
        return target is not None and not target.finalized

    def apply_fragment(self, handle: StreamHandle, fragment: str) -> None:
        if not self.is_live(handle):
            logger.debug(f"Dropping fragment for released handle {handle.id}")
            return
        target = self._state.get(handle.target_message_id)
        if target is None or not fragment:
            return
        self._state.update(target.id, content=target.content + fragment)

    def finalize(self, handle: StreamHandle, final_content: str | None = None) -> None:
        """Mark the target immutable, optionally replacing accumulated content."""
        if not self.is_live(handle):
            self.discard(handle)
            return
        self._state.update(handle.target_message_id, content=final_content, finalized=True)
        self.discard(handle)

    def fail(self, handle: StreamHandle, error_text: str, keep_partial: bool = False) -> None:
        """Replace the target's content with an error notice and mark it immutable.

        With keep_partial, the notice is appended after content already streamed.
        """
        if not self.is_live(handle):
            self.discard(handle)
            return
        content = error_text
        target = self._state.get(handle.target_message_id)
        if keep_partial and target is not None and target.content:
            content = f"{target.content}\n\n{error_text}"
        self._state.update(handle.target_message_id, content=content, finalized=True)
        self.discard(handle)

    def discard(self, handle: StreamHandle) -> None:
        """Forget the handle without touching its message."""
        self._live.discard(handle.id)
