"""Outbound dispatcher: sends a user message and owns its in-flight response.

A send appends the user message, then an empty assistant placeholder,
binds a StreamHandle to the placeholder and hands the request to exactly
one CompletionTransport. Whatever happens next (a single reply, a stream
of fragments, a failure, a timeout, the sending task being cancelled),
the placeholder ends up finalized and the handle and any subscription are
released.
"""

import asyncio
import logging

from devtwin.chat.errors import TransportError
from devtwin.chat.reconciler import StreamHandle, StreamingReconciler
from devtwin.chat.state import ConversationState
from devtwin.chat.subscriptions import SubscriptionManager, SubscriptionRef
from devtwin.chat.transports import CompletionTransport, PushChannel, ResponseSink
from devtwin.models.schemas import (
    DEFAULT_FEATURE_ID,
    CompletionRequest,
    DispatchResult,
    DispatchStatus,
    FeatureContext,
    FragmentEvent,
)

logger = logging.getLogger(__name__)

FAILURE_NOTICE = "Sorry, something went wrong while getting a response. Please try again."
TIMEOUT_NOTICE = "The response timed out. Please try again."


class _HandleSink(ResponseSink):
    """ResponseSink bound to one StreamHandle."""

    def __init__(self, dispatcher: "OutboundDispatcher", handle: StreamHandle) -> None:
        self._dispatcher = dispatcher
        self._handle = handle

    def complete(self, final_content: str | None = None) -> None:
        self._dispatcher._finish(self._handle, final_content)

    def subscribe(self, channel: PushChannel, scope: str) -> SubscriptionRef:
        return self._dispatcher._subscribe(self._handle, channel, scope)


class OutboundDispatcher:
    """Sends user messages and enforces one in-flight response per session."""

    def __init__(
        self,
        state: ConversationState,
        transport: CompletionTransport,
        reconciler: StreamingReconciler | None = None,
        subscriptions: SubscriptionManager | None = None,
        stream_timeout_seconds: float = 300.0,
    ) -> None:
        self._state = state
        self._transport = transport
        self._reconciler = reconciler or StreamingReconciler(state)
        self._subscriptions = subscriptions or SubscriptionManager()
        self._stream_timeout = stream_timeout_seconds
        self._handle: StreamHandle | None = None

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._subscriptions

    @property
    def handle(self) -> StreamHandle | None:
        """The in-flight StreamHandle, or None when idle."""
        return self._handle

    @property
    def busy(self) -> bool:
        return self._handle is not None

    async def send(
        self,
        session_id: str,
        content: str,
        feature_context: FeatureContext | None = None,
    ) -> DispatchResult:
        """Send a user message and route the answer into a new placeholder.

        Returns once the answer is finalized (webhook) or its subscription
        is open (message log). Blank content is ignored; a second send
        while a response is in flight is rejected.
        """
        if not content.strip():
            return DispatchResult(status=DispatchStatus.IGNORED)
        if self._handle is not None:
            logger.warning("Rejected send: a response is already in flight")
            return DispatchResult(status=DispatchStatus.REJECTED)
        if session_id != self._state.session_id:
            logger.warning(f"Rejected send for inactive session {session_id}")
            return DispatchResult(status=DispatchStatus.REJECTED)

        request = CompletionRequest(
            chat_input=content,
            feat_id=feature_context.id if feature_context else DEFAULT_FEATURE_ID,
            session_id=session_id,
        )

        user_message = self._state.add_user_message(content, feature_context)
        placeholder = self._state.add_placeholder(feature_context)
        handle = self._reconciler.open(placeholder.id, self._stream_timeout)
        self._handle = handle

        failed = False
        try:
            await self._transport.dispatch(request, _HandleSink(self, handle))
        except TransportError as e:
            logger.warning(f"Completion failed for session {session_id}: {e}")
            failed = True
        except asyncio.CancelledError:
            self._abort(handle, FAILURE_NOTICE)
            raise
        except Exception:
            logger.exception(f"Unexpected error dispatching message for session {session_id}")
            failed = True
        else:
            if self._reconciler.is_live(handle) and handle.subscription_ref is None:
                logger.warning("Transport returned without an answer or a subscription")
                failed = True

        if failed:
            self._abort(handle, FAILURE_NOTICE)
            status = DispatchStatus.FAILED
        elif self._reconciler.is_live(handle):
            status = DispatchStatus.STREAMING
        elif self._state.get(placeholder.id) is None:
            # Conversation was reset while the request was outstanding
            status = DispatchStatus.FAILED
        else:
            status = DispatchStatus.COMPLETED

        return DispatchResult(
            status=status,
            user_message_id=user_message.id,
            assistant_message_id=placeholder.id,
        )

    def cancel(self) -> None:
        """Stop waiting for the in-flight response.

        The placeholder keeps whatever already streamed and is finalized.
        The backend may still finish; anything it delivers is ignored.
        """
        handle = self._handle
        if handle is None:
            return
        logger.info(f"Cancelling in-flight response for {handle.target_message_id}")
        self._finish(handle)

    def _subscribe(self, handle: StreamHandle, channel: PushChannel, scope: str) -> SubscriptionRef:
        if not self._reconciler.is_live(handle):
            # Reset or cancel won the race with the message log insert
            raise TransportError(f"Response for {handle.target_message_id} is no longer awaited")

        def on_event(event: FragmentEvent) -> None:
            self._reconciler.apply_fragment(handle, event.chunk)
            if event.done:
                self._finish(handle)

        def on_end() -> None:
            self._finish(handle)

        def on_error(error: Exception) -> None:
            logger.warning(f"Stream for {handle.target_message_id} failed: {error}")
            self._abort(handle, FAILURE_NOTICE, keep_partial=True)

        def on_expire() -> None:
            target = self._state.get(handle.target_message_id)
            if target is not None and target.content:
                self._finish(handle)
            else:
                self._abort(handle, TIMEOUT_NOTICE)

        ref = self._subscriptions.open(
            scope,
            channel.listen(scope),
            on_event=on_event,
            on_end=on_end,
            on_error=on_error,
        )
        handle.subscription_ref = ref
        self._subscriptions.close_after(ref, self._stream_timeout, on_expire=on_expire)
        return ref

    def _finish(self, handle: StreamHandle, final_content: str | None = None) -> None:
        self._reconciler.finalize(handle, final_content)
        self._release(handle)

    def _abort(self, handle: StreamHandle, notice: str, keep_partial: bool = False) -> None:
        self._reconciler.fail(handle, notice, keep_partial=keep_partial)
        self._release(handle)

    def _release(self, handle: StreamHandle) -> None:
        if handle.subscription_ref is not None:
            self._subscriptions.close(handle.subscription_ref)
        if self._handle is handle:
            self._handle = None
