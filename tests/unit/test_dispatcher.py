"""Unit tests for OutboundDispatcher over both transport strategies."""

import asyncio
import json

import httpx
import pytest
from pytest_check import check

from devtwin.chat.dispatcher import FAILURE_NOTICE, TIMEOUT_NOTICE, OutboundDispatcher
from devtwin.chat.errors import TransportError
from devtwin.chat.state import ConversationState
from devtwin.chat.transports import (
    CompletionTransport,
    MessageLogTransport,
    ResponseSink,
    WebhookTransport,
)
from devtwin.models.schemas import (
    Author,
    CompletionRequest,
    DispatchStatus,
    FeatureContext,
)
from tests.conftest import FakeMessageLog, GatedTransport, QueuePushChannel

URL = "http://backend/webhook/chat"


def _webhook(handler) -> tuple[WebhookTransport, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookTransport(client, URL), client


def _assert_released(dispatcher: OutboundDispatcher) -> None:
    assert dispatcher.handle is None
    assert dispatcher.busy is False
    assert dispatcher.subscriptions.active == []
    assert dispatcher.subscriptions.opened_count == dispatcher.subscriptions.closed_count


class TestInputGuards:
    """Blank input and concurrent sends never create messages."""

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    async def test_blank_content_is_ignored(
        self, state: ConversationState, gated_transport: GatedTransport, content: str
    ) -> None:
        dispatcher = OutboundDispatcher(state, gated_transport)

        result = await dispatcher.send(state.session_id, content)

        assert result.status is DispatchStatus.IGNORED
        assert state.messages == ()
        assert gated_transport.requests == []

    async def test_second_send_rejected_while_in_flight(
        self, state: ConversationState, gated_transport: GatedTransport, drain
    ) -> None:
        dispatcher = OutboundDispatcher(state, gated_transport)
        first = asyncio.create_task(dispatcher.send(state.session_id, "first"))
        await drain()

        second = await dispatcher.send(state.session_id, "second")

        assert second.status is DispatchStatus.REJECTED
        assert len(state.messages) == 2
        assert len(gated_transport.requests) == 1

        gated_transport.gate.set()
        result = await first
        assert result.status is DispatchStatus.COMPLETED
        _assert_released(dispatcher)

    async def test_send_for_other_session_rejected(
        self, state: ConversationState, gated_transport: GatedTransport
    ) -> None:
        dispatcher = OutboundDispatcher(state, gated_transport)

        result = await dispatcher.send("some-other-session", "hello")

        assert result.status is DispatchStatus.REJECTED
        assert state.messages == ()


class TestWebhookDispatch:
    """Strategy A: one request, one reply."""

    async def test_default_feature_and_exact_reply(self, state: ConversationState) -> None:
        """No feature selected sends feat_id=default; reply finalizes verbatim."""
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "response": "It does X."})

        transport, client = _webhook(handler)
        async with client:
            dispatcher = OutboundDispatcher(state, transport)
            result = await dispatcher.send(state.session_id, "explain this function")

        assert bodies[0]["feat_id"] == "default"
        assert bodies[0]["sessionId"] == state.session_id
        assert result.status is DispatchStatus.COMPLETED

        user, assistant = state.messages
        with check:
            assert user.author is Author.USER
        with check:
            assert user.content == "explain this function"
        with check:
            assert user.id == result.user_message_id
        with check:
            assert assistant.id == result.assistant_message_id
        with check:
            assert assistant.content == "It does X."
        with check:
            assert assistant.finalized is True
        _assert_released(dispatcher)

    async def test_selected_feature_is_sent_and_attached(self, state: ConversationState) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "response": "ok"})

        feature = FeatureContext(id="feat-7", display_name="Checkout")
        transport, client = _webhook(handler)
        async with client:
            dispatcher = OutboundDispatcher(state, transport)
            await dispatcher.send(state.session_id, "hello", feature)

        assert bodies[0]["feat_id"] == "feat-7"
        assert all(m.feature == feature for m in state.messages)

    async def test_http_500_finalizes_failure_notice(self, state: ConversationState) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        transport, client = _webhook(handler)
        async with client:
            dispatcher = OutboundDispatcher(state, transport)
            result = await dispatcher.send(state.session_id, "hello")

        assert result.status is DispatchStatus.FAILED
        assistant = state.messages[-1]
        assert assistant.content == FAILURE_NOTICE
        assert assistant.content
        assert assistant.finalized is True
        _assert_released(dispatcher)

    async def test_user_message_appended_before_placeholder(
        self, state: ConversationState, gated_transport: GatedTransport, drain
    ) -> None:
        """While waiting, the timeline holds the user message then an empty bubble."""
        dispatcher = OutboundDispatcher(state, gated_transport)
        task = asyncio.create_task(dispatcher.send(state.session_id, "hello"))
        await drain()

        user, placeholder = state.messages
        assert user.author is Author.USER
        assert placeholder.author is Author.ASSISTANT
        assert placeholder.content == ""
        assert placeholder.finalized is False
        assert dispatcher.handle is not None
        assert dispatcher.handle.target_message_id == placeholder.id

        gated_transport.gate.set()
        await task

    async def test_unexpected_exception_is_contained(self, state: ConversationState) -> None:
        class BrokenTransport(CompletionTransport):
            async def dispatch(self, request: CompletionRequest, sink: ResponseSink) -> None:
                raise RuntimeError("bug")

        dispatcher = OutboundDispatcher(state, BrokenTransport())

        result = await dispatcher.send(state.session_id, "hello")

        assert result.status is DispatchStatus.FAILED
        assert state.messages[-1].content == FAILURE_NOTICE
        _assert_released(dispatcher)

    async def test_transport_returning_nothing_is_a_failure(self, state: ConversationState) -> None:
        """A transport that neither completes nor subscribes cannot strand the bubble."""

        class SilentTransport(CompletionTransport):
            async def dispatch(self, request: CompletionRequest, sink: ResponseSink) -> None:
                return None

        dispatcher = OutboundDispatcher(state, SilentTransport())

        result = await dispatcher.send(state.session_id, "hello")

        assert result.status is DispatchStatus.FAILED
        assert state.messages[-1].finalized is True
        _assert_released(dispatcher)

    async def test_cancelled_send_fails_placeholder(
        self, state: ConversationState, gated_transport: GatedTransport, drain
    ) -> None:
        dispatcher = OutboundDispatcher(state, gated_transport)
        task = asyncio.create_task(dispatcher.send(state.session_id, "hello"))
        await drain()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert state.messages[-1].content == FAILURE_NOTICE
        assert state.messages[-1].finalized is True
        _assert_released(dispatcher)

    async def test_can_send_again_after_completion(self, state: ConversationState) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            text = json.loads(request.content)["chatInput"]
            return httpx.Response(200, json={"success": True, "response": f"re: {text}"})

        transport, client = _webhook(handler)
        async with client:
            dispatcher = OutboundDispatcher(state, transport)
            await dispatcher.send(state.session_id, "one")
            await dispatcher.send(state.session_id, "two")

        assert [m.content for m in state.messages] == ["one", "re: one", "two", "re: two"]


class TestMessageLogDispatch:
    """Strategy B: write, then stream fragments from a subscription."""

    @pytest.fixture
    def dispatcher(
        self,
        state: ConversationState,
        message_log: FakeMessageLog,
        channel: QueuePushChannel,
    ) -> OutboundDispatcher:
        return OutboundDispatcher(state, MessageLogTransport(message_log, channel))

    async def test_fragments_concatenate_and_finalize_on_done(
        self, dispatcher: OutboundDispatcher, state: ConversationState, channel: QueuePushChannel, drain
    ) -> None:
        result = await dispatcher.send(state.session_id, "hello")
        assert result.status is DispatchStatus.STREAMING
        assert dispatcher.busy is True

        for chunk in ["It ", "does ", "X."]:
            channel.push("msg-1", chunk)
        channel.push("msg-1", done=True)
        await drain()

        assistant = state.get(result.assistant_message_id or "")
        assert assistant is not None
        assert assistant.content == "It does X."
        assert assistant.finalized is True
        _assert_released(dispatcher)

    async def test_stream_end_finalizes(
        self, dispatcher: OutboundDispatcher, state: ConversationState, channel: QueuePushChannel, drain
    ) -> None:
        await dispatcher.send(state.session_id, "hello")

        channel.push("msg-1", "answer")
        channel.end("msg-1")
        await drain()

        assert state.messages[-1].content == "answer"
        assert state.messages[-1].finalized is True
        _assert_released(dispatcher)

    async def test_fragment_after_done_is_ignored(
        self, dispatcher: OutboundDispatcher, state: ConversationState, channel: QueuePushChannel, drain
    ) -> None:
        await dispatcher.send(state.session_id, "hello")

        channel.push("msg-1", "answer", done=True)
        channel.push("msg-1", " trailing")
        await drain()

        assert state.messages[-1].content == "answer"

    async def test_channel_error_keeps_partial_and_appends_notice(
        self, dispatcher: OutboundDispatcher, state: ConversationState, channel: QueuePushChannel, drain
    ) -> None:
        await dispatcher.send(state.session_id, "hello")

        channel.push("msg-1", "partial")
        channel.break_channel("msg-1", TransportError("dropped"))
        await drain()

        assert state.messages[-1].content == f"partial\n\n{FAILURE_NOTICE}"
        assert state.messages[-1].finalized is True
        _assert_released(dispatcher)

    async def test_log_failure_finalizes_failure_notice(
        self, state: ConversationState, channel: QueuePushChannel
    ) -> None:
        dispatcher = OutboundDispatcher(
            state, MessageLogTransport(FakeMessageLog(fail=True), channel)
        )

        result = await dispatcher.send(state.session_id, "hello")

        assert result.status is DispatchStatus.FAILED
        assert state.messages[-1].content == FAILURE_NOTICE
        assert channel.listened == []
        _assert_released(dispatcher)

    async def test_timeout_without_content_fails(
        self, state: ConversationState, message_log: FakeMessageLog, channel: QueuePushChannel
    ) -> None:
        dispatcher = OutboundDispatcher(
            state, MessageLogTransport(message_log, channel), stream_timeout_seconds=0.02
        )

        await dispatcher.send(state.session_id, "hello")
        await asyncio.sleep(0.1)

        assert state.messages[-1].content == TIMEOUT_NOTICE
        assert state.messages[-1].finalized is True
        _assert_released(dispatcher)

    async def test_timeout_with_partial_content_finalizes(
        self, state: ConversationState, message_log: FakeMessageLog, channel: QueuePushChannel, drain
    ) -> None:
        dispatcher = OutboundDispatcher(
            state, MessageLogTransport(message_log, channel), stream_timeout_seconds=0.05
        )

        await dispatcher.send(state.session_id, "hello")
        channel.push("msg-1", "partial answer")
        await drain()
        await asyncio.sleep(0.15)

        assert state.messages[-1].content == "partial answer"
        assert state.messages[-1].finalized is True
        _assert_released(dispatcher)

    async def test_cancel_closes_subscription(
        self, dispatcher: OutboundDispatcher, state: ConversationState, channel: QueuePushChannel, drain
    ) -> None:
        await dispatcher.send(state.session_id, "hello")

        channel.push("msg-1", "partial")
        await drain()

        dispatcher.cancel()
        channel.push("msg-1", " late")
        await drain()

        assert state.messages[-1].content == "partial"
        assert state.messages[-1].finalized is True
        _assert_released(dispatcher)

    async def test_can_send_after_cancel(
        self, dispatcher: OutboundDispatcher, state: ConversationState, drain
    ) -> None:
        await dispatcher.send(state.session_id, "hello")
        dispatcher.cancel()

        result = await dispatcher.send(state.session_id, "again")

        assert result.status is DispatchStatus.STREAMING
        dispatcher.cancel()
        await drain()
