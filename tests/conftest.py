"""Pytest fixtures and shared test configuration.

Provides reusable fixtures and in-memory fakes for unit and integration tests.

Fixtures:
    - mock_session_id: Consistent session ID for tests
    - storage / session_store: Browser storage stand-in and the store over it
    - state: Conversation state for the mock session
    - channel / message_log: In-memory push channel and message log
    - backend_app / async_client: Development backend and an ASGI client for it
    - drain: Lets background subscription tasks run
"""

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable

import pytest
from httpx import ASGITransport, AsyncClient

from devtwin.api import create_app
from devtwin.chat.errors import TransportError
from devtwin.chat.session import SESSION_STORAGE_KEY, SessionIdentityStore
from devtwin.chat.state import ConversationState
from devtwin.chat.transports import (
    CompletionTransport,
    MessageLog,
    PushChannel,
    ResponseSink,
)
from devtwin.models.schemas import CompletionRequest, FragmentEvent, MessageLogRecord

_END = object()


class QueuePushChannel(PushChannel):
    """Push channel fed by the test through per-scope queues."""

    def __init__(self) -> None:
        self._queues: dict[str, asyncio.Queue] = {}
        self.listened: list[str] = []

    def _queue(self, scope: str) -> asyncio.Queue:
        return self._queues.setdefault(scope, asyncio.Queue())

    def push(self, scope: str, chunk: str = "", done: bool = False) -> None:
        self._queue(scope).put_nowait(FragmentEvent(chunk=chunk, done=done))

    def end(self, scope: str) -> None:
        self._queue(scope).put_nowait(_END)

    def break_channel(self, scope: str, error: Exception) -> None:
        self._queue(scope).put_nowait(error)

    async def listen(self, scope: str) -> AsyncIterator[FragmentEvent]:
        self.listened.append(scope)
        queue = self._queue(scope)
        while True:
            item = await queue.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item


class FakeMessageLog(MessageLog):
    """Message log that hands out sequential ids."""

    def __init__(self, fail: bool = False, gate: asyncio.Event | None = None) -> None:
        self.records: list[MessageLogRecord] = []
        self.fail = fail
        self.gate = gate

    async def insert(self, record: MessageLogRecord) -> str:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise TransportError("Message log unavailable")
        self.records.append(record)
        return f"msg-{len(self.records)}"


class GatedTransport(CompletionTransport):
    """Webhook-like transport that answers only when the test opens the gate."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.requests: list[CompletionRequest] = []

    async def dispatch(self, request: CompletionRequest, sink: ResponseSink) -> None:
        self.requests.append(request)
        await self.gate.wait()
        sink.complete(f"echo: {request.chat_input}")


@pytest.fixture
def mock_session_id() -> str:
    """Generate consistent session ID for testing.

    Returns:
        Predictable session ID for test assertions.
    """
    return "test-session-12345"


@pytest.fixture
def storage(mock_session_id: str) -> dict[str, str]:
    """Browser storage already holding the mock session id."""
    return {SESSION_STORAGE_KEY: mock_session_id}


@pytest.fixture
def session_store(storage: dict[str, str]) -> SessionIdentityStore:
    return SessionIdentityStore(storage)


@pytest.fixture
def state(mock_session_id: str) -> ConversationState:
    return ConversationState(mock_session_id)


@pytest.fixture
def channel() -> QueuePushChannel:
    return QueuePushChannel()


@pytest.fixture
def message_log() -> FakeMessageLog:
    return FakeMessageLog()


@pytest.fixture
def gated_transport() -> GatedTransport:
    return GatedTransport()


@pytest.fixture
def drain() -> Callable[[], Awaitable[None]]:
    """Return a coroutine function that yields to pending tasks a few times."""

    async def _drain() -> None:
        for _ in range(10):
            await asyncio.sleep(0)

    return _drain


@pytest.fixture
def backend_app(monkeypatch: pytest.MonkeyPatch):
    """Fresh development backend with streaming delays disabled."""
    monkeypatch.setattr("devtwin.api.chat.FRAGMENT_DELAY_SECONDS", 0)
    return create_app()


@pytest.fixture
async def async_client(backend_app) -> AsyncGenerator[AsyncClient]:
    """Create async HTTP client for API testing.

    Yields:
        Configured AsyncClient for making test requests.
    """
    transport = ASGITransport(app=backend_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
