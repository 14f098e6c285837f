"""Completion transports and the backend resources they talk to.

Two interchangeable strategies implement CompletionTransport:

1. **WebhookTransport** - one POST, one JSON reply, finalized in one step.
2. **MessageLogTransport** - write the user message to a durable log, then
   subscribe to a push channel scoped to the returned id and stream
   fragments into the placeholder.

Transports only talk to the backend. They report results through the
ResponseSink the dispatcher hands them and signal every failure by raising
TransportError; the dispatcher owns reconciliation and cleanup.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx
from pydantic import ValidationError

from devtwin.chat.errors import TransportError
from devtwin.chat.subscriptions import SubscriptionRef
from devtwin.models.schemas import (
    CompletionReply,
    CompletionRequest,
    FragmentEvent,
    MessageLogRecord,
)

logger = logging.getLogger(__name__)


def format_reply(response: str, reference_links: list[str] | None = None) -> str:
    """Append a markdown reference section to a reply when links are present."""
    links = [link.strip() for link in reference_links or [] if link and link.strip()]
    if not links:
        return response
    items = "\n".join(f"- [{link}]({link})" for link in links)
    return f"{response}\n\n**References**\n{items}"


class PushChannel(ABC):
    """A push channel delivering fragment events for one scope."""

    @abstractmethod
    def listen(self, scope: str) -> AsyncIterator[FragmentEvent]:
        """Yield events for the scope until the stream ends.

        Raises:
            TransportError: If the channel cannot be opened or sends garbage.
        """


class ResponseSink(ABC):
    """Where a transport delivers the answer for one in-flight send."""

    @abstractmethod
    def complete(self, final_content: str | None = None) -> None:
        """Finalize the answer, optionally with its complete content."""

    @abstractmethod
    def subscribe(self, channel: PushChannel, scope: str) -> SubscriptionRef:
        """Stream the answer from a push channel in the background."""


class CompletionTransport(ABC):
    """Strategy for getting an answer from the completion backend."""

    @abstractmethod
    async def dispatch(self, request: CompletionRequest, sink: ResponseSink) -> None:
        """Send the request and route the answer into the sink.

        Raises:
            TransportError: If the backend cannot be reached or misbehaves.
        """


class WebhookTransport(CompletionTransport):
    """Synchronous completion: one request, one reply, no fragments."""

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self._url = url

    async def dispatch(self, request: CompletionRequest, sink: ResponseSink) -> None:
        try:
            response = await self._client.post(
                self._url,
                json=request.model_dump(by_alias=True),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Connection failed: {e}") from e

        try:
            reply = CompletionReply.model_validate_json(response.content)
        except ValidationError as e:
            raise TransportError(f"Malformed completion reply: {e}") from e

        if not reply.success:
            raise TransportError("Completion backend reported failure")

        logger.info(f"Completion received for session {request.session_id}")
        sink.complete(format_reply(reply.response, reply.reference_links))


class MessageLog(ABC):
    """Durable log the asynchronous backend watches for new messages."""

    @abstractmethod
    async def insert(self, record: MessageLogRecord) -> str:
        """Store a record and return its backend-assigned id.

        Raises:
            TransportError: If the insert fails or returns no id.
        """


class HttpMessageLog(MessageLog):
    """Message log behind a REST insert endpoint (PostgREST-style replies)."""

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self._url = url

    async def insert(self, record: MessageLogRecord) -> str:
        try:
            response = await self._client.post(
                self._url,
                json=record.model_dump(mode="json"),
                headers={"Prefer": "return=representation"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"Message log insert failed: HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Connection failed: {e}") from e
        except ValueError as e:
            raise TransportError(f"Message log returned invalid JSON: {e}") from e

        # PostgREST returns the inserted rows as a list
        if isinstance(data, list) and data:
            data = data[0]
        message_id = data.get("id") if isinstance(data, dict) else None
        if message_id is None or message_id == "":
            raise TransportError("Message log insert returned no id")
        return str(message_id)


class SsePushChannel(PushChannel):
    """Push channel consumed as Server-Sent Events.

    The URL template may name ``{message_id}`` to scope the channel per
    message, or be a fixed well-known topic.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url_template: str,
        connect_timeout: float = 120.0,
    ) -> None:
        self._client = client
        self._url_template = url_template
        self._connect_timeout = connect_timeout

    async def listen(self, scope: str) -> AsyncIterator[FragmentEvent]:
        url = self._url_template.format(message_id=scope)
        try:
            async with self._client.stream(
                "GET",
                url,
                headers={"Accept": "text/event-stream"},
                # Reads wait for the next fragment; the subscription's own
                # lifetime bounds how long that can take.
                timeout=httpx.Timeout(self._connect_timeout, read=None),
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    payload = line[5:].removeprefix(" ")
                    try:
                        event = FragmentEvent.model_validate_json(payload)
                    except ValidationError as e:
                        raise TransportError(f"Malformed fragment event: {e}") from e
                    yield event
        except httpx.HTTPStatusError as e:
            raise TransportError(f"Push channel returned HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Push channel connection failed: {e}") from e


class MessageLogTransport(CompletionTransport):
    """Asynchronous completion: write to the message log, then subscribe."""

    def __init__(self, message_log: MessageLog, channel: PushChannel) -> None:
        self._message_log = message_log
        self._channel = channel

    async def dispatch(self, request: CompletionRequest, sink: ResponseSink) -> None:
        record = MessageLogRecord(content=request.chat_input, feature_id=request.feat_id)
        message_id = await self._message_log.insert(record)
        logger.info(f"Logged message {message_id} for session {request.session_id}")
        sink.subscribe(self._channel, message_id)
