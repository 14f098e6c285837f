"""Chat controller: one browser client's conversation.

Composes the session store, the feature binder and the dispatcher, and
owns the "new conversation" flow.
"""

import logging
from collections.abc import MutableMapping

import httpx

from devtwin.chat.config import ChatConfig, TransportKind, get_chat_config
from devtwin.chat.dispatcher import OutboundDispatcher
from devtwin.chat.features import FeatureContextBinder, HttpFeatureCatalog
from devtwin.chat.session import SessionIdentityStore
from devtwin.chat.state import ConversationState
from devtwin.chat.transports import (
    CompletionTransport,
    HttpMessageLog,
    MessageLogTransport,
    SsePushChannel,
    WebhookTransport,
)
from devtwin.models.schemas import DispatchResult

logger = logging.getLogger(__name__)


class ChatController:
    """Front door used by the chat page."""

    def __init__(
        self,
        session_store: SessionIdentityStore,
        features: FeatureContextBinder,
        transport: CompletionTransport,
        stream_timeout_seconds: float = 300.0,
    ) -> None:
        self._session_store = session_store
        self._features = features
        self._state = ConversationState(session_store.get_or_create_session_id())
        self._dispatcher = OutboundDispatcher(
            self._state,
            transport,
            stream_timeout_seconds=stream_timeout_seconds,
        )

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def features(self) -> FeatureContextBinder:
        return self._features

    @property
    def dispatcher(self) -> OutboundDispatcher:
        return self._dispatcher

    @property
    def busy(self) -> bool:
        """True while a response is in flight; the page disables send."""
        return self._dispatcher.busy

    async def send(self, content: str) -> DispatchResult:
        return await self._dispatcher.send(
            self.session_id,
            content,
            self._features.current(),
        )

    def new_conversation(self) -> str:
        """Start a fresh conversation and return its session id.

        Subscriptions of the previous session are closed before the
        timeline is cleared.
        """
        previous = self.session_id
        self._dispatcher.cancel()
        closed = self._dispatcher.subscriptions.close_all()
        session_id = self._session_store.reset_session()
        self._state.reset(session_id)
        logger.info(
            f"New conversation {session_id} (was {previous}, closed {closed} subscriptions)"
        )
        return session_id

    def close(self) -> None:
        """Release every open subscription, e.g. when the browser disconnects."""
        self._dispatcher.cancel()
        self._dispatcher.subscriptions.close_all()


def build_transport(config: ChatConfig, client: httpx.AsyncClient) -> CompletionTransport:
    """Create the completion transport selected by the configuration."""
    if config.transport is TransportKind.MESSAGE_LOG:
        return MessageLogTransport(
            HttpMessageLog(client, config.message_log_url),
            SsePushChannel(
                client,
                config.push_channel_url,
                connect_timeout=config.request_timeout_seconds,
            ),
        )
    return WebhookTransport(client, config.completion_url)


def create_chat_controller(
    storage: MutableMapping[str, str],
    client: httpx.AsyncClient,
    config: ChatConfig | None = None,
) -> ChatController:
    """Wire a controller for one browser client.

    Args:
        storage: Browser-scoped storage holding the session id.
        client: HTTP client shared by the catalog and the transport.
        config: Optional configuration. Loads from environment if not provided.

    Returns:
        A ready ChatController.
    """
    config = config or get_chat_config()
    return ChatController(
        SessionIdentityStore(storage),
        FeatureContextBinder(HttpFeatureCatalog(client, config.feature_catalog_url)),
        build_transport(config, client),
        stream_timeout_seconds=config.stream_timeout_seconds,
    )


def create_http_client(config: ChatConfig) -> httpx.AsyncClient:
    """HTTP client with the backend's auth headers and request timeout."""
    return httpx.AsyncClient(
        headers=config.auth_headers(),
        timeout=config.request_timeout_seconds,
    )
