"""Chat session and streaming-response controller.

Responsibilities:
    - Durable session identity and the "new conversation" reset
    - Feature context selection for outbound messages
    - Conversation state with a single streaming placeholder
    - Dispatch over a webhook or a message log plus push channel
    - Reconciling fragments and releasing every subscription

Independent of the UI layer; the chat page only calls ChatController.
"""

from devtwin.chat.config import ChatConfig, TransportKind, get_chat_config
from devtwin.chat.controller import (
    ChatController,
    build_transport,
    create_chat_controller,
    create_http_client,
)
from devtwin.chat.dispatcher import FAILURE_NOTICE, TIMEOUT_NOTICE, OutboundDispatcher
from devtwin.chat.errors import CatalogError, TransportError
from devtwin.chat.features import FeatureCatalog, FeatureContextBinder, HttpFeatureCatalog
from devtwin.chat.reconciler import StreamHandle, StreamingReconciler
from devtwin.chat.session import SessionIdentityStore
from devtwin.chat.state import ConversationState, MessageFrozenError
from devtwin.chat.subscriptions import SubscriptionManager, SubscriptionRef
from devtwin.chat.transports import (
    CompletionTransport,
    HttpMessageLog,
    MessageLog,
    MessageLogTransport,
    PushChannel,
    ResponseSink,
    SsePushChannel,
    WebhookTransport,
)

__all__ = [
    "FAILURE_NOTICE",
    "TIMEOUT_NOTICE",
    "CatalogError",
    "ChatConfig",
    "ChatController",
    "CompletionTransport",
    "ConversationState",
    "FeatureCatalog",
    "FeatureContextBinder",
    "HttpFeatureCatalog",
    "HttpMessageLog",
    "MessageFrozenError",
    "MessageLog",
    "MessageLogTransport",
    "OutboundDispatcher",
    "PushChannel",
    "ResponseSink",
    "SessionIdentityStore",
    "SsePushChannel",
    "StreamHandle",
    "StreamingReconciler",
    "SubscriptionManager",
    "SubscriptionRef",
    "TransportError",
    "TransportKind",
    "WebhookTransport",
    "build_transport",
    "create_chat_controller",
    "create_http_client",
    "get_chat_config",
]
