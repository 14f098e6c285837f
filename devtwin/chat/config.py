"""Chat configuration with environment variable loading.

Pydantic-based configuration for the chat controller and its transports.
Every backend URL defaults to a path on API_BASE_URL so the development
backend works out of the box.
"""

import os
from enum import Enum

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_API_BASE_URL = "http://localhost:8000"


def _base_url() -> str:
    return os.getenv("API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/")


class TransportKind(str, Enum):
    """Which completion transport a deployment uses."""

    WEBHOOK = "webhook"
    MESSAGE_LOG = "message_log"


class ChatConfig(BaseModel):
    """Configuration for the chat controller.

    Attributes:
        transport: Completion transport strategy.
        completion_url: Webhook URL for synchronous completions.
        message_log_url: Insert URL of the durable message log.
        push_channel_url: SSE URL template; "{message_id}" is substituted.
        feature_catalog_url: Feature catalog read URL.
        backend_api_key: Optional key sent as apikey and bearer token.
        request_timeout_seconds: Timeout of a single backend request.
        stream_timeout_seconds: Lifetime cap of a push-channel subscription.
    """

    model_config = ConfigDict(validate_default=True)

    transport: TransportKind = Field(
        default_factory=lambda: TransportKind(os.getenv("DEVTWIN_TRANSPORT", "webhook")),
        description="Completion transport: webhook or message_log",
    )
    completion_url: str = Field(
        default_factory=lambda: os.getenv("COMPLETION_URL") or f"{_base_url()}/webhook/chat",
        description="Completion webhook URL",
    )
    message_log_url: str = Field(
        default_factory=lambda: os.getenv("MESSAGE_LOG_URL") or f"{_base_url()}/messages",
        description="Durable message log insert URL",
    )
    push_channel_url: str = Field(
        default_factory=lambda: (
            os.getenv("PUSH_CHANNEL_URL") or f"{_base_url()}/messages/{{message_id}}/stream"
        ),
        description="Push channel URL template",
    )
    feature_catalog_url: str = Field(
        default_factory=lambda: os.getenv("FEATURE_CATALOG_URL") or f"{_base_url()}/features",
        description="Feature catalog URL",
    )
    backend_api_key: str | None = Field(
        default_factory=lambda: os.getenv("BACKEND_API_KEY") or None,
        description="API key for the backend (None to send no auth headers)",
    )
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT_SECONDS", "120")),
        gt=0.0,
        description="Timeout for a single backend request",
    )
    stream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("STREAM_TIMEOUT_SECONDS", "300")),
        gt=0.0,
        description="Maximum lifetime of a streaming subscription",
    )

    @field_validator(
        "completion_url", "message_log_url", "push_channel_url", "feature_catalog_url"
    )
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that backend URLs are absolute http(s) URLs."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Backend URL must start with http:// or https://, got {v!r}")
        return v

    def auth_headers(self) -> dict[str, str]:
        """Headers authenticating requests to the backend."""
        if not self.backend_api_key:
            return {}
        return {
            "apikey": self.backend_api_key,
            "Authorization": f"Bearer {self.backend_api_key}",
        }


def get_chat_config() -> ChatConfig:
    """Create chat configuration from environment.

    Returns:
        Configured ChatConfig instance.

    Raises:
        ValueError: If a URL or timeout from the environment is invalid.
    """
    return ChatConfig()
