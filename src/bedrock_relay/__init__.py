"""Bedrock Relay - OpenAI-shaped chat completions over AWS Bedrock models."""

from __future__ import annotations

from bedrock_relay.client import RelayClient
from bedrock_relay.config import RelaySettings
from bedrock_relay.errors import (
    AccessDeniedError,
    AuthenticationError,
    ConfigurationError,
    ImageFetchError,
    InvalidRequestError,
    NotFoundError,
    RateLimitError,
    RelayError,
    RequestTimeoutError,
    ServerError,
    UnknownModelError,
    UnsupportedVendorEventError,
    VendorCallError,
    VendorDecodeError,
    VendorError,
)
from bedrock_relay.models import (
    ChatCompletion,
    ChatCompletionChunk,
    ChatMessage,
    ChatRequest,
    StreamDone,
    Tool,
    Usage,
)
from bedrock_relay.registry import DEFAULT_REGISTRY, Registry, resolve
from bedrock_relay.streaming import ClosingStream, StreamCollector, StreamTranslator, encode_sse

__all__ = [
    "RelayClient",
    "RelaySettings",
    # Registry
    "DEFAULT_REGISTRY",
    "Registry",
    "resolve",
    # Streaming
    "ClosingStream",
    "StreamCollector",
    "StreamTranslator",
    "encode_sse",
    # Errors
    "AccessDeniedError",
    "AuthenticationError",
    "ConfigurationError",
    "ImageFetchError",
    "InvalidRequestError",
    "NotFoundError",
    "RateLimitError",
    "RelayError",
    "RequestTimeoutError",
    "ServerError",
    "UnknownModelError",
    "UnsupportedVendorEventError",
    "VendorCallError",
    "VendorDecodeError",
    "VendorError",
    # Models
    "ChatCompletion",
    "ChatCompletionChunk",
    "ChatMessage",
    "ChatRequest",
    "StreamDone",
    "Tool",
    "Usage",
]
