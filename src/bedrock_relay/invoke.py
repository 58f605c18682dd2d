"""Invocation boundary: calling the vendor.

Defines the vendor stream event union consumed by the stream translator,
the ``Invoker`` protocol the client depends on, and ``BedrockInvoker``,
the default implementation on top of the boto3 ``bedrock-runtime`` client.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from bedrock_relay.config import RelaySettings
from bedrock_relay.errors import (
    RequestTimeoutError,
    VendorCallError,
    error_from_status,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Vendor stream events (closed union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChunkEvent:
    """A content chunk; ``payload`` is the raw JSON bytes from the vendor."""

    payload: bytes


@dataclass(frozen=True)
class UnknownEvent:
    """A stream member whose tag the relay does not recognize."""

    tag: str


VendorStreamEvent = ChunkEvent | UnknownEvent


def to_vendor_event(raw: dict[str, Any]) -> VendorStreamEvent:
    """Classify one raw boto3 event-stream member."""
    chunk = raw.get("chunk")
    if isinstance(chunk, dict):
        return ChunkEvent(payload=chunk.get("bytes") or b"")
    return UnknownEvent(tag=next(iter(raw), "") if raw else "")


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class EventStream(Protocol):
    """Async iterator of vendor events that must be closed by the consumer."""

    def __aiter__(self) -> AsyncIterator[VendorStreamEvent]: ...

    async def __anext__(self) -> VendorStreamEvent: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class Invoker(Protocol):
    """Performs the authenticated vendor call."""

    async def invoke(self, model_id: str, body: dict[str, Any]) -> bytes:
        """Call the model once and return the raw response body."""
        ...

    async def invoke_stream(self, model_id: str, body: dict[str, Any]) -> EventStream:
        """Call the model in streaming mode and return its event stream."""
        ...


# ---------------------------------------------------------------------------
# Bedrock
# ---------------------------------------------------------------------------


def _translate_error(exc: Exception, operation: str) -> VendorCallError:
    """Map a botocore exception to a VendorCallError subclass."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return error_from_status(
            status,
            error.get("Message") or str(exc),
            vendor="bedrock",
            operation=operation,
            raw=error or None,
        )
    if isinstance(exc, (ReadTimeoutError, ConnectTimeoutError)):
        return RequestTimeoutError(str(exc), vendor="bedrock", operation=operation)
    return VendorCallError(str(exc), vendor="bedrock", operation=operation)


class BedrockEventStream:
    """Wraps a boto3 ``EventStream``, reading it off the event loop."""

    def __init__(self, stream: Any, operation: str) -> None:
        self._stream = stream
        self._iter = iter(stream)
        self._operation = operation
        self._closed = False

    def __aiter__(self) -> BedrockEventStream:
        return self

    async def __anext__(self) -> VendorStreamEvent:
        if self._closed:
            raise StopAsyncIteration
        try:
            raw = await asyncio.to_thread(next, self._iter, None)
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, self._operation) from exc
        if raw is None:
            raise StopAsyncIteration
        return to_vendor_event(raw)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self._stream.close)


class BedrockInvoker:
    """Invoker backed by the boto3 ``bedrock-runtime`` client."""

    def __init__(
        self,
        settings: RelaySettings | None = None,
        client: Any = None,
    ) -> None:
        self._settings = settings or RelaySettings()
        self._client = client or self._make_client(self._settings)

    @staticmethod
    def _make_client(settings: RelaySettings) -> Any:
        session_kwargs: dict[str, Any] = {}
        if settings.aws_profile:
            session_kwargs["profile_name"] = settings.aws_profile
        session = boto3.Session(**session_kwargs)
        # Retries are the caller's policy, not the relay's
        config = Config(
            read_timeout=settings.read_timeout,
            connect_timeout=settings.connect_timeout,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        return session.client(
            "bedrock-runtime", region_name=settings.aws_region, config=config
        )

    async def invoke(self, model_id: str, body: dict[str, Any]) -> bytes:
        operation = "InvokeModel"
        logger.debug("%s model=%s", operation, model_id)
        try:
            resp = await asyncio.to_thread(
                self._client.invoke_model,
                modelId=model_id,
                accept="application/json",
                contentType="application/json",
                body=json.dumps(body).encode("utf-8"),
            )
            return await asyncio.to_thread(resp["body"].read)
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, operation) from exc

    async def invoke_stream(self, model_id: str, body: dict[str, Any]) -> BedrockEventStream:
        operation = "InvokeModelWithResponseStream"
        logger.debug("%s model=%s", operation, model_id)
        try:
            resp = await asyncio.to_thread(
                self._client.invoke_model_with_response_stream,
                modelId=model_id,
                accept="application/json",
                contentType="application/json",
                body=json.dumps(body).encode("utf-8"),
            )
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, operation) from exc
        return BedrockEventStream(resp["body"], operation)
