"""Relay client: resolve, translate, invoke, translate back."""

from __future__ import annotations

import json
import logging
from typing import Any

from bedrock_relay.adapters.base import VendorAdapter
from bedrock_relay.config import RelaySettings
from bedrock_relay.errors import InvalidRequestError, VendorDecodeError
from bedrock_relay.images import HttpImageFetcher, ImageFetcher
from bedrock_relay.invoke import BedrockInvoker, Invoker
from bedrock_relay.middleware import Middleware
from bedrock_relay.models import ChatCompletion, ChatRequest, StreamItem
from bedrock_relay.registry import DEFAULT_REGISTRY, Registry
from bedrock_relay.streaming import ClosingStream, StreamTranslator, encode_sse

logger = logging.getLogger(__name__)


class RelayClient:
    """Routes canonical requests to the vendor adapter for their model.

    Each call is independent: translation state lives only for the
    duration of the call, so one client can serve concurrent requests.
    """

    def __init__(
        self,
        invoker: Invoker,
        registry: Registry | None = None,
        images: ImageFetcher | None = None,
        middleware: list[Middleware] | None = None,
    ) -> None:
        self._invoker = invoker
        self._registry = registry or DEFAULT_REGISTRY
        self._images = images
        self._middleware: list[Middleware] = middleware or []

    @classmethod
    def from_env(
        cls,
        settings: RelaySettings | None = None,
        middleware: list[Middleware] | None = None,
    ) -> RelayClient:
        """Create a client backed by Bedrock and an httpx image fetcher.

        Settings are read from the environment when not given; see
        ``RelaySettings.from_env``.
        """
        settings = settings or RelaySettings.from_env()
        return cls(
            invoker=BedrockInvoker(settings),
            images=HttpImageFetcher(timeout=settings.image_timeout),
            middleware=middleware,
        )

    @property
    def registry(self) -> Registry:
        return self._registry

    # -----------------------------------------------------------------
    # Translation stage
    # -----------------------------------------------------------------

    async def _prepare(
        self, request: ChatRequest | None
    ) -> tuple[ChatRequest, VendorAdapter, str, dict[str, Any]]:
        """Validate, resolve and translate; raises before any vendor call."""
        if request is None:
            raise InvalidRequestError("request is nil")
        if not request.messages:
            raise InvalidRequestError("'messages' must not be empty")
        for mw in self._middleware:
            request = await mw.before_request(request)
        adapter = self._registry.resolve(request.model)
        model_id = adapter.MODEL_IDS[request.model]
        body = await adapter.convert_request(request, self._images)
        return request, adapter, model_id, body

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    async def translate(self, request: ChatRequest | None) -> dict[str, Any]:
        """Return the vendor-native body for *request* without calling the vendor."""
        _, _, _, body = await self._prepare(request)
        return body

    async def complete(self, request: ChatRequest | None) -> ChatCompletion:
        """Run a non-streaming completion.

        Raises:
            InvalidRequestError: If the request is absent or empty.
            UnknownModelError: If no adapter serves the model.
            VendorCallError: If the vendor call fails.
            VendorDecodeError: If the vendor body is not valid JSON.
        """
        request, adapter, model_id, body = await self._prepare(request)
        raw = await self._invoker.invoke(model_id, body)
        try:
            decoded = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise VendorDecodeError(
                f"unmarshal response: {exc}", vendor=adapter.vendor_name()
            ) from exc

        response = adapter.convert_response(decoded, request.model)
        for mw in reversed(self._middleware):
            response = await mw.after_response(response)
        return response

    async def stream(
        self, request: ChatRequest | None
    ) -> ClosingStream[StreamItem]:
        """Run a streaming completion.

        Translation and the vendor call happen before this returns, so
        their errors surface here rather than mid-stream.

        Returns:
            An async iterator of chunks ending with one ``StreamDone``.
            Its ``aclose()`` releases the vendor stream even before the
            first read.
        """
        request, adapter, model_id, body = await self._prepare(request)
        events = await self._invoker.invoke_stream(model_id, body)
        translator = StreamTranslator(adapter, request.model)
        return translator.translate(events)

    async def stream_sse(self, request: ChatRequest | None) -> ClosingStream[str]:
        """Run a streaming completion rendered as ``text/event-stream`` frames."""
        return encode_sse(await self.stream(request))
