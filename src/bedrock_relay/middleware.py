"""Middleware hooks for the relay client.

Middleware can inspect or transform the canonical request before it is
translated and the canonical response after it is translated back.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from bedrock_relay.models import ChatCompletion, ChatRequest

logger = logging.getLogger(__name__)


@runtime_checkable
class Middleware(Protocol):
    """Protocol for request/response middleware."""

    async def before_request(self, request: ChatRequest) -> ChatRequest:
        """Transform or inspect a request before it is translated.

        Args:
            request: The canonical request.

        Returns:
            The (potentially modified) request to forward downstream.
        """
        ...

    async def after_response(self, response: ChatCompletion) -> ChatCompletion:
        """Transform or inspect a non-streaming response.

        Args:
            response: The canonical response.

        Returns:
            The (potentially modified) response to return upstream.
        """
        ...


class LoggingMiddleware:
    """Logs request metadata and response usage."""

    def __init__(self, log_level: int = logging.INFO) -> None:
        self._level = log_level

    async def before_request(self, request: ChatRequest) -> ChatRequest:
        logger.log(
            self._level,
            "Relay request: model=%s messages=%d tools=%d stream=%s",
            request.model,
            len(request.messages),
            len(request.tools),
            request.stream,
        )
        return request

    async def after_response(self, response: ChatCompletion) -> ChatCompletion:
        finish = response.choices[0].finish_reason if response.choices else None
        logger.log(
            self._level,
            "Relay response: id=%s model=%s finish=%s tokens=%d",
            response.id,
            response.model,
            finish,
            response.usage.total_tokens,
        )
        return response
