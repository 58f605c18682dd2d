"""Meta Llama 3 on Bedrock adapter.

Llama models take a single pre-rendered prompt string rather than a
message list, so the conversation is rendered with the Llama 3 chat
template. Tools and images are not supported and are dropped.
"""

from __future__ import annotations

import logging
from typing import Any

from bedrock_relay.adapters.base import StreamDelta, as_int, invocation_metrics
from bedrock_relay.errors import InvalidRequestError, VendorDecodeError
from bedrock_relay.images import ImageFetcher
from bedrock_relay.models import (
    ChatCompletion,
    ChatMessage,
    ChatRequest,
    Choice,
    Role,
    TextPart,
    Usage,
)

logger = logging.getLogger(__name__)

BEGIN_OF_TEXT = "<|begin_of_text|>"
END_OF_TURN = "<|eot_id|>"


def _header(role: str) -> str:
    return f"<|start_header_id|>{role}<|end_header_id|>\n\n"


def render_prompt(messages: list[ChatMessage]) -> str:
    """Render messages with the Llama 3 chat template.

    The prompt ends with an open assistant header so the model continues
    as the assistant.
    """
    parts = [BEGIN_OF_TEXT]
    for msg in messages:
        role = "ipython" if msg.role == Role.TOOL.value else msg.role
        parts.append(_header(role) + msg.string_content() + END_OF_TURN)
    parts.append(_header(Role.ASSISTANT.value))
    return "".join(parts)


class Llama3Adapter:
    """Adapter for the Meta Llama 3 model family."""

    # https://docs.aws.amazon.com/bedrock/latest/userguide/model-ids.html
    MODEL_IDS: dict[str, str] = {
        "llama3-8b-8192": "meta.llama3-8b-instruct-v1:0",
        "llama3-70b-8192": "meta.llama3-70b-instruct-v1:0",
        "llama3.1-8b": "meta.llama3-1-8b-instruct-v1:0",
        "llama3.1-70b": "meta.llama3-1-70b-instruct-v1:0",
        "llama3.2-1b": "us.meta.llama3-2-1b-instruct-v1:0",
        "llama3.2-3b": "us.meta.llama3-2-3b-instruct-v1:0",
    }

    def vendor_name(self) -> str:
        return "llama3"

    async def convert_request(
        self, request: ChatRequest | None, images: ImageFetcher | None = None
    ) -> dict[str, Any]:
        if request is None:
            raise InvalidRequestError("request is nil")
        if request.tools:
            logger.debug("llama3 does not support tools; dropping %d", len(request.tools))
        for msg in request.messages:
            if any(not isinstance(p, TextPart) for p in msg.parse_content()):
                logger.debug("llama3 is text-only; dropping non-text parts")
                break

        body: dict[str, Any] = {"prompt": render_prompt(request.messages)}
        if request.max_tokens is not None:
            body["max_gen_len"] = request.max_tokens
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.top_p is not None:
            body["top_p"] = request.top_p
        return body

    def convert_response(self, body: dict[str, Any], model: str) -> ChatCompletion:
        if not isinstance(body, dict):
            raise VendorDecodeError("response is not an object", vendor="llama3")
        generation = body.get("generation")
        return ChatCompletion(
            model=model,
            choices=[
                Choice(
                    message=ChatMessage(
                        role=Role.ASSISTANT.value,
                        content=generation if isinstance(generation, str) else "",
                    ),
                    finish_reason=body.get("stop_reason"),
                )
            ],
            usage=Usage.of(
                as_int(body.get("prompt_token_count")),
                as_int(body.get("generation_token_count")),
            ),
        )

    def parse_stream_event(self, payload: dict[str, Any]) -> StreamDelta:
        # {'generation': 'Hi', 'prompt_token_count': 15, 'generation_token_count': 1, 'stop_reason': None}
        input_tokens, output_tokens = invocation_metrics(payload)
        generation = payload.get("generation")
        return StreamDelta(
            text=generation if isinstance(generation, str) else None,
            finish_reason=payload.get("stop_reason"),
            input_tokens=max(input_tokens, as_int(payload.get("prompt_token_count"))),
            output_tokens=max(output_tokens, as_int(payload.get("generation_token_count"))),
        )
