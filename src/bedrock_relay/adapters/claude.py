"""Anthropic Claude on Bedrock adapter."""

from __future__ import annotations

import json
import logging
from typing import Any

from bedrock_relay.adapters.base import (
    StreamDelta,
    as_int,
    invocation_metrics,
    object_schema,
    resolve_image,
)
from bedrock_relay.errors import InvalidRequestError, VendorDecodeError
from bedrock_relay.images import ImageFetcher
from bedrock_relay.models import (
    ChatCompletion,
    ChatMessage,
    ChatRequest,
    Choice,
    FunctionCallDelta,
    ImagePart,
    Role,
    TextPart,
    ToolCallDelta,
    Usage,
)

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"
DEFAULT_MAX_TOKENS = 4096

_FINISH_MAP: dict[str, str] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


def finish_reason(raw: str | None) -> str | None:
    """Map an Anthropic stop reason; unknown values pass through."""
    if raw is None:
        return None
    return _FINISH_MAP.get(raw, raw)


class ClaudeAdapter:
    """Adapter for the Anthropic Messages API as hosted on Bedrock."""

    # https://docs.aws.amazon.com/bedrock/latest/userguide/model-ids.html
    MODEL_IDS: dict[str, str] = {
        "claude-instant-1.2": "anthropic.claude-instant-v1",
        "claude-2.0": "anthropic.claude-v2",
        "claude-2.1": "anthropic.claude-v2:1",
        "claude-3-haiku-20240307": "anthropic.claude-3-haiku-20240307-v1:0",
        "claude-3-sonnet-20240229": "anthropic.claude-3-sonnet-20240229-v1:0",
        "claude-3-opus-20240229": "anthropic.claude-3-opus-20240229-v1:0",
        "claude-3-5-sonnet-20240620": "anthropic.claude-3-5-sonnet-20240620-v1:0",
        "claude-3-5-sonnet-20241022": "anthropic.claude-3-5-sonnet-20241022-v2:0",
        "claude-3-5-sonnet-latest": "anthropic.claude-3-5-sonnet-20241022-v2:0",
        "claude-3-5-haiku-20241022": "anthropic.claude-3-5-haiku-20241022-v1:0",
    }

    def vendor_name(self) -> str:
        return "claude"

    # -----------------------------------------------------------------
    # Request mapping
    # -----------------------------------------------------------------

    async def _map_messages(
        self, request: ChatRequest, images: ImageFetcher | None
    ) -> list[dict[str, Any]]:
        msgs: list[dict[str, Any]] = []
        for msg in request.messages:
            mapped = await self._map_message(msg, images)
            if mapped is None:
                continue
            # Consecutive tool results belong in one user turn
            if (
                msgs
                and mapped["role"] == "user"
                and msgs[-1]["role"] == "user"
                and _is_tool_result_message(msgs[-1])
                and _is_tool_result_message(mapped)
            ):
                msgs[-1]["content"].extend(mapped["content"])
                continue
            msgs.append(mapped)
        return msgs

    async def _map_message(
        self, msg: ChatMessage, images: ImageFetcher | None
    ) -> dict[str, Any] | None:
        if msg.role == Role.SYSTEM.value:
            return None  # system handled separately

        if msg.role == Role.TOOL.value:
            return {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": msg.tool_call_id or "",
                        "content": msg.string_content(),
                    }
                ],
            }

        content = await self._map_content_parts(msg, images)
        role = "assistant" if msg.role == Role.ASSISTANT.value else "user"
        if role == "assistant":
            for tc in msg.tool_calls:
                try:
                    args = json.loads(tc.function.arguments or "{}")
                except json.JSONDecodeError:
                    args = {}
                content.append(
                    {
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.function.name,
                        "input": args if isinstance(args, dict) else {},
                    }
                )
        return {"role": role, "content": content}

    async def _map_content_parts(
        self, msg: ChatMessage, images: ImageFetcher | None
    ) -> list[dict[str, Any]]:
        if msg.is_string_content():
            text = msg.string_content()
            return [{"type": "text", "text": text}] if text or not msg.tool_calls else []

        parts: list[dict[str, Any]] = []
        for part in msg.parse_content():
            if isinstance(part, TextPart):
                parts.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                resolved = await resolve_image(images, part.url)
                if resolved is not None:
                    fmt, data = resolved
                    parts.append(
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": f"image/{fmt}",
                                "data": data,
                            },
                        }
                    )
        return parts

    @staticmethod
    def _map_tools(request: ChatRequest) -> list[dict[str, Any]]:
        tools = []
        for tool in request.tools:
            schema = object_schema(tool.function.parameters)
            if schema is None:
                logger.debug("Skipping tool %s: parameters are not an object schema", tool.function.name)
                continue
            tools.append(
                {
                    "name": tool.function.name,
                    "description": tool.function.description,
                    "input_schema": schema,
                }
            )
        return tools

    async def convert_request(
        self, request: ChatRequest | None, images: ImageFetcher | None = None
    ) -> dict[str, Any]:
        if request is None:
            raise InvalidRequestError("request is nil")

        body: dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "messages": await self._map_messages(request, images),
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
        }
        system = "\n".join(
            m.string_content() for m in request.messages if m.role == Role.SYSTEM.value
        )
        if system:
            body["system"] = system
        tools = self._map_tools(request)
        if tools:
            body["tools"] = tools
            body["tool_choice"] = {"type": "auto"}
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.top_p is not None:
            body["top_p"] = request.top_p
        if request.top_k is not None:
            body["top_k"] = request.top_k
        if request.stop:
            body["stop_sequences"] = list(request.stop)
        return body

    # -----------------------------------------------------------------
    # Response mapping
    # -----------------------------------------------------------------

    def convert_response(self, body: dict[str, Any], model: str) -> ChatCompletion:
        if not isinstance(body, dict):
            raise VendorDecodeError("response is not an object", vendor="claude")

        text = ""
        for block in body.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text") or ""
                break

        usage = body.get("usage") if isinstance(body.get("usage"), dict) else {}
        return ChatCompletion(
            model=model,
            choices=[
                Choice(
                    message=ChatMessage(
                        role=body.get("role") or Role.ASSISTANT.value, content=text
                    ),
                    finish_reason=finish_reason(body.get("stop_reason")),
                )
            ],
            usage=Usage.of(
                as_int(usage.get("input_tokens")), as_int(usage.get("output_tokens"))
            ),
        )

    # -----------------------------------------------------------------
    # Stream mapping
    # -----------------------------------------------------------------

    def parse_stream_event(self, payload: dict[str, Any]) -> StreamDelta:
        delta = StreamDelta()
        delta.input_tokens, delta.output_tokens = invocation_metrics(payload)
        event_type = payload.get("type")

        if event_type == "message_start":
            message = payload.get("message") or {}
            delta.message_id = message.get("id") or None
            usage = message.get("usage") or {}
            delta.input_tokens = max(delta.input_tokens, as_int(usage.get("input_tokens")))

        elif event_type == "content_block_start":
            block = payload.get("content_block") or {}
            if block.get("type") == "tool_use":
                delta.tool_call = ToolCallDelta(
                    index=as_int(payload.get("index")),
                    id=block.get("id"),
                    type="function",
                    function=FunctionCallDelta(name=block.get("name"), arguments=""),
                )

        elif event_type == "content_block_delta":
            body = payload.get("delta") or {}
            if body.get("type") == "text_delta":
                delta.text = body.get("text") or ""
            elif body.get("type") == "input_json_delta":
                fragment = body.get("partial_json") or ""
                if not isinstance(fragment, str):
                    raise VendorDecodeError("partial_json is not a string", vendor="claude")
                delta.tool_call = ToolCallDelta(
                    index=as_int(payload.get("index")),
                    function=FunctionCallDelta(arguments=fragment),
                )

        elif event_type == "message_delta":
            delta.finish_reason = finish_reason((payload.get("delta") or {}).get("stop_reason"))
            usage = payload.get("usage") or {}
            delta.output_tokens = max(delta.output_tokens, as_int(usage.get("output_tokens")))

        # content_block_stop, message_stop and ping carry nothing else
        return delta


def _is_tool_result_message(msg: dict[str, Any]) -> bool:
    """Check if a mapped message contains only tool_result content blocks."""
    content = msg.get("content")
    if not isinstance(content, list) or not content:
        return False
    return all(
        isinstance(part, dict) and part.get("type") == "tool_result" for part in content
    )
