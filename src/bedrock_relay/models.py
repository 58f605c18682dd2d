"""Canonical (OpenAI-shaped) data models for the relay.

Defines the provider-neutral chat-completion request, the non-streaming
response, the streamed chunk format, and the terminal stream sentinel.
Vendor adapters translate to and from these types; nothing here knows
about any particular model host.
"""

from __future__ import annotations

import enum
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from bedrock_relay.errors import InvalidRequestError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(str, enum.Enum):
    """Message roles following the standard chat-completion model."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContentType(str, enum.Enum):
    """Discriminator for the content part tagged union."""

    TEXT = "text"
    IMAGE_URL = "image_url"
    VIDEO_URL = "video_url"


# ---------------------------------------------------------------------------
# Content Parts (Tagged Union)
# ---------------------------------------------------------------------------


@dataclass
class TextPart:
    """Plain text content."""

    type: ContentType = field(default=ContentType.TEXT, init=False)
    text: str = ""


@dataclass
class ImagePart:
    """Image reference by URL (``https://`` or ``data:``)."""

    type: ContentType = field(default=ContentType.IMAGE_URL, init=False)
    url: str = ""
    detail: str | None = None


@dataclass
class VideoPart:
    """Video reference by URL, typically an ``s3://`` location."""

    type: ContentType = field(default=ContentType.VIDEO_URL, init=False)
    url: str = ""


ContentPart = TextPart | ImagePart | VideoPart


def _parse_part(raw: Any) -> ContentPart | None:
    """Parse one OpenAI content part; unknown or malformed parts give None."""
    if not isinstance(raw, dict):
        return None
    kind = raw.get("type")
    if kind == ContentType.TEXT.value:
        text = raw.get("text")
        return TextPart(text=text) if isinstance(text, str) else None
    if kind == ContentType.IMAGE_URL.value:
        ref = raw.get("image_url")
        if isinstance(ref, str):
            return ImagePart(url=ref)
        if isinstance(ref, dict) and isinstance(ref.get("url"), str):
            return ImagePart(url=ref["url"], detail=ref.get("detail"))
        return None
    if kind == ContentType.VIDEO_URL.value:
        ref = raw.get("video_url")
        if isinstance(ref, str):
            return VideoPart(url=ref)
        if isinstance(ref, dict) and isinstance(ref.get("url"), str):
            return VideoPart(url=ref["url"])
    return None


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@dataclass
class FunctionDefinition:
    """A callable function exposed to the model."""

    name: str
    description: str = ""
    parameters: Any = None


@dataclass
class Tool:
    """A tool definition as sent by the client."""

    function: FunctionDefinition
    type: str = "function"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Tool | None:
        fn = raw.get("function")
        if not isinstance(fn, dict) or not isinstance(fn.get("name"), str):
            return None
        description = fn.get("description")
        return cls(
            type=raw.get("type", "function"),
            function=FunctionDefinition(
                name=fn["name"],
                description=description if isinstance(description, str) else "",
                parameters=fn.get("parameters"),
            ),
        )


@dataclass
class FunctionCall:
    """A complete function invocation on an assistant message."""

    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """A tool call carried on an assistant message in the conversation."""

    id: str = ""
    type: str = "function"
    function: FunctionCall = field(default_factory=FunctionCall)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class ChatMessage:
    """A single message in a conversation.

    ``content`` holds either a plain string or a list of structured parts,
    never both.
    """

    role: str
    content: str | list[ContentPart] | None = None
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> ChatMessage:
        if not isinstance(raw, dict) or not isinstance(raw.get("role"), str):
            raise InvalidRequestError("each message must be an object with a role")
        content = raw.get("content")
        if isinstance(content, list):
            parts = [p for p in (_parse_part(item) for item in content) if p]
            content = parts
        elif content is not None and not isinstance(content, str):
            content = str(content)
        tool_calls = []
        for tc in raw.get("tool_calls") or []:
            if not isinstance(tc, dict):
                continue
            fn = tc.get("function") or {}
            tool_calls.append(
                ToolCall(
                    id=tc.get("id", ""),
                    type=tc.get("type", "function"),
                    function=FunctionCall(
                        name=fn.get("name", ""),
                        arguments=fn.get("arguments") or "",
                    ),
                )
            )
        return cls(
            role=raw["role"],
            content=content,
            name=raw.get("name"),
            tool_call_id=raw.get("tool_call_id"),
            tool_calls=tool_calls,
        )

    def is_string_content(self) -> bool:
        """Return True when content is a plain string (or absent)."""
        return not isinstance(self.content, list)

    def string_content(self) -> str:
        """Flatten content to plain text, joining the text parts."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    def parse_content(self) -> list[ContentPart]:
        """Return content as a list of parts, wrapping plain strings."""
        if self.content is None:
            return []
        if isinstance(self.content, str):
            return [TextPart(text=self.content)]
        return list(self.content)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role}
        if isinstance(self.content, list):
            data["content"] = [_part_to_dict(p) for p in self.content]
        else:
            data["content"] = self.content
        if self.name:
            data["name"] = self.name
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            data["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": tc.type,
                    "function": {
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    },
                }
                for tc in self.tool_calls
            ]
        return data


def _part_to_dict(part: ContentPart) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImagePart):
        ref: dict[str, Any] = {"url": part.url}
        if part.detail:
            ref["detail"] = part.detail
        return {"type": "image_url", "image_url": ref}
    return {"type": "video_url", "video_url": {"url": part.url}}


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass
class ChatRequest:
    """A canonical chat-completion request."""

    model: str = ""
    messages: list[ChatMessage] = field(default_factory=list)
    tools: list[Tool] = field(default_factory=list)
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int | None = None
    stop: list[str] = field(default_factory=list)
    stream: bool = False

    @classmethod
    def from_dict(cls, raw: Any) -> ChatRequest:
        """Parse an OpenAI-shaped request body.

        Args:
            raw: Decoded JSON body.

        Returns:
            The parsed request.

        Raises:
            InvalidRequestError: If the body is not an object or carries
                no message list.
        """
        if not isinstance(raw, dict):
            raise InvalidRequestError("request body must be a JSON object")
        messages = raw.get("messages")
        if not isinstance(messages, list):
            raise InvalidRequestError("'messages' must be a list")

        stop = raw.get("stop")
        if isinstance(stop, str):
            stop = [stop]
        elif isinstance(stop, list):
            stop = [s for s in stop if isinstance(s, str)]
        else:
            stop = []

        tools = []
        for t in raw.get("tools") or []:
            if isinstance(t, dict):
                tool = Tool.from_dict(t)
                if tool is not None:
                    tools.append(tool)

        return cls(
            model=raw.get("model", ""),
            messages=[ChatMessage.from_dict(m) for m in messages],
            tools=tools,
            temperature=_as_float(raw, "temperature"),
            top_p=_as_float(raw, "top_p"),
            top_k=_as_int(raw, "top_k"),
            max_tokens=_as_int(raw, "max_tokens"),
            stop=stop,
            stream=bool(raw.get("stream", False)),
        )


def _as_float(raw: dict[str, Any], key: str) -> float | None:
    """Read a sampling parameter as a float; non-numeric values are dropped."""
    value = raw.get(key)
    if value is None:
        return None
    number: float | None = None
    if isinstance(value, (int, float, str)) and not isinstance(value, bool):
        try:
            number = float(value)
        except (ValueError, OverflowError):
            pass
    if number is not None and math.isfinite(number):
        return number
    logger.debug("Dropping non-numeric %s: %r", key, value)
    return None


def _as_int(raw: dict[str, Any], key: str) -> int | None:
    """Read a token-count parameter as an int; anything non-integral is dropped."""
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    logger.debug("Dropping non-integer %s: %r", key, value)
    return None


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


@dataclass
class Usage:
    """Token consumption, with the total computed by the relay."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt_tokens: int, completion_tokens: int) -> Usage:
        """Build usage with ``total_tokens = prompt + completion``."""
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


# ---------------------------------------------------------------------------
# Non-streaming response
# ---------------------------------------------------------------------------


def new_completion_id(suffix: str | None = None) -> str:
    """Return a ``chatcmpl-`` id, random unless a vendor suffix is given."""
    return f"chatcmpl-{suffix or uuid.uuid4().hex}"


def now() -> int:
    """Current UNIX timestamp in whole seconds."""
    return int(time.time())


@dataclass
class Choice:
    """One completion choice."""

    index: int = 0
    message: ChatMessage = field(
        default_factory=lambda: ChatMessage(role=Role.ASSISTANT.value, content="")
    )
    finish_reason: str | None = None


@dataclass
class ChatCompletion:
    """A canonical non-streaming response."""

    id: str = field(default_factory=new_completion_id)
    created: int = field(default_factory=now)
    model: str = ""
    choices: list[Choice] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)

    object = "chat.completion"

    def text(self) -> str:
        """Content of the first choice, or empty string."""
        if not self.choices:
            return ""
        return self.choices[0].message.string_content()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "object": self.object,
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": c.index,
                    "message": c.message.to_dict(),
                    "finish_reason": c.finish_reason,
                }
                for c in self.choices
            ],
            "usage": self.usage.to_dict(),
        }


# ---------------------------------------------------------------------------
# Streaming chunks
# ---------------------------------------------------------------------------


@dataclass
class FunctionCallDelta:
    """Fragment of a function call; arguments arrive incrementally."""

    name: str | None = None
    arguments: str = ""


@dataclass
class ToolCallDelta:
    """Fragment of a tool call within a streamed delta."""

    index: int = 0
    id: str | None = None
    type: str | None = None
    function: FunctionCallDelta = field(default_factory=FunctionCallDelta)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"index": self.index}
        if self.id is not None:
            data["id"] = self.id
        if self.type is not None:
            data["type"] = self.type
        fn: dict[str, Any] = {"arguments": self.function.arguments}
        if self.function.name is not None:
            fn["name"] = self.function.name
        data["function"] = fn
        return data


@dataclass
class Delta:
    """Incremental assistant message content."""

    role: str | None = None
    content: str | None = None
    tool_calls: list[ToolCallDelta] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.role is not None:
            data["role"] = self.role
        if self.content is not None:
            data["content"] = self.content
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return data


@dataclass
class StreamChoice:
    """One choice delta within a chunk."""

    index: int = 0
    delta: Delta = field(default_factory=Delta)
    finish_reason: str | None = None


@dataclass
class ChatCompletionChunk:
    """One incremental unit of a streamed response."""

    id: str
    created: int
    model: str
    choices: list[StreamChoice] = field(default_factory=list)
    usage: Usage | None = None

    object = "chat.completion.chunk"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "object": self.object,
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": c.index,
                    "delta": c.delta.to_dict(),
                    "finish_reason": c.finish_reason,
                }
                for c in self.choices
            ],
        }
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        return data


@dataclass(frozen=True)
class StreamDone:
    """Terminal sentinel of a stream, carrying the final usage."""

    usage: Usage


StreamItem = ChatCompletionChunk | StreamDone
