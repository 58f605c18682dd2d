"""Amazon Nova adapter.

Nova on Bedrock takes the ``messages-v1`` schema: system instructions in
their own list, content as typed blocks, and separate inference and tool
configuration blocks.

https://docs.aws.amazon.com/nova/latest/userguide/complete-request-schema.html
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
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
    VideoPart,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "messages-v1"

VIDEO_FORMATS = frozenset(
    {"mkv", "mov", "mp4", "webm", "three_gp", "flv", "mpeg", "mpg", "wmv"}
)

# ---------------------------------------------------------------------------
# Native request schema
# ---------------------------------------------------------------------------


@dataclass
class ImageBlock:
    format: str
    data: str

    def to_dict(self) -> dict[str, Any]:
        return {"format": self.format, "source": {"bytes": self.data}}


@dataclass
class VideoBlock:
    format: str
    s3_uri: str

    def to_dict(self) -> dict[str, Any]:
        return {"format": self.format, "source": {"s3Location": {"uri": self.s3_uri}}}


@dataclass
class ContentBlock:
    """Exactly one of ``text``, ``image`` or ``video`` is set."""

    text: str | None = None
    image: ImageBlock | None = None
    video: VideoBlock | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.image is not None:
            return {"image": self.image.to_dict()}
        if self.video is not None:
            return {"video": self.video.to_dict()}
        return {"text": self.text or ""}


@dataclass
class NovaMessage:
    role: str
    content: list[ContentBlock] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": [b.to_dict() for b in self.content]}


@dataclass
class InferenceConfig:
    """Sampling parameters; unset fields are left to Nova's defaults."""

    max_new_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.max_new_tokens is not None:
            data["max_new_tokens"] = self.max_new_tokens
        if self.temperature is not None:
            data["temperature"] = self.temperature
        if self.top_p is not None:
            data["top_p"] = self.top_p
        if self.top_k is not None:
            data["top_k"] = self.top_k
        if self.stop_sequences:
            data["stopSequences"] = self.stop_sequences
        return data


@dataclass
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolSpec": {
                "name": self.name,
                "description": self.description,
                "inputSchema": {"json": self.input_schema},
            }
        }


@dataclass
class ToolConfig:
    tools: list[ToolSpec]
    tool_choice: dict[str, Any] = field(default_factory=lambda: {"auto": {}})

    def to_dict(self) -> dict[str, Any]:
        return {
            "tools": [t.to_dict() for t in self.tools],
            "toolChoice": self.tool_choice,
        }


@dataclass
class NovaRequest:
    system: list[str] = field(default_factory=list)
    messages: list[NovaMessage] = field(default_factory=list)
    inference_config: InferenceConfig = field(default_factory=InferenceConfig)
    tool_config: ToolConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "schemaVersion": SCHEMA_VERSION,
            "messages": [m.to_dict() for m in self.messages],
        }
        if self.system:
            data["system"] = [{"text": text} for text in self.system]
        inference = self.inference_config.to_dict()
        if inference:
            data["inferenceConfig"] = inference
        if self.tool_config is not None:
            data["toolConfig"] = self.tool_config.to_dict()
        return data


# ---------------------------------------------------------------------------
# Native response schema
# ---------------------------------------------------------------------------


@dataclass
class NovaResponse:
    role: str = Role.ASSISTANT.value
    content: list[dict[str, Any]] = field(default_factory=list)
    stop_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    metrics: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, body: Any) -> NovaResponse:
        if not isinstance(body, dict):
            raise VendorDecodeError("response is not an object", vendor="nova")
        output = body.get("output")
        message = output.get("message") if isinstance(output, dict) else None
        if not isinstance(message, dict):
            message = {}
        content = message.get("content")
        usage = body.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        metrics = body.get("metrics")
        return cls(
            role=message.get("role") or Role.ASSISTANT.value,
            content=[b for b in content if isinstance(b, dict)]
            if isinstance(content, list)
            else [],
            stop_reason=body.get("stopReason"),
            input_tokens=as_int(usage.get("inputTokens")),
            output_tokens=as_int(usage.get("outputTokens")),
            metrics=metrics if isinstance(metrics, dict) else {},
        )

    def first_text(self) -> str:
        for block in self.content:
            text = block.get("text")
            if isinstance(text, str):
                return text
        return ""


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class NovaAdapter:
    """Adapter for the Amazon Nova model family."""

    # https://docs.aws.amazon.com/bedrock/latest/userguide/model-ids.html
    MODEL_IDS: dict[str, str] = {
        "amazon.nova-micro": "us.amazon.nova-micro-v1:0",
        "amazon.nova-lite": "us.amazon.nova-lite-v1:0",
        "amazon.nova-pro": "us.amazon.nova-pro-v1:0",
    }

    def vendor_name(self) -> str:
        return "nova"

    # -----------------------------------------------------------------
    # Request mapping
    # -----------------------------------------------------------------

    async def build_request(
        self, request: ChatRequest | None, images: ImageFetcher | None = None
    ) -> NovaRequest:
        """Translate a canonical request into a typed Nova request.

        Raises:
            InvalidRequestError: If *request* is None.
        """
        if request is None:
            raise InvalidRequestError("request is nil")

        nova = NovaRequest(
            inference_config=InferenceConfig(
                max_new_tokens=request.max_tokens,
                temperature=request.temperature,
                top_p=request.top_p,
                top_k=request.top_k,
                stop_sequences=list(request.stop),
            ),
            tool_config=self._map_tools(request),
        )

        for msg in request.messages:
            if msg.role == Role.SYSTEM.value:
                nova.system.append(msg.string_content())
                continue
            nova.messages.append(
                NovaMessage(role=msg.role, content=await self._map_content(msg, images))
            )
        return nova

    async def convert_request(
        self, request: ChatRequest | None, images: ImageFetcher | None = None
    ) -> dict[str, Any]:
        return (await self.build_request(request, images)).to_dict()

    @staticmethod
    def _map_tools(request: ChatRequest) -> ToolConfig | None:
        specs: list[ToolSpec] = []
        for tool in request.tools:
            schema = object_schema(tool.function.parameters)
            if schema is None:
                logger.debug("Skipping tool %s: parameters are not an object schema", tool.function.name)
                continue
            specs.append(
                ToolSpec(
                    name=tool.function.name,
                    description=tool.function.description,
                    input_schema=schema,
                )
            )
        return ToolConfig(tools=specs) if specs else None

    async def _map_content(
        self, msg: ChatMessage, images: ImageFetcher | None
    ) -> list[ContentBlock]:
        if msg.is_string_content():
            return [ContentBlock(text=msg.string_content())]

        blocks: list[ContentBlock] = []
        for part in msg.parse_content():
            if isinstance(part, TextPart):
                blocks.append(ContentBlock(text=part.text))
            elif isinstance(part, ImagePart):
                resolved = await resolve_image(images, part.url)
                if resolved is not None:
                    fmt, data = resolved
                    blocks.append(ContentBlock(image=ImageBlock(format=fmt, data=data)))
            elif isinstance(part, VideoPart):
                video = _video_block(part.url)
                if video is not None:
                    blocks.append(ContentBlock(video=video))
        return blocks

    # -----------------------------------------------------------------
    # Response mapping
    # -----------------------------------------------------------------

    def convert_response(self, body: dict[str, Any], model: str) -> ChatCompletion:
        resp = NovaResponse.from_dict(body)
        return ChatCompletion(
            model=model,
            choices=[
                Choice(
                    message=ChatMessage(role=resp.role, content=resp.first_text()),
                    finish_reason=resp.stop_reason,
                )
            ],
            usage=Usage.of(resp.input_tokens, resp.output_tokens),
        )

    # -----------------------------------------------------------------
    # Stream mapping
    # -----------------------------------------------------------------

    def parse_stream_event(self, payload: dict[str, Any]) -> StreamDelta:
        delta = StreamDelta()
        delta.input_tokens, delta.output_tokens = invocation_metrics(payload)

        if "messageStart" in payload:
            delta.role = (payload["messageStart"] or {}).get("role") or Role.ASSISTANT.value

        elif "contentBlockStart" in payload:
            event = payload["contentBlockStart"] or {}
            tool_use = (event.get("start") or {}).get("toolUse")
            if isinstance(tool_use, dict):
                delta.tool_call = ToolCallDelta(
                    index=as_int(event.get("contentBlockIndex")),
                    id=tool_use.get("toolUseId"),
                    type="function",
                    function=FunctionCallDelta(name=tool_use.get("name"), arguments=""),
                )

        elif "contentBlockDelta" in payload:
            event = payload["contentBlockDelta"] or {}
            body = event.get("delta") or {}
            if isinstance(body.get("text"), str):
                delta.text = body["text"]
            elif isinstance(body.get("toolUse"), dict):
                fragment = body["toolUse"].get("input") or ""
                if not isinstance(fragment, str):
                    raise VendorDecodeError(
                        "toolUse input delta is not a string", vendor="nova"
                    )
                delta.tool_call = ToolCallDelta(
                    index=as_int(event.get("contentBlockIndex")),
                    function=FunctionCallDelta(arguments=fragment),
                )

        elif "messageStop" in payload:
            delta.finish_reason = (payload["messageStop"] or {}).get("stopReason")

        elif "metadata" in payload:
            usage = (payload["metadata"] or {}).get("usage") or {}
            delta.input_tokens = max(delta.input_tokens, as_int(usage.get("inputTokens")))
            delta.output_tokens = max(delta.output_tokens, as_int(usage.get("outputTokens")))

        return delta


def _video_block(url: str) -> VideoBlock | None:
    if not url.startswith("s3://"):
        logger.warning("Dropping video part: only s3:// locations are supported")
        return None
    ext = url.rsplit(".", 1)[-1].lower() if "." in url.rsplit("/", 1)[-1] else ""
    if ext == "3gp":
        ext = "three_gp"
    return VideoBlock(format=ext if ext in VIDEO_FORMATS else "mp4", s3_uri=url)
