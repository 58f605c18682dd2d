"""Base protocol and shared helpers for vendor adapters."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from bedrock_relay.errors import ImageFetchError
from bedrock_relay.images import ImageFetcher, image_format
from bedrock_relay.models import ChatCompletion, ChatRequest, ToolCallDelta

logger = logging.getLogger(__name__)

# Bedrock appends these counters to the final chunk of every model stream.
INVOCATION_METRICS_KEY = "amazon-bedrock-invocationMetrics"


@dataclass
class StreamDelta:
    """One vendor stream event, normalized.

    Any field may be unset. Token counts are the vendor's cumulative
    values as of this event.
    """

    role: str | None = None
    text: str | None = None
    tool_call: ToolCallDelta | None = None
    finish_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    message_id: str | None = None

    def has_content(self) -> bool:
        """True if the event carries anything a client should see."""
        return (
            self.role is not None
            or self.text is not None
            or self.tool_call is not None
            or self.finish_reason is not None
        )

    def has_usage(self) -> bool:
        return bool(self.input_tokens or self.output_tokens)


@runtime_checkable
class VendorAdapter(Protocol):
    """Protocol that all vendor adapters must satisfy.

    Each adapter translates between the canonical request/response models
    and one model family's native Bedrock schema. Adapters hold no
    per-request state.
    """

    MODEL_IDS: dict[str, str]

    def vendor_name(self) -> str:
        """Return the vendor identifier (e.g. ``'nova'``)."""
        ...

    async def convert_request(
        self, request: ChatRequest | None, images: ImageFetcher | None = None
    ) -> dict[str, Any]:
        """Translate a canonical request into the native request body."""
        ...

    def convert_response(self, body: dict[str, Any], model: str) -> ChatCompletion:
        """Translate a native response body into a canonical response."""
        ...

    def parse_stream_event(self, payload: dict[str, Any]) -> StreamDelta:
        """Normalize one decoded stream chunk."""
        ...


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def object_schema(parameters: Any) -> dict[str, Any] | None:
    """Reduce a tool parameter schema to ``{type, properties, required}``.

    Properties keep only string ``type`` and ``description``; a property
    without a string type is dropped, a missing description becomes ``""``.
    Returns None when the schema is not an object schema.
    """
    if not isinstance(parameters, dict):
        return None
    schema_type = parameters.get("type", "object")
    if schema_type != "object":
        return None

    properties: dict[str, dict[str, str]] = {}
    raw_props = parameters.get("properties")
    if isinstance(raw_props, dict):
        for name, prop in raw_props.items():
            if not isinstance(prop, dict) or not isinstance(prop.get("type"), str):
                logger.debug("Dropping tool property %r with unresolvable type", name)
                continue
            description = prop.get("description")
            properties[name] = {
                "type": prop["type"],
                "description": description if isinstance(description, str) else "",
            }

    required = [
        r for r in parameters.get("required") or [] if isinstance(r, str)
    ]
    return {"type": "object", "properties": properties, "required": required}


async def resolve_image(
    images: ImageFetcher | None, url: str
) -> tuple[str, str] | None:
    """Resolve an image URL to ``(format, base64_data)``.

    Failures are logged and give None so the caller can drop the part.
    """
    if images is None:
        logger.warning("No image fetcher configured; dropping image part")
        return None
    try:
        mime_type, data = await images.fetch(url)
    except ImageFetchError as exc:
        logger.warning("Dropping image part: %s", exc)
        return None
    return image_format(mime_type), data


def invocation_metrics(payload: dict[str, Any]) -> tuple[int, int]:
    """Return ``(input, output)`` token counts from Bedrock invocation metrics."""
    metrics = payload.get(INVOCATION_METRICS_KEY)
    if not isinstance(metrics, dict):
        return 0, 0
    return (
        as_int(metrics.get("inputTokenCount")),
        as_int(metrics.get("outputTokenCount")),
    )


def as_int(value: Any) -> int:
    """Coerce a vendor token counter to int; anything non-integer gives 0."""
    return value if isinstance(value, int) and not isinstance(value, bool) else 0
