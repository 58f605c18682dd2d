"""Streaming translation for the relay.

``StreamTranslator`` turns a vendor event stream into canonical
``chat.completion.chunk`` objects followed by one ``StreamDone`` sentinel.
All cross-event state (stream id, timestamp, usage, the in-flight tool
call) lives in a ``StreamContext`` owned by a single translator instance.

``encode_sse`` renders the translated stream as ``text/event-stream``
frames, and ``StreamCollector`` folds it back into a single response.
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field, replace
from typing import Any, Generic, Protocol, TypeVar

from bedrock_relay.adapters.base import StreamDelta, VendorAdapter
from bedrock_relay.errors import (
    RelayError,
    UnsupportedVendorEventError,
    VendorDecodeError,
)
from bedrock_relay.invoke import ChunkEvent, EventStream, UnknownEvent, VendorStreamEvent
from bedrock_relay.models import (
    ChatCompletion,
    ChatCompletionChunk,
    ChatMessage,
    Choice,
    Delta,
    FunctionCall,
    FunctionCallDelta,
    Role,
    StreamChoice,
    StreamDone,
    StreamItem,
    ToolCall,
    ToolCallDelta,
    Usage,
    new_completion_id,
    now,
)

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"
EMPTY_ARGUMENTS = "{}"

T = TypeVar("T")


class _Closeable(Protocol):
    async def aclose(self) -> None: ...


class ClosingStream(Generic[T]):
    """Async iterator that owns an upstream resource.

    ``aclose()`` closes the wrapped generator and then the resource, so the
    resource is released even if iteration never started. The resource's
    ``aclose()`` must tolerate being called more than once.
    """

    def __init__(self, items: AsyncGenerator[T, None], resource: _Closeable) -> None:
        self._items = items
        self._resource = resource

    def __aiter__(self) -> ClosingStream[T]:
        return self

    async def __anext__(self) -> T:
        return await self._items.__anext__()

    async def aclose(self) -> None:
        try:
            await self._items.aclose()
        finally:
            await self._resource.aclose()


class StreamState(str, enum.Enum):
    """Lifecycle of one translated stream."""

    AWAITING_FIRST = "awaiting_first"
    STREAMING = "streaming"
    FINALIZING_TOOLCALL = "finalizing_toolcall"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UsageAccumulator:
    """Running token counts for one stream.

    Input tokens are taken from the first non-zero report. Vendors report
    output tokens cumulatively, so the count only ever moves up. The total
    is always recomputed.
    """

    input_tokens: int = 0
    output_tokens: int = 0
    _final: Usage | None = field(default=None, repr=False)

    def observe(self, input_tokens: int, output_tokens: int) -> bool:
        """Fold one event's counters in; return True if anything changed."""
        changed = False
        if input_tokens and not self.input_tokens:
            self.input_tokens = input_tokens
            changed = True
        if output_tokens > self.output_tokens:
            self.output_tokens = output_tokens
            changed = True
        return changed

    def snapshot(self) -> Usage:
        return Usage.of(self.input_tokens, self.output_tokens)

    def finalize(self) -> Usage:
        """Freeze and return the final usage; later calls return the same object."""
        if self._final is None:
            self._final = self.snapshot()
        return self._final


@dataclass
class PendingToolCall:
    """The most recent tool call and the argument text seen for it."""

    index: int
    arguments: str = ""


@dataclass
class StreamContext:
    """Mutable state carried across the events of one stream."""

    model: str
    id: str = ""
    created: int = 0
    state: StreamState = StreamState.AWAITING_FIRST
    usage: UsageAccumulator = field(default_factory=UsageAccumulator)
    vendor_message_id: str | None = None
    pending_tool_call: PendingToolCall | None = None
    tool_ordinals: dict[int, int] = field(default_factory=dict)
    tool_call_count: int = 0


class StreamTranslator:
    """Translates one vendor event stream into canonical chunks.

    Instances are single-use: create one per streaming call.
    """

    def __init__(self, adapter: VendorAdapter, model: str) -> None:
        self._adapter = adapter
        self.context = StreamContext(model=model)

    @property
    def state(self) -> StreamState:
        return self.context.state

    @property
    def usage(self) -> Usage:
        return self.context.usage.snapshot()

    def translate(self, events: EventStream) -> ClosingStream[StreamItem]:
        """Consume *events*, yielding chunks and finally a ``StreamDone``.

        The event source is closed on every exit path: exhaustion, errors,
        task cancellation, and ``aclose()`` by the consumer, including an
        ``aclose()`` before the first item was requested.

        Raises:
            UnsupportedVendorEventError: On an unrecognized event tag.
            VendorDecodeError: On a chunk that cannot be decoded.
            VendorCallError: If the event source fails mid-stream.
        """
        return ClosingStream(self._run(events), events)

    async def _run(self, events: EventStream) -> AsyncGenerator[StreamItem, None]:
        try:
            async for event in events:
                chunk = self._process(event)
                if chunk is not None:
                    yield chunk
            self.context.state = StreamState.DONE
            yield StreamDone(usage=self.context.usage.finalize())
        except RelayError as exc:
            self.context.state = StreamState.FAILED
            logger.error(
                "Stream %s failed after %s: %s",
                self.context.id or "(unstarted)",
                self._adapter.vendor_name(),
                exc,
            )
            raise
        finally:
            await events.aclose()

    # -----------------------------------------------------------------
    # Event handling
    # -----------------------------------------------------------------

    def _process(self, event: VendorStreamEvent) -> ChatCompletionChunk | None:
        if isinstance(event, ChunkEvent):
            return self._apply(self._parse(self._decode(event.payload)))
        if isinstance(event, UnknownEvent):
            raise UnsupportedVendorEventError(event.tag, vendor=self._adapter.vendor_name())
        raise UnsupportedVendorEventError(
            type(event).__name__, vendor=self._adapter.vendor_name()
        )

    def _decode(self, payload: bytes) -> dict[str, Any]:
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise VendorDecodeError(
                f"error unmarshalling stream response: {exc}",
                vendor=self._adapter.vendor_name(),
            ) from exc
        if not isinstance(data, dict):
            raise VendorDecodeError(
                "stream chunk is not an object", vendor=self._adapter.vendor_name()
            )
        return data

    def _parse(self, payload: dict[str, Any]) -> StreamDelta:
        try:
            delta = self._adapter.parse_stream_event(payload)
        except (AttributeError, TypeError, ValueError) as exc:
            raise VendorDecodeError(
                f"malformed stream chunk: {exc}", vendor=self._adapter.vendor_name()
            ) from exc
        if delta.text is not None and not isinstance(delta.text, str):
            raise VendorDecodeError(
                "malformed stream chunk: text is not a string",
                vendor=self._adapter.vendor_name(),
            )
        if delta.tool_call is not None and not isinstance(delta.tool_call.function.arguments, str):
            raise VendorDecodeError(
                "malformed stream chunk: tool arguments are not a string",
                vendor=self._adapter.vendor_name(),
            )
        return delta

    def _apply(self, delta: StreamDelta) -> ChatCompletionChunk | None:
        ctx = self.context
        if delta.message_id and ctx.vendor_message_id is None:
            ctx.vendor_message_id = delta.message_id
        usage_changed = ctx.usage.observe(delta.input_tokens, delta.output_tokens)

        if not delta.has_content():
            # Counter-only events: absorbed before the first chunk
            if usage_changed and ctx.state is not StreamState.AWAITING_FIRST:
                return self._chunk([], ctx.usage.snapshot())
            return None

        role = delta.role
        if ctx.state is StreamState.AWAITING_FIRST:
            ctx.id = new_completion_id(ctx.vendor_message_id)
            ctx.created = now()
            ctx.state = StreamState.STREAMING
            role = role or Role.ASSISTANT.value

        choice = StreamChoice(
            delta=Delta(role=role, content=delta.text),
            finish_reason=delta.finish_reason,
        )
        if delta.tool_call is not None:
            tool_call = self._renumber(delta.tool_call)
            choice.delta.tool_calls = [tool_call]
            self._track_tool_call(tool_call)

        pending = ctx.pending_tool_call
        if delta.finish_reason is not None and pending is not None and not pending.arguments:
            # Canonical consumers need valid JSON arguments, even when empty
            ctx.state = StreamState.FINALIZING_TOOLCALL
            choice.delta.content = None
            choice.delta.tool_calls = [
                ToolCallDelta(
                    index=pending.index,
                    function=FunctionCallDelta(arguments=EMPTY_ARGUMENTS),
                )
            ]
            ctx.pending_tool_call = None

        return self._chunk([choice], ctx.usage.snapshot() if usage_changed else None)

    def _renumber(self, tool_call: ToolCallDelta) -> ToolCallDelta:
        """Replace the vendor content-block index with the tool call's ordinal.

        Tool calls are numbered from 0 in order of appearance, whatever
        text blocks precede them.
        """
        ctx = self.context
        ordinals = ctx.tool_ordinals
        if tool_call.id is not None or tool_call.index not in ordinals:
            ordinals[tool_call.index] = ctx.tool_call_count
            ctx.tool_call_count += 1
        return replace(tool_call, index=ordinals[tool_call.index])

    def _track_tool_call(self, tool_call: ToolCallDelta) -> None:
        pending = self.context.pending_tool_call
        if tool_call.id is not None or pending is None or pending.index != tool_call.index:
            self.context.pending_tool_call = PendingToolCall(
                index=tool_call.index, arguments=tool_call.function.arguments
            )
        else:
            pending.arguments += tool_call.function.arguments

    def _chunk(self, choices: list[StreamChoice], usage: Usage | None) -> ChatCompletionChunk:
        return ChatCompletionChunk(
            id=self.context.id,
            created=self.context.created,
            model=self.context.model,
            choices=choices,
            usage=usage,
        )


# ---------------------------------------------------------------------------
# Server-sent events
# ---------------------------------------------------------------------------


def sse_frame(chunk: ChatCompletionChunk) -> str:
    """Render one chunk as a ``data:`` frame."""
    return "data: " + json.dumps(chunk.to_dict(), ensure_ascii=False, separators=(",", ":")) + "\n\n"


def encode_sse(items: ClosingStream[StreamItem]) -> ClosingStream[str]:
    """Render a translated stream as ``text/event-stream`` frames.

    The stream ends with a literal ``data: [DONE]`` frame. Closing the
    returned stream closes *items* and so releases the vendor stream,
    whether or not a frame was read.
    """
    return ClosingStream(_frames(items), items)


async def _frames(items: ClosingStream[StreamItem]) -> AsyncGenerator[str, None]:
    try:
        async for item in items:
            if isinstance(item, StreamDone):
                yield DONE_FRAME
            else:
                yield sse_frame(item)
    finally:
        await items.aclose()


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@dataclass
class StreamCollector:
    """Accumulates translated stream items into a complete ChatCompletion.

    Feed items via ``process()`` or collect an entire stream with
    ``collect()``, then call ``to_completion()``.
    """

    id: str = ""
    created: int = 0
    model: str = ""
    role: str = Role.ASSISTANT.value
    text_parts: list[str] = field(default_factory=list)
    tool_calls: dict[int, ToolCall] = field(default_factory=dict)
    finish_reason: str | None = None
    usage: Usage = field(default_factory=Usage)
    done: bool = False

    def process(self, item: StreamItem) -> None:
        """Process a single stream item."""
        if isinstance(item, StreamDone):
            self.usage = item.usage
            self.done = True
            return

        self.id, self.created, self.model = item.id, item.created, item.model
        if item.usage is not None:
            self.usage = item.usage
        for choice in item.choices:
            if choice.delta.role:
                self.role = choice.delta.role
            if choice.delta.content:
                self.text_parts.append(choice.delta.content)
            for tc in choice.delta.tool_calls:
                call = self.tool_calls.setdefault(tc.index, ToolCall(function=FunctionCall()))
                if tc.id:
                    call.id = tc.id
                if tc.function.name:
                    call.function.name = tc.function.name
                call.function.arguments += tc.function.arguments
            if choice.finish_reason is not None:
                self.finish_reason = choice.finish_reason

    def to_completion(self) -> ChatCompletion:
        """Assemble accumulated items into a ChatCompletion."""
        message = ChatMessage(
            role=self.role,
            content="".join(self.text_parts),
            tool_calls=[self.tool_calls[i] for i in sorted(self.tool_calls)],
        )
        return ChatCompletion(
            id=self.id or new_completion_id(),
            created=self.created or now(),
            model=self.model,
            choices=[Choice(message=message, finish_reason=self.finish_reason)],
            usage=self.usage,
        )

    async def collect(self, items: AsyncIterator[StreamItem]) -> ChatCompletion:
        """Consume an entire stream and return the assembled completion."""
        async for item in items:
            self.process(item)
        return self.to_completion()
