"""Tests for the Anthropic Claude adapter."""

from __future__ import annotations

import pytest

from bedrock_relay.adapters.claude import ClaudeAdapter, finish_reason
from bedrock_relay.errors import InvalidRequestError, VendorDecodeError
from bedrock_relay.models import (
    ChatMessage,
    ChatRequest,
    FunctionCall,
    FunctionDefinition,
    ImagePart,
    TextPart,
    Tool,
    ToolCall,
)

MODEL = "claude-3-haiku-20240307"


class TestClaudeRequest:
    @pytest.mark.asyncio
    async def test_basic_request(self) -> None:
        request = ChatRequest(
            model=MODEL,
            messages=[
                ChatMessage(role="system", content="Be brief."),
                ChatMessage(role="user", content="Hi"),
            ],
        )
        body = await ClaudeAdapter().convert_request(request)
        assert body["anthropic_version"] == "bedrock-2023-05-31"
        assert body["system"] == "Be brief."
        assert body["max_tokens"] == 4096
        assert body["messages"] == [
            {"role": "user", "content": [{"type": "text", "text": "Hi"}]}
        ]
        for key in ("tools", "tool_choice", "temperature", "top_p", "top_k", "stop_sequences"):
            assert key not in body

    @pytest.mark.asyncio
    async def test_sampling_parameters(self) -> None:
        request = ChatRequest(
            model=MODEL,
            messages=[ChatMessage(role="user", content="Hi")],
            max_tokens=64,
            temperature=0.3,
            top_p=0.8,
            top_k=5,
            stop=["\n\nHuman:"],
        )
        body = await ClaudeAdapter().convert_request(request)
        assert body["max_tokens"] == 64
        assert body["temperature"] == 0.3
        assert body["top_p"] == 0.8
        assert body["top_k"] == 5
        assert body["stop_sequences"] == ["\n\nHuman:"]

    @pytest.mark.asyncio
    async def test_tools(self) -> None:
        request = ChatRequest(
            model=MODEL,
            messages=[ChatMessage(role="user", content="Weather?")],
            tools=[
                Tool(
                    function=FunctionDefinition(
                        name="get_weather",
                        description="Look up the weather",
                        parameters={
                            "type": "object",
                            "properties": {"city": {"type": "string"}},
                            "required": ["city"],
                        },
                    )
                )
            ],
        )
        body = await ClaudeAdapter().convert_request(request)
        assert body["tool_choice"] == {"type": "auto"}
        assert body["tools"] == [
            {
                "name": "get_weather",
                "description": "Look up the weather",
                "input_schema": {
                    "type": "object",
                    "properties": {"city": {"type": "string", "description": ""}},
                    "required": ["city"],
                },
            }
        ]

    @pytest.mark.asyncio
    async def test_tool_round_trip_messages(self) -> None:
        request = ChatRequest(
            model=MODEL,
            messages=[
                ChatMessage(role="user", content="Weather in Paris and Rome?"),
                ChatMessage(
                    role="assistant",
                    content=None,
                    tool_calls=[
                        ToolCall(id="tu_1", function=FunctionCall(name="w", arguments='{"city":"Paris"}')),
                        ToolCall(id="tu_2", function=FunctionCall(name="w", arguments="not json")),
                    ],
                ),
                ChatMessage(role="tool", tool_call_id="tu_1", content="sunny"),
                ChatMessage(role="tool", tool_call_id="tu_2", content="rainy"),
            ],
        )
        body = await ClaudeAdapter().convert_request(request)
        messages = body["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"] == [
            {"type": "tool_use", "id": "tu_1", "name": "w", "input": {"city": "Paris"}},
            {"type": "tool_use", "id": "tu_2", "name": "w", "input": {}},
        ]
        # Consecutive tool results merge into one user turn
        assert messages[2]["content"] == [
            {"type": "tool_result", "tool_use_id": "tu_1", "content": "sunny"},
            {"type": "tool_result", "tool_use_id": "tu_2", "content": "rainy"},
        ]

    @pytest.mark.asyncio
    async def test_image_part(self, image_fetcher) -> None:
        request = ChatRequest(
            model=MODEL,
            messages=[
                ChatMessage(
                    role="user",
                    content=[TextPart(text="What?"), ImagePart(url="https://example.com/cat.png")],
                )
            ],
        )
        body = await ClaudeAdapter().convert_request(request, image_fetcher)
        assert body["messages"][0]["content"][1] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="},
        }

    @pytest.mark.asyncio
    async def test_none_request_rejected(self) -> None:
        with pytest.raises(InvalidRequestError):
            await ClaudeAdapter().convert_request(None)


class TestClaudeResponse:
    def test_converts_native_body(self) -> None:
        body = {
            "id": "msg_1",
            "role": "assistant",
            "content": [{"type": "text", "text": "Hello"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 10, "output_tokens": 2},
        }
        completion = ClaudeAdapter().convert_response(body, MODEL)
        assert completion.text() == "Hello"
        assert completion.choices[0].finish_reason == "stop"
        assert completion.usage.total_tokens == 12

    def test_non_object_body(self) -> None:
        with pytest.raises(VendorDecodeError):
            ClaudeAdapter().convert_response("oops", MODEL)  # type: ignore[arg-type]

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("end_turn", "stop"),
            ("stop_sequence", "stop"),
            ("max_tokens", "length"),
            ("tool_use", "tool_calls"),
            ("refusal", "refusal"),
            (None, None),
        ],
    )
    def test_finish_reason_mapping(self, raw: str | None, expected: str | None) -> None:
        assert finish_reason(raw) == expected


class TestClaudeStreamEvents:
    def test_message_start_carries_id_and_input_tokens(self) -> None:
        delta = ClaudeAdapter().parse_stream_event(
            {
                "type": "message_start",
                "message": {"id": "msg_abc", "usage": {"input_tokens": 25, "output_tokens": 1}},
            }
        )
        assert delta.message_id == "msg_abc"
        assert delta.input_tokens == 25
        assert not delta.has_content()

    def test_text_delta(self) -> None:
        delta = ClaudeAdapter().parse_stream_event(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}}
        )
        assert delta.text == "Hi"

    def test_tool_use_events(self) -> None:
        adapter = ClaudeAdapter()
        start = adapter.parse_stream_event(
            {
                "type": "content_block_start",
                "index": 1,
                "content_block": {"type": "tool_use", "id": "toolu_1", "name": "w", "input": {}},
            }
        )
        assert start.tool_call.id == "toolu_1"
        assert start.tool_call.index == 1
        fragment = adapter.parse_stream_event(
            {
                "type": "content_block_delta",
                "index": 1,
                "delta": {"type": "input_json_delta", "partial_json": '{"a"'},
            }
        )
        assert fragment.tool_call.function.arguments == '{"a"'

    def test_non_string_partial_json_is_decode_error(self) -> None:
        with pytest.raises(VendorDecodeError, match="partial_json"):
            ClaudeAdapter().parse_stream_event(
                {
                    "type": "content_block_delta",
                    "index": 1,
                    "delta": {"type": "input_json_delta", "partial_json": {"a": 1}},
                }
            )

    def test_message_delta(self) -> None:
        delta = ClaudeAdapter().parse_stream_event(
            {
                "type": "message_delta",
                "delta": {"stop_reason": "max_tokens"},
                "usage": {"output_tokens": 50},
            }
        )
        assert delta.finish_reason == "length"
        assert delta.output_tokens == 50

    @pytest.mark.parametrize("event_type", ["ping", "content_block_stop", "message_stop"])
    def test_bookkeeping_events_are_empty(self, event_type: str) -> None:
        delta = ClaudeAdapter().parse_stream_event({"type": event_type, "index": 0})
        assert not delta.has_content()
        assert not delta.has_usage()
