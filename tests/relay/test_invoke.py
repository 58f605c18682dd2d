"""Tests for the Bedrock invocation boundary using a mocked boto3 client."""

from __future__ import annotations

import io
import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from bedrock_relay.config import RelaySettings
from bedrock_relay.errors import (
    AccessDeniedError,
    RateLimitError,
    RequestTimeoutError,
    VendorCallError,
)
from bedrock_relay.invoke import (
    BedrockEventStream,
    BedrockInvoker,
    ChunkEvent,
    UnknownEvent,
    to_vendor_event,
)


def _client_error(code: str, status: int, message: str, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class _FakeBotoStream:
    """Iterable standing in for a botocore EventStream."""

    def __init__(self, events: list[dict], error: Exception | None = None) -> None:
        self._events = events
        self._error = error
        self.closed = False

    def __iter__(self):
        yield from self._events
        if self._error is not None:
            raise self._error

    def close(self) -> None:
        self.closed = True


class TestVendorEvents:
    def test_chunk_event(self) -> None:
        event = to_vendor_event({"chunk": {"bytes": b'{"a": 1}'}})
        assert event == ChunkEvent(payload=b'{"a": 1}')

    def test_unknown_event_keeps_tag(self) -> None:
        assert to_vendor_event({"internalServerException": {"message": "x"}}) == UnknownEvent(
            tag="internalServerException"
        )

    def test_empty_member(self) -> None:
        assert to_vendor_event({}) == UnknownEvent(tag="")


class TestBedrockInvoker:
    @pytest.mark.asyncio
    async def test_invoke_sends_json_body(self) -> None:
        client = MagicMock()
        client.invoke_model.return_value = {"body": io.BytesIO(b'{"generation": "hi"}')}
        invoker = BedrockInvoker(client=client)

        raw = await invoker.invoke("meta.llama3-8b-instruct-v1:0", {"prompt": "p"})

        assert raw == b'{"generation": "hi"}'
        kwargs = client.invoke_model.call_args.kwargs
        assert kwargs["modelId"] == "meta.llama3-8b-instruct-v1:0"
        assert kwargs["contentType"] == "application/json"
        assert kwargs["accept"] == "application/json"
        assert json.loads(kwargs["body"]) == {"prompt": "p"}

    @pytest.mark.asyncio
    async def test_throttling_maps_to_rate_limit(self) -> None:
        client = MagicMock()
        client.invoke_model.side_effect = _client_error(
            "ThrottlingException", 429, "Too many requests", "InvokeModel"
        )
        with pytest.raises(RateLimitError) as exc_info:
            await BedrockInvoker(client=client).invoke("m", {})
        err = exc_info.value
        assert err.operation == "InvokeModel"
        assert err.status_code == 429
        assert "Too many requests" in str(err)
        assert err.raw == {"Code": "ThrottlingException", "Message": "Too many requests"}

    @pytest.mark.asyncio
    async def test_access_denied_on_stream_call(self) -> None:
        client = MagicMock()
        client.invoke_model_with_response_stream.side_effect = _client_error(
            "AccessDeniedException", 403, "no model access", "InvokeModelWithResponseStream"
        )
        with pytest.raises(AccessDeniedError) as exc_info:
            await BedrockInvoker(client=client).invoke_stream("m", {})
        assert exc_info.value.operation == "InvokeModelWithResponseStream"

    @pytest.mark.asyncio
    async def test_read_timeout(self) -> None:
        client = MagicMock()
        client.invoke_model.side_effect = ReadTimeoutError(endpoint_url="https://bedrock")
        with pytest.raises(RequestTimeoutError):
            await BedrockInvoker(client=client).invoke("m", {})

    @pytest.mark.asyncio
    async def test_connection_failure(self) -> None:
        client = MagicMock()
        client.invoke_model.side_effect = EndpointConnectionError(endpoint_url="https://bedrock")
        with pytest.raises(VendorCallError) as exc_info:
            await BedrockInvoker(client=client).invoke("m", {})
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_invoke_stream_yields_events_and_closes(self) -> None:
        boto_stream = _FakeBotoStream(
            [{"chunk": {"bytes": b"{}"}}, {"modelStreamErrorException": {"message": "x"}}]
        )
        client = MagicMock()
        client.invoke_model_with_response_stream.return_value = {"body": boto_stream}

        stream = await BedrockInvoker(client=client).invoke_stream("m", {"prompt": "p"})
        events = [event async for event in stream]
        await stream.aclose()
        await stream.aclose()

        assert events == [ChunkEvent(payload=b"{}"), UnknownEvent(tag="modelStreamErrorException")]
        assert boto_stream.closed

    def test_make_client_uses_settings(self) -> None:
        settings = RelaySettings(aws_region="eu-central-1", aws_profile="dev", read_timeout=42.0)
        with patch("bedrock_relay.invoke.boto3.Session") as session_cls:
            BedrockInvoker(settings)
        session_cls.assert_called_once_with(profile_name="dev")
        call = session_cls.return_value.client.call_args
        assert call.args == ("bedrock-runtime",)
        assert call.kwargs["region_name"] == "eu-central-1"
        config = call.kwargs["config"]
        assert config.read_timeout == 42.0
        assert config.retries == {"max_attempts": 1, "mode": "standard"}


class TestBedrockEventStream:
    @pytest.mark.asyncio
    async def test_mid_stream_client_error(self) -> None:
        boto_stream = _FakeBotoStream(
            [{"chunk": {"bytes": b"{}"}}],
            error=_client_error("ThrottlingException", 429, "slow", "InvokeModelWithResponseStream"),
        )
        stream = BedrockEventStream(boto_stream, "InvokeModelWithResponseStream")
        assert await stream.__anext__() == ChunkEvent(payload=b"{}")
        with pytest.raises(RateLimitError):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_closed_stream_stops(self) -> None:
        stream = BedrockEventStream(_FakeBotoStream([{"chunk": {"bytes": b"{}"}}]), "op")
        await stream.aclose()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
