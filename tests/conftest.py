"""Shared fixtures: fake vendor boundaries and smoke-test gating."""

from __future__ import annotations

import json
import os
from typing import Any

import pytest
from dotenv import load_dotenv

from bedrock_relay.errors import ImageFetchError
from bedrock_relay.invoke import ChunkEvent, UnknownEvent

# Load AWS settings from .env.local (project root)
load_dotenv(".env.local")

PNG_URL = "https://example.com/cat.png"
PNG_B64 = "iVBORw0KGgo="


class FakeEventStream:
    """In-memory vendor event stream that records reads and closure."""

    def __init__(self, events: list[Any]) -> None:
        self._events = list(events)
        self.reads = 0
        self.closed = False

    def __aiter__(self) -> FakeEventStream:
        return self

    async def __anext__(self) -> Any:
        if self.closed or not self._events:
            raise StopAsyncIteration
        self.reads += 1
        return self._events.pop(0)

    async def aclose(self) -> None:
        self.closed = True


class FakeImageFetcher:
    """Serves canned images; unknown URLs fail like a 404."""

    def __init__(self, images: dict[str, tuple[str, str]]) -> None:
        self._images = images
        self.calls: list[str] = []

    async def fetch(self, url: str) -> tuple[str, str]:
        self.calls.append(url)
        if url not in self._images:
            raise ImageFetchError(f"failed to fetch {url}: 404")
        return self._images[url]


def to_event(item: Any) -> Any:
    if isinstance(item, (ChunkEvent, UnknownEvent)):
        return item
    if isinstance(item, bytes):
        return ChunkEvent(payload=item)
    return ChunkEvent(payload=json.dumps(item).encode("utf-8"))


@pytest.fixture()
def make_stream():
    """Build a FakeEventStream from dict payloads, raw bytes or events."""

    def _make(*items: Any) -> FakeEventStream:
        return FakeEventStream([to_event(i) for i in items])

    return _make


@pytest.fixture()
def image_fetcher() -> FakeImageFetcher:
    return FakeImageFetcher({PNG_URL: ("image/png", PNG_B64)})


def _has_aws_credentials() -> bool:
    """Return True if AWS credentials look configured in the environment."""
    return bool(os.environ.get("AWS_ACCESS_KEY_ID") or os.environ.get("AWS_PROFILE"))


@pytest.fixture(scope="session")
def requires_aws_credentials() -> None:
    """Skip the test unless AWS credentials and smoke tests are enabled."""
    if not _has_aws_credentials() or os.environ.get("RELAY_SMOKE") != "1":
        pytest.skip("AWS credentials or RELAY_SMOKE=1 not set, skipping smoke test")
