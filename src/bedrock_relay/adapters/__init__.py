"""Vendor adapters for the relay."""

from bedrock_relay.adapters.base import StreamDelta, VendorAdapter
from bedrock_relay.adapters.claude import ClaudeAdapter
from bedrock_relay.adapters.llama3 import Llama3Adapter
from bedrock_relay.adapters.nova import NovaAdapter

__all__ = [
    "VendorAdapter",
    "StreamDelta",
    "ClaudeAdapter",
    "Llama3Adapter",
    "NovaAdapter",
]
