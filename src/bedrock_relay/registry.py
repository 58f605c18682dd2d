"""Model registry for the relay.

Maps canonical model names to the vendor adapter that serves them. The
index is built once from each adapter's declared ``MODEL_IDS``; when two
adapters declare the same name, the one registered later wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bedrock_relay.adapters.base import VendorAdapter
from bedrock_relay.adapters.claude import ClaudeAdapter
from bedrock_relay.adapters.llama3 import Llama3Adapter
from bedrock_relay.adapters.nova import NovaAdapter
from bedrock_relay.errors import UnknownModelError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelEntry:
    """One resolvable model name."""

    name: str
    vendor: str
    model_id: str


class Registry:
    """Static lookup from model name to vendor adapter."""

    def __init__(self) -> None:
        self._adapters: dict[str, VendorAdapter] = {}

    @classmethod
    def from_adapters(cls, adapters: list[VendorAdapter]) -> Registry:
        registry = cls()
        for adapter in adapters:
            registry.register(adapter)
        return registry

    def register(self, adapter: VendorAdapter) -> None:
        """Index every model name the adapter declares."""
        for name in adapter.MODEL_IDS:
            previous = self._adapters.get(name)
            if previous is not None and previous is not adapter:
                logger.debug(
                    "Model %s re-registered: %s shadows %s",
                    name,
                    adapter.vendor_name(),
                    previous.vendor_name(),
                )
            self._adapters[name] = adapter

    def resolve(self, model: str) -> VendorAdapter:
        """Return the adapter for *model*.

        Raises:
            UnknownModelError: If no adapter declares the name.
        """
        adapter = self._adapters.get(model)
        if adapter is None:
            raise UnknownModelError(model)
        return adapter

    def model_id(self, model: str) -> str:
        """Return the Bedrock model id for *model*.

        Raises:
            UnknownModelError: If no adapter declares the name.
        """
        return self.resolve(model).MODEL_IDS[model]

    def __contains__(self, model: object) -> bool:
        return model in self._adapters

    def list_models(self, vendor: str | None = None) -> list[ModelEntry]:
        """List resolvable models, optionally filtered by vendor."""
        entries = [
            ModelEntry(name=name, vendor=a.vendor_name(), model_id=a.MODEL_IDS[name])
            for name, a in self._adapters.items()
        ]
        if vendor is None:
            return entries
        return [e for e in entries if e.vendor == vendor]


DEFAULT_REGISTRY = Registry.from_adapters(
    [ClaudeAdapter(), Llama3Adapter(), NovaAdapter()]
)


def resolve(model: str) -> VendorAdapter:
    """Resolve *model* against the default registry."""
    return DEFAULT_REGISTRY.resolve(model)
