"""Tests for bedrock_relay.registry."""

from __future__ import annotations

import pytest

from bedrock_relay.adapters import ClaudeAdapter, Llama3Adapter, NovaAdapter, VendorAdapter
from bedrock_relay.errors import UnknownModelError
from bedrock_relay.registry import DEFAULT_REGISTRY, Registry, resolve


class TestDefaultRegistry:
    @pytest.mark.parametrize(
        ("model", "adapter_type"),
        [
            ("claude-3-haiku-20240307", ClaudeAdapter),
            ("claude-3-5-sonnet-latest", ClaudeAdapter),
            ("llama3-8b-8192", Llama3Adapter),
            ("llama3.1-70b", Llama3Adapter),
            ("amazon.nova-micro", NovaAdapter),
            ("amazon.nova-lite", NovaAdapter),
            ("amazon.nova-pro", NovaAdapter),
        ],
    )
    def test_resolves_to_declaring_adapter(self, model: str, adapter_type: type) -> None:
        assert isinstance(resolve(model), adapter_type)

    def test_nova_model_ids(self) -> None:
        assert DEFAULT_REGISTRY.model_id("amazon.nova-micro") == "us.amazon.nova-micro-v1:0"
        assert DEFAULT_REGISTRY.model_id("amazon.nova-lite") == "us.amazon.nova-lite-v1:0"
        assert DEFAULT_REGISTRY.model_id("amazon.nova-pro") == "us.amazon.nova-pro-v1:0"

    def test_unknown_model(self) -> None:
        with pytest.raises(UnknownModelError) as exc_info:
            resolve("gpt-4o")
        assert exc_info.value.status_code == 404
        assert "gpt-4o" in str(exc_info.value)

    def test_every_declared_name_resolves_to_its_adapter(self) -> None:
        for entry in DEFAULT_REGISTRY.list_models():
            adapter = DEFAULT_REGISTRY.resolve(entry.name)
            assert adapter.vendor_name() == entry.vendor
            assert adapter.MODEL_IDS[entry.name] == entry.model_id

    def test_adapters_satisfy_protocol(self) -> None:
        for adapter in (ClaudeAdapter(), Llama3Adapter(), NovaAdapter()):
            assert isinstance(adapter, VendorAdapter)

    def test_contains(self) -> None:
        assert "amazon.nova-pro" in DEFAULT_REGISTRY
        assert "nope" not in DEFAULT_REGISTRY

    def test_list_models_filtered_by_vendor(self) -> None:
        names = {e.name for e in DEFAULT_REGISTRY.list_models("nova")}
        assert names == {"amazon.nova-micro", "amazon.nova-lite", "amazon.nova-pro"}


class _ShadowAdapter(NovaAdapter):
    MODEL_IDS = {"amazon.nova-micro": "custom.nova-micro"}

    def vendor_name(self) -> str:
        return "shadow"


class TestRegistration:
    def test_later_adapter_wins(self) -> None:
        registry = Registry.from_adapters([NovaAdapter(), _ShadowAdapter()])
        assert registry.resolve("amazon.nova-micro").vendor_name() == "shadow"
        assert registry.model_id("amazon.nova-micro") == "custom.nova-micro"
        # Names the later adapter does not declare are untouched
        assert registry.resolve("amazon.nova-pro").vendor_name() == "nova"

    def test_empty_registry(self) -> None:
        registry = Registry()
        assert registry.list_models() == []
        with pytest.raises(UnknownModelError):
            registry.resolve("amazon.nova-micro")
