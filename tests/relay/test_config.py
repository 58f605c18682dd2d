"""Tests for bedrock_relay.config."""

from __future__ import annotations

import pytest

from bedrock_relay.config import RelaySettings
from bedrock_relay.errors import ConfigurationError


class TestRelaySettings:
    def test_defaults(self) -> None:
        settings = RelaySettings.from_env({})
        assert settings.aws_region == "us-east-1"
        assert settings.aws_profile is None
        assert settings.read_timeout == 300.0
        assert settings.connect_timeout == 10.0
        assert settings.image_timeout == 30.0
        assert settings.log_level == "INFO"

    def test_reads_environment(self) -> None:
        settings = RelaySettings.from_env(
            {
                "AWS_REGION": "eu-west-1",
                "AWS_PROFILE": "relay",
                "BEDROCK_READ_TIMEOUT": "60",
                "BEDROCK_CONNECT_TIMEOUT": "2.5",
                "RELAY_IMAGE_TIMEOUT": "5",
                "RELAY_LOG_LEVEL": "debug",
            }
        )
        assert settings.aws_region == "eu-west-1"
        assert settings.aws_profile == "relay"
        assert settings.read_timeout == 60.0
        assert settings.connect_timeout == 2.5
        assert settings.image_timeout == 5.0
        assert settings.log_level == "DEBUG"

    def test_default_region_fallback(self) -> None:
        settings = RelaySettings.from_env({"AWS_DEFAULT_REGION": "ap-southeast-2"})
        assert settings.aws_region == "ap-southeast-2"

    def test_empty_values_use_defaults(self) -> None:
        settings = RelaySettings.from_env({"BEDROCK_READ_TIMEOUT": "", "AWS_PROFILE": ""})
        assert settings.read_timeout == 300.0
        assert settings.aws_profile is None

    def test_non_numeric_timeout(self) -> None:
        with pytest.raises(ConfigurationError, match="BEDROCK_READ_TIMEOUT"):
            RelaySettings.from_env({"BEDROCK_READ_TIMEOUT": "soon"})

    def test_non_positive_timeout(self) -> None:
        with pytest.raises(ConfigurationError, match="RELAY_IMAGE_TIMEOUT"):
            RelaySettings.from_env({"RELAY_IMAGE_TIMEOUT": "0"})

    def test_unknown_log_level(self) -> None:
        with pytest.raises(ConfigurationError, match="log level"):
            RelaySettings(log_level="chatty")

    def test_reads_os_environ_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AWS_REGION", "us-west-2")
        monkeypatch.delenv("BEDROCK_READ_TIMEOUT", raising=False)
        assert RelaySettings.from_env().aws_region == "us-west-2"
