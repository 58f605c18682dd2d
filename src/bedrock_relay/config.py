"""Relay configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from bedrock_relay.errors import ConfigurationError

DEFAULT_REGION = "us-east-1"


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{key} must be > 0, got {value}")
    return value


@dataclass
class RelaySettings:
    """Settings for the default invocation and image boundaries.

    Environment variables:
        AWS_REGION or AWS_DEFAULT_REGION: Bedrock region.
        AWS_PROFILE: Named boto3 profile (optional).
        BEDROCK_READ_TIMEOUT: Read timeout in seconds for vendor calls.
        BEDROCK_CONNECT_TIMEOUT: Connect timeout in seconds.
        RELAY_IMAGE_TIMEOUT: Timeout in seconds for image fetches.
        RELAY_LOG_LEVEL: Logging level name for the CLI.
    """

    aws_region: str = DEFAULT_REGION
    aws_profile: str | None = None
    read_timeout: float = 300.0
    connect_timeout: float = 10.0
    image_timeout: float = 30.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        level = self.log_level.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigurationError(f"unknown log level {self.log_level!r}")
        self.log_level = level

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RelaySettings:
        """Build settings from *env* (defaults to ``os.environ``).

        Raises:
            ConfigurationError: If a numeric or log-level value is invalid.
        """
        env = os.environ if env is None else env
        return cls(
            aws_region=env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION") or DEFAULT_REGION,
            aws_profile=env.get("AWS_PROFILE") or None,
            read_timeout=_float(env, "BEDROCK_READ_TIMEOUT", 300.0),
            connect_timeout=_float(env, "BEDROCK_CONNECT_TIMEOUT", 10.0),
            image_timeout=_float(env, "RELAY_IMAGE_TIMEOUT", 30.0),
            log_level=env.get("RELAY_LOG_LEVEL") or "INFO",
        )
