"""Configuration management for chatline."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant. Be concise and helpful in your responses."


class DeliveryMode(StrEnum):
    """How a reply is requested from the service."""

    DIRECT = "direct"
    STREAM = "stream"
    AGENT = "agent"


class PartialReplyPolicy(StrEnum):
    """What happens to a streamed reply that already has content when it fails."""

    DISCARD = "discard"
    KEEP = "keep"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHATLINE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service
    api_url: str = Field(default="http://localhost:3000", description="Base URL of the chat service")
    request_timeout_seconds: float = Field(default=120.0, gt=0, description="Transport timeout per request")

    # Generation
    model: str = Field(default="openai/gpt-4o-mini", description="Model id sent with each request")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=1024, gt=0, description="Maximum tokens for responses")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, description="System prompt, empty to omit")

    # Session
    mode: DeliveryMode = Field(default=DeliveryMode.STREAM, description="Reply delivery mode")
    partial_reply_policy: PartialReplyPolicy = Field(
        default=PartialReplyPolicy.DISCARD,
        description="Whether a streamed reply with partial content survives a failure",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")


def get_settings(**overrides: Any) -> Settings:
    """Get application settings.

    Args:
        **overrides: Field values that take precedence over the environment.
            ``None`` values are ignored so CLI options can be passed through.

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If a value from the environment or overrides is invalid.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return Settings(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid settings: {exc}") from exc
