"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    # OpenAI credentials
    openai_api_key: str | None = Field(default=None)

    # Realtime upstream
    openai_realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    openai_realtime_model: str = Field(default="gpt-4o-realtime-preview-2024-10-01")
    openai_beta_header: str = Field(
        default="realtime=v1",
        description="Value sent in the OpenAI-Beta protocol-version header.",
    )
    realtime_voice: str = Field(default="alloy")
    realtime_temperature: float = Field(default=0.8, ge=0.0, le=2.0)
    realtime_audio_format: str = Field(default="g711_ulaw")
    realtime_turn_detection: str = Field(default="server_vad")
    realtime_transcription_model: str = Field(default="whisper-1")
    session_update_delay_seconds: float = Field(
        default=0.25,
        ge=0.0,
        description="Delay between upstream handshake and the session.update push.",
    )
    system_message: str | None = Field(
        default=None,
        description="Overrides the bundled receptionist prompt as the initial system message.",
    )

    # Post-call extraction and delivery
    extraction_model: str = Field(default="gpt-4o-2024-08-06")
    webhook_url: str | None = Field(
        default=None,
        description="Endpoint receiving the extracted customer details after each call.",
    )
    webhook_timeout_seconds: float = Field(default=30.0, gt=0.0)

    # Twilio call control
    greeting_text: str = Field(
        default="Hi, Welcome to Grewal Eye Institute. How can we help you today?"
    )
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # Session store hardening
    session_max_count: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of live sessions; least recently active is evicted.",
    )
    session_idle_timeout_seconds: float | None = Field(
        default=3600.0,
        gt=0.0,
        description="Sessions without activity for this long are reaped. None disables.",
    )
    session_reaper_interval_seconds: float = Field(default=60.0, gt=0.0)

    relay_inbox_size: int = Field(default=256, ge=1)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("public_base_url", "webhook_url")
    @classmethod
    def blank_url_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
