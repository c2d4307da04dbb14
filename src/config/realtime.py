"""Realtime session defaults and the process-wide system message."""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import BaseModel, Field

from config.settings import Settings, get_settings
from prompts.loader import load_prompt

LOGGER = logging.getLogger(__name__)


class SystemMessageHolder:
    """Mutable holder for the instructions pushed to new realtime sessions.

    The value is captured when a call opens its upstream connection, so an
    update only affects calls started afterwards.
    """

    def __init__(self, initial: str) -> None:
        self._value = self._validate(initial)

    @staticmethod
    def _validate(value: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("System message must be a non-empty string.")
        return value

    def get(self) -> str:
        return self._value

    def set(self, value: str) -> None:
        self._value = self._validate(value)
        LOGGER.info("System message updated (%d chars)", len(self._value))


@lru_cache(maxsize=1)
def get_system_message_holder() -> SystemMessageHolder:
    settings = get_settings()
    initial = settings.system_message or load_prompt("receptionist_system.txt").strip()
    return SystemMessageHolder(initial)


class RealtimeSessionConfig(BaseModel):
    """Snapshot of everything the upstream session.update carries."""

    voice: str
    instructions: str
    audio_format: str = "g711_ulaw"
    turn_detection: str = "server_vad"
    transcription_model: str = "whisper-1"
    temperature: float = 0.8
    modalities: list[str] = Field(default_factory=lambda: ["text", "audio"])

    @classmethod
    def from_settings(cls, settings: Settings, *, instructions: str) -> RealtimeSessionConfig:
        return cls(
            voice=settings.realtime_voice,
            instructions=instructions,
            audio_format=settings.realtime_audio_format,
            turn_detection=settings.realtime_turn_detection,
            transcription_model=settings.realtime_transcription_model,
            temperature=settings.realtime_temperature,
        )
