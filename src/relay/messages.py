"""Decoding and encoding of Twilio Media Streams and OpenAI Realtime events.

Both directions decode into a closed set of pydantic variants. Tags that are
not modelled decode into an explicit ``Unrecognized*`` variant rather than
being dropped, so protocol drift stays visible. Cross-message state lives in
the :class:`~relay.session_store.CallSession`; every function here looks at a
single message.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config.realtime import RealtimeSessionConfig
from relay.errors import MessageDecodeError
from relay.session_store import CallSession, Speaker

LOGGER = logging.getLogger(__name__)

AGENT_MESSAGE_PLACEHOLDER = "Agent message not found"

# Upstream event types worth logging as they arrive.
LOG_EVENT_TYPES = frozenset(
    {
        "response.content.done",
        "rate_limits.updated",
        "response.done",
        "input_audio_buffer.committed",
        "input_audio_buffer.speech_stopped",
        "input_audio_buffer.speech_started",
        "session.created",
        "response.text.done",
        "conversation.item.input_audio_transcription.completed",
    }
)


# -- Telephony (inbound) events ------------------------------------------------


class StreamStart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stream_sid: str = Field(alias="streamSid")
    call_sid: str | None = Field(default=None, alias="callSid")
    custom_parameters: dict[str, Any] = Field(default_factory=dict, alias="customParameters")


class StartEvent(BaseModel):
    event: Literal["start"]
    start: StreamStart


class MediaPayload(BaseModel):
    payload: str
    track: str | None = None


class MediaEvent(BaseModel):
    event: Literal["media"]
    media: MediaPayload


class UnrecognizedTelephonyEvent(BaseModel):
    event: str
    raw: dict[str, Any] = Field(default_factory=dict)


TelephonyEvent = Union[StartEvent, MediaEvent, UnrecognizedTelephonyEvent]

_TELEPHONY_VARIANTS: dict[str, type[BaseModel]] = {
    "start": StartEvent,
    "media": MediaEvent,
}


# -- Realtime (upstream) events ------------------------------------------------


class TranscriptionCompletedEvent(BaseModel):
    type: Literal["conversation.item.input_audio_transcription.completed"]
    transcript: str


class ContentPart(BaseModel):
    type: str | None = None
    transcript: str | None = None


class OutputItem(BaseModel):
    content: list[ContentPart] = Field(default_factory=list)


class ResponseBody(BaseModel):
    output: list[OutputItem] = Field(default_factory=list)

    def first_transcript(self) -> str | None:
        for item in self.output:
            for part in item.content:
                if part.transcript:
                    return part.transcript
        return None


class ResponseDoneEvent(BaseModel):
    type: Literal["response.done"]
    response: ResponseBody


class AudioDeltaEvent(BaseModel):
    type: Literal["response.audio.delta"]
    delta: str = ""


class SessionUpdatedEvent(BaseModel):
    type: Literal["session.updated"]
    session: dict[str, Any] = Field(default_factory=dict)


class RealtimeErrorEvent(BaseModel):
    type: Literal["error"]
    error: dict[str, Any] = Field(default_factory=dict)


class ObservedRealtimeEvent(BaseModel):
    """Allow-listed event carried only for logging."""

    type: str
    raw: dict[str, Any] = Field(default_factory=dict)


class UnrecognizedRealtimeEvent(BaseModel):
    type: str
    raw: dict[str, Any] = Field(default_factory=dict)


RealtimeEvent = Union[
    TranscriptionCompletedEvent,
    ResponseDoneEvent,
    AudioDeltaEvent,
    SessionUpdatedEvent,
    RealtimeErrorEvent,
    ObservedRealtimeEvent,
    UnrecognizedRealtimeEvent,
]

_REALTIME_VARIANTS: dict[str, type[BaseModel]] = {
    "conversation.item.input_audio_transcription.completed": TranscriptionCompletedEvent,
    "response.done": ResponseDoneEvent,
    "response.audio.delta": AudioDeltaEvent,
    "session.updated": SessionUpdatedEvent,
    "error": RealtimeErrorEvent,
}


def _load_object(raw: str | bytes, tag_field: str) -> tuple[dict[str, Any], str]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MessageDecodeError(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MessageDecodeError("Expected a JSON object.")
    tag = data.get(tag_field)
    if not isinstance(tag, str):
        raise MessageDecodeError(f"Missing or non-string '{tag_field}' tag.")
    return data, tag


def _validate(model: type[BaseModel], data: dict[str, Any], tag: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MessageDecodeError(f"Invalid '{tag}' payload: {exc.error_count()} error(s)") from exc


def decode_telephony_event(raw: str | bytes) -> TelephonyEvent:
    data, tag = _load_object(raw, "event")
    model = _TELEPHONY_VARIANTS.get(tag)
    if model is None:
        return UnrecognizedTelephonyEvent(event=tag, raw=data)
    return _validate(model, data, tag)


def decode_realtime_event(raw: str | bytes) -> RealtimeEvent:
    data, tag = _load_object(raw, "type")
    model = _REALTIME_VARIANTS.get(tag)
    if model is not None:
        return _validate(model, data, tag)
    if tag in LOG_EVENT_TYPES:
        return ObservedRealtimeEvent(type=tag, raw=data)
    return UnrecognizedRealtimeEvent(type=tag, raw=data)


# -- Encoders -------------------------------------------------------------------


def build_session_update(config: RealtimeSessionConfig) -> dict[str, Any]:
    return {
        "type": "session.update",
        "session": {
            "turn_detection": {"type": config.turn_detection},
            "input_audio_format": config.audio_format,
            "output_audio_format": config.audio_format,
            "voice": config.voice,
            "instructions": config.instructions,
            "modalities": list(config.modalities),
            "temperature": config.temperature,
            "input_audio_transcription": {"model": config.transcription_model},
        },
    }


def build_audio_append(payload: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": payload}


def build_media_frame(stream_sid: str, payload: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}


def reencode_audio(delta: str) -> str:
    """Normalize a base64 audio fragment; the codec itself is passed through."""

    try:
        audio = base64.b64decode(delta, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MessageDecodeError("Audio delta is not valid base64.") from exc
    return base64.b64encode(audio).decode("ascii")


# -- Translation ------------------------------------------------------------------


def apply_telephony_event(
    session: CallSession,
    event: TelephonyEvent,
    *,
    upstream_open: bool,
) -> dict[str, Any] | None:
    """Apply an inbound event to the session; return the upstream event to send, if any."""

    if isinstance(event, StartEvent):
        session.stream_sid = event.start.stream_sid
        LOGGER.info("Incoming stream has started %s (%s)", session.stream_sid, session.session_id)
        return None

    if isinstance(event, MediaEvent):
        if not upstream_open:
            # Upstream not ready: audio is dropped, never queued.
            return None
        return build_audio_append(event.media.payload)

    LOGGER.info("Received non-media event: %s", event.event)
    return None


def apply_realtime_event(session: CallSession, event: RealtimeEvent) -> dict[str, Any] | None:
    """Apply an upstream event to the session; return the telephony frame to send, if any."""

    if isinstance(event, TranscriptionCompletedEvent):
        text = event.transcript.strip()
        session.append_utterance(Speaker.USER, text)
        LOGGER.info("User (%s): %s", session.session_id, text)
        return None

    if isinstance(event, ResponseDoneEvent):
        text = event.response.first_transcript() or AGENT_MESSAGE_PLACEHOLDER
        session.append_utterance(Speaker.AGENT, text)
        LOGGER.info("Agent (%s): %s", session.session_id, text)
        return None

    if isinstance(event, AudioDeltaEvent):
        if not event.delta:
            return None
        if session.stream_sid is None:
            LOGGER.debug("Dropping audio delta for %s: stream has not started", session.session_id)
            return None
        return build_media_frame(session.stream_sid, reencode_audio(event.delta))

    if isinstance(event, SessionUpdatedEvent):
        LOGGER.info("Session updated successfully for %s", session.session_id)
        return None

    if isinstance(event, RealtimeErrorEvent):
        LOGGER.error("Realtime API reported an error for %s: %s", session.session_id, event.error)
        return None

    if isinstance(event, ObservedRealtimeEvent):
        return None

    LOGGER.debug("Ignoring realtime event %s", event.type)
    return None
