from __future__ import annotations

import asyncio
import json

import pytest
from fastapi import WebSocketDisconnect

from api.dependencies import get_post_call_processor, get_realtime_connector, get_session_store
from config.settings import Settings, get_settings
from relay.session_store import SessionStore


class EchoUpstream:
    """Answers every audio append with the same audio as a response delta."""

    def __init__(self, listener) -> None:
        self.listener = listener
        self.is_open = True
        self.scheduled: list[float] = []
        self.closed = False
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def schedule_configuration(self, delay: float) -> bool:
        self.scheduled.append(delay)
        return True

    async def send_json(self, payload: dict) -> bool:
        if payload["type"] == "input_audio_buffer.append":
            delta = json.dumps({"type": "response.audio.delta", "delta": payload["audio"]})
            self._spawn(self.listener.on_upstream_message(delta))
        return True

    async def close(self) -> None:
        self.closed = True
        self.is_open = False


class EchoConnector:
    def __init__(self) -> None:
        self.upstreams: list[EchoUpstream] = []
        self.configs = []

    def open(self, listener, session_config):
        upstream = EchoUpstream(listener)
        self.upstreams.append(upstream)
        self.configs.append(session_config)
        upstream._spawn(listener.on_upstream_open())
        return upstream


class RecordingPostCall:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None, str]] = []

    def submit(self, transcript: str, notification_url: str | None, session_id: str) -> None:
        self.calls.append((transcript, notification_url, session_id))


def _use_settings(app, **overrides) -> Settings:
    settings = Settings(_env_file=None, **overrides)
    app.dependency_overrides[get_settings] = lambda: settings
    return settings


def _expected_twiml(stream_url: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<Response>"
        "<Say>Hi, Welcome to Grewal Eye Institute. How can we help you today?</Say>"
        "<Connect>"
        f'<Stream url="{stream_url}" />'
        "</Connect>"
        "</Response>"
    )


def test_incoming_call_post_returns_connect_stream_twiml(client, app):
    _use_settings(app)

    resp = client.post("/incoming-call", data={"CallSid": "CA123"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/xml")
    assert resp.text == _expected_twiml("wss://testserver/media-stream?callSid=CA123")


def test_incoming_call_get_without_call_sid(client, app):
    _use_settings(app)

    resp = client.get("/incoming-call")

    assert resp.status_code == 200
    assert resp.text == _expected_twiml("wss://testserver/media-stream")


def test_incoming_call_uses_public_base_url(client, app):
    _use_settings(app, public_base_url="https://abc.ngrok-free.app/")

    resp = client.post("/incoming-call", data={"CallSid": "CA9"})

    assert '<Stream url="wss://abc.ngrok-free.app/media-stream?callSid=CA9" />' in resp.text


def test_incoming_call_escapes_greeting(client, app):
    _use_settings(app, greeting_text="Eyes & Ears <clinic>")

    resp = client.get("/incoming-call")

    assert "<Say>Eyes &amp; Ears &lt;clinic&gt;</Say>" in resp.text


def test_media_stream_closes_when_openai_is_not_configured(client, app):
    app.dependency_overrides[get_realtime_connector] = lambda: None
    app.dependency_overrides[get_post_call_processor] = lambda: None

    with client.websocket_connect("/media-stream") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()

    assert exc_info.value.code == 1011


def test_media_stream_relays_audio_both_ways(client, app):
    _use_settings(app, webhook_url="https://hooks.example/call", session_update_delay_seconds=0)
    store = SessionStore()
    connector = EchoConnector()
    post_call = RecordingPostCall()
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_realtime_connector] = lambda: connector
    app.dependency_overrides[get_post_call_processor] = lambda: post_call

    with client.websocket_connect("/media-stream?callSid=CA123") as ws:
        ws.send_text(json.dumps({"event": "start", "start": {"streamSid": "SD123"}}))
        ws.send_text(json.dumps({"event": "media", "media": {"payload": "AAAA"}}))

        frame = ws.receive_json()

    assert frame == {"event": "media", "streamSid": "SD123", "media": {"payload": "AAAA"}}
    assert connector.upstreams[0].scheduled == [0]
    assert connector.upstreams[0].closed is True
    assert connector.configs[0].instructions
    assert post_call.calls == [("", "https://hooks.example/call", "CA123")]
    assert len(store) == 0


def test_media_stream_ignores_binary_frames(client, app):
    _use_settings(app, webhook_url="https://hooks.example/call", session_update_delay_seconds=0)
    store = SessionStore()
    connector = EchoConnector()
    post_call = RecordingPostCall()
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_realtime_connector] = lambda: connector
    app.dependency_overrides[get_post_call_processor] = lambda: post_call

    with client.websocket_connect("/media-stream?callSid=CA1") as ws:
        ws.send_text(json.dumps({"event": "start", "start": {"streamSid": "SD123"}}))
        ws.send_bytes(b"\x00\x01")
        ws.send_text(json.dumps({"event": "media", "media": {"payload": "AAAA"}}))

        frame = ws.receive_json()

        assert frame == {"event": "media", "streamSid": "SD123", "media": {"payload": "AAAA"}}
        assert post_call.calls == []
        assert "CA1" in store
