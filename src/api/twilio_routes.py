"""Twilio Voice integration.

This module provides:
- Call-control webhook (TwiML) that greets the caller and connects a media stream.
- Media Streams WebSocket endpoint relaying audio to the OpenAI Realtime API.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket
from fastapi.websockets import WebSocketState

from api.dependencies import (
    get_post_call_processor,
    get_realtime_connector,
    get_session_store,
    get_system_message,
)
from config.realtime import RealtimeSessionConfig, SystemMessageHolder
from config.settings import Settings, get_settings
from postcall.processor import PostCallProcessor
from relay.controller import RelayController, derive_session_id
from relay.session_store import SessionStore
from relay.upstream import RealtimeConnector

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

CALL_SID_HEADER = "x-twilio-call-sid"


def _twiml_response(xml: str) -> Response:
    return Response(content=xml, media_type="text/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _twiml_connect_stream(*, say_text: str, stream_url: str) -> str:
    say = escape(say_text)
    stream = escape(stream_url, {'"': "&quot;"})
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        f"<Say>{say}</Say>"
        "<Connect>"
        f"<Stream url=\"{stream}\" />"
        "</Connect>"
        "</Response>"
    )


def _stream_url(request: Request, settings: Settings, call_sid: str | None) -> str:
    if settings.public_base_url:
        url = _to_ws_url(f"{settings.public_base_url.rstrip('/')}/media-stream")
    else:
        # Twilio only connects over TLS; behind a proxy the request scheme is unreliable.
        host = request.headers.get("host") or request.url.netloc
        url = f"wss://{host}/media-stream"
    if call_sid:
        url += "?" + urlencode({"callSid": call_sid})
    return url


@router.api_route("/incoming-call", methods=["GET", "POST"])
async def incoming_call(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Response:
    call_sid = request.query_params.get("CallSid")
    if request.method == "POST":
        form = await request.form()
        call_sid = str(form.get("CallSid") or "").strip() or call_sid

    LOGGER.info("Incoming call %s", call_sid or "(no CallSid)")
    return _twiml_response(
        _twiml_connect_stream(
            say_text=settings.greeting_text,
            stream_url=_stream_url(request, settings, call_sid),
        )
    )


@router.websocket("/media-stream")
async def media_stream(
    websocket: WebSocket,
    settings: Settings = Depends(get_settings),
    store: SessionStore = Depends(get_session_store),
    holder: SystemMessageHolder = Depends(get_system_message),
    connector: RealtimeConnector | None = Depends(get_realtime_connector),
    post_call: PostCallProcessor | None = Depends(get_post_call_processor),
) -> None:
    await websocket.accept()
    if connector is None or post_call is None:
        LOGGER.error("Missing OpenAI API key; closing media stream")
        await websocket.close(code=1011, reason="openai-not-configured")
        return

    call_sid = websocket.headers.get(CALL_SID_HEADER) or websocket.query_params.get("callSid")
    controller = RelayController(
        websocket,
        session_id=derive_session_id(call_sid),
        store=store,
        connector=connector,
        post_call=post_call,
        session_config=RealtimeSessionConfig.from_settings(settings, instructions=holder.get()),
        notification_url=settings.webhook_url,
        configure_delay=settings.session_update_delay_seconds,
        inbox_size=settings.relay_inbox_size,
    )
    try:
        await controller.run()
    finally:
        still_open = (
            websocket.client_state is WebSocketState.CONNECTED
            and websocket.application_state is WebSocketState.CONNECTED
        )
        if still_open:
            try:
                await websocket.close()
            except RuntimeError as exc:
                LOGGER.debug("Media stream already closed: %s", exc)
