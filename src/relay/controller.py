"""Per-call relay between the Twilio media stream and the realtime upstream."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from fastapi import WebSocketDisconnect

from config.realtime import RealtimeSessionConfig
from relay.errors import MessageDecodeError
from relay.messages import (
    LOG_EVENT_TYPES,
    apply_realtime_event,
    apply_telephony_event,
    decode_realtime_event,
    decode_telephony_event,
)
from relay.session_store import CallSession, SessionStore
from relay.upstream import UpstreamConnection, UpstreamListener

LOGGER = logging.getLogger(__name__)


class RelayState(str, Enum):
    INIT = "init"
    ACTIVE = "active"
    CLOSING = "closing"
    TERMINATED = "terminated"


class MailKind(Enum):
    INBOUND_MESSAGE = "inbound_message"
    INBOUND_CLOSED = "inbound_closed"
    UPSTREAM_OPEN = "upstream_open"
    UPSTREAM_MESSAGE = "upstream_message"
    UPSTREAM_CLOSED = "upstream_closed"
    UPSTREAM_ERROR = "upstream_error"


@dataclass(frozen=True, slots=True)
class Mail:
    kind: MailKind
    payload: Any = None


class InboundChannel(Protocol):
    async def receive(self) -> dict[str, Any]: ...

    async def send_text(self, data: str) -> None: ...


class Connector(Protocol):
    def open(
        self,
        listener: UpstreamListener,
        session_config: RealtimeSessionConfig,
    ) -> UpstreamConnection: ...


class TranscriptSink(Protocol):
    def submit(self, transcript: str, notification_url: str | None, session_id: str) -> None: ...


def derive_session_id(call_sid: str | None) -> str:
    if call_sid and call_sid.strip():
        return call_sid.strip()
    return f"session_{int(time.time() * 1000)}"


class RelayController:
    """Runs one call as an actor.

    The inbound reader task and the upstream listener callbacks only post
    mail into a bounded inbox; the session is mutated exclusively from the
    ``run`` loop. Closing of the inbound stream is the one signal that tears
    the call down.
    """

    def __init__(
        self,
        inbound: InboundChannel,
        *,
        session_id: str,
        store: SessionStore,
        connector: Connector,
        post_call: TranscriptSink,
        session_config: RealtimeSessionConfig,
        notification_url: str | None = None,
        configure_delay: float = 0.25,
        inbox_size: int = 256,
    ) -> None:
        self._inbound = inbound
        self._session_id = session_id
        self._store = store
        self._connector = connector
        self._post_call = post_call
        self._session_config = session_config
        self._notification_url = notification_url
        self._configure_delay = configure_delay
        self._inbox: asyncio.Queue[Mail] = asyncio.Queue(maxsize=inbox_size)
        self._state = RelayState.INIT
        self._session: CallSession | None = None
        self._upstream: UpstreamConnection | None = None

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def session(self) -> CallSession | None:
        return self._session

    @property
    def upstream(self) -> UpstreamConnection | None:
        return self._upstream

    async def run(self) -> None:
        self.start()
        reader = asyncio.create_task(self._read_inbound())
        try:
            while True:
                mail = await self._inbox.get()
                if mail.kind is MailKind.INBOUND_CLOSED:
                    break
                await self.dispatch(mail)
        finally:
            reader.cancel()
            await self.finish()

    def start(self) -> None:
        if self._session is not None:
            raise RuntimeError("Relay already started.")
        self._session = self._store.create(self._session_id)
        self._upstream = self._connector.open(self, self._session_config)
        LOGGER.info("Relay started for session %s", self._session_id)

    async def _read_inbound(self) -> None:
        try:
            while True:
                message = await self._inbound.receive()
                if message["type"] == "websocket.disconnect":
                    LOGGER.info("Client disconnected (%s), code=%s", self._session_id, message.get("code"))
                    break
                text = message.get("text")
                if text is None:
                    # Binary or empty frames are not part of the media stream protocol.
                    LOGGER.warning("Dropping non-text frame from caller (%s)", self._session_id)
                    continue
                await self._inbox.put(Mail(MailKind.INBOUND_MESSAGE, text))
        except WebSocketDisconnect as exc:
            LOGGER.info("Client disconnected (%s), code=%s", self._session_id, exc.code)
        except Exception:
            LOGGER.exception("Inbound stream failed (%s)", self._session_id)
        await self._inbox.put(Mail(MailKind.INBOUND_CLOSED))

    async def dispatch(self, mail: Mail) -> None:
        self._store.touch(self._session_id)
        if mail.kind is MailKind.INBOUND_MESSAGE:
            await self.handle_inbound(mail.payload)
        elif mail.kind is MailKind.UPSTREAM_OPEN:
            self.handle_upstream_open()
        elif mail.kind is MailKind.UPSTREAM_MESSAGE:
            await self.handle_upstream(mail.payload)
        elif mail.kind is MailKind.UPSTREAM_CLOSED:
            LOGGER.info("Disconnected from the OpenAI Realtime API (%s)", self._session_id)
        elif mail.kind is MailKind.UPSTREAM_ERROR:
            LOGGER.error("Error in the OpenAI WebSocket (%s): %r", self._session_id, mail.payload)

    async def handle_inbound(self, raw: str) -> None:
        if self._state not in (RelayState.INIT, RelayState.ACTIVE):
            return
        try:
            event = decode_telephony_event(raw)
        except MessageDecodeError as exc:
            LOGGER.warning("Error parsing message (%s): %s Message: %.200s", self._session_id, exc.detail, raw)
            return

        upstream_open = self._upstream is not None and self._upstream.is_open
        outbound = apply_telephony_event(self._session, event, upstream_open=upstream_open)
        if outbound is not None:
            await self._upstream.send_json(outbound)

    def handle_upstream_open(self) -> None:
        if self._state is not RelayState.INIT:
            return
        LOGGER.info("Connected to the OpenAI Realtime API (%s)", self._session_id)
        self._upstream.schedule_configuration(self._configure_delay)
        self._state = RelayState.ACTIVE

    async def handle_upstream(self, raw: str | bytes) -> None:
        if self._state is not RelayState.ACTIVE:
            LOGGER.debug("Ignoring upstream message in state %s", self._state.value)
            return
        try:
            event = decode_realtime_event(raw)
        except MessageDecodeError as exc:
            LOGGER.warning(
                "Error processing OpenAI message (%s): %s Raw message: %.200s",
                self._session_id,
                exc.detail,
                raw,
            )
            return

        if event.type in LOG_EVENT_TYPES:
            LOGGER.info("Received event: %s (%s)", event.type, self._session_id)

        try:
            frame = apply_realtime_event(self._session, event)
        except MessageDecodeError as exc:
            LOGGER.warning("Dropping %s (%s): %s", event.type, self._session_id, exc.detail)
            return
        if frame is not None:
            await self._send_inbound(frame)

    async def _send_inbound(self, frame: dict[str, Any]) -> None:
        try:
            await self._inbound.send_text(json.dumps(frame))
        except (WebSocketDisconnect, RuntimeError) as exc:
            LOGGER.warning("Could not deliver media to caller (%s): %s", self._session_id, exc)

    async def finish(self) -> None:
        if self._state in (RelayState.CLOSING, RelayState.TERMINATED):
            return
        self._state = RelayState.CLOSING

        if self._upstream is not None:
            try:
                await self._upstream.close()
            except Exception:
                LOGGER.exception("Closing upstream failed (%s)", self._session_id)

        if self._session is not None:
            transcript = self._session.transcript_text()
            LOGGER.info("Full transcript (%s):\n%s", self._session_id, transcript)
            try:
                self._post_call.submit(transcript, self._notification_url, self._session_id)
            except Exception:
                LOGGER.exception("Post-call hand-off failed (%s)", self._session_id)
            self._store.discard(self._session)

        self._state = RelayState.TERMINATED
        LOGGER.info("Relay terminated for session %s", self._session_id)

    # UpstreamListener

    async def _post(self, mail: Mail) -> None:
        if self._state in (RelayState.CLOSING, RelayState.TERMINATED):
            return
        await self._inbox.put(mail)

    async def on_upstream_open(self) -> None:
        await self._post(Mail(MailKind.UPSTREAM_OPEN))

    async def on_upstream_message(self, raw: str | bytes) -> None:
        await self._post(Mail(MailKind.UPSTREAM_MESSAGE, raw))

    async def on_upstream_close(self) -> None:
        await self._post(Mail(MailKind.UPSTREAM_CLOSED))

    async def on_upstream_error(self, exc: BaseException) -> None:
        await self._post(Mail(MailKind.UPSTREAM_ERROR, exc))
