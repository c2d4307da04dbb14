"""Outbound WebSocket connection to the OpenAI Realtime API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol
from urllib.parse import urlencode

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from config.realtime import RealtimeSessionConfig
from config.settings import Settings
from relay.messages import build_session_update

LOGGER = logging.getLogger(__name__)


class UpstreamState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class UpstreamListener(Protocol):
    async def on_upstream_open(self) -> None: ...

    async def on_upstream_message(self, raw: str | bytes) -> None: ...

    async def on_upstream_close(self) -> None: ...

    async def on_upstream_error(self, exc: BaseException) -> None: ...


class UpstreamConnection:
    """A single realtime socket. Never reconnects; once closed it stays closed."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str],
        listener: UpstreamListener,
        session_config: RealtimeSessionConfig,
        *,
        connect: Callable[..., Any] = ws_connect,
    ) -> None:
        self._url = url
        self._headers = headers
        self._listener = listener
        self._session_config = session_config
        self._connect = connect
        self._state = UpstreamState.CONNECTING
        self._ws = None
        self._task: asyncio.Task | None = None
        self._config_handle: asyncio.TimerHandle | None = None
        self._config_task: asyncio.Task | None = None
        self._configuration_scheduled = False
        self._closing = False

    @property
    def state(self) -> UpstreamState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is UpstreamState.OPEN

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        try:
            async with self._connect(self._url, additional_headers=self._headers) as ws:
                self._ws = ws
                self._state = UpstreamState.OPEN
                await self._listener.on_upstream_open()
                async for message in ws:
                    await self._listener.on_upstream_message(message)
        except asyncio.CancelledError:
            LOGGER.debug("Upstream task cancelled")
            raise
        except Exception as exc:
            await self._listener.on_upstream_error(exc)
        finally:
            self._state = UpstreamState.CLOSED
            self._ws = None
            self._cancel_configuration()
            await self._listener.on_upstream_close()

    def schedule_configuration(self, delay: float) -> bool:
        """Push session.update once, ``delay`` seconds from now."""

        if self._configuration_scheduled:
            LOGGER.warning("Session configuration already scheduled; ignoring")
            return False
        self._configuration_scheduled = True
        loop = asyncio.get_running_loop()
        self._config_handle = loop.call_later(delay, self._fire_configuration)
        return True

    def _fire_configuration(self) -> None:
        self._config_handle = None
        self._config_task = asyncio.ensure_future(self._send_configuration())
        self._config_task.add_done_callback(self._configuration_done)

    def _configuration_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Session update failed: %r", exc, exc_info=exc)

    async def _send_configuration(self) -> None:
        payload = build_session_update(self._session_config)
        LOGGER.info("Sending session update: %s", json.dumps(payload))
        if not await self.send_json(payload):
            LOGGER.error("Session update not delivered: upstream is %s", self._state.value)

    def _cancel_configuration(self) -> None:
        if self._config_handle is not None:
            self._config_handle.cancel()
            self._config_handle = None

    async def send_json(self, payload: dict[str, Any]) -> bool:
        if self._state is not UpstreamState.OPEN or self._ws is None:
            return False
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as exc:
            LOGGER.warning("Upstream send failed: %s", exc)
            return False
        return True

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._cancel_configuration()
        if self._state is UpstreamState.OPEN and self._ws is not None:
            await self._ws.close()
        elif self._task is not None and not self._task.done():
            self._task.cancel()


class RealtimeConnector:
    """Factory for authenticated realtime connections."""

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        beta_header: str = "realtime=v1",
        connect: Callable[..., Any] = ws_connect,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAI API key must be configured for the realtime connector.")
        self._url = url
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "OpenAI-Beta": beta_header,
        }
        self._connect = connect

    @classmethod
    def from_settings(cls, settings: Settings) -> RealtimeConnector:
        url = f"{settings.openai_realtime_url}?{urlencode({'model': settings.openai_realtime_model})}"
        return cls(
            url=url,
            api_key=settings.openai_api_key or "",
            beta_header=settings.openai_beta_header,
        )

    def open(
        self,
        listener: UpstreamListener,
        session_config: RealtimeSessionConfig,
    ) -> UpstreamConnection:
        connection = UpstreamConnection(
            self._url,
            self._headers,
            listener,
            session_config,
            connect=self._connect,
        )
        connection.start()
        return connection
