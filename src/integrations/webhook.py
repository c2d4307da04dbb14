"""Delivery of extracted call data to the configured webhook."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from relay.errors import WebhookDeliveryError

LOGGER = logging.getLogger(__name__)


class WebhookNotifier:
    """Simple HTTP bridge to an automation webhook (e.g. Make.com)."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def deliver(self, url: str, payload: dict[str, Any]) -> None:
        LOGGER.info("Sending data to webhook: %s", json.dumps(payload))
        headers = {"Content-Type": "application/json"}

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as exc:
                LOGGER.error("Error sending data to webhook: %s", exc)
                raise WebhookDeliveryError(f"Webhook request failed: {exc}") from exc

        LOGGER.info("Webhook response status: %s", response.status_code)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            LOGGER.error("Failed to send data to webhook: %s", exc)
            raise WebhookDeliveryError(
                f"Webhook responded with status {response.status_code}"
            ) from exc
