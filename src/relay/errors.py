"""Domain-specific exceptions for relay and post-call operations.

These exceptions are safe to import from API layers without pulling in the
websocket or OpenAI clients.
"""

from __future__ import annotations


class RelayError(Exception):
    status_code: int = 500
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MessageDecodeError(RelayError):
    status_code = 400
    default_detail = "Malformed stream message."


class ExtractionFailedError(RelayError):
    status_code = 503
    default_detail = "Customer detail extraction failed."


class WebhookDeliveryError(RelayError):
    status_code = 502
    default_detail = "Webhook delivery failed."
