"""Post-call pipeline: transcript -> customer details -> webhook."""

from __future__ import annotations

import asyncio
import logging

from integrations.webhook import WebhookNotifier
from postcall.extraction import CustomerDetailsExtractor
from postcall.schemas import TEST_CUSTOMER_DETAILS, CustomerDetails
from relay.errors import RelayError

LOGGER = logging.getLogger(__name__)


class PostCallProcessor:
    """Best-effort processing of finished calls.

    Failures are logged and never reach the relay; nothing is retried.
    """

    def __init__(self, extractor: CustomerDetailsExtractor, notifier: WebhookNotifier) -> None:
        self._extractor = extractor
        self._notifier = notifier
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, transcript: str, notification_url: str | None, session_id: str) -> None:
        task = asyncio.create_task(self.process(transcript, notification_url, session_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def process(
        self,
        transcript: str,
        notification_url: str | None,
        session_id: str,
    ) -> CustomerDetails | None:
        LOGGER.info("Starting transcript processing for session %s", session_id)
        if not notification_url:
            LOGGER.warning("No webhook URL configured; skipping post-call delivery for %s", session_id)
            return None
        if not transcript.strip():
            LOGGER.info("Empty transcript for %s; nothing to extract", session_id)
            return None

        try:
            details = await self._extractor.extract(transcript)
            await self._notifier.deliver(notification_url, details.to_payload())
        except RelayError as exc:
            LOGGER.error("Post-call processing failed for %s: %s", session_id, exc.detail)
            return None
        except Exception:
            LOGGER.exception("Error in post-call processing for %s", session_id)
            return None

        LOGGER.info("Extracted and sent customer details for %s", session_id)
        return details

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def send_test_payload(notifier: WebhookNotifier, url: str) -> None:
    """Deliver a fixed sample payload to verify the webhook path."""

    LOGGER.info("Sending test data to webhook...")
    await notifier.deliver(url, TEST_CUSTOMER_DETAILS.to_payload())
