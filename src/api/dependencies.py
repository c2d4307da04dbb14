"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import TYPE_CHECKING

from config.realtime import SystemMessageHolder, get_system_message_holder
from config.settings import get_settings
from integrations.webhook import WebhookNotifier
from relay.session_store import SessionStore

if TYPE_CHECKING:  # pragma: no cover
    from postcall.processor import PostCallProcessor
    from relay.upstream import RealtimeConnector

LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    settings = get_settings()
    return SessionStore(
        max_sessions=settings.session_max_count,
        idle_timeout=settings.session_idle_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_webhook_notifier() -> WebhookNotifier:
    return WebhookNotifier(timeout=get_settings().webhook_timeout_seconds)


def get_system_message() -> SystemMessageHolder:
    return get_system_message_holder()


@lru_cache(maxsize=1)
def _post_call_factory() -> PostCallProcessor:
    # Lazy import to avoid importing the OpenAI SDK at module import time.
    from llm.openai_client import OpenAIClient
    from postcall.extraction import CustomerDetailsExtractor
    from postcall.processor import PostCallProcessor

    return PostCallProcessor(CustomerDetailsExtractor(OpenAIClient()), get_webhook_notifier())


def get_post_call_processor() -> PostCallProcessor | None:
    try:
        return _post_call_factory()
    except ValueError as exc:
        LOGGER.error("Post-call processor unavailable: %s", exc)
        return None


def get_realtime_connector() -> RealtimeConnector | None:
    from relay.upstream import RealtimeConnector

    try:
        return RealtimeConnector.from_settings(get_settings())
    except ValueError as exc:
        LOGGER.error("Realtime connector unavailable: %s", exc)
        return None
