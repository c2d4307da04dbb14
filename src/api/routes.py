"""FastAPI routes for health and administration."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_system_message, get_webhook_notifier
from api.schemas import StatusResponse, SystemMessageResponse, SystemMessageUpdate
from config.realtime import SystemMessageHolder
from config.settings import Settings, get_settings
from integrations.webhook import WebhookNotifier
from postcall.processor import send_test_payload
from relay.errors import RelayError

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=StatusResponse)
async def root() -> StatusResponse:
    return StatusResponse(message="Media Stream Server is running!")


@router.get("/system-message", response_model=SystemMessageResponse)
async def read_system_message(
    holder: SystemMessageHolder = Depends(get_system_message),
) -> SystemMessageResponse:
    return SystemMessageResponse(system_message=holder.get())


@router.post("/system-message", response_model=StatusResponse)
async def update_system_message(
    payload: SystemMessageUpdate,
    holder: SystemMessageHolder = Depends(get_system_message),
) -> StatusResponse:
    value = payload.system_message
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=400, detail="systemMessage must be a non-empty string")
    holder.set(value)
    return StatusResponse(message="System message updated successfully")


@router.get("/test-webhook", response_model=StatusResponse)
async def test_webhook(
    settings: Settings = Depends(get_settings),
    notifier: WebhookNotifier = Depends(get_webhook_notifier),
) -> StatusResponse:
    if not settings.webhook_url:
        raise HTTPException(status_code=400, detail="WEBHOOK_URL not configured")
    try:
        await send_test_payload(notifier, settings.webhook_url)
    except RelayError as exc:
        LOGGER.error("Error testing webhook: %s", exc.detail)
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return StatusResponse(message="Webhook test completed. Check your server logs for details.")
