"""Entry point for the Twilio <-> OpenAI Realtime media stream relay."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_post_call_processor, get_session_store
from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if not settings.openai_api_key:
        LOGGER.error("Missing OpenAI API key. Please set OPENAI_API_KEY in the .env file.")

    reaper: asyncio.Task | None = None
    if settings.session_idle_timeout_seconds is not None:
        store = get_session_store()
        reaper = asyncio.create_task(store.run_reaper(settings.session_reaper_interval_seconds))

    yield

    if reaper is not None:
        reaper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reaper

    if settings.openai_api_key:
        processor = get_post_call_processor()
        if processor is not None:
            await processor.drain()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Realtime Call Relay",
    description="Bridges Twilio Media Streams to the OpenAI Realtime API.",
    lifespan=lifespan,
)
app.include_router(api_router)
app.include_router(twilio_router)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
