"""OpenAI Chat Completion client wrapper."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from openai import AsyncOpenAI

from config.settings import get_settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


class OpenAIClient(BaseLLMClient):
    """Wrapper for the OpenAI Chat Completion API."""

    def __init__(self) -> None:
        settings = get_settings()
        if not settings.openai_api_key:
            raise ValueError("OpenAI API key must be configured for OpenAI client.")

        self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        self._model = settings.extraction_model

    async def chat_json(
        self,
        messages: Iterable[dict[str, str]],
        *,
        schema_name: str,
        schema: dict[str, Any],
    ) -> str:
        LOGGER.info("Starting structured completion %s with %s", schema_name, self._model)
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=list(messages),
            response_format={
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema},
            },
        )
        return response.choices[0].message.content or ""
