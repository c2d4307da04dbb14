"""LLM-powered extraction of customer details from call transcripts."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime

from pydantic import ValidationError

from llm.base import BaseLLMClient
from postcall.schemas import (
    CUSTOMER_DETAILS_JSON_SCHEMA,
    CUSTOMER_DETAILS_SCHEMA_NAME,
    CustomerDetails,
)
from prompts.loader import load_prompt
from relay.errors import ExtractionFailedError

LOGGER = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = load_prompt("extraction_system.txt")


def _local_now() -> datetime:
    return datetime.now().astimezone()


class CustomerDetailsExtractor:
    """Turns a rendered transcript into :class:`CustomerDetails`."""

    def __init__(
        self,
        llm_client: BaseLLMClient,
        *,
        now: Callable[[], datetime] = _local_now,
    ) -> None:
        self._llm = llm_client
        self._now = now

    def build_messages(self, transcript: str) -> list[dict[str, str]]:
        today = self._now().isoformat(timespec="seconds")
        return [
            {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT.format(today=today)},
            {"role": "user", "content": transcript},
        ]

    async def extract(self, transcript: str) -> CustomerDetails:
        raw_response = await self._llm.chat_json(
            self.build_messages(transcript),
            schema_name=CUSTOMER_DETAILS_SCHEMA_NAME,
            schema=CUSTOMER_DETAILS_JSON_SCHEMA,
        )
        try:
            payload = json.loads(raw_response)
        except json.JSONDecodeError as exc:
            LOGGER.error("Extractor returned invalid JSON: %s", raw_response)
            raise ExtractionFailedError("Invalid extraction JSON") from exc

        try:
            details = CustomerDetails.model_validate(payload)
        except ValidationError as exc:
            LOGGER.error("Unexpected JSON structure in extraction response: %s", raw_response)
            raise ExtractionFailedError("Extraction JSON does not match schema") from exc

        LOGGER.debug("Parsed content: %s", details.model_dump_json(by_alias=True))
        return details
