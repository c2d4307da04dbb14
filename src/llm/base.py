"""Shared abstractions for language model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable


class BaseLLMClient(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def chat_json(
        self,
        messages: Iterable[dict[str, str]],
        *,
        schema_name: str,
        schema: dict[str, Any],
    ) -> str:
        """Return a completion constrained to ``schema`` as raw JSON text."""
