"""API-facing Pydantic models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StatusResponse(BaseModel):
    message: str


class SystemMessageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    system_message: str = Field(alias="systemMessage")


class SystemMessageUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Validated in the route so a wrong type maps to 400 rather than 422.
    system_message: Any = Field(default=None, alias="systemMessage")
