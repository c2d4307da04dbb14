"""Pydantic schemas for post-call extraction."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

CUSTOMER_DETAILS_SCHEMA_NAME = "customer_details_extraction"

CUSTOMER_DETAILS_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "customerName": {"type": "string"},
        "customerAvailability": {"type": "string"},
        "specialNotes": {"type": "string"},
    },
    "required": ["customerName", "customerAvailability", "specialNotes"],
}


class CustomerDetails(BaseModel):
    """Booking details extracted from a finished call."""

    model_config = ConfigDict(populate_by_name=True)

    customer_name: str = Field(alias="customerName")
    customer_availability: str = Field(
        alias="customerAvailability",
        description="ISO 8601 date-time the customer is available.",
    )
    special_notes: str = Field(default="", alias="specialNotes")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


TEST_CUSTOMER_DETAILS = CustomerDetails(
    customer_name="Test User",
    customer_availability="2025-04-22T10:00:00+05:30",
    special_notes="This is a test webhook call to verify the endpoint",
)
