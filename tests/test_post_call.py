from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone

import httpx
import pytest

from integrations.webhook import WebhookNotifier
from llm.base import BaseLLMClient
from postcall.extraction import CustomerDetailsExtractor
from postcall.processor import PostCallProcessor, send_test_payload
from postcall.schemas import CUSTOMER_DETAILS_SCHEMA_NAME, TEST_CUSTOMER_DETAILS, CustomerDetails
from relay.errors import ExtractionFailedError, WebhookDeliveryError

TRANSCRIPT = "User: My name is Jane Doe\nAgent: When are you free?\nUser: Tomorrow at noon\n"

GOOD_RESPONSE = json.dumps(
    {
        "customerName": "Jane Doe",
        "customerAvailability": "2025-04-23T12:00:00+05:30",
        "specialNotes": "Regular checkup",
    }
)


class FakeLLM(BaseLLMClient):
    def __init__(self, response: str | Exception) -> None:
        self._response = response
        self.calls: list[dict] = []

    async def chat_json(self, messages, *, schema_name, schema) -> str:
        self.calls.append({"messages": list(messages), "schema_name": schema_name, "schema": schema})
        if isinstance(self._response, Exception):
            raise self._response
        return self._response


class RecordingNotifier:
    def __init__(self, error: Exception | None = None) -> None:
        self.deliveries: list[tuple[str, dict]] = []
        self._error = error

    async def deliver(self, url: str, payload: dict) -> None:
        if self._error is not None:
            raise self._error
        self.deliveries.append((url, payload))


def _fixed_now() -> datetime:
    return datetime(2025, 4, 22, 9, 0, tzinfo=timezone.utc)


def _run(coro):
    return asyncio.run(coro)


def test_extractor_builds_prompt_with_current_date():
    llm = FakeLLM(GOOD_RESPONSE)
    extractor = CustomerDetailsExtractor(llm, now=_fixed_now)

    details = _run(extractor.extract(TRANSCRIPT))

    assert details == CustomerDetails(
        customer_name="Jane Doe",
        customer_availability="2025-04-23T12:00:00+05:30",
        special_notes="Regular checkup",
    )
    call = llm.calls[0]
    assert call["schema_name"] == CUSTOMER_DETAILS_SCHEMA_NAME
    assert call["messages"][0]["role"] == "system"
    assert "Today's date is 2025-04-22T09:00:00+00:00." in call["messages"][0]["content"]
    assert call["messages"][1] == {"role": "user", "content": TRANSCRIPT}


def test_extractor_raises_on_invalid_json():
    extractor = CustomerDetailsExtractor(FakeLLM("{not valid json"), now=_fixed_now)

    with pytest.raises(ExtractionFailedError, match="Invalid extraction JSON"):
        _run(extractor.extract(TRANSCRIPT))


def test_extractor_raises_on_schema_mismatch():
    extractor = CustomerDetailsExtractor(FakeLLM(json.dumps({"name": "Jane"})), now=_fixed_now)

    with pytest.raises(ExtractionFailedError, match="does not match schema"):
        _run(extractor.extract(TRANSCRIPT))


def test_customer_details_payload_uses_wire_names():
    assert TEST_CUSTOMER_DETAILS.to_payload() == {
        "customerName": "Test User",
        "customerAvailability": "2025-04-22T10:00:00+05:30",
        "specialNotes": "This is a test webhook call to verify the endpoint",
    }


def test_webhook_notifier_posts_json():
    received: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(200, json={"ok": True})

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))
    _run(notifier.deliver("https://hooks.example/call", {"customerName": "Jane"}))

    assert len(received) == 1
    assert received[0].method == "POST"
    assert received[0].headers["content-type"] == "application/json"
    assert json.loads(received[0].content) == {"customerName": "Jane"}


def test_webhook_notifier_raises_on_error_status():
    notifier = WebhookNotifier(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

    with pytest.raises(WebhookDeliveryError, match="status 500"):
        _run(notifier.deliver("https://hooks.example/call", {}))


def test_webhook_notifier_raises_on_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

    with pytest.raises(WebhookDeliveryError) as exc_info:
        _run(notifier.deliver("https://hooks.example/call", {}))
    assert exc_info.value.status_code == 502


def test_processor_extracts_and_delivers():
    llm = FakeLLM(GOOD_RESPONSE)
    notifier = RecordingNotifier()
    processor = PostCallProcessor(CustomerDetailsExtractor(llm, now=_fixed_now), notifier)

    details = _run(processor.process(TRANSCRIPT, "https://hooks.example/call", "CA1"))

    assert details is not None
    assert notifier.deliveries == [
        (
            "https://hooks.example/call",
            {
                "customerName": "Jane Doe",
                "customerAvailability": "2025-04-23T12:00:00+05:30",
                "specialNotes": "Regular checkup",
            },
        )
    ]


@pytest.mark.parametrize(
    ("transcript", "url"),
    [(TRANSCRIPT, None), (TRANSCRIPT, ""), ("", "https://hooks.example/call"), ("  \n", "https://hooks.example/call")],
)
def test_processor_skips_without_url_or_transcript(transcript, url):
    llm = FakeLLM(GOOD_RESPONSE)
    notifier = RecordingNotifier()
    processor = PostCallProcessor(CustomerDetailsExtractor(llm, now=_fixed_now), notifier)

    assert _run(processor.process(transcript, url, "CA1")) is None
    assert llm.calls == []
    assert notifier.deliveries == []


def test_processor_logs_extraction_failure_without_raising(caplog):
    notifier = RecordingNotifier()
    processor = PostCallProcessor(CustomerDetailsExtractor(FakeLLM("nope"), now=_fixed_now), notifier)

    with caplog.at_level(logging.ERROR, logger="postcall.processor"):
        result = _run(processor.process(TRANSCRIPT, "https://hooks.example/call", "CA1"))

    assert result is None
    assert notifier.deliveries == []
    assert "Post-call processing failed for CA1" in caplog.text


def test_processor_logs_unexpected_failure_without_raising(caplog):
    processor = PostCallProcessor(
        CustomerDetailsExtractor(FakeLLM(RuntimeError("api down")), now=_fixed_now),
        RecordingNotifier(),
    )

    with caplog.at_level(logging.ERROR, logger="postcall.processor"):
        result = _run(processor.process(TRANSCRIPT, "https://hooks.example/call", "CA1"))

    assert result is None
    assert "Error in post-call processing for CA1" in caplog.text


def test_processor_swallows_webhook_failure():
    processor = PostCallProcessor(
        CustomerDetailsExtractor(FakeLLM(GOOD_RESPONSE), now=_fixed_now),
        RecordingNotifier(error=WebhookDeliveryError("Webhook responded with status 500")),
    )

    assert _run(processor.process(TRANSCRIPT, "https://hooks.example/call", "CA1")) is None


def test_submit_runs_in_background_until_drained():
    async def scenario():
        notifier = RecordingNotifier()
        processor = PostCallProcessor(
            CustomerDetailsExtractor(FakeLLM(GOOD_RESPONSE), now=_fixed_now), notifier
        )

        processor.submit(TRANSCRIPT, "https://hooks.example/call", "CA1")
        assert processor.pending == 1

        await processor.drain()
        await asyncio.sleep(0)

        assert processor.pending == 0
        assert len(notifier.deliveries) == 1

    _run(scenario())


def test_send_test_payload_delivers_fixed_sample():
    notifier = RecordingNotifier()

    _run(send_test_payload(notifier, "https://hooks.example/test"))

    assert notifier.deliveries == [("https://hooks.example/test", TEST_CUSTOMER_DETAILS.to_payload())]
