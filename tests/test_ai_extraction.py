from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import httpx

from ride_receipts.modules.extraction import ai as ai_mod
from ride_receipts.modules.extraction.ai import (
    AIExtractor,
    GeminiClient,
    parse_json_object,
    strip_code_fences,
)
from ride_receipts.modules.extraction.records import Location, ParsedBy, Vendor


class _StubClient:
    def __init__(self, response: str = "", error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


def test_extract_builds_receipt_from_json():
    client = _StubClient(
        json.dumps(
            {
                "total": 23.45,
                "tip": 3,
                "date": "2024-10-12",
                "startTime": "9:10 AM",
                "endTime": "9:32 AM",
                "startLocation": {
                    "address": "123 Main St",
                    "city": "Philadelphia",
                    "state": "pa",
                    "country": "US",
                },
                "endLocation": None,
            }
        )
    )
    parsed, reason = AIExtractor(client).extract("some receipt body", Vendor.UBER)

    assert reason is None
    assert parsed.vendor == Vendor.UBER
    assert parsed.total == Decimal("23.45")
    assert parsed.tip == Decimal("3.00")
    assert parsed.date == date(2024, 10, 12)
    assert parsed.start_time == "9:10 AM"
    assert parsed.start_location == Location(
        address="123 Main St", city="Philadelphia", state="PA", country="US"
    )
    assert parsed.end_location is None
    assert parsed.parsed_by == ParsedBy.AI
    assert "Uber receipt email" in client.prompts[0]
    assert "some receipt body" in client.prompts[0]


def test_extract_strips_code_fences_and_prose():
    client = _StubClient('Here you go:\n```json\n{"total": "12.50", "date": "2025-03-03"}\n```')
    parsed, reason = AIExtractor(client).extract("body", Vendor.LYFT)
    assert reason is None
    assert parsed.total == Decimal("12.50")
    assert parsed.tip == Decimal("0.00")


def test_extract_rejects_missing_or_non_positive_total():
    parsed, reason = AIExtractor(_StubClient('{"date": "2025-03-03"}')).extract("b", Vendor.LYFT)
    assert parsed is None
    assert reason == "ai_missing_total"

    parsed, reason = AIExtractor(_StubClient('{"total": "NaN", "date": "2025-03-03"}')).extract(
        "b", Vendor.LYFT
    )
    assert parsed is None
    assert reason == "ai_missing_total"

    parsed, reason = AIExtractor(_StubClient('{"total": 0, "date": "2025-03-03"}')).extract(
        "b", Vendor.LYFT
    )
    assert parsed is None
    assert reason == "ai_non_positive_total"


def test_extract_rejects_missing_date():
    client = _StubClient('{"total": 5, "date": null}')
    parsed, reason = AIExtractor(client).extract("b", Vendor.CURB)
    assert parsed is None
    assert reason == "ai_missing_date"


def test_unparsable_date_degrades_to_today():
    client = _StubClient('{"total": 5, "date": "sometime last week"}')
    parsed, reason = AIExtractor(client).extract("b", Vendor.CURB)
    assert reason is None
    assert parsed.date == date.today()


def test_malformed_response_is_a_failure_not_an_error():
    parsed, reason = AIExtractor(_StubClient("I could not find a receipt.")).extract(
        "b", Vendor.UBER
    )
    assert parsed is None
    assert reason == "ai_malformed_response"


def test_transport_errors_are_caught():
    client = _StubClient(error=httpx.ConnectError("connection refused"))
    parsed, reason = AIExtractor(client).extract("b", Vendor.UBER)
    assert parsed is None
    assert reason == "ai_request_failed"


def test_unavailable_without_client():
    extractor = AIExtractor(None)
    assert extractor.available is False
    assert extractor.extract("b", Vendor.UBER) == (None, "ai_unavailable")


def test_long_bodies_are_truncated_in_prompt():
    client = _StubClient('{"total": 5, "date": "2025-01-01"}')
    AIExtractor(client, max_chars=100).extract("x" * 5000, Vendor.UBER)
    assert "[TRUNCATED]" in client.prompts[0]
    assert "x" * 200 not in client.prompts[0]


def test_parse_json_object_helpers():
    assert strip_code_fences("```json\n{}\n```") == "{}"
    assert parse_json_object('prefix {"a": 1} suffix') == {"a": 1}
    assert parse_json_object("") is None
    assert parse_json_object("not json") is None


def test_gemini_client_calls_generate_content(monkeypatch):
    seen: dict = {}

    def _post(url, **kwargs):
        seen["url"] = url
        seen.update(kwargs)
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": '{"total": 1}'}]}}]},
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr(ai_mod.httpx, "post", _post)
    client = GeminiClient(api_key=" key-123 ", model="gemini-2.5-flash")

    assert client.generate("hello") == '{"total": 1}'
    assert seen["url"] == (
        "https://generativelanguage.googleapis.com/v1/models/gemini-2.5-flash:generateContent"
    )
    assert seen["params"] == {"key": "key-123"}
    assert seen["json"] == {"contents": [{"parts": [{"text": "hello"}]}]}


def test_gemini_quota_error_reported_as_request_failure(monkeypatch):
    def _post(url, **kwargs):
        return httpx.Response(429, json={"error": "quota"}, request=httpx.Request("POST", url))

    monkeypatch.setattr(ai_mod.httpx, "post", _post)
    extractor = AIExtractor(GeminiClient(api_key="k"))
    assert extractor.extract("b", Vendor.UBER) == (None, "ai_request_failed")


def test_out_of_range_total_is_a_failure():
    client = _StubClient('{"total": 1e30, "date": "2024-10-12"}')
    assert AIExtractor(client).extract("b", Vendor.UBER) == (None, "ai_missing_total")
