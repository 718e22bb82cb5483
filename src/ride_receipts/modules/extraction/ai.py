from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from ride_receipts.core.logging import get_logger, log_event
from ride_receipts.modules.extraction.records import Location, ParsedBy, ParsedReceipt, Vendor

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json|javascript)?\s*", re.I)
_STATE_RE = re.compile(r"^[A-Z]{2}$")


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str: ...


class GeminiClient:
    """Google Generative Language REST API (generateContent)."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1",
        timeout_seconds: float = 20.0,
    ) -> None:
        self.api_key = api_key.strip()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def generate(self, prompt: str) -> str:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        resp = httpx.post(
            url,
            params={"key": self.api_key},
            headers={"Content-Type": "application/json"},
            json={"contents": [{"parts": [{"text": prompt}]}]},
            timeout=self.timeout_seconds,
            follow_redirects=True,
        )
        resp.raise_for_status()
        raw = resp.json()
        try:
            return str(raw["candidates"][0]["content"]["parts"][0]["text"])
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError("Invalid response structure from generateContent") from e


def build_prompt(text: str, vendor: Vendor | str) -> str:
    vendor_name = vendor.value if isinstance(vendor, Vendor) else str(vendor)
    return (
        f"You are parsing a {vendor_name} receipt email. Extract the following information "
        "and return ONLY valid JSON with no markdown formatting, no code blocks, and no "
        "extra text.\n\n"
        "Email content:\n"
        f"{text}\n\n"
        "Return a JSON object with these exact fields:\n"
        "{\n"
        '  "total": number (total charge in dollars, required),\n'
        '  "tip": number (tip amount in dollars, 0 if not found),\n'
        '  "date": "YYYY-MM-DD" (date of the trip, required),\n'
        '  "startTime": "HH:MM AM/PM" (pickup time, null if not found),\n'
        '  "endTime": "HH:MM AM/PM" (dropoff time, null if not found),\n'
        '  "startLocation": {"address": string, "city": string, '
        '"state": "two letter state code", "country": "US"},\n'
        '  "endLocation": {"address": string, "city": string, '
        '"state": "two letter state code", "country": "US"}\n'
        "}\n\n"
        "CRITICAL:\n"
        "- Return ONLY the JSON object, nothing else\n"
        "- Do not wrap in markdown code blocks\n"
        "- Do not add any explanatory text\n"
        "- If you cannot find a field, use null\n"
        '- The "total" and "date" fields are required'
    )


class AIExtractor:
    """
    Fallback extraction through a generative-text service.

    extract() never raises. Transport, auth and quota errors are reported the same
    way as "the model found no receipt": (None, reason).
    """

    def __init__(self, client: TextGenerator | None, *, max_chars: int = 12000) -> None:
        self.client = client
        self.max_chars = max_chars

    @property
    def available(self) -> bool:
        return self.client is not None

    def extract(
        self, text: str, vendor: Vendor
    ) -> tuple[ParsedReceipt | None, str | None]:
        if self.client is None:
            return None, "ai_unavailable"

        prompt = build_prompt(_truncate_text(text, max_chars=self.max_chars), vendor)
        try:
            content = self.client.generate(prompt)
        except Exception as e:  # noqa: BLE001
            log_event(
                logger,
                "extraction.ai.request_failed",
                level=logging.WARNING,
                vendor=vendor.value,
                error_type=type(e).__name__,
                error=str(e)[:200],
                status_code=_status_code(e),
            )
            return None, "ai_request_failed"

        obj = parse_json_object(content)
        if not isinstance(obj, dict):
            log_event(
                logger,
                "extraction.ai.malformed_response",
                level=logging.WARNING,
                vendor=vendor.value,
                snippet=(content or "")[:200],
            )
            return None, "ai_malformed_response"

        return receipt_from_ai_fields(obj, vendor)


def receipt_from_ai_fields(
    obj: dict[str, Any], vendor: Vendor
) -> tuple[ParsedReceipt | None, str | None]:
    total = _to_decimal(obj.get("total"))
    if total is None:
        return None, "ai_missing_total"
    if total <= Decimal("0"):
        return None, "ai_non_positive_total"
    raw_date = obj.get("date")
    if raw_date is None or (isinstance(raw_date, str) and not raw_date.strip()):
        return None, "ai_missing_date"

    tip = _to_decimal(obj.get("tip"))
    if tip is None or tip < Decimal("0"):
        tip = Decimal("0.00")

    tx_date = _coerce_date(raw_date)
    if tx_date is None:
        log_event(
            logger,
            "extraction.ai.date_unparsable",
            level=logging.WARNING,
            vendor=vendor.value,
            raw_date=str(raw_date)[:50],
        )
        tx_date = date.today()

    return (
        ParsedReceipt(
            vendor=vendor,
            total=total,
            tip=tip,
            date=tx_date,
            start_time=_clean_str(obj.get("startTime")),
            end_time=_clean_str(obj.get("endTime")),
            start_location=_location(obj.get("startLocation")),
            end_location=_location(obj.get("endLocation")),
            parsed_by=ParsedBy.AI,
        ),
        None,
    )


def strip_code_fences(content: str) -> str:
    return _FENCE_RE.sub("", content or "").strip()


def parse_json_object(content: str) -> Any:
    c = strip_code_fences(content)
    if not c:
        return None
    try:
        return json.loads(c)
    except ValueError:
        pass

    # Fallback: extract the first {...} block.
    m = re.search(r"\{.*\}", c, re.S)
    if not m:
        return None
    try:
        return json.loads(m.group(0))
    except ValueError:
        return None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        amount = Decimal(str(value).strip().replace(",", "").lstrip("$"))
        if not amount.is_finite():
            return None
        return amount.quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None


def _coerce_date(value: Any) -> date | None:
    if not isinstance(value, str):
        return None
    s = value.strip()
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        pass
    for fmt in ("%B %d, %Y", "%b %d, %Y", "%m/%d/%Y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def _clean_str(value: Any, *, max_len: int = 50) -> str | None:
    if not isinstance(value, str):
        return None
    s = value.strip()
    return s[:max_len] or None


def _location(value: Any) -> Location | None:
    if not isinstance(value, dict):
        return None
    address = _clean_str(value.get("address"), max_len=300)
    city = _clean_str(value.get("city"), max_len=100)
    state = _clean_str(value.get("state"))
    if state:
        state = state.upper()
        if not _STATE_RE.match(state):
            state = None
    if not (address or city or state):
        return None
    return Location(
        address=address,
        city=city,
        state=state,
        country=_clean_str(value.get("country")) or "US",
    )


def _status_code(e: Exception) -> int | None:
    if isinstance(e, httpx.HTTPStatusError) and e.response is not None:
        return e.response.status_code
    return None


def _truncate_text(text: str, *, max_chars: int) -> str:
    t = (text or "").replace("\u202f", " ").replace("\xa0", " ").strip()
    if max_chars <= 0 or len(t) <= max_chars:
        return t
    return t[: max_chars - 20].rstrip() + "\n\n[TRUNCATED]"
