from __future__ import annotations

import enum
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from ride_receipts.core.logging import get_logger, log_event
from ride_receipts.modules.extraction.ai import AIExtractor, GeminiClient
from ride_receipts.modules.extraction.dedupe import (
    DEFAULT_TOLERANCE_CENTS,
    KnownRecords,
    is_duplicate,
    with_fingerprint,
)
from ride_receipts.modules.extraction.grammars import record_date, run_grammar
from ride_receipts.modules.extraction.records import (
    ParsedReceipt,
    ParserPolicy,
    RawMessage,
    Vendor,
)

logger = get_logger(__name__)

DEFAULT_SUBJECT_PATTERNS: dict[Vendor, str] = {
    Vendor.UBER: r"\buber\b",
    Vendor.LYFT: r"\blyft\b",
    Vendor.CURB: r"\bcurb\b",
    Vendor.AMTRAK: r"\bamtrak\b|refund receipt|eticket",
}


class ParseStatus(str, enum.Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    FILTERED = "filtered"
    FAILED = "failed"


@dataclass(frozen=True)
class ParserConfig:
    policy: ParserPolicy = ParserPolicy.REGEX_FIRST
    subject_patterns: dict[Vendor, str] = field(default_factory=dict)
    tolerance_cents: int = DEFAULT_TOLERANCE_CENTS

    @classmethod
    def from_settings(cls, s) -> ParserConfig:
        patterns = {
            Vendor.UBER: s.uber_subject_regex,
            Vendor.LYFT: s.lyft_subject_regex,
            Vendor.CURB: s.curb_subject_regex,
            Vendor.AMTRAK: s.amtrak_subject_regex,
        }
        return cls(
            policy=ParserPolicy(s.parser_policy),
            subject_patterns={v: p.strip() for v, p in patterns.items() if p and p.strip()},
            tolerance_cents=s.duplicate_tolerance_cents,
        )

    def subject_pattern(self, vendor: Vendor) -> str:
        return self.subject_patterns.get(vendor) or DEFAULT_SUBJECT_PATTERNS[vendor]


@dataclass(frozen=True)
class ParseResult:
    status: ParseStatus
    receipt: ParsedReceipt | None = None
    parse_failures: list[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.status == ParseStatus.ACCEPTED


def ai_extractor_from_settings(s) -> AIExtractor:
    if not s.receipt_ai_enabled or not (s.gemini_api_key or "").strip():
        return AIExtractor(None)
    client = GeminiClient(
        api_key=s.gemini_api_key,
        model=s.gemini_model,
        base_url=s.gemini_base_url,
        timeout_seconds=s.receipt_ai_timeout_seconds,
    )
    return AIExtractor(client, max_chars=s.receipt_ai_max_chars)


def build_receipt_parser(s=None) -> ReceiptParser:
    if s is None:
        from ride_receipts.core.config import settings as s
    return ReceiptParser(ParserConfig.from_settings(s), ai_extractor=ai_extractor_from_settings(s))


def subject_matches(vendor: Vendor, subject: str, pattern: str) -> bool:
    try:
        return re.search(pattern, subject or "", re.I) is not None
    except re.error:
        log_event(
            logger,
            "extraction.subject.pattern_invalid",
            level=logging.WARNING,
            vendor=vendor.value,
            pattern=pattern[:200],
        )
        return vendor.value.lower() in (subject or "").lower()


class ReceiptParser:
    """
    Turns one raw message into at most one new receipt.

    The policy decides which extractors run; whatever they produce is then date
    reconciled against the message's received timestamp, fingerprinted and checked
    against the known records. `known` is only read here, never mutated.
    """

    def __init__(self, config: ParserConfig, *, ai_extractor: AIExtractor | None = None) -> None:
        self.config = config
        self.ai_extractor = ai_extractor or AIExtractor(None)

    def parse(
        self,
        message: RawMessage,
        vendor: Vendor,
        known: KnownRecords | Iterable[ParsedReceipt] = (),
        *,
        policy: ParserPolicy | str | None = None,
    ) -> ParseResult:
        policy = ParserPolicy(policy or self.config.policy)
        parse_failures: list[str] = []

        if policy == ParserPolicy.AI_WITH_SUBJECT_FILTER and not subject_matches(
            vendor, message.subject, self.config.subject_pattern(vendor)
        ):
            log_event(
                logger,
                "extraction.subject.filtered",
                message_id=message.id,
                vendor=vendor.value,
                subject=(message.subject or "")[:200],
            )
            return ParseResult(ParseStatus.FILTERED, parse_failures=["subject:no_match"])

        parsed = None
        if policy in {ParserPolicy.REGEX_ONLY, ParserPolicy.REGEX_FIRST}:
            parsed, reason = run_grammar(vendor, message.body_text, message.subject)
            if not parsed:
                _append_parse_failure(parse_failures, "grammar", reason)

        if not parsed and policy != ParserPolicy.REGEX_ONLY:
            parsed, reason = self.ai_extractor.extract(message.body_text, vendor)
            if not parsed:
                _append_parse_failure(parse_failures, "ai", reason)

        if not parsed:
            log_event(
                logger,
                "extraction.message.unparsed",
                message_id=message.id,
                vendor=vendor.value,
                policy=policy.value,
                parse_failures=parse_failures,
            )
            return ParseResult(ParseStatus.FAILED, parse_failures=parse_failures)

        return self._finalize(parsed, message, known, policy, parse_failures)

    def _finalize(
        self,
        parsed: ParsedReceipt,
        message: RawMessage,
        known: KnownRecords | Iterable[ParsedReceipt],
        policy: ParserPolicy,
        parse_failures: list[str],
    ) -> ParseResult:
        reconciled = record_date(
            parsed.vendor, message.body_text, message.subject, parsed.date, message.received_at
        )
        if reconciled != parsed.date:
            log_event(
                logger,
                "extraction.date.reconciled",
                level=logging.DEBUG,
                message_id=message.id,
                vendor=parsed.vendor.value,
                extracted=parsed.date.isoformat(),
                reconciled=reconciled.isoformat(),
            )
        receipt = with_fingerprint(replace(parsed, date=reconciled, message_id=message.id))

        if is_duplicate(receipt, known, tolerance_cents=self.config.tolerance_cents):
            log_event(
                logger,
                "extraction.message.duplicate",
                message_id=message.id,
                vendor=receipt.vendor.value,
                content_fingerprint=receipt.content_fingerprint,
            )
            return ParseResult(ParseStatus.DUPLICATE, parse_failures=parse_failures)

        log_event(
            logger,
            "extraction.message.parsed",
            message_id=message.id,
            vendor=receipt.vendor.value,
            policy=policy.value,
            parsed_by=receipt.parsed_by.value,
            total=str(receipt.total),
            date=receipt.date.isoformat(),
            content_fingerprint=receipt.content_fingerprint,
            parse_failures=parse_failures,
        )
        return ParseResult(ParseStatus.ACCEPTED, receipt=receipt, parse_failures=parse_failures)


def _append_parse_failure(failures: list[str], parser_name: str, reason: str | None) -> None:
    if reason:
        failures.append(f"{parser_name}:{reason}")
    else:
        failures.append(f"{parser_name}:unknown")
