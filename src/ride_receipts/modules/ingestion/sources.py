from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from datetime import UTC, datetime
from email import policy
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Protocol

from ride_receipts.core.logging import get_logger, log_event, log_exception
from ride_receipts.modules.extraction.records import RawMessage, Vendor

logger = get_logger(__name__)


class MessageSource(Protocol):
    def list_messages(self, vendor: Vendor) -> Iterator[RawMessage]: ...


class EmlDirectorySource:
    """
    Mailbox export laid out as `<root>/<vendor>/*.eml`, one folder per vendor query.

    `received_at` comes from the first `Received:` header, which the receiving
    server stamps; the sender-controlled `Date:` header is only a fallback.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def vendor_dir(self, vendor: Vendor) -> Path:
        return self.root / vendor.value.lower()

    def list_messages(self, vendor: Vendor) -> Iterator[RawMessage]:
        folder = self.vendor_dir(vendor)
        if not folder.is_dir():
            log_event(
                logger,
                "ingestion.source.missing_folder",
                level=logging.DEBUG,
                vendor=vendor.value,
                folder=str(folder),
            )
            return
        for path in sorted(folder.glob("*.eml")):
            try:
                message = read_eml(path)
            except Exception:  # noqa: BLE001
                log_exception(
                    logger, "ingestion.source.unreadable", vendor=vendor.value, path=str(path)
                )
                continue
            yield message


def read_eml(path: Path) -> RawMessage:
    body = path.read_bytes()
    msg = BytesParser(policy=policy.default).parsebytes(body)
    message_id = str(msg.get("message-id") or "").strip().strip("<>") or path.stem
    received_at = _received_at(msg) or datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
    return RawMessage(
        id=message_id,
        subject=str(msg.get("subject") or "").strip(),
        received_at=received_at,
        body_text=_extract_email_body_text(msg),
    )


def _received_at(msg) -> datetime | None:
    received = msg.get_all("received") or []
    if received:
        stamp = str(received[0]).rsplit(";", 1)[-1].strip()
        parsed = _parse_header_date(stamp)
        if parsed:
            return parsed
    return _parse_header_date(str(msg.get("date") or "").strip())


def _parse_header_date(value: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _extract_email_body_text(msg) -> str:
    parts_plain: list[str] = []
    parts_html: list[str] = []

    def get_part_text(part) -> str | None:
        try:
            content = part.get_content()
            return str(content) if content is not None else None
        except Exception:
            payload = part.get_payload(decode=True) or b""
            charset = part.get_content_charset() or "utf-8"
            try:
                return payload.decode(charset, errors="replace")
            except LookupError:
                return payload.decode("utf-8", errors="replace")

    parts = msg.walk() if msg.is_multipart() else [msg]
    for part in parts:
        if part.is_multipart():
            continue
        if str(part.get_content_disposition() or "").lower() == "attachment":
            continue
        ctype = str(part.get_content_type() or "").lower()
        text = get_part_text(part)
        if not text:
            continue
        if ctype == "text/plain":
            parts_plain.append(text)
        elif ctype == "text/html":
            parts_html.append(text)

    if parts_plain:
        return "\n\n".join(parts_plain).strip()
    if parts_html:
        return html_to_text("\n\n".join(parts_html))
    return ""


def html_to_text(html: str) -> str:
    from html import unescape

    # Remove script/style blocks.
    html = re.sub(r"(?is)<(script|style).*?>.*?</\1>", "", html)
    # Block-level tags become line breaks so label/value rows stay on their own line.
    html = re.sub(r"(?i)<br\s*/?>", "\n", html)
    html = re.sub(r"(?i)</(p|tr|h\d)\s*>", "\n\n", html)
    html = re.sub(r"(?i)</(div|li)\s*>", "\n", html)
    html = re.sub(r"(?i)</td\s*>", " ", html)
    html = re.sub(r"(?s)<[^>]+>", "", html)
    html = unescape(html).replace("\u202f", " ").replace("\xa0", " ")

    lines = [re.sub(r"\s+", " ", ln).strip() for ln in html.splitlines()]
    out_lines: list[str] = []
    last_blank = False
    for ln in lines:
        if not ln:
            if not last_blank:
                out_lines.append("")
            last_blank = True
            continue
        out_lines.append(ln)
        last_blank = False
    return "\n".join(out_lines).strip()
