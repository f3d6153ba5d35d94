from __future__ import annotations

import hashlib
import re
from typing import Any, Dict

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
# Phone-like numbers: allow country code and separators, at least 10 digits overall.
PHONE_RE = re.compile(r"\+?\d[\d\s().-]{8,}\d")
# SSN-like 3-2-4 ids.
GOV_ID_RE = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
# Card-shaped digit runs; only Luhn-valid ones are redacted.
CARD_RE = re.compile(r"\b(?:\d{4}[ -]?){3}\d{1,4}\b")

# Keys that should never be logged verbatim.
SENSITIVE_FIELDS = {
    "messages",
    "conversation",
    "raw_prompt",
    "raw_completion",
    "raw_response",
    "input_as_text",
    "html",
    "page_text",
}


def _luhn_valid(number: str) -> bool:
    digits = [int(ch) for ch in number if ch.isdigit()]
    if len(digits) < 13 or len(digits) > 19:
        return False
    checksum = 0
    for idx, digit in enumerate(reversed(digits)):
        if idx % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        checksum += digit
    return checksum % 10 == 0


def _hash_token(text: str) -> str:
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]
    return f"[HASH:{digest}]"


def scrub_text(text: str) -> str:
    """Redact or hash obvious PII tokens from free text."""
    if not text:
        return text

    def _replace(match: re.Match, label: str) -> str:
        return f"[{label}_{_hash_token(match.group(0))}]"

    scrubbed = EMAIL_RE.sub(lambda m: _replace(m, "EMAIL"), text)
    scrubbed = GOV_ID_RE.sub(lambda m: _replace(m, "ID"), scrubbed)
    scrubbed = CARD_RE.sub(
        lambda m: _replace(m, "CARD") if _luhn_valid(m.group(0)) else m.group(0),
        scrubbed,
    )
    scrubbed = PHONE_RE.sub(lambda m: _replace(m, "PHONE"), scrubbed)
    return scrubbed


def _summarize_sequence(value: Any) -> Dict[str, Any]:
    length = len(value) if hasattr(value, "__len__") else None
    return {"redacted": True, "items": length}


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if lowered in SENSITIVE_FIELDS:
        return True
    return "messages" in lowered or "transcript" in lowered


def scrub_value(value: Any) -> Any:
    """Scrub a generic value for PII before logging."""
    if isinstance(value, str):
        cleaned = scrub_text(value)
        if len(cleaned) > 500:
            return _hash_token(cleaned)
        return cleaned
    if isinstance(value, dict):
        return sanitize_log_payload(value)
    if isinstance(value, (list, tuple)):
        # Chat-message shaped lists are summarized instead of logged.
        if any(isinstance(item, dict) and "content" in item for item in value):
            return _summarize_sequence(value)
        return [scrub_value(item) for item in value]
    return value


def sanitize_log_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Strip or hash PII-heavy fields from a log payload."""
    if not isinstance(payload, dict):
        return {}

    cleaned: Dict[str, Any] = {}
    for key, value in payload.items():
        if value is None:
            cleaned[key] = value
        elif _is_sensitive_key(str(key)):
            cleaned[key] = _summarize_sequence(value)
        else:
            cleaned[key] = scrub_value(value)
    return cleaned
