"""
Listing normalization and de-duplication.

Listings arrive from the model's final answer, from the extraction tool and
from callers, each with its own idea of field names and number formats. Every
record is coerced into `NormalizedListing`, keyed by MLS number (falling back
to URL, then to its input position) and merged first-write-wins per field.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

MAX_LISTINGS = 12
MLS_NOT_FOUND = "MLS non trouvé / MLS not found"

MLS_ALIASES = ("mls", "MLS", "listingId", "listing_id", "MLS®")
TYPE_ALIASES = ("type", "propertyType", "property_type")
PRICE_TEXT_ALIASES = ("priceText", "price_str", "askingPrice")

_NON_DIGITS_RE = re.compile(r"[^\d]")
_NON_DECIMAL_RE = re.compile(r"[^\d.]")

Number = Union[int, float]


@dataclass(frozen=True)
class NormalizedListing:
    mls: str = MLS_NOT_FOUND
    url: Optional[str] = None
    address: Optional[str] = None
    price: Optional[Number] = None
    beds: Optional[int] = None
    baths: Optional[Number] = None
    type: Optional[str] = None
    note_fr: Optional[str] = None
    note_en: Optional[str] = None

    @property
    def has_mls(self) -> bool:
        return self.mls != MLS_NOT_FOUND

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _first(record: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite_non_negative(value: Optional[Number]) -> Optional[Number]:
    if value is None or not math.isfinite(value) or value < 0:
        return None
    return value


def _clean_text(value: Any) -> Optional[str]:
    if not value or isinstance(value, (dict, list, tuple)):
        return None
    text = str(value).strip()
    return text or None


def _clean_mls(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    if not text or text == MLS_NOT_FOUND:
        return None
    return text


def number_from_price_like(value: Any) -> Optional[int]:
    """Keep only the digits of a price-like value: "$1,250,000 CAD" -> 1250000."""
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return None
    raw = _NON_DIGITS_RE.sub("", str(value))
    if not raw:
        return None
    return int(raw)


def _coerce_price(record: Mapping[str, Any]) -> Optional[Number]:
    price = record.get("price")
    if _is_number(price):
        return _finite_non_negative(price)
    if price is None:
        price = _first(record, PRICE_TEXT_ALIASES)
    return number_from_price_like(price)


def _coerce_beds(value: Any) -> Optional[int]:
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return None
    if _is_number(value):
        checked = _finite_non_negative(value)
        return int(checked) if checked is not None else None
    return number_from_price_like(value)


def _coerce_baths(value: Any) -> Optional[Number]:
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return None
    if _is_number(value):
        return _finite_non_negative(value)
    raw = _NON_DECIMAL_RE.sub("", str(value))
    if not raw:
        return None
    try:
        parsed = float(raw)
    except ValueError:
        return None
    if parsed.is_integer():
        return int(parsed)
    return _finite_non_negative(parsed)


def normalize_listing(record: Mapping[str, Any]) -> NormalizedListing:
    """Coerce one raw record into the canonical schema."""
    mls = _clean_mls(_first(record, MLS_ALIASES))
    return NormalizedListing(
        mls=mls or MLS_NOT_FOUND,
        url=_clean_text(record.get("url")),
        address=_clean_text(record.get("address")),
        price=_coerce_price(record),
        beds=_coerce_beds(record.get("beds")),
        baths=_coerce_baths(record.get("baths")),
        type=_clean_text(_first(record, TYPE_ALIASES)),
        note_fr=_clean_text(record.get("note_fr")),
        note_en=_clean_text(record.get("note_en")),
    )


def identity_key(listing: NormalizedListing, position: int) -> str:
    if listing.has_mls:
        return f"MLS:{listing.mls.upper()}"
    if listing.url:
        return f"URL:{listing.url}"
    return f"IDX:{position}"


def merge_listings(base: NormalizedListing, incoming: NormalizedListing) -> NormalizedListing:
    """Fill fields missing on `base` from `incoming`; present fields are never overwritten."""
    updates = {}
    for f in fields(NormalizedListing):
        if getattr(base, f.name) is None and getattr(incoming, f.name) is not None:
            updates[f.name] = getattr(incoming, f.name)
    return replace(base, **updates) if updates else base


def normalize_and_dedupe_listings(items: Optional[Iterable[Any]], limit: int = MAX_LISTINGS) -> List[NormalizedListing]:
    """
    Normalize raw listing records, merge duplicates and cap the result.

    Once `limit` distinct listings are collected, new listings are dropped
    but duplicates of collected ones are still merged in.
    """
    seen: Dict[str, int] = {}
    out: List[NormalizedListing] = []

    for position, item in enumerate(items or []):
        if not isinstance(item, Mapping):
            continue
        normalized = normalize_listing(item)
        key = identity_key(normalized, position)
        if key in seen:
            idx = seen[key]
            out[idx] = merge_listings(out[idx], normalized)
            continue
        if len(out) >= limit:
            continue
        seen[key] = len(out)
        out.append(normalized)

    return out[:limit]


def coerce_listing_items(raw: Any) -> List[Any]:
    """Accept a bare list or a wrapper object such as {"listings": [...]}."""
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        for key in ("listings", "items", "results", "data"):
            if isinstance(raw.get(key), list):
                return raw[key]
    return []


def listings_to_dicts(listings: Iterable[NormalizedListing]) -> List[Dict[str, Any]]:
    return [listing.to_dict() for listing in listings]


def build_results_json(listings: Iterable[NormalizedListing]) -> str:
    """Render listings as a quoted ```json block for chat-style consumers."""
    payload = {
        "listings": listings_to_dicts(listings),
        "schema": {
            "mls": "string",
            "url": "string",
            "price": "number (CAD)",
            "note_en": "string",
            "note_fr": "string",
        },
    }
    body = json.dumps(payload, indent=2, ensure_ascii=False)
    return "'```json\n" + body + "\n```'"
