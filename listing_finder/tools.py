"""
Tools the listing agent can call.

`ToolRegistry` owns the function schemas advertised to the model and routes
each tool call to its adapter. Adapters never raise into the agent loop: every
failure comes back as an ``{"error": ...}`` payload the model can read.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple
from urllib.parse import urlparse

import httpx

from telemetry.logging_utils import get_logger
from telemetry.metrics import start_timer
from telemetry.retry import retry_async_with_backoff

from .config import Settings
from .conversation import ToolCall
from .errors import PageFetchError
from .html_text import extract_text_from_html
from .listings import (
    coerce_listing_items,
    listings_to_dicts,
    normalize_and_dedupe_listings,
    normalize_listing,
)

logger = get_logger(__name__)

DEFAULT_MAX_RESULTS = 6
MAX_SEARCH_RESULTS = 10
FETCH_ATTEMPTS = 3
FETCH_BASE_DELAY = 0.3
FETCH_DELAY_STEP = 0.5
ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

ToolExecutor = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def domain_allowed(url: Any, allowed_domains: Iterable[str]) -> bool:
    """True when the URL's host is one of `allowed_domains` or a subdomain of one."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        host = urlparse(url.strip()).hostname
    except ValueError:
        return False
    if not host:
        return False
    host = host.lower().rstrip(".")
    for entry in allowed_domains:
        domain = entry.strip().lower()
        if domain.startswith("www."):
            domain = domain[4:]
        if domain and (host == domain or host.endswith("." + domain)):
            return True
    return False


# Ordered matchers per field; the first one that matches wins. "html" matchers
# read the raw page (JSON-LD, attributes), "text" matchers the tag-free text.
EXTRACTION_PATTERNS: Dict[str, Sequence[Tuple[str, Pattern]]] = {
    "mls": (
        ("html", re.compile(r"\"listingId\"\s*:\s*\"?([A-Za-z0-9-]{5,})\"?")),
        ("text", re.compile(r"MLS®?\s*(?:#|No\.?|number|num[ée]ro)?\s*[:#]?\s*([A-Z]?\d{6,10})\b", re.IGNORECASE)),
        ("text", re.compile(r"Centris\s*(?:#|No\.?|no)?\s*[:#]?\s*(\d{7,9})\b", re.IGNORECASE)),
        ("text", re.compile(r"(?:listing\s*(?:id|#|number)|no\.?\s*d'inscription)\s*[:#]?\s*([A-Z0-9-]{5,})", re.IGNORECASE)),
    ),
    "price": (
        ("html", re.compile(r"\"price\"\s*:\s*\"?(\d+)")),
        ("text", re.compile(r"(?:asking price|price|prix)\s*[:\-]?\s*\$?\s*(\d{1,3}(?:[,\s ]\d{3})+|\d{4,})", re.IGNORECASE)),
        ("text", re.compile(r"\$\s*(\d{1,3}(?:,\d{3})+|\d{4,})")),
        ("text", re.compile(r"(\d{1,3}(?:[\s .]\d{3})+)\s*\$")),
    ),
    "address": (
        ("html", re.compile(r"\"streetAddress\"\s*:\s*\"([^\"]+)\"")),
        (
            "text",
            re.compile(
                r"(\d{1,6}[A-Za-z]?,?\s+(?:rue|avenue|av\.|boulevard|boul\.|chemin|ch\.|place|mont[ée]e|rang)\s+"
                r"[^,]{2,60},\s*[A-Za-zÀ-ÿ' .-]{2,40})",
                re.IGNORECASE,
            ),
        ),
        (
            "text",
            re.compile(
                r"(\d{1,6}\s+[A-Za-z0-9À-ÿ' .-]{2,60}?\s(?:Street|St\.?|Avenue|Ave\.?|Boulevard|Blvd\.?|Road|Rd\.?|"
                r"Drive|Dr\.?|Place|Pl\.?)(?:,\s*[A-Za-zÀ-ÿ' .-]{2,40})?)"
            ),
        ),
    ),
    "beds": (
        ("html", re.compile(r"\"numberOfBedrooms\"\s*:\s*\"?(\d+)")),
        ("text", re.compile(r"(\d+)\s*(?:bedrooms?|beds?|chambres?|cac)\b", re.IGNORECASE)),
        ("text", re.compile(r"(?:bedrooms?|chambres?)\s*[:\-]?\s*(\d+)", re.IGNORECASE)),
    ),
    "baths": (
        ("html", re.compile(r"\"numberOfBathroomsTotal\"\s*:\s*\"?(\d+(?:\.\d+)?)")),
        ("text", re.compile(r"(\d+(?:\.\d+)?)\s*(?:bathrooms?|baths?|salles? de bains?|sdb)\b", re.IGNORECASE)),
        ("text", re.compile(r"(?:bathrooms?|salles? de bains?)\s*[:\-]?\s*(\d+(?:\.\d+)?)", re.IGNORECASE)),
    ),
    "type": (
        ("text", re.compile(r"(?:property type|type de propriété|genre de propriété)\s*[:\-]?\s*([A-Za-zÀ-ÿ/-]{3,40})", re.IGNORECASE)),
        (
            "text",
            re.compile(
                r"\b(condo(?:minium)?|copropriété|bungalow|duplex|triplex|quadruplex|multiplex|cottage|townhouse|"
                r"maison de ville|split-level|loft|house|maison|land|terrain)\b",
                re.IGNORECASE,
            ),
        ),
    ),
}


def _first_match(matchers: Sequence[Tuple[str, Pattern]], sources: Mapping[str, str]) -> Optional[str]:
    for source, pattern in matchers:
        match = pattern.search(sources[source])
        if match:
            return " ".join(match.group(1).split())
    return None


def extract_listing_fields(html: str, url: Optional[str] = None) -> Dict[str, Any]:
    """Best-effort field extraction from a listing page using the pattern cascades above."""
    html = html or ""
    sources = {"html": html, "text": extract_text_from_html(html, limit=len(html))}
    raw = {field: _first_match(matchers, sources) for field, matchers in EXTRACTION_PATTERNS.items()}
    listing = normalize_listing(
        {
            "mls": raw["mls"],
            "url": url,
            "address": raw["address"],
            "priceText": raw["price"],
            "beds": raw["beds"],
            "baths": raw["baths"],
            "type": raw["type"],
        }
    )
    return {
        "url": listing.url,
        "mls": listing.mls,
        "price": listing.price,
        "address": listing.address,
        "beds": listing.beds,
        "baths": listing.baths,
        "type": listing.type,
    }


TOOL_SCHEMAS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "search_listings",
            "description": (
                "Search the public web for Greater Montreal area real estate listings. "
                "Returns links, titles, and snippets for further review."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string"},
                    "max_results": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": MAX_SEARCH_RESULTS,
                        "default": DEFAULT_MAX_RESULTS,
                    },
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "fetch_listing_page",
            "description": (
                "Download a web page for a specific listing and return the cleaned text so you can "
                "extract MLS numbers, prices, and other facts."
            ),
            "parameters": {
                "type": "object",
                "properties": {"url": {"type": "string", "format": "uri"}},
                "required": ["url"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "extract_listing_info",
            "description": (
                "Pull MLS number, price, address, bedrooms, bathrooms, and property type out of a listing page. "
                "Pass the page HTML, or just the URL to have it downloaded first."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "url": {"type": "string", "format": "uri"},
                    "html": {"type": "string"},
                },
                "required": [],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "normalize_listings",
            "description": (
                "Clean up and de-duplicate candidate listings (by MLS number, then URL) before answering. "
                "Returns at most 12 listings in a consistent schema."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "listings": {"type": "array", "items": {"type": "object"}},
                },
                "required": ["listings"],
            },
        },
    },
]


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """Decode a tool-call argument payload, falling back to an empty mapping."""
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw or "{}")
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ToolRegistry:
    """Tool adapters plus the name -> executor table the agent dispatches through."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._transport = transport
        self._sleep = sleep
        self._executors: Dict[str, ToolExecutor] = {
            "search_listings": self.search_listings,
            "fetch_listing_page": self.fetch_listing_page,
            "extract_listing_info": self.extract_listing_info,
            "normalize_listings": self.normalize_listings,
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True)

    @property
    def names(self) -> List[str]:
        return list(self._executors)

    def schemas(self) -> List[Dict[str, Any]]:
        return [schema for schema in TOOL_SCHEMAS if schema["function"]["name"] in self._executors]

    async def dispatch(self, call: ToolCall) -> Dict[str, Any]:
        """Run one tool call; unknown tools and adapter failures become error payloads."""
        executor = self._executors.get(call.name)
        if executor is None:
            logger.warning("tool_call_unknown", extra={"tool_name": call.name})
            return {"error": f"Unknown tool {call.name}"}

        args = parse_tool_arguments(call.arguments)
        logger.info("tool_call_start", extra={"tool_name": call.name, "arg_keys": sorted(args)})
        timer = start_timer("tool", call.name)
        try:
            result = await executor(args)
        except Exception as exc:
            logger.exception("tool_call_failed", extra={"tool_name": call.name})
            result = {"error": f"Tool {call.name} failed: {exc}"}
        finally:
            timer.done()
        logger.info("tool_call_complete", extra={"tool_name": call.name, "is_error": "error" in result})
        return result

    async def search_listings(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = args.get("query")
        query = query.strip() if isinstance(query, str) else ""
        if not query:
            return {"error": "query is required"}

        try:
            max_results = int(args.get("max_results", DEFAULT_MAX_RESULTS))
        except (TypeError, ValueError, OverflowError):
            max_results = DEFAULT_MAX_RESULTS
        max_results = min(max(max_results, 1), MAX_SEARCH_RESULTS)

        api_key = self.settings.tavily_api_key
        if not api_key:
            return {"error": "TAVILY_API_KEY is not configured"}

        body = {
            "api_key": api_key,
            "query": query,
            "search_depth": "advanced",
            "max_results": max_results,
            "include_images": False,
            "include_answer": False,
        }
        try:
            async with self._client(self.settings.fetch_timeout_seconds) as client:
                response = await client.post(self.settings.tavily_api_url, json=body)
        except httpx.HTTPError as exc:
            logger.warning("search_request_failed", extra={"error": str(exc)})
            return {"error": f"Search request failed: {exc}"}

        if response.status_code >= 400:
            return {"error": f"Search API error: {response.status_code} {response.reason_phrase} - {response.text[:300]}"}

        try:
            data = response.json()
        except ValueError:
            return {"error": "Search API returned invalid JSON"}

        raw_results = data.get("results") if isinstance(data, dict) else None
        results = []
        for item in raw_results if isinstance(raw_results, list) else []:
            if not isinstance(item, dict):
                continue
            results.append(
                {
                    "title": item.get("title") or None,
                    "url": item.get("url") or None,
                    "snippet": item.get("content") or item.get("snippet") or None,
                }
            )

        payload: Dict[str, Any] = {"query": query, "results": results}
        allowed = self.settings.allowed_domains
        if allowed:
            kept = [item for item in results if domain_allowed(item["url"], allowed)]
            payload["results"] = kept
            payload["filtered_out"] = len(results) - len(kept)
        return payload

    async def fetch_page(self, url: str) -> str:
        """GET a page with timeout and retry; raises PageFetchError when every attempt fails."""
        headers = {"User-Agent": self.settings.user_agent, "Accept": ACCEPT_HTML}
        timeout = self.settings.fetch_timeout_seconds

        async def _attempt() -> httpx.Response:
            async with self._client(timeout) as client:
                return await asyncio.wait_for(client.get(url, headers=headers), timeout)

        def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            logger.warning(
                "page_fetch_retry",
                extra={"url": url, "attempt": attempt + 1, "delay_s": delay, "error": repr(exc)},
            )

        try:
            response = await retry_async_with_backoff(
                _attempt,
                retries=FETCH_ATTEMPTS,
                base_delay=FETCH_BASE_DELAY,
                step=FETCH_DELAY_STEP,
                retry_exceptions=(httpx.TransportError, asyncio.TimeoutError),
                on_retry=_on_retry,
                sleep=self._sleep,
            )
        except (httpx.TransportError, asyncio.TimeoutError) as exc:
            raise PageFetchError(url, str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            raise PageFetchError(url, f"HTTP {response.status_code}")
        return response.text

    async def fetch_listing_page(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        url = args.get("url")
        if not isinstance(url, str) or not url.strip():
            return {"error": "url is required"}
        url = url.strip()
        try:
            html = await self.fetch_page(url)
        except PageFetchError as exc:
            return {"error": str(exc)}
        text = extract_text_from_html(html)
        return {"url": url, "text": text, "length": len(text)}

    async def extract_listing_info(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        url = args.get("url") if isinstance(args.get("url"), str) and args.get("url").strip() else None
        html = args.get("html") if isinstance(args.get("html"), str) else None
        if not html:
            if not url:
                return {"error": "html or url is required"}
            try:
                html = await self.fetch_page(url.strip())
            except PageFetchError as exc:
                return {"error": str(exc)}
        return extract_listing_fields(html, url=url)

    async def normalize_listings(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        items = coerce_listing_items(args.get("listings"))
        listings = normalize_and_dedupe_listings(items)
        return {"listings": listings_to_dicts(listings), "count": len(listings)}
