"""Environment-driven settings for the listing finder."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_API_BASE = "https://api.openai.com/v1"
DEFAULT_TAVILY_API_URL = "https://api.tavily.com/search"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; ListingFinderBot/1.0; +https://example.com/bot)"
DEFAULT_FETCH_TIMEOUT_MS = 10000
DEFAULT_ALLOWED_DOMAINS = (
    "realtor.ca",
    "centris.ca",
    "royallepage.ca",
    "sutton.com",
    "remax-quebec.com",
    "duproprio.com",
    "viacapitalevendu.com",
)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_domains(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    openai_api_base: str = DEFAULT_OPENAI_API_BASE
    tavily_api_key: Optional[str] = None
    tavily_api_url: str = DEFAULT_TAVILY_API_URL
    user_agent: str = DEFAULT_USER_AGENT
    allowed_domains: Tuple[str, ...] = field(default=DEFAULT_ALLOWED_DOMAINS)
    fetch_timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS
    guardrails_mode: str = "openai"

    @property
    def fetch_timeout_seconds(self) -> float:
        return self.fetch_timeout_ms / 1000.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the process environment (after `.env` is loaded)."""
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
            openai_api_base=os.getenv("OPENAI_API_BASE") or DEFAULT_OPENAI_API_BASE,
            tavily_api_key=os.getenv("TAVILY_API_KEY") or None,
            tavily_api_url=os.getenv("TAVILY_API_URL") or DEFAULT_TAVILY_API_URL,
            user_agent=os.getenv("LISTING_AGENT_USER_AGENT") or DEFAULT_USER_AGENT,
            allowed_domains=_env_domains("LISTING_ALLOWED_DOMAINS", DEFAULT_ALLOWED_DOMAINS),
            fetch_timeout_ms=_env_int("LISTING_FETCH_TIMEOUT_MS", DEFAULT_FETCH_TIMEOUT_MS),
            guardrails_mode=(os.getenv("GUARDRAILS_MODE") or "openai").strip().lower(),
        )
