"""
Greater Montreal listing finder.

Exposes the workflow entrypoint plus the agent and normalizer so callers
(HTTP server and CLI) share one implementation.
"""

from .agent import AgentRunResult, ListingAgent
from .criteria import ListingCriteria
from .listings import MAX_LISTINGS, MLS_NOT_FOUND, NormalizedListing, normalize_and_dedupe_listings
from .workflow import run_workflow

__all__ = [
    "AgentRunResult",
    "ListingAgent",
    "ListingCriteria",
    "MAX_LISTINGS",
    "MLS_NOT_FOUND",
    "NormalizedListing",
    "normalize_and_dedupe_listings",
    "run_workflow",
]
