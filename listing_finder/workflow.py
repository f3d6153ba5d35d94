"""Request workflow: guardrails -> criteria -> agent -> normalized, bilingual output."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional

from telemetry.logging_utils import get_logger

from .agent import ListingAgent
from .config import Settings
from .criteria import ListingCriteria
from .guardrails import (
    DEFAULT_GUARDRAILS_CONFIG,
    GuardrailChecker,
    build_guardrail_fail_output,
    get_guardrail_checker,
    has_tripwire,
)
from .listings import build_results_json, listings_to_dicts, normalize_and_dedupe_listings

logger = get_logger(__name__)

OUTPUT_TITLE = "Québec Listings • Annonces Québec"

TYPE_OPTIONS = [
    {"value": "", "label": "Any type / Tout type"},
    {"value": "house", "label": "House / Maison"},
    {"value": "condo", "label": "Condo / Copropriété"},
    {"value": "multiplex", "label": "Multiplex / Plex"},
    {"value": "land", "label": "Land / Terrain"},
    {"value": "commercial", "label": "Commercial"},
]

BEDS_OPTIONS = [
    {"value": "", "label": "Beds: Any / Chambres: Peu importe"},
    {"value": "1", "label": "1+"},
    {"value": "2", "label": "2+"},
    {"value": "3", "label": "3+"},
    {"value": "4", "label": "4+"},
    {"value": "5", "label": "5+"},
]

BATHS_OPTIONS = [
    {"value": "", "label": "Baths: Any / Salles de bain: Peu importe"},
    {"value": "1", "label": "1+"},
    {"value": "2", "label": "2+"},
    {"value": "3", "label": "3+"},
]


async def run_workflow(
    input_as_text: str,
    input_variables: Optional[Mapping[str, Any]] = None,
    *,
    guardrails: Optional[GuardrailChecker] = None,
    agent: Optional[ListingAgent] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Run one listing search.

    Returns the guardrail failure payload when any check trips, otherwise
    ``{"output_text": <json string>, "output_parsed": <dict>}``.
    """
    settings = settings or (agent.settings if agent is not None else Settings.from_env())
    text = input_as_text or ""

    checker = guardrails or get_guardrail_checker(settings)
    outcomes = await checker(text, DEFAULT_GUARDRAILS_CONFIG)
    if has_tripwire(outcomes):
        logger.warning("workflow_guardrail_tripped")
        return build_guardrail_fail_output(outcomes)

    variables = input_variables or {}
    criteria = ListingCriteria.from_variables(variables, text)

    agent = agent or ListingAgent(settings)
    result = await agent.run(text, criteria)

    supplied = variables.get("listings")
    raw_listings: List[Any] = list(result.listings) + (list(supplied) if isinstance(supplied, list) else [])
    listings = normalize_and_dedupe_listings(raw_listings)

    output = {
        "title": OUTPUT_TITLE,
        "criteria": criteria.to_dict(),
        "listings": listings_to_dicts(listings),
        "sources": result.sources,
        "notes_en": result.notes_en,
        "notes_fr": result.notes_fr,
        "warnings": result.warnings,
        "typeOptions": TYPE_OPTIONS,
        "bedsOptions": BEDS_OPTIONS,
        "bathsOptions": BATHS_OPTIONS,
        "hasResults": len(listings) > 0,
        "resultsJson": build_results_json(listings),
    }
    logger.info(
        "workflow_complete",
        extra={"listing_count": len(listings), "warning_count": len(result.warnings)},
    )
    return {"output_text": json.dumps(output, ensure_ascii=False), "output_parsed": output}
