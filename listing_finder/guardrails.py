"""
Input guardrails.

A guardrail checker is any ``async (text, config) -> list[GuardrailOutcome]``.
The workflow only looks at the outcomes: one tripped check short-circuits the
request with `build_guardrail_fail_output`. The default checker runs the
configured checks through the openai-guardrails runtime; `noop_guardrails`
is used when guardrails are switched off.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from guardrails.runtime import instantiate_guardrails, load_config_bundle, run_guardrails
from openai import AsyncOpenAI

from telemetry.logging_utils import get_logger

from .config import Settings

logger = get_logger(__name__)

MODERATION = "Moderation"
CONTAINS_PII = "Contains PII"
JAILBREAK = "Jailbreak"
HALLUCINATION = "Hallucination Detection"

DEFAULT_GUARDRAILS_CONFIG: Dict[str, Any] = {
    "guardrails": [
        {
            "name": MODERATION,
            "config": {
                "categories": [
                    "sexual/minors",
                    "hate/threatening",
                    "harassment/threatening",
                    "self-harm/instructions",
                    "violence/graphic",
                    "illicit/violent",
                ],
            },
        },
        {
            "name": CONTAINS_PII,
            "config": {
                "block": True,
                "entities": ["CREDIT_CARD", "US_BANK_NUMBER", "US_PASSPORT", "US_SSN"],
            },
        },
        {"name": JAILBREAK, "config": {"model": "gpt-4.1-mini", "confidence_threshold": 0.7}},
    ],
}


@dataclass
class GuardrailOutcome:
    tripwire_triggered: bool = False
    info: Dict[str, Any] = field(default_factory=dict)
    execution_failed: bool = False

    @property
    def guardrail_name(self) -> Optional[str]:
        return self.info.get("guardrail_name") or self.info.get("guardrailName")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "GuardrailOutcome":
        """Accept both snake_case and the camelCase shape returned by guardrail SDKs."""
        info = raw.get("info")
        return cls(
            tripwire_triggered=bool(raw.get("tripwire_triggered", raw.get("tripwireTriggered", False))),
            info=dict(info) if isinstance(info, Mapping) else {},
            execution_failed=bool(raw.get("execution_failed", raw.get("executionFailed", False))),
        )

    @classmethod
    def from_result(cls, result: Any) -> "GuardrailOutcome":
        """Wrap a runtime result object (attributes instead of keys)."""
        if isinstance(result, Mapping):
            return cls.from_mapping(result)
        info = getattr(result, "info", None)
        return cls(
            tripwire_triggered=bool(getattr(result, "tripwire_triggered", False)),
            info=dict(info) if isinstance(info, Mapping) else {},
            execution_failed=bool(getattr(result, "execution_failed", False)),
        )


GuardrailChecker = Callable[[str, Mapping[str, Any]], Awaitable[List[GuardrailOutcome]]]


def _coerce_outcomes(results: Optional[Iterable[Any]]) -> List[GuardrailOutcome]:
    outcomes = []
    for item in results or []:
        if isinstance(item, GuardrailOutcome):
            outcomes.append(item)
        elif isinstance(item, Mapping) or hasattr(item, "tripwire_triggered"):
            outcomes.append(GuardrailOutcome.from_result(item))
    return outcomes


def has_tripwire(results: Optional[Iterable[Any]]) -> bool:
    return any(outcome.tripwire_triggered for outcome in _coerce_outcomes(results))


def _find(outcomes: List[GuardrailOutcome], name: str) -> Optional[GuardrailOutcome]:
    return next((outcome for outcome in outcomes if outcome.guardrail_name == name), None)


def _error_detail(outcome: Optional[GuardrailOutcome]) -> Dict[str, Any]:
    if outcome is not None and outcome.execution_failed and outcome.info.get("error"):
        return {"error": outcome.info["error"]}
    return {}


def build_guardrail_fail_output(results: Optional[Iterable[Any]]) -> Dict[str, Any]:
    """Summarize guardrail outcomes into the per-check failure payload returned to the caller."""
    outcomes = _coerce_outcomes(results)
    pii = _find(outcomes, CONTAINS_PII)
    mod = _find(outcomes, MODERATION)
    jb = _find(outcomes, JAILBREAK)
    hal = _find(outcomes, HALLUCINATION)

    detected = (pii.info.get("detected_entities") if pii else None) or {}
    pii_counts = [f"{name}:{len(values)}" for name, values in detected.items() if isinstance(values, list)]
    pii_block: Dict[str, Any] = {"failed": bool(pii_counts) or bool(pii and pii.tripwire_triggered)}
    if pii_counts:
        pii_block["detected_counts"] = pii_counts
    pii_block.update(_error_detail(pii))

    flagged = mod.info.get("flagged_categories") if mod else None
    mod_block: Dict[str, Any] = {"failed": bool(mod and mod.tripwire_triggered) or bool(flagged)}
    if flagged is not None:
        mod_block["flagged_categories"] = flagged
    mod_block.update(_error_detail(mod))

    jb_block: Dict[str, Any] = {"failed": bool(jb and jb.tripwire_triggered)}
    jb_block.update(_error_detail(jb))

    hal_block: Dict[str, Any] = {"failed": bool(hal and hal.tripwire_triggered)}
    if hal is not None:
        for key in ("reasoning", "hallucination_type", "hallucinated_statements", "verified_statements"):
            if hal.info.get(key):
                hal_block[key] = hal.info[key]
    hal_block.update(_error_detail(hal))

    return {"pii": pii_block, "moderation": mod_block, "jailbreak": jb_block, "hallucination": hal_block}


async def noop_guardrails(text: str, config: Mapping[str, Any]) -> List[GuardrailOutcome]:
    """Stand-in checker that never trips."""
    return []


class OpenAIGuardrails:
    """
    Checker backed by the openai-guardrails runtime.

    Checks run with ``suppress_tripwire=True`` so every outcome comes back as a
    result; a check that errors is reported with ``execution_failed`` rather
    than raised. Without an OpenAI key no check can run, so each configured
    check is reported as failed to execute and nothing trips.
    """

    def __init__(self, settings: Settings, *, client: Optional[AsyncOpenAI] = None) -> None:
        self.settings = settings
        self._client = client

    def _context(self) -> SimpleNamespace:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key, base_url=self.settings.openai_api_base)
        return SimpleNamespace(guardrail_llm=self._client)

    async def __call__(self, text: str, config: Mapping[str, Any]) -> List[GuardrailOutcome]:
        if self._client is None and not self.settings.openai_api_key:
            logger.warning("guardrails_missing_credentials")
            return [
                GuardrailOutcome(
                    info={"guardrail_name": entry.get("name"), "error": "OPENAI_API_KEY is not configured"},
                    execution_failed=True,
                )
                for entry in config.get("guardrails") or []
            ]

        bundle = instantiate_guardrails(load_config_bundle(dict(config)))
        results = await run_guardrails(
            self._context(),
            text or "",
            "text/plain",
            bundle,
            suppress_tripwire=True,
            raise_guardrail_errors=False,
        )
        outcomes = _coerce_outcomes(results)
        logger.info(
            "guardrails_evaluated",
            extra={
                "checks": len(outcomes),
                "tripped": [o.guardrail_name for o in outcomes if o.tripwire_triggered],
                "failed": [o.guardrail_name for o in outcomes if o.execution_failed],
            },
        )
        return outcomes


def get_guardrail_checker(settings: Settings) -> GuardrailChecker:
    if settings.guardrails_mode == "off":
        return noop_guardrails
    return OpenAIGuardrails(settings)
