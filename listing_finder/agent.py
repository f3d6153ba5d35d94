"""
Tool-calling listing research agent.

The agent seeds a conversation with research instructions and the user's
request, then alternates between model turns and tool execution:

* a turn that requests tools appends the assistant message, runs every
  requested tool concurrently and feeds the results back;
* a ``stop``/``length`` turn is the final JSON answer;
* a content-filter block, an unexpected finish reason, a failed model call or
  running out of turns ends the run with warnings and no listings.

`ListingAgent.run` always returns an `AgentRunResult`; nothing raises past it.

Environment variables:
* OPENAI_API_KEY (required unless a chat function is injected)
* OPENAI_MODEL, OPENAI_API_BASE (optional overrides)
"""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from openai import AsyncOpenAI

from telemetry.logging_utils import get_logger
from telemetry.metrics import extract_usage_tokens, start_timer

from .config import Settings
from .conversation import AssistantMessage, Conversation, SystemMessage, ToolCall, ToolMessage, UserMessage
from .criteria import ListingCriteria
from .listings import MLS_NOT_FOUND
from .tools import ToolRegistry

logger = get_logger(__name__)

MAX_AGENT_STEPS = 6
TEMPERATURE = 0.2
CONTENT_FILTER_WARNING = "Model content filter blocked the response"

ChatFn = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass
class AgentRunResult:
    listings: List[Dict[str, Any]] = field(default_factory=list)
    sources: List[Dict[str, Any]] = field(default_factory=list)
    notes_en: Optional[str] = None
    notes_fr: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    raw_response: Optional[str] = None

    @classmethod
    def failed(cls, warnings: List[str]) -> "AgentRunResult":
        return cls(warnings=list(warnings))


def openai_chat(settings: Settings) -> ChatFn:
    """Chat function backed by the OpenAI SDK (any compatible base URL)."""
    client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_api_base)

    async def _chat(request: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.chat.completions.create(**request)
        return response.model_dump()

    return _chat


def build_system_prompt(criteria: ListingCriteria) -> str:
    criteria_summary = "\n".join(criteria.summary_lines()) or "• No additional filters provided"
    return (
        "You are an expert bilingual (English and French) real estate research agent focused on the Greater "
        "Montreal Area (including Montreal, Laval, Longueuil, South Shore, and North Shore).\n"
        "Your job is to find active residential real estate listings that match the user's request.\n"
        "Use the available tools to search the public web, open promising results, and extract structured data.\n\n"
        "When evaluating results:\n"
        "- Prioritize reputable Canadian real estate sources (Realtor.ca, Centris.ca, Royal LePage, Sutton, etc.).\n"
        "- Only report listings that are clearly located in Quebec within the Greater Montreal Area.\n"
        "- Prefer the newest or most recently updated listings when multiple matches exist.\n"
        "- Ensure that each listing includes its official MLS number (MLS®, Centris #, or listing ID) if available. "
        f'If unavailable after verification, set the value to "{MLS_NOT_FOUND}".\n'
        "- Use normalize_listings to de-duplicate your candidates before answering.\n\n"
        "When you have enough information, respond with **only** valid JSON using this structure:\n"
        "{\n"
        '  "listings": [\n'
        "    {\n"
        '      "mls": "string",\n'
        '      "url": "https://...",\n'
        '      "address": "Full street address, city",\n'
        '      "price": 0,\n'
        '      "beds": 0,\n'
        '      "baths": 0,\n'
        '      "type": "Property type",\n'
        '      "note_en": "Short English summary highlighting key facts",\n'
        '      "note_fr": "Courte description en français",\n'
        '      "source": "Source name"\n'
        "    }\n"
        "  ],\n"
        '  "notes_en": "Any important caveats or reminders in English",\n'
        '  "notes_fr": "Notes importantes en français",\n'
        '  "sources": [\n'
        '    { "title": "Result title", "url": "https://..." }\n'
        "  ]\n"
        "}\n\n"
        "If you cannot find any suitable listings, return empty arrays but still respect the JSON schema.\n"
        f"Criteria provided by the user:\n{criteria_summary}"
    )


def parse_final_answer(raw: str) -> Dict[str, Any]:
    """Decode the model's final JSON; anything unparseable becomes an empty object."""
    text = (raw or "").strip()
    fenced = _CODE_FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        parsed = json.loads(text)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _clean_sources(raw_sources: Any) -> List[Dict[str, Any]]:
    sources = []
    for item in raw_sources if isinstance(raw_sources, list) else []:
        if not isinstance(item, dict) or not isinstance(item.get("url"), str) or not item["url"]:
            continue
        sources.append(
            {
                "title": item["title"] if isinstance(item.get("title"), str) else None,
                "url": item["url"],
                "details": item["details"] if isinstance(item.get("details"), str) else None,
            }
        )
    return sources


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


class ListingAgent:
    """Runs the bounded model/tool conversation for one request."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        tools: Optional[ToolRegistry] = None,
        chat: Optional[ChatFn] = None,
        max_steps: int = MAX_AGENT_STEPS,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.tools = tools or ToolRegistry(self.settings)
        self._chat = chat
        self.max_steps = max_steps

    async def run(self, prompt: str, criteria: ListingCriteria) -> AgentRunResult:
        chat = self._chat
        if chat is None:
            if not self.settings.openai_api_key:
                logger.warning("agent_missing_credentials")
                return AgentRunResult.failed(["OPENAI_API_KEY is not configured"])
            chat = openai_chat(self.settings)

        warnings: List[str] = []
        try:
            return await self._run(chat, prompt, criteria, warnings)
        except Exception as exc:
            logger.exception("agent_run_crashed")
            warnings.append(f"Agent run failed: {exc}")
            return AgentRunResult.failed(warnings)

    async def _run(
        self,
        chat: ChatFn,
        prompt: str,
        criteria: ListingCriteria,
        warnings: List[str],
    ) -> AgentRunResult:
        conversation = Conversation()
        conversation.append(SystemMessage(build_system_prompt(criteria)))
        conversation.append(UserMessage(f"User request: {prompt}\nRemember to return only JSON."))
        model = self.settings.openai_model
        tool_schemas = self.tools.schemas()

        for step in range(1, self.max_steps + 1):
            logger.info("agent_turn_start", extra={"step": step, "message_count": len(conversation)})
            timer = start_timer("agent", model)
            try:
                completion = await chat(
                    {
                        "model": model,
                        "messages": conversation.to_wire(),
                        "tools": tool_schemas,
                        "temperature": TEMPERATURE,
                        "tool_choice": "auto",
                    }
                )
            except Exception as exc:
                timer.done()
                logger.warning("agent_model_call_failed", extra={"step": step, "error": str(exc)})
                warnings.append(str(exc) or type(exc).__name__)
                return AgentRunResult.failed(warnings)

            tokens_in, tokens_out = extract_usage_tokens(completion)
            timer.done(tokens_in=tokens_in, tokens_out=tokens_out)

            choices = completion.get("choices") if isinstance(completion, dict) else None
            if not choices:
                warnings.append("Model returned no choices")
                return AgentRunResult.failed(warnings)

            choice = choices[0]
            message = choice.get("message") or {}
            finish_reason = choice.get("finish_reason")
            raw_calls = message.get("tool_calls") or []

            if raw_calls:
                calls = tuple(ToolCall.from_wire(raw, idx) for idx, raw in enumerate(raw_calls))
                conversation.append(AssistantMessage(content=message.get("content") or "", tool_calls=calls))
                logger.info("agent_tool_calls", extra={"step": step, "tools": [call.name for call in calls]})
                results = await asyncio.gather(*(self.tools.dispatch(call) for call in calls))
                for call, result in zip(calls, results):
                    conversation.append(ToolMessage(call.id, json.dumps(result, ensure_ascii=False, default=str)))
                continue

            if finish_reason in ("stop", "length"):
                result = self._completed(message.get("content") or "", warnings)
                logger.info(
                    "agent_run_complete",
                    extra={"step": step, "finish_reason": finish_reason, "listings": len(result.listings)},
                )
                return result

            if finish_reason == "content_filter":
                warnings.append(CONTENT_FILTER_WARNING)
            else:
                warnings.append(f"Unexpected finish reason: {finish_reason}")
            logger.warning("agent_run_stopped", extra={"step": step, "finish_reason": finish_reason})
            return AgentRunResult.failed(warnings)

        warnings.append(f"Agent step budget of {self.max_steps} exhausted without a final answer")
        logger.warning("agent_budget_exhausted", extra={"max_steps": self.max_steps})
        return AgentRunResult.failed(warnings)

    @staticmethod
    def _completed(raw_content: str, warnings: List[str]) -> AgentRunResult:
        parsed = parse_final_answer(raw_content)
        listings = parsed.get("listings")
        return AgentRunResult(
            listings=list(listings) if isinstance(listings, list) else [],
            sources=_clean_sources(parsed.get("sources")),
            notes_en=_optional_str(parsed.get("notes_en")),
            notes_fr=_optional_str(parsed.get("notes_fr")),
            warnings=list(warnings),
            raw_response=raw_content,
        )
