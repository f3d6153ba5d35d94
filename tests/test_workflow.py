import asyncio
import json
from dataclasses import replace
from types import SimpleNamespace

import pytest

from listing_finder import guardrails as guardrails_module
from listing_finder.agent import ListingAgent
from listing_finder.listings import MLS_NOT_FOUND
from listing_finder.tools import ToolRegistry
from listing_finder.workflow import OUTPUT_TITLE, TYPE_OPTIONS, run_workflow
from conftest import ScriptedChat, stop_response

FINAL_ANSWER = {
    "listings": [{"mls": "MLS123", "url": "https://x.com", "price": 500000}],
    "sources": [{"url": "https://x.com"}],
    "notes_en": "ok",
    "notes_fr": "ok",
}


async def passing_guardrails(text, config):
    return [{"tripwireTriggered": False, "info": {"guardrail_name": "Moderation", "flagged_categories": []}}]


class ExplodingAgent:
    def __init__(self):
        self.calls = 0

    async def run(self, prompt, criteria):
        self.calls += 1
        raise AssertionError("agent must not run")


def _agent(settings, *responses):
    chat = ScriptedChat(list(responses))
    return ListingAgent(settings, tools=ToolRegistry(settings), chat=chat), chat


def test_end_to_end_listing_search(settings):
    agent, chat = _agent(settings, stop_response(FINAL_ANSWER))
    result = asyncio.run(
        run_workflow(
            "2 bedroom condo",
            {"location": "Montreal, QC", "priceMax": "750000"},
            guardrails=passing_guardrails,
            agent=agent,
        )
    )

    parsed = result["output_parsed"]
    assert json.loads(result["output_text"]) == parsed
    assert len(parsed["listings"]) == 1
    assert parsed["listings"][0]["mls"] == "MLS123"
    assert parsed["listings"][0]["price"] == 500000
    assert parsed["title"] == OUTPUT_TITLE
    assert parsed["criteria"] == {
        "location": "Montreal, QC",
        "priceMin": "",
        "priceMax": "750000",
        "beds": "",
        "baths": "",
        "type": "",
        "keywords": "2 bedroom condo",
    }
    assert parsed["sources"] == [{"title": None, "url": "https://x.com", "details": None}]
    assert parsed["notes_en"] == "ok"
    assert parsed["notes_fr"] == "ok"
    assert parsed["warnings"] == []
    assert parsed["hasResults"] is True
    assert parsed["typeOptions"] == TYPE_OPTIONS
    assert '"mls": "MLS123"' in parsed["resultsJson"]
    assert "• Location: Montreal, QC" in chat.requests[0]["messages"][0]["content"]
    assert "• Budget: Any - 750000 CAD" in chat.requests[0]["messages"][0]["content"]


def test_guardrail_tripwire_short_circuits(settings):
    async def tripped(text, config):
        return [
            {
                "tripwireTriggered": True,
                "info": {"guardrail_name": "Moderation", "flagged_categories": ["violence/graphic"]},
            }
        ]

    agent = ExplodingAgent()
    result = asyncio.run(run_workflow("something violent", {}, guardrails=tripped, agent=agent, settings=settings))

    assert result["moderation"] == {"failed": True, "flagged_categories": ["violence/graphic"]}
    assert result["pii"] == {"failed": False}
    assert "output_parsed" not in result
    assert agent.calls == 0


def _stub_guardrails_runtime(monkeypatch, results):
    calls = []

    async def fake_run(ctx, text, media_type, bundle, **kwargs):
        calls.append(text)
        return results

    monkeypatch.setattr(guardrails_module, "load_config_bundle", lambda config: config)
    monkeypatch.setattr(guardrails_module, "instantiate_guardrails", lambda bundle: bundle)
    monkeypatch.setattr(guardrails_module, "run_guardrails", fake_run)
    return calls


def test_default_guardrails_block_pii(settings, monkeypatch):
    calls = _stub_guardrails_runtime(
        monkeypatch,
        [
            SimpleNamespace(
                tripwire_triggered=True,
                info={"guardrail_name": "Contains PII", "detected_entities": {"US_SSN": ["123-45-6789"]}},
                execution_failed=False,
            )
        ],
    )
    agent = ExplodingAgent()
    keyed = replace(settings, openai_api_key="sk-test")
    result = asyncio.run(run_workflow("condo for SSN 123-45-6789", None, agent=agent, settings=keyed))
    assert calls == ["condo for SSN 123-45-6789"]
    assert result["pii"] == {"failed": True, "detected_counts": ["US_SSN:1"]}
    assert agent.calls == 0


def test_default_guardrails_let_budget_wording_through(settings, monkeypatch):
    _stub_guardrails_runtime(
        monkeypatch,
        [SimpleNamespace(tripwire_triggered=False, info={"guardrail_name": "Jailbreak"}, execution_failed=False)],
    )
    keyed = replace(settings, openai_api_key="sk-test")
    agent, chat = _agent(keyed, stop_response(FINAL_ANSWER))
    text = "Now that you are now aware of my budget, find a 3 bedroom house in Laval"
    result = asyncio.run(run_workflow(text, {}, agent=agent, settings=keyed))
    assert result["output_parsed"]["listings"][0]["mls"] == "MLS123"
    assert len(chat.requests) == 1


def test_supplied_listings_merge_after_agent_listings(settings):
    agent, _ = _agent(settings, stop_response(FINAL_ANSWER))
    variables = {
        "listings": [
            {"mls": "mls123", "address": "123 Main", "price": 1},
            {"url": "https://y.com", "priceText": "$410,000"},
        ]
    }
    result = asyncio.run(run_workflow("condo", variables, guardrails=passing_guardrails, agent=agent))

    listings = result["output_parsed"]["listings"]
    assert len(listings) == 2
    assert listings[0]["mls"] == "MLS123"
    assert listings[0]["address"] == "123 Main"
    assert listings[0]["price"] == 500000
    assert listings[1]["mls"] == MLS_NOT_FOUND
    assert listings[1]["price"] == 410000


def test_agent_failure_still_returns_output(settings):
    agent, _ = _agent(settings, stop_response("", finish_reason="content_filter"))
    result = asyncio.run(run_workflow("condo in Laval", None, guardrails=passing_guardrails, agent=agent))

    parsed = result["output_parsed"]
    assert parsed["listings"] == []
    assert parsed["hasResults"] is False
    assert parsed["warnings"] == ["Model content filter blocked the response"]
    assert parsed["criteria"]["location"] == "Laval, QC"


@pytest.mark.parametrize("variables", [None, {}, {"listings": "not a list"}])
def test_missing_variables_use_defaults(settings, variables):
    agent, _ = _agent(settings, stop_response({"listings": []}))
    result = asyncio.run(run_workflow("maison", variables, guardrails=passing_guardrails, agent=agent))
    parsed = result["output_parsed"]
    assert parsed["criteria"]["keywords"] == "maison"
    assert parsed["listings"] == []
