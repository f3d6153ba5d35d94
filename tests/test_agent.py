import asyncio
import json

import pytest

from listing_finder.agent import (
    CONTENT_FILTER_WARNING,
    MAX_AGENT_STEPS,
    TEMPERATURE,
    ListingAgent,
    build_system_prompt,
    parse_final_answer,
)
from listing_finder.criteria import ListingCriteria
from listing_finder.listings import MLS_NOT_FOUND
from listing_finder.tools import ToolRegistry
from conftest import ScriptedChat, load_fixture, stop_response, tool_call_response

CRITERIA = ListingCriteria.from_variables({"location": "Montréal, QC", "beds": "2"}, "2 bedroom condo")


def _run(settings, chat):
    agent = ListingAgent(settings, tools=ToolRegistry(settings), chat=chat)
    return asyncio.run(agent.run("2 bedroom condo near a metro", CRITERIA))


def test_system_prompt_mentions_criteria_and_sentinel():
    prompt = build_system_prompt(CRITERIA)
    assert "• Location: Montréal, QC" in prompt
    assert "• Bedrooms: 2+" in prompt
    assert MLS_NOT_FOUND in prompt


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('{"listings": []}', {"listings": []}),
        ('```json\n{"notes_en": "ok"}\n```', {"notes_en": "ok"}),
        ("not json at all", {}),
        ("[1, 2, 3]", {}),
        ("", {}),
    ],
)
def test_parse_final_answer(raw, expected):
    assert parse_final_answer(raw) == expected


def test_direct_final_answer(settings):
    chat = ScriptedChat([stop_response(load_fixture("final_answer.json"))])
    result = _run(settings, chat)

    assert len(chat.requests) == 1
    request = chat.requests[0]
    assert request["temperature"] == TEMPERATURE
    assert request["tool_choice"] == "auto"
    assert request["model"] == settings.openai_model
    assert [tool["function"]["name"] for tool in request["tools"]] == [
        "search_listings",
        "fetch_listing_page",
        "extract_listing_info",
        "normalize_listings",
    ]
    assert [message["role"] for message in request["messages"]] == ["system", "user"]
    assert "2 bedroom condo near a metro" in request["messages"][1]["content"]

    assert len(result.listings) == 4
    assert [source["url"] for source in result.sources] == [
        "https://www.centris.ca/en/condos~for-sale~montreal",
        "https://www.realtor.ca/real-estate/28765432",
    ]
    assert result.sources[1]["title"] is None
    assert result.notes_en == "Prices are asking prices in CAD."
    assert result.warnings == []


def test_tool_round_trip(settings):
    listings_arg = json.dumps({"listings": [{"mls": "A1", "price": "$500,000"}, {"mls": "a1", "beds": 2}]})
    chat = ScriptedChat(
        [
            tool_call_response({"id": "call_norm", "name": "normalize_listings", "arguments": listings_arg}),
            stop_response({"listings": [{"mls": "A1"}], "sources": []}),
        ]
    )
    result = _run(settings, chat)

    assert len(chat.requests) == 2
    messages = chat.requests[1]["messages"]
    assert [message["role"] for message in messages] == ["system", "user", "assistant", "tool"]
    assert messages[2]["tool_calls"][0]["function"]["name"] == "normalize_listings"
    assert messages[3]["tool_call_id"] == "call_norm"
    tool_payload = json.loads(messages[3]["content"])
    assert tool_payload["count"] == 1
    assert tool_payload["listings"][0]["price"] == 500000
    assert tool_payload["listings"][0]["beds"] == 2
    assert result.listings == [{"mls": "A1"}]


def test_parallel_tool_results_keep_call_order(settings):
    chat = ScriptedChat(
        [
            tool_call_response(
                {"id": "first", "name": "normalize_listings", "arguments": '{"listings": []}'},
                {"id": "second", "name": "book_viewing", "arguments": "{}"},
            ),
            stop_response({"listings": []}),
        ]
    )
    _run(settings, chat)

    tool_messages = [m for m in chat.requests[1]["messages"] if m["role"] == "tool"]
    assert [m["tool_call_id"] for m in tool_messages] == ["first", "second"]
    assert json.loads(tool_messages[1]["content"]) == {"error": "Unknown tool book_viewing"}


def test_step_budget_is_enforced(settings):
    chat = ScriptedChat([tool_call_response({"name": "normalize_listings", "arguments": '{"listings": []}'})])
    result = _run(settings, chat)

    assert len(chat.requests) == MAX_AGENT_STEPS
    assert result.listings == []
    assert result.warnings == [f"Agent step budget of {MAX_AGENT_STEPS} exhausted without a final answer"]


def test_content_filter_stops_run(settings):
    chat = ScriptedChat([stop_response("", finish_reason="content_filter")])
    result = _run(settings, chat)
    assert result.listings == []
    assert result.warnings == [CONTENT_FILTER_WARNING]


def test_unexpected_finish_reason(settings):
    chat = ScriptedChat([stop_response("", finish_reason="function_call")])
    result = _run(settings, chat)
    assert result.warnings == ["Unexpected finish reason: function_call"]


def test_length_finish_is_treated_as_final(settings):
    chat = ScriptedChat([stop_response({"listings": [{"mls": "B2"}]}, finish_reason="length")])
    result = _run(settings, chat)
    assert result.listings == [{"mls": "B2"}]


def test_model_failure_becomes_warning(settings):
    chat = ScriptedChat([RuntimeError("rate limited")])
    result = _run(settings, chat)
    assert result.listings == []
    assert result.warnings == ["rate limited"]


def test_missing_choices(settings):
    chat = ScriptedChat([{"choices": []}])
    result = _run(settings, chat)
    assert result.warnings == ["Model returned no choices"]


def test_malformed_final_answer_yields_empty_result(settings):
    chat = ScriptedChat([stop_response("Here are some great condos!")])
    result = _run(settings, chat)
    assert result.listings == []
    assert result.sources == []
    assert result.warnings == []
    assert result.raw_response == "Here are some great condos!"


def test_missing_api_key_short_circuits(settings):
    agent = ListingAgent(settings, tools=ToolRegistry(settings))
    result = asyncio.run(agent.run("condo", CRITERIA))
    assert result.warnings == ["OPENAI_API_KEY is not configured"]
    assert result.listings == []
