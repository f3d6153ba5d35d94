import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from listing_finder.config import Settings

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


def load_fixture(name: str):
    path = FIXTURES_DIR / name
    with path.open("r", encoding="utf-8") as f:
        if path.suffix == ".json":
            return json.load(f)
        return f.read()


def stop_response(content: Any, finish_reason: str = "stop") -> Dict[str, Any]:
    if not isinstance(content, str):
        content = json.dumps(content)
    return {
        "choices": [{"finish_reason": finish_reason, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 40},
    }


def tool_call_response(*calls: Dict[str, Any]) -> Dict[str, Any]:
    tool_calls = [
        {
            "id": call.get("id", f"call_{idx}"),
            "type": "function",
            "function": {"name": call["name"], "arguments": call.get("arguments", "{}")},
        }
        for idx, call in enumerate(calls)
    ]
    return {
        "choices": [
            {
                "finish_reason": "tool_calls",
                "message": {"role": "assistant", "content": None, "tool_calls": tool_calls},
            }
        ]
    }


class ScriptedChat:
    """Fake chat function replaying canned responses; the last one repeats once the script runs out."""

    def __init__(self, responses: List[Any]) -> None:
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []

    async def __call__(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self.requests.append(json.loads(json.dumps(request)))
        index = min(len(self.requests), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def no_metrics_csv(monkeypatch):
    monkeypatch.delenv("METRICS_CSV_PATH", raising=False)


@pytest.fixture()
def settings():
    return Settings(
        openai_api_key=None,
        tavily_api_key="tvly-test",
        tavily_api_url="https://search.test/search",
        allowed_domains=(),
        fetch_timeout_ms=2000,
        guardrails_mode="openai",
    )
