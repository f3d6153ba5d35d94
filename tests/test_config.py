from listing_finder.config import DEFAULT_ALLOWED_DOMAINS, Settings

ENV_VARS = [
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "TAVILY_API_KEY",
    "LISTING_ALLOWED_DOMAINS",
    "LISTING_FETCH_TIMEOUT_MS",
    "GUARDRAILS_MODE",
]


def _clear(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    _clear(monkeypatch)
    settings = Settings.from_env()
    assert settings.openai_api_key is None
    assert settings.openai_model == "gpt-4o-mini"
    assert settings.allowed_domains == DEFAULT_ALLOWED_DOMAINS
    assert settings.fetch_timeout_seconds == 10.0
    assert settings.guardrails_mode == "openai"


def test_overrides(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("TAVILY_API_KEY", "tvly-abc")
    monkeypatch.setenv("LISTING_ALLOWED_DOMAINS", " Centris.ca, ,realtor.ca ")
    monkeypatch.setenv("LISTING_FETCH_TIMEOUT_MS", "2500")
    monkeypatch.setenv("GUARDRAILS_MODE", " OFF ")
    settings = Settings.from_env()
    assert settings.openai_api_key == "sk-test"
    assert settings.tavily_api_key == "tvly-abc"
    assert settings.allowed_domains == ("centris.ca", "realtor.ca")
    assert settings.fetch_timeout_seconds == 2.5
    assert settings.guardrails_mode == "off"


def test_empty_allow_list_and_bad_timeout(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("LISTING_ALLOWED_DOMAINS", "")
    monkeypatch.setenv("LISTING_FETCH_TIMEOUT_MS", "soon")
    settings = Settings.from_env()
    assert settings.allowed_domains == ()
    assert settings.fetch_timeout_ms == 10000
