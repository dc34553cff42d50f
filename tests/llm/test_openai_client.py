from __future__ import annotations

import json
from typing import Any, Dict

import pytest

from extraction.models.domain import ExtractionInput, SchemaViolation
from llm.client.openai_client import (
    LLMError,
    OpenAIClient,
    PermanentLLMError,
    TransientLLMError,
)
from llm.settings import get_extraction_settings, reset_extraction_settings_cache


def _inp():
    return ExtractionInput(
        article_url="https://blog.example.com/figment",
        article_title="Figment returns",
        source_name="Park Blog",
        content="The Figment popcorn bucket is back at EPCOT.",
        max_chars=2000,
    )


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    reset_extraction_settings_cache()
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-123")
    monkeypatch.setenv("EXTRACTION_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("EXTRACTION_MAX_TOKENS", "256")
    monkeypatch.setenv("EXTRACTION_TEMPERATURE", "0.2")
    monkeypatch.setenv("EXTRACTION_REQUEST_TIMEOUT_SECONDS", "5")
    monkeypatch.setenv("EXTRACTION_RETRY_MAX_ATTEMPTS", "1")
    monkeypatch.setenv("EXTRACTION_COST_LIMIT_USD", "0.05")
    yield
    reset_extraction_settings_cache()


def _reply(content: str, prompt_tokens: int = 300, completion_tokens: int = 150) -> Dict[str, Any]:
    return {
        "choices": [{"message": {"content": content}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
        "model": "gpt-4o-mini",
    }


def _make_provider_ok(_: Dict[str, Any]) -> Dict[str, Any]:
    data = {
        "is_merchandise_related": True,
        "products": [
            {"name": "Figment Popcorn Bucket", "category": "popcorn_bucket", "park": "disney_epcot", "price": 25},
            {"name": 42},
        ],
    }
    return _reply(json.dumps(data))


def test_extract_success():
    client = OpenAIClient.from_env(provider=_make_provider_ok)
    res = client.extract(_inp())
    assert res.is_merchandise_related is True
    assert [p.name for p in res.valid] == ["Figment Popcorn Bucket"]
    assert isinstance(res.violations[0], SchemaViolation)
    assert res.violations[0].index == 1
    assert res.llm_tokens_prompt == 300
    assert res.llm_model == "gpt-4o-mini"
    assert 0.0 <= res.llm_cost < 0.05


def test_payload_requests_json_output():
    seen: Dict[str, Any] = {}

    def provider(payload: Dict[str, Any]) -> Dict[str, Any]:
        seen.update(payload)
        return _make_provider_ok(payload)

    OpenAIClient.from_env(provider=provider).extract(_inp())

    assert seen["response_format"] == {"type": "json_object"}
    assert seen["model"] == "gpt-4o-mini"
    assert seen["max_tokens"] == 256


def test_extract_retry_then_success(monkeypatch):
    monkeypatch.setenv("EXTRACTION_RETRY_MAX_ATTEMPTS", "2")
    reset_extraction_settings_cache()
    calls = {"n": 0}

    def provider(payload: Dict[str, Any]) -> Dict[str, Any]:
        calls["n"] += 1
        if calls["n"] == 1:
            # first answer is not JSON
            return _reply("not-json", 100, 10)
        return _make_provider_ok(payload)

    client = OpenAIClient.from_env(provider=provider)
    res = client.extract(_inp())
    assert res.valid[0].price == 25
    assert calls["n"] == 2


def test_invalid_json_on_last_attempt_is_permanent():
    client = OpenAIClient.from_env(provider=lambda _: _reply("still not json"))

    with pytest.raises(PermanentLLMError):
        client.extract(_inp())


def test_transient_errors_exhaust_retries():
    calls = {"n": 0}

    def provider(_: Dict[str, Any]) -> Dict[str, Any]:
        calls["n"] += 1
        raise TransientLLMError("rate limited")

    client = OpenAIClient.from_env(provider=provider)
    with pytest.raises(TransientLLMError) as exc:
        client.extract(_inp())

    assert "retry limit" in str(exc.value)
    assert calls["n"] == 2


def test_extract_cost_limit_exceeded():
    client = OpenAIClient.from_env(provider=lambda _: _reply(json.dumps({"products": []}), 200000, 200000))
    with pytest.raises(PermanentLLMError):
        client.extract(_inp())


@pytest.mark.parametrize("content", ['["a list"]', '{"products": "Figment"}'])
def test_bad_envelope_is_permanent(content):
    client = OpenAIClient.from_env(provider=lambda _: _reply(content))

    with pytest.raises(LLMError):
        client.extract(_inp())


def test_missing_products_means_not_related():
    client = OpenAIClient.from_env(provider=lambda _: _reply("{}"))

    res = client.extract(_inp())

    assert res.items == []
    assert res.is_merchandise_related is False


def test_timeout_raises_transient(monkeypatch):
    def slow_provider(_: Dict[str, Any]) -> Dict[str, Any]:
        import time as _t

        _t.sleep(1.2)
        raise TransientLLMError("read timeout")

    monkeypatch.setenv("EXTRACTION_REQUEST_TIMEOUT_SECONDS", "1")
    reset_extraction_settings_cache()
    client = OpenAIClient.from_env(provider=slow_provider)
    with pytest.raises(TransientLLMError) as exc:
        client.extract(_inp())

    assert "timeout" in str(exc.value)


def test_settings_require_api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "  ")
    reset_extraction_settings_cache()

    with pytest.raises(RuntimeError):
        get_extraction_settings()


@pytest.mark.parametrize(
    "envelope",
    [
        {"choices": [], "usage": {}},
        {"choices": ["text"]},
        {"choices": [{"message": "text"}]},
        {"choices": [{"message": {"content": "{}"}}], "usage": {"prompt_tokens": "many"}},
        {"choices": [{"message": {"content": ["{}"]}}]},
        ["not", "an", "object"],
    ],
)
def test_malformed_completion_is_permanent(envelope):
    calls = {"n": 0}

    def provider(_: Dict[str, Any]) -> Any:
        calls["n"] += 1
        return envelope

    client = OpenAIClient.from_env(provider=provider)
    with pytest.raises(PermanentLLMError):
        client.extract(_inp())

    assert calls["n"] == 1
