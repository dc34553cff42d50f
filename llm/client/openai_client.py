"""OpenAI LLM client wrapper.

Features
- Forces structured (JSON) output and validates each product entry
- Retry / timeout / per-request cost cap
- Provider injection so tests need neither network nor the real API
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import openai
from openai import OpenAI

from extraction.models.domain import ExtractionInput, ExtractionResponse, check_candidate
from extraction.prompts.templates import build_extraction_messages
from llm.settings import ExtractionSettings, get_extraction_settings


class LLMError(Exception):
    """Base error for LLM calls."""


class TransientLLMError(LLMError):
    """Temporary failure (retried)."""


class PermanentLLMError(LLMError):
    """Permanent failure (not retried)."""


ProviderFn = Callable[[Dict[str, Any]], Dict[str, Any]]


_PRICE_PER_1K_TOKENS_USD: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"prompt": 0.00015, "completion": 0.0006},
    "gpt-4o": {"prompt": 0.0025, "completion": 0.0100},
    "gpt-4.1": {"prompt": 0.0020, "completion": 0.0080},
}


def _estimate_cost_usd(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    price = _PRICE_PER_1K_TOKENS_USD.get(model, _PRICE_PER_1K_TOKENS_USD["gpt-4o-mini"])
    return (
        (prompt_tokens / 1000.0) * price["prompt"]
        + (completion_tokens / 1000.0) * price["completion"]
    )


def _unpack_completion(resp: Any) -> Tuple[str, int, int]:
    """Return (content, prompt_tokens, completion_tokens) from a completion envelope."""
    if not isinstance(resp, dict):
        raise PermanentLLMError("LLM response is not an object")
    choices = resp.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise PermanentLLMError("LLM response has no choices")
    message = choices[0].get("message")
    if not isinstance(message, dict):
        raise PermanentLLMError("LLM response choice has no message")
    content = message.get("content") or ""
    if not isinstance(content, str):
        raise PermanentLLMError("LLM response content is not text")
    usage = resp.get("usage") or {}
    if not isinstance(usage, dict):
        raise PermanentLLMError("LLM response usage is malformed")
    tokens = []
    for key in ("prompt_tokens", "completion_tokens"):
        value = usage.get(key) or 0
        if isinstance(value, bool) or not isinstance(value, int):
            raise PermanentLLMError(f"LLM response usage.{key} is not an integer")
        tokens.append(value)
    return content, tokens[0], tokens[1]


def _load_structured_content(content: str, attempts_left: int) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError as exc:
        if attempts_left > 0:
            raise TransientLLMError("failed to parse LLM response as JSON") from exc
        raise PermanentLLMError("failed to parse LLM response as JSON") from exc


def _parse_envelope(data: Any) -> tuple[list, bool]:
    if not isinstance(data, dict):
        raise PermanentLLMError("LLM response is not a JSON object")
    products = data.get("products")
    if products is None:
        products = []
    if not isinstance(products, list):
        raise PermanentLLMError("LLM response field 'products' is not a list")
    related = data.get("is_merchandise_related", bool(products))
    return products, bool(related)


@dataclass(frozen=True)
class OpenAIClient:
    settings: ExtractionSettings
    provider: Optional[ProviderFn] = None

    @classmethod
    def from_env(cls, provider: Optional[ProviderFn] = None) -> "OpenAIClient":
        return cls(get_extraction_settings(), provider=provider)

    def _get_provider(self) -> ProviderFn:
        if self.provider is not None:
            return self.provider

        client = OpenAI(
            api_key=self.settings.openai_api_key,
            timeout=float(self.settings.extraction_request_timeout_seconds),
            max_retries=0,
        )

        def _call(payload: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - network
            try:
                resp = client.chat.completions.create(**payload)
            except (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError) as exc:
                raise TransientLLMError(str(exc)) from exc
            except openai.InternalServerError as exc:
                raise TransientLLMError(str(exc)) from exc
            except openai.OpenAIError as exc:
                raise PermanentLLMError(str(exc)) from exc
            # normalize to a plain dict
            return {
                "choices": [
                    {
                        "message": {"content": resp.choices[0].message.content},
                    }
                ],
                "usage": {
                    "prompt_tokens": getattr(resp.usage, "prompt_tokens", 0),
                    "completion_tokens": getattr(resp.usage, "completion_tokens", 0),
                },
                "model": resp.model,
            }

        return _call

    def _build_payload(self, inp: ExtractionInput) -> Dict[str, Any]:
        msgs = build_extraction_messages(inp)
        return {
            "model": self.settings.extraction_model,
            "messages": msgs,
            "temperature": float(self.settings.extraction_temperature),
            "max_tokens": int(self.settings.extraction_max_tokens),
            "response_format": {"type": "json_object"},
        }

    def extract(self, inp: ExtractionInput) -> ExtractionResponse:
        payload = self._build_payload(inp)
        provider = self._get_provider()
        max_attempts = int(self.settings.extraction_retry_max_attempts)
        timeout = float(self.settings.extraction_request_timeout_seconds)

        attempts = 0
        last_exc: Optional[Exception] = None
        start = time.monotonic()
        while attempts <= max_attempts:
            attempts += 1
            try:
                resp = provider(payload)
                content, prompt_tokens, completion_tokens = _unpack_completion(resp)
                model = resp.get("model") or self.settings.extraction_model
                cost = _estimate_cost_usd(model, prompt_tokens, completion_tokens)
                if cost > float(self.settings.extraction_cost_limit_usd):
                    raise PermanentLLMError("LLM cost limit exceeded")

                data = _load_structured_content(content, max_attempts - attempts)
                products, related = _parse_envelope(data)
                return ExtractionResponse(
                    items=[check_candidate(i, raw) for i, raw in enumerate(products)],
                    is_merchandise_related=related,
                    llm_model=model,
                    llm_tokens_prompt=prompt_tokens,
                    llm_tokens_completion=completion_tokens,
                    llm_cost=cost,
                )
            except TransientLLMError as exc:
                last_exc = exc
                if time.monotonic() - start > timeout:
                    raise TransientLLMError("LLM request timeout exceeded") from exc

        assert last_exc is not None
        raise TransientLLMError(f"LLM retry limit exceeded: {last_exc}")
