"""LLM module - OpenAI client and settings."""

from llm.client.openai_client import (
    LLMError,
    OpenAIClient,
    PermanentLLMError,
    ProviderFn,
    TransientLLMError,
)
from llm.settings import ExtractionSettings, get_extraction_settings

__all__ = [
    "LLMError",
    "OpenAIClient",
    "PermanentLLMError",
    "ProviderFn",
    "TransientLLMError",
    "ExtractionSettings",
    "get_extraction_settings",
]
