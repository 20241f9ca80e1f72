from __future__ import annotations

from typing import Any

from legalyze.config.settings import Settings
from legalyze.llm_client.base import GenerationClient
from legalyze.llm_client.gemini_client import GeminiLLMClient
from legalyze.llm_client.openai_client import OpenAILLMClient


def build_generation_client(settings: Settings) -> GenerationClient:
    if settings.default_provider == "google":
        return GeminiLLMClient(
            api_key=settings.google_api_key,
            temperature=settings.llm_temperature,
        )
    if settings.default_provider == "openai":
        return OpenAILLMClient(
            api_key=settings.openai_api_key,
            reasoning_effort=settings.openai_reasoning_effort,
        )
    raise ValueError(f"Unsupported LLM provider: {settings.default_provider}")


def resolve_model(settings: Settings, providers_config: dict[str, Any] | None = None) -> str:
    """Return the configured model when the provider lists it, else the provider default."""
    config = providers_config if providers_config is not None else settings.providers_config
    providers = config.get("llm_providers", {})
    provider = providers.get(settings.default_provider) if isinstance(providers, dict) else None
    if not isinstance(provider, dict):
        raise ValueError(f"Provider is not configured: {settings.default_provider}")

    models = provider.get("models") or []
    if settings.default_model in models:
        return settings.default_model

    fallback = provider.get("default_model")
    if not isinstance(fallback, str) or not fallback:
        raise ValueError(
            f"Model {settings.default_model} is not available for {settings.default_provider}"
        )
    return fallback
