"""LangChain chat-model factory for the generation service."""

from __future__ import annotations

import logging

from langchain_core.language_models import BaseChatModel

from personachat.config import Settings
from personachat.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROVIDERS = ("google", "openai", "anthropic", "openai_compatible")


def _google_safety_settings(threshold: str) -> dict:
    from langchain_google_genai import HarmBlockThreshold, HarmCategory

    try:
        level = HarmBlockThreshold[threshold.upper()]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown LLM_SAFETY_THRESHOLD: {threshold}") from exc

    return {
        HarmCategory.HARM_CATEGORY_HARASSMENT: level,
        HarmCategory.HARM_CATEGORY_HATE_SPEECH: level,
        HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: level,
        HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: level,
    }


def create_llm(settings: Settings, **kwargs) -> BaseChatModel:
    """
    Create a LangChain chat model based on config.

    Args:
        settings: Application settings (provider, model, credential, sampling)
        **kwargs: Additional kwargs passed to the LLM constructor

    Raises:
        ConfigurationError: Unknown provider or missing credential
    """
    provider = settings.LLM_PROVIDER.lower()
    model = settings.LLM_MODEL

    if provider not in PROVIDERS:
        raise ConfigurationError(f"Unknown LLM provider: {provider}")
    if provider != "openai_compatible" and not settings.LLM_API_KEY:
        raise ConfigurationError(
            "LLM_API_KEY (or GEMINI_API_KEY) is not set in the environment or .env"
        )

    logger.info("Creating %s chat model %s", provider, model)

    if provider == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI

        if settings.LLM_SAFETY_THRESHOLD:
            kwargs.setdefault("safety_settings", _google_safety_settings(settings.LLM_SAFETY_THRESHOLD))
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=settings.LLM_API_KEY,
            temperature=settings.LLM_TEMPERATURE,
            top_p=settings.LLM_TOP_P,
            top_k=settings.LLM_TOP_K,
            max_output_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
            **kwargs,
        )

    if provider == "anthropic":
        from langchain_anthropic import ChatAnthropic

        return ChatAnthropic(
            model=model,
            api_key=settings.LLM_API_KEY,
            temperature=settings.LLM_TEMPERATURE,
            top_p=settings.LLM_TOP_P,
            top_k=settings.LLM_TOP_K,
            max_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
            **kwargs,
        )

    from langchain_openai import ChatOpenAI

    if provider == "openai_compatible":
        if not settings.LLM_BASE_URL:
            raise ConfigurationError("LLM_BASE_URL is required for the openai_compatible provider")
        kwargs["base_url"] = settings.LLM_BASE_URL

    return ChatOpenAI(
        model=model,
        api_key=settings.LLM_API_KEY or "not-needed",
        temperature=settings.LLM_TEMPERATURE,
        top_p=settings.LLM_TOP_P,
        max_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
        **kwargs,
    )
