"""Provider registry. Anything unusable (not allowlisted, no key, unknown) degrades to mock."""

from __future__ import annotations

import logging
from collections.abc import Callable

from orderflow.core.config import get_settings

from .base import BaseProvider, ProviderResult
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = ["get_provider", "BaseProvider", "ProviderResult", "MockProvider"]


def _gemini(api_key: str) -> BaseProvider:
    from .gemini import GeminiProvider

    return GeminiProvider(api_key=api_key)


def _openai(api_key: str) -> BaseProvider:
    from .openai import OpenAIProvider

    return OpenAIProvider(api_key=api_key)


# provider name -> (settings attribute holding the key, constructor)
HOSTED_PROVIDERS: dict[str, tuple[str, Callable[[str], BaseProvider]]] = {
    "gemini": ("gemini_api_key", _gemini),
    "openai": ("openai_api_key", _openai),
}


def get_provider(provider_name: str) -> BaseProvider:
    settings = get_settings()
    name = provider_name.lower().strip()

    if name not in settings.ai_allowed_providers:
        logger.warning("Provider %r is not allowlisted, using mock", name)
        return MockProvider()
    if name == "mock":
        return MockProvider()

    entry = HOSTED_PROVIDERS.get(name)
    if entry is None:
        logger.warning("Unknown provider %r, using mock", name)
        return MockProvider()

    key_setting, build = entry
    api_key = getattr(settings, key_setting)
    if not api_key:
        logger.warning("%s is not set, using mock instead of %s", key_setting.upper(), name)
        return MockProvider()
    return build(api_key)
