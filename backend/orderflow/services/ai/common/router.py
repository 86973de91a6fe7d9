"""Pick the provider and model for an AI scope: runtime override, then environment, then mock."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from orderflow.core.config import Settings, get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedConfig:
    scope: str
    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


@dataclass(frozen=True)
class _ScopeDefaults:
    provider: str
    model: str
    timeout_seconds: float


def _scope_defaults(settings: Settings, scope: str) -> _ScopeDefaults:
    if scope == "extraction":
        return _ScopeDefaults(
            provider=settings.ai_extraction_provider,
            model=settings.ai_extraction_model,
            timeout_seconds=settings.ai_extraction_timeout_seconds,
        )
    logger.warning("No AI settings for scope %r, using mock", scope)
    return _ScopeDefaults(provider="", model="", timeout_seconds=settings.ai_extraction_timeout_seconds)


def _first_value(*candidates: Optional[str]) -> str:
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return ""


def _allowed_model(settings: Settings, provider_name: str, model: str) -> str:
    """Keep *model* when the provider has no allowlist or lists it; else the first allowed one."""
    allowed = settings.ai_allowed_models.get(provider_name, [])
    if not allowed or model in allowed:
        return model
    if model:
        logger.warning("Model %r is not allowed for %r, using %r", model, provider_name, allowed[0])
    return allowed[0]


def resolve(
    scope: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> ResolvedConfig:
    """Overrides only count when ``ENABLE_AI_OVERRIDES`` is on."""
    settings = get_settings()
    defaults = _scope_defaults(settings, scope)
    if not settings.enable_ai_overrides:
        override_provider = override_model = None

    provider_name = _first_value(override_provider, defaults.provider).lower() or "mock"
    model = _allowed_model(settings, provider_name, _first_value(override_model, defaults.model))

    return ResolvedConfig(
        scope=scope,
        provider=get_provider(provider_name),
        model=model,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
        timeout_seconds=defaults.timeout_seconds,
    )
