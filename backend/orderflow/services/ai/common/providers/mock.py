"""Offline provider: always answers ``unclear`` so callers exercise the fallback path."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence

from orderflow.schemas.extraction import MediaPayload

from .base import BaseProvider, ProviderResult

logger = logging.getLogger(__name__)

UNCLEAR_RESPONSE = {
    "intent": "unclear",
    "transcription": "",
    "invoice_data": None,
    "product_data": None,
    "import_slip_data": None,
}


class MockProvider(BaseProvider):
    name = "mock"

    async def generate(
        self,
        prompt: str,
        *,
        media: Sequence[MediaPayload] = (),
        system_prompt: str | None = None,
        model: str = "",
        temperature: float = 0.1,
        max_tokens: int = 4096,
        timeout_seconds: float = 30.0,
    ) -> ProviderResult:
        started = time.monotonic()
        logger.debug("Mock extraction for %d attachment(s)", len(media))
        text = json.dumps(UNCLEAR_RESPONSE)
        return ProviderResult(
            raw_text=text,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()) + len((system_prompt or "").split()),
            completion_tokens=len(UNCLEAR_RESPONSE),
            latency_ms=round((time.monotonic() - started) * 1000, 2),
        )
