"""Google Gemini provider (``generateContent`` REST API with inline media)."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from orderflow.schemas.extraction import MediaPayload

from .base import BaseProvider, ProviderResult, encode_media

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class GeminiProvider(BaseProvider):
    name = "gemini"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

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
        import httpx

        model = model or "gemini-1.5-flash-latest"
        t0 = time.monotonic()

        parts: list[dict] = [{"text": prompt}]
        for item in media:
            parts.append({"inline_data": {"mime_type": item.mime_type, "data": encode_media(item)}})

        body: dict = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
                "responseMimeType": "application/json",
            },
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                GEMINI_API_URL.format(model=model),
                params={"key": self._api_key},
                headers={"Content-Type": "application/json"},
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        candidate = (data.get("candidates") or [{}])[0]
        text = "".join(part.get("text", "") for part in candidate.get("content", {}).get("parts", []))
        usage = data.get("usageMetadata", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("promptTokenCount", 0),
            completion_tokens=usage.get("candidatesTokenCount", 0),
            latency_ms=round(elapsed, 2),
        )
