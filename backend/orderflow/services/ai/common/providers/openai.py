"""OpenAI provider."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from orderflow.schemas.extraction import MediaPayload

from .base import BaseProvider, ProviderResult, encode_media

logger = logging.getLogger(__name__)

_AUDIO_FORMATS = {"audio/mpeg": "mp3", "audio/mp3": "mp3", "audio/wav": "wav", "audio/x-wav": "wav"}


def _media_part(item: MediaPayload) -> dict:
    if item.is_image:
        return {
            "type": "image_url",
            "image_url": {"url": f"data:{item.mime_type};base64,{encode_media(item)}"},
        }
    audio_format = _AUDIO_FORMATS.get(item.mime_type)
    if audio_format is None:
        raise ValueError(f"OpenAI input_audio does not accept {item.mime_type}")
    return {"type": "input_audio", "input_audio": {"data": encode_media(item), "format": audio_format}}


class OpenAIProvider(BaseProvider):
    name = "openai"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def accepts(self, media: MediaPayload) -> bool:
        return media.is_image or media.mime_type in _AUDIO_FORMATS

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

        has_audio = any(not item.is_image for item in media)
        model = model or ("gpt-4o-audio-preview" if has_audio else "gpt-4o-mini-2024-07-18")
        t0 = time.monotonic()

        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        content: list[dict] = [{"type": "text", "text": prompt}]
        content.extend(_media_part(item) for item in media)
        messages.append({"role": "user", "content": content})

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                "https://api.openai.com/v1/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "messages": messages,
                },
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        choice = data["choices"][0]
        text = choice["message"]["content"]
        usage = data.get("usage", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            latency_ms=round(elapsed, 2),
        )
