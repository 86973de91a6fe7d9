"""Provider contract for multimodal extraction models."""

from __future__ import annotations

import abc
import base64
from collections.abc import Sequence
from dataclasses import dataclass

from orderflow.schemas.extraction import MediaPayload


@dataclass(frozen=True)
class ProviderResult:
    """Raw model answer plus usage metadata."""

    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


def encode_media(media: MediaPayload) -> str:
    return base64.b64encode(media.data).decode("ascii")


class BaseProvider(abc.ABC):
    name: str = "base"

    def accepts(self, media: MediaPayload) -> bool:
        """Whether *media* can be sent inline to this provider."""
        return True

    @abc.abstractmethod
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
        """Send *prompt* with the inline *media* attachments."""
