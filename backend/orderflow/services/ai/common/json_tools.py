"""Pull the JSON object out of a model answer (fenced, chatty or bare)."""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_decoder = json.JSONDecoder()


def strip_code_fences(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


def extract_json_object(text: str) -> dict | None:
    """Return the first decodable JSON object in *text*, or ``None``.

    Top-level lists and scalars are ignored.
    """
    body = strip_code_fences(text or "")
    position = body.find("{")
    while position != -1:
        try:
            value, _ = _decoder.raw_decode(body, position)
        except ValueError:
            position = body.find("{", position + 1)
            continue
        return value

    if body:
        logger.debug("No JSON object in response (%d chars)", len(body))
    return None
