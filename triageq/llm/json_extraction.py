"""Defensive JSON extraction for model output.

Models wrap JSON in markdown fences, add commentary before or after it, and
occasionally drop or add commas. extract_json finds the first balanced JSON
object in the text and applies a few targeted repairs before giving up.
"""

from __future__ import annotations

import json
import re
from typing import Any

from triageq.observability.logging import get_logger

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


def find_balanced_object(text: str) -> str | None:
    """Return the first {...} span whose braces balance, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            char = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        start = text.find("{", start + 1)
    return None


def _repair(json_text: str) -> str:
    # Missing commas between fields split across lines
    repaired = re.sub(r'"\s*\n\s*"', '",\n"', json_text)
    repaired = re.sub(r"(\d+\.?\d*|true|false|null)\s*\n\s*\"", r'\1,\n"', repaired)
    repaired = re.sub(r'\}\s*\n\s*"', '},\n"', repaired)
    repaired = re.sub(r'\]\s*\n\s*"', '],\n"', repaired)
    # Trailing commas before } or ]
    return re.sub(r",\s*([\}\]])", r"\1", repaired)


def extract_json(text: str) -> dict[str, Any]:
    """Parse the first JSON object found in a model response.

    Raises:
        json.JSONDecodeError: If no object can be recovered
    """
    cleaned = _FENCE_RE.sub("", text or "").strip()

    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    candidate = find_balanced_object(cleaned)
    if candidate is None:
        raise json.JSONDecodeError("No JSON object found in response", cleaned, 0)

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning("JSON parse error (attempting repair): %s", e)

    repaired = _repair(candidate)
    result = json.loads(repaired)
    logger.info("JSON repair succeeded")
    return result
