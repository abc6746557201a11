"""JSON extraction from chat-completion output.

Chat models return content either as a plain string or as a list of typed
chunks (``thinking`` traces plus ``text``). Both shapes are handled, with
a regex fallback for JSON wrapped in prose or code fences.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# A JSON object with up to two levels of nested braces
_OBJECT_PATTERN = re.compile(r"\{(?:[^{}]|\{(?:[^{}]|\{[^{}]*\})*\})*\}", re.DOTALL)


def parse_chat_response(response: Any) -> dict:
    """Extract the JSON object from a chat completion response.

    Args:
        response: Completion object exposing ``choices[0].message.content``
            (Mistral SDK responses and compatible mocks).

    Raises:
        ValueError: If no JSON object can be extracted.
    """
    content = response.choices[0].message.content

    if isinstance(content, list):
        text_parts = [
            getattr(chunk, "text", "")
            for chunk in content
            if getattr(chunk, "type", None) == "text"
        ]
        if text_parts:
            return parse_json_text("".join(text_parts))

    if isinstance(content, str):
        return parse_json_text(content)

    return parse_json_text(str(content))


def parse_json_text(text: str) -> dict:
    """Parse a JSON object out of model text.

    Phase 1 tries the whole string. A top-level array holding a single
    object is unwrapped; any other array is an error. Phase 2 drops
    quoted tool-log lines (``> ...``) and takes the last complete object
    found by regex.

    Raises:
        ValueError: If no JSON object can be extracted.
    """
    stripped = text.strip()
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        parsed = None
    else:
        if isinstance(parsed, dict):
            return parsed
        if isinstance(parsed, list):
            if len(parsed) == 1 and isinstance(parsed[0], dict):
                logger.warning("Model returned a single-element JSON array; unwrapping")
                return parsed[0]
            raise ValueError(
                f"Model returned a JSON array with {len(parsed)} elements instead of an object"
            )

    cleaned = "\n".join(
        line for line in stripped.splitlines() if not line.lstrip().startswith(">")
    )
    for match in reversed(_OBJECT_PATTERN.findall(cleaned)):
        try:
            candidate = json.loads(match)
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate

    raise ValueError("No valid JSON object found in response")
