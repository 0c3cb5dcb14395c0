"""Lenient JSON parsing for chat-completion output."""

import json
import re
from typing import Any, Dict, List, Union, Optional

from grantguard.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_json_safely(text: str) -> Optional[Union[Dict[str, Any], List[Any]]]:
    """Parse JSON from model output, tolerating common formatting issues.

    Handles:
    - Markdown code fences (```json ... ```)
    - Prose before or after the JSON payload
    - Trailing data after the first complete object

    Args:
        text: Raw model output

    Returns:
        Parsed JSON object or list, or None if nothing could be parsed
    """
    if not text:
        return None

    cleaned = _strip_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        LOGGER.debug(f"Direct JSON parse failed: {e}, scanning for payload")

    decoder = json.JSONDecoder()
    for idx, char in enumerate(cleaned):
        if char not in "{[":
            continue
        try:
            obj, _ = decoder.raw_decode(cleaned, idx)
            return obj
        except json.JSONDecodeError:
            continue

    LOGGER.warning("Failed to parse JSON from model output", extra={"preview": cleaned[:200]})
    return None
