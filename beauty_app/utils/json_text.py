"""Lenient JSON decoding for model output.

Models asked for "JSON only" still wrap the object in markdown fences now and
then. The grammar accepted here is: optional fence markers (```json or ```),
then one JSON object, then optional fence markers.
"""
from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable

from beauty_app.errors import MalformedResponse

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def loads_object(text: str, required: Iterable[str] = ()) -> Dict[str, Any]:
    """Parse ``text`` into a dict, raising MalformedResponse on any problem."""
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise MalformedResponse("Empty response text")
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"JSON decode error: {e}") from e
    if not isinstance(parsed, dict):
        raise MalformedResponse(f"Expected a JSON object, got {type(parsed).__name__}")
    missing = [key for key in required if key not in parsed]
    if missing:
        raise MalformedResponse(f"Missing required fields: {missing}")
    return parsed
