"""Share links carrying ``{desc, prods}`` in the URL fragment.

fragment = percent-encode(base64(json(payload)))
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import List, Optional, Protocol
from urllib.parse import quote, unquote, urldefrag

from pydantic import ValidationError

from beauty_app.errors import ShareDecodeError
from beauty_app.schemas import SharedPayload
from beauty_app.utils.logging import get_logger

logger = get_logger("share")


class ClipboardWriter(Protocol):
    def write_text(self, text: str) -> None: ...


class MemoryClipboard:
    """Clipboard for headless sessions: remembers what was copied."""

    def __init__(self) -> None:
        self.history: List[str] = []

    @property
    def text(self) -> Optional[str]:
        return self.history[-1] if self.history else None

    def write_text(self, text: str) -> None:
        self.history.append(text)


def encode(payload: SharedPayload) -> str:
    raw = json.dumps(payload.model_dump(by_alias=True), ensure_ascii=False, separators=(",", ":"))
    return quote(base64.b64encode(raw.encode("utf-8")).decode("ascii"), safe="")


def decode_strict(fragment: str) -> SharedPayload:
    """Inverse of :func:`encode`. Raises ShareDecodeError on any problem."""
    fragment = (fragment or "").lstrip("#")
    if not fragment:
        raise ShareDecodeError("Empty fragment")
    try:
        raw = base64.b64decode(unquote(fragment, errors="strict"), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError, RecursionError) as e:
        raise ShareDecodeError(f"Malformed share fragment: {e}") from e
    if not isinstance(data, dict) or "desc" not in data or "prods" not in data:
        raise ShareDecodeError("Share fragment is missing desc or prods")
    try:
        return SharedPayload.model_validate(data)
    except ValidationError as e:
        raise ShareDecodeError(f"Invalid share payload: {e}") from e


def decode(fragment: str) -> Optional[SharedPayload]:
    """Best-effort restore: None instead of an exception."""
    try:
        return decode_strict(fragment)
    except ShareDecodeError as e:
        logger.warning(f"Failed to parse shared data: {e}")
        return None


def build_share_url(base_url: str, payload: SharedPayload) -> str:
    url, _ = urldefrag(base_url)
    return f"{url}#{encode(payload)}"


def fragment_from_url(url: str) -> str:
    return urldefrag(url)[1]
