from __future__ import annotations

import base64
import binascii
import io
from typing import Tuple

from PIL import Image, ImageOps

from beauty_app.errors import DecodeFailure


def to_data_url(data_b64: str, mime_type: str) -> str:
    return f"data:{mime_type};base64,{data_b64}"


def split_data_url(data_url: str) -> Tuple[str, str]:
    """Return (mime_type, base64 payload) for a ``data:`` URL."""
    header, sep, payload = data_url.partition(",")
    if not sep or not header.startswith("data:") or ";base64" not in header:
        raise DecodeFailure("Not a base64 data URL")
    mime_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    return mime_type, payload


def decode_base64(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeFailure(f"Invalid base64 payload: {e}") from e


def open_image(data: bytes) -> Image.Image:
    """Decode image bytes fully, raising DecodeFailure for anything PIL rejects."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except Exception as e:
        raise DecodeFailure(f"Invalid image data: {e}") from e
    return image


def mirror(image: Image.Image) -> Image.Image:
    return ImageOps.mirror(image)


def encode_jpeg(image: Image.Image, quality: int = 90) -> bytes:
    buf = io.BytesIO()
    image.convert("RGB").save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
