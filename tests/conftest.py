from __future__ import annotations

import asyncio
import base64
import io
import threading
from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Any, List, Optional

import pytest
from PIL import Image

from beauty_app.errors import PermissionDenied
from beauty_app.schemas import (
    CapturedImage,
    CaptureSource,
    DiagnosticResult,
    FacialMetric,
    InlineImage,
    Product,
    SearchResult,
)


def make_image_bytes(size=(64, 48), color=(200, 150, 120), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def make_captured(color=(200, 150, 120)) -> CapturedImage:
    return CapturedImage(data=b64(make_image_bytes(color=color)), mime_type="image/png", source=CaptureSource.upload)


class FakeFile:
    def __init__(self, data: bytes, content_type: Optional[str] = "image/png", size: Optional[int] = -1, filename="face.png"):
        self.data = data
        self.content_type = content_type
        self.size = len(data) if size == -1 else size
        self.filename = filename
        self.reads: List[int] = []

    async def read(self, size: int = -1) -> bytes:
        self.reads.append(size)
        return self.data if size < 0 else self.data[:size]


@dataclass
class LocalFile:
    """Upload handle backed by a file on disk."""

    path: Path
    content_type: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    async def read(self, size: int = -1) -> bytes:
        with self.path.open("rb") as fh:
            return fh.read(size)


class FakeStream:
    """Frames are red on the left half and blue on the right half."""

    def __init__(self, size=(80, 40)) -> None:
        self.size = size
        self.stopped = 0
        self.reader_threads: List[int] = []

    def read_frame(self) -> Image.Image:
        self.reader_threads.append(threading.get_ident())
        frame = Image.new("RGB", self.size, (0, 0, 255))
        frame.paste((255, 0, 0), (0, 0, self.size[0] // 2, self.size[1]))
        return frame

    def stop(self) -> None:
        self.stopped += 1


class FakeMedia:
    def __init__(self, deny: bool = False) -> None:
        self.deny = deny
        self.streams: List[FakeStream] = []
        self.requests: List[tuple] = []

    async def open_stream(self, width: int, height: int, facing_mode: str = "user") -> FakeStream:
        self.requests.append((width, height, facing_mode))
        if self.deny:
            raise PermissionDenied("NotAllowedError")
        stream = FakeStream()
        self.streams.append(stream)
        return stream


class FakeGateway:
    """Scriptable gateway. Set ``gate`` to hold look and search until released."""

    def __init__(
        self,
        diagnosis: Any = None,
        look: Any = None,
        search: Any = None,
    ) -> None:
        self.diagnosis = diagnosis or DiagnosticResult(
            summary="Clear skin with warm undertones",
            metrics=[FacialMetric(label="Symmetry", score=88), FacialMetric(label="Overall Harmony", score=91)],
            report_image=b64(make_image_bytes(color=(10, 200, 10))),
        )
        self.look = look or InlineImage(data=b64(make_image_bytes(color=(240, 120, 160))), mime_type="image/png")
        self.search = search or SearchResult(
            description="Dewy coral looks trending now",
            products=[Product(id="trend-0", name="Rom&nd - Juicy Lasting Tint", url="https://example.test/?q=Juicy")],
        )
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []

    async def _wait(self) -> None:
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()

    async def diagnose(self, image: CapturedImage) -> DiagnosticResult:
        self.calls.append(("diagnose", image.data[:16]))
        if isinstance(self.diagnosis, Exception):
            raise self.diagnosis
        return self.diagnosis

    async def synthesize_look(self, image, user_request="", research_notes="", context="") -> InlineImage:
        self.calls.append(("synthesize_look", user_request, research_notes, context))
        await self._wait()
        if isinstance(self.look, Exception):
            raise self.look
        return self.look

    async def search_products(self, image, user_request="", research_notes="", context="") -> SearchResult:
        self.calls.append(("search_products", user_request, research_notes, context))
        await self._wait()
        if isinstance(self.search, Exception):
            raise self.search
        return self.search


def text_part(text: str) -> SimpleNamespace:
    return SimpleNamespace(text=text, inline_data=None)


def image_part(data: bytes, mime_type: str = "image/png") -> SimpleNamespace:
    return SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type=mime_type))


def genai_response(*parts) -> SimpleNamespace:
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


class FakeGenaiClient:
    """Mimics ``client.aio.models.generate_content`` of google-genai."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: List[dict] = []
        self.aio = SimpleNamespace(models=SimpleNamespace(generate_content=self._generate_content))

    async def _generate_content(self, model: str, contents: list, config: Any = None) -> Any:
        self.calls.append({"model": model, "contents": contents, "config": config})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture()
def png_bytes() -> bytes:
    return make_image_bytes()
