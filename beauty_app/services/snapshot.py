from __future__ import annotations

import asyncio
import textwrap
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Tuple

from PIL import Image, ImageDraw, ImageFont

from beauty_app.config import settings
from beauty_app.errors import ExportError, RasterizeFailure
from beauty_app.schemas import ApplicationState, FacialMetric
from beauty_app.services.gemini_client import format_score
from beauty_app.utils.images import decode_base64, encode_png, open_image, split_data_url
from beauty_app.utils.logging import get_logger

logger = get_logger("snapshot")


def overall_metric(metrics: List[FacialMetric]) -> Optional[FacialMetric]:
    return next((m for m in metrics if "overall" in m.label.lower()), None)


def can_save_snapshot(state: ApplicationState) -> bool:
    return bool(
        state.diagnostic_image
        and state.generated_image
        and state.look_description
        and state.diagnostic_metrics
    )


@dataclass(frozen=True)
class ShareCard:
    """Everything drawn on the exported card. Images are data URLs."""

    diagnostic_image: str
    generated_image: str
    description: str
    metrics: Tuple[FacialMetric, ...]
    original_image: Optional[str] = None
    summary: Optional[str] = None
    user_request: str = ""
    research_notes: str = ""

    @property
    def overall(self) -> Optional[FacialMetric]:
        return overall_metric(list(self.metrics))

    @classmethod
    def from_state(cls, state: ApplicationState, user_request: str = "", research_notes: str = "") -> "ShareCard":
        if not can_save_snapshot(state):
            raise ExportError("State is not ready to be saved as a snapshot")
        return cls(
            diagnostic_image=state.diagnostic_image,
            generated_image=state.generated_image,
            description=state.look_description,
            metrics=tuple(state.diagnostic_metrics),
            original_image=state.original_image.data_url if state.original_image else None,
            summary=state.diagnostic_summary,
            user_request=user_request.strip(),
            research_notes=research_notes.strip(),
        )


class Viewport(Protocol):
    def scroll_position(self) -> Tuple[int, int]: ...

    def scroll_to(self, x: int, y: int) -> None: ...


@dataclass
class StaticViewport:
    """Viewport for headless sessions; it only remembers where it was scrolled."""

    x: int = 0
    y: int = 0
    history: List[Tuple[int, int]] = field(default_factory=list)

    def scroll_position(self) -> Tuple[int, int]:
        return self.x, self.y

    def scroll_to(self, x: int, y: int) -> None:
        self.x, self.y = x, y
        self.history.append((x, y))


class FileDownloader(Protocol):
    def save(self, filename: str, data: bytes) -> str: ...


class DirectoryDownloader:
    def __init__(self, base_dir: str | Path | None = None) -> None:
        self.base_dir = Path(base_dir or settings.snapshot_dir)

    def save(self, filename: str, data: bytes) -> str:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        path = self.base_dir / filename
        path.write_bytes(data)
        return str(path)


class Rasterizer(Protocol):
    def rasterize(self, card: ShareCard) -> bytes: ...


class PillowCardRasterizer:
    """Fixed portrait layout: header, image row, score, description, metrics."""

    width = 1080
    margin = 48
    gap = 24
    background = (0, 0, 0)
    foreground = (235, 235, 235)
    muted = (150, 150, 150)
    accent = (204, 255, 0)

    def __init__(self) -> None:
        self.title_font = ImageFont.load_default(size=44)
        self.score_font = ImageFont.load_default(size=72)
        self.body_font = ImageFont.load_default(size=26)
        self.small_font = ImageFont.load_default(size=20)

    def _load(self, data_url: str) -> Image.Image:
        _, payload = split_data_url(data_url)
        return open_image(decode_base64(payload)).convert("RGB")

    def _panel(self, image: Image.Image, size: int) -> Image.Image:
        image = image.copy()
        image.thumbnail((size, size))
        panel = Image.new("RGB", (size, size), (20, 20, 20))
        panel.paste(image, ((size - image.width) // 2, (size - image.height) // 2))
        return panel

    def rasterize(self, card: ShareCard) -> bytes:
        panels = [
            ("ORIGINAL", card.original_image),
            ("FACIAL REPORT", card.diagnostic_image),
            ("YOUR LOOK", card.generated_image),
        ]
        panels = [(label, url) for label, url in panels if url]
        inner = self.width - 2 * self.margin
        panel_size = (inner - self.gap * (len(panels) - 1)) // len(panels)

        description = textwrap.wrap(card.description, width=70)
        extras = []
        if card.user_request:
            extras.append(f"Request: {card.user_request}")
        if card.research_notes:
            extras.append(f"Research: {card.research_notes}")
        extra_lines = [line for text in extras for line in textwrap.wrap(text, width=80)]

        height = (
            self.margin + 60
            + panel_size + 40
            + (100 if card.overall else 0)
            + 34 * len(description) + 24
            + 40 * len(card.metrics) + 24
            + 28 * len(extra_lines)
            + self.margin
        )
        canvas = Image.new("RGB", (self.width, height), self.background)
        draw = ImageDraw.Draw(canvas)

        y = self.margin
        draw.text((self.margin, y), "FIND YOUR BEAUTY", font=self.title_font, fill=self.accent)
        y += 60

        x = self.margin
        for label, url in panels:
            canvas.paste(self._panel(self._load(url), panel_size), (x, y))
            draw.text((x + 8, y + 8), label, font=self.small_font, fill=self.foreground)
            x += panel_size + self.gap
        y += panel_size + 40

        if card.overall:
            draw.text((self.margin, y), "OVERALL SCORE", font=self.small_font, fill=self.muted)
            draw.text((self.margin, y + 22), f"{format_score(card.overall.score)}%", font=self.score_font, fill=self.accent)
            y += 100

        for line in description:
            draw.text((self.margin, y), line, font=self.body_font, fill=self.foreground)
            y += 34
        y += 24

        bar_x = self.margin + 360
        bar_width = inner - 360 - 90
        for metric in card.metrics:
            draw.text((self.margin, y), metric.label, font=self.body_font, fill=self.foreground)
            draw.rectangle((bar_x, y + 8, bar_x + bar_width, y + 20), fill=(40, 40, 40))
            draw.rectangle((bar_x, y + 8, bar_x + int(bar_width * metric.score / 100), y + 20), fill=self.accent)
            draw.text((bar_x + bar_width + 16, y), f"{format_score(metric.score)}%", font=self.body_font, fill=self.foreground)
            y += 40
        y += 24

        for line in extra_lines:
            draw.text((self.margin, y), line, font=self.small_font, fill=self.muted)
            y += 28

        return encode_png(canvas)


class SnapshotExporter:
    """Saves the results card as ``find-your-beauty-<unix-ms>.png``.

    Only one export runs at a time; a request arriving while one is in flight
    is rejected without rasterizing. The viewport is scrolled to the origin
    for the capture and put back afterwards whatever happens.
    """

    def __init__(
        self,
        rasterizer: Rasterizer | None = None,
        downloader: FileDownloader | None = None,
        viewport: Viewport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.rasterizer = rasterizer or PillowCardRasterizer()
        self.downloader = downloader or DirectoryDownloader()
        self.viewport = viewport or StaticViewport()
        self._clock = clock
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def _render(self, card: ShareCard) -> bytes:
        try:
            return await asyncio.to_thread(self.rasterizer.rasterize, card)
        except ExportError:
            raise
        except Exception as e:
            raise RasterizeFailure(f"Rasterization failed: {e}") from e

    async def export(self, card: ShareCard) -> Optional[str]:
        if self._busy:
            logger.warning("Snapshot export already in progress; request rejected")
            return None

        self._busy = True
        origin = self.viewport.scroll_position()
        start_time = time.perf_counter()
        try:
            self.viewport.scroll_to(0, 0)
            png = await self._render(card)
            filename = f"find-your-beauty-{int(self._clock() * 1000)}.png"
            try:
                path = self.downloader.save(filename, png)
            except OSError as e:
                raise ExportError(f"Could not write {filename}: {e}") from e
            logger.info(f"Snapshot saved to {path} ({len(png)} bytes) in {time.perf_counter() - start_time:.2f} seconds")
            return path
        except ExportError as e:
            logger.error(f"Failed to save snapshot: {e}")
            return None
        finally:
            self.viewport.scroll_to(*origin)
            self._busy = False
