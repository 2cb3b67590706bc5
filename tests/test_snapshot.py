import asyncio
import io
import re
import threading
from pathlib import Path

from PIL import Image

from beauty_app.errors import RasterizeFailure
from beauty_app.schemas import ApplicationState, FacialMetric
from beauty_app.services.snapshot import (
    DirectoryDownloader,
    PillowCardRasterizer,
    ShareCard,
    SnapshotExporter,
    StaticViewport,
    can_save_snapshot,
    overall_metric,
)
from beauty_app.utils.images import to_data_url

from tests.conftest import b64, make_captured, make_image_bytes


def _card(**overrides) -> ShareCard:
    values = dict(
        diagnostic_image=to_data_url(b64(make_image_bytes(color=(0, 255, 0))), "image/png"),
        generated_image=to_data_url(b64(make_image_bytes(color=(255, 0, 128))), "image/png"),
        description="Glossy coral look with a soft gradient lip.",
        metrics=(FacialMetric(label="Symmetry", score=80), FacialMetric(label="Overall Harmony", score=90)),
        original_image=make_captured().data_url,
        user_request="coral gloss",
        research_notes="gradient lips are trending",
    )
    values.update(overrides)
    return ShareCard(**values)


class RecordingRasterizer:
    def __init__(self, fail: bool = False, release: threading.Event | None = None) -> None:
        self.fail = fail
        self.release = release
        self.calls = 0
        self.scroll_seen = None
        self.viewport: StaticViewport | None = None

    def rasterize(self, card: ShareCard) -> bytes:
        self.calls += 1
        if self.viewport is not None:
            self.scroll_seen = self.viewport.scroll_position()
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.fail:
            raise RuntimeError("canvas tainted")
        return b"png-bytes"


def test_overall_metric_lookup_is_case_insensitive() -> None:
    metrics = [FacialMetric(label="Symmetry", score=70), FacialMetric(label="OVERALL score", score=85)]
    assert overall_metric(metrics).score == 85
    assert overall_metric(metrics[:1]) is None
    assert overall_metric([]) is None


def test_can_save_snapshot_requires_images_description_and_metrics() -> None:
    ready = ApplicationState(
        diagnostic_image="data:image/png;base64,AA==",
        generated_image="data:image/png;base64,AA==",
        look_description="desc",
        diagnostic_metrics=[FacialMetric(label="Overall", score=50)],
    )
    assert can_save_snapshot(ready)
    assert not can_save_snapshot(ready.model_copy(update={"diagnostic_image": None}))
    assert not can_save_snapshot(ready.model_copy(update={"generated_image": None}))
    assert not can_save_snapshot(ready.model_copy(update={"look_description": None}))
    assert not can_save_snapshot(ready.model_copy(update={"diagnostic_metrics": []}))


def test_pillow_rasterizer_produces_png() -> None:
    png = PillowCardRasterizer().rasterize(_card())
    image = Image.open(io.BytesIO(png))
    assert image.format == "PNG"
    assert image.width == PillowCardRasterizer.width


def test_pillow_rasterizer_without_original_image() -> None:
    png = PillowCardRasterizer().rasterize(_card(original_image=None, user_request="", research_notes=""))
    assert Image.open(io.BytesIO(png)).format == "PNG"


def test_export_saves_timestamped_png_and_restores_scroll(tmp_path: Path) -> None:
    viewport = StaticViewport(x=0, y=640)
    rasterizer = RecordingRasterizer()
    rasterizer.viewport = viewport
    exporter = SnapshotExporter(
        rasterizer=rasterizer,
        downloader=DirectoryDownloader(tmp_path),
        viewport=viewport,
        clock=lambda: 1700000000.5,
    )

    path = asyncio.run(exporter.export(_card()))

    assert Path(path).name == "find-your-beauty-1700000000500.png"
    assert Path(path).read_bytes() == b"png-bytes"
    assert rasterizer.scroll_seen == (0, 0)
    assert viewport.scroll_position() == (0, 640)
    assert not exporter.busy


def test_export_with_real_rasterizer_writes_file(tmp_path: Path) -> None:
    exporter = SnapshotExporter(downloader=DirectoryDownloader(tmp_path))
    path = asyncio.run(exporter.export(_card()))
    assert re.fullmatch(r"find-your-beauty-\d+\.png", Path(path).name)
    assert Image.open(path).format == "PNG"


def test_export_failure_is_logged_and_scroll_restored(tmp_path: Path) -> None:
    viewport = StaticViewport(x=0, y=300)
    exporter = SnapshotExporter(
        rasterizer=RecordingRasterizer(fail=True),
        downloader=DirectoryDownloader(tmp_path),
        viewport=viewport,
    )

    assert asyncio.run(exporter.export(_card())) is None
    assert viewport.scroll_position() == (0, 300)
    assert viewport.history == [(0, 0), (0, 300)]
    assert list(tmp_path.iterdir()) == []
    assert not exporter.busy


def test_bad_image_data_is_a_rasterize_failure(tmp_path: Path) -> None:
    exporter = SnapshotExporter(downloader=DirectoryDownloader(tmp_path))
    card = _card(generated_image="data:image/png;base64,bm90IGFuIGltYWdl")
    render = asyncio.run(_render_error(exporter, card))
    assert isinstance(render, RasterizeFailure)


async def _render_error(exporter: SnapshotExporter, card: ShareCard):
    try:
        await exporter._render(card)
    except RasterizeFailure as e:
        return e
    return None


def test_concurrent_export_is_rejected(tmp_path: Path) -> None:
    release = threading.Event()
    rasterizer = RecordingRasterizer(release=release)
    exporter = SnapshotExporter(rasterizer=rasterizer, downloader=DirectoryDownloader(tmp_path))

    async def scenario():
        first = asyncio.create_task(exporter.export(_card()))
        await asyncio.sleep(0)
        assert exporter.busy
        second = await exporter.export(_card())
        release.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert second is None
    assert first is not None
    assert rasterizer.calls == 1
