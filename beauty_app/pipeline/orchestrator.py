from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Callable, List, Optional, Protocol

from beauty_app.config import settings
from beauty_app.errors import BeautyAppError, CaptureError, GatewayError
from beauty_app.schemas import (
    ApplicationState,
    CapturedImage,
    DiagnosticResult,
    InlineImage,
    SearchResult,
    SharedPayload,
)
from beauty_app.services import share_codec
from beauty_app.services.capture import CaptureAdapter, FileHandle
from beauty_app.services.gemini_client import SEARCH_FALLBACK_DESCRIPTION, diagnosis_context
from beauty_app.services.share_codec import ClipboardWriter, MemoryClipboard
from beauty_app.services.snapshot import ShareCard, SnapshotExporter, can_save_snapshot
from beauty_app.utils.images import to_data_url
from beauty_app.utils.logging import get_logger

logger = get_logger("pipeline")


class Phase(str, Enum):
    idle = "idle"
    capturing = "capturing"
    captured = "captured"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"


class Gateway(Protocol):
    async def diagnose(self, image: CapturedImage) -> DiagnosticResult: ...

    async def synthesize_look(
        self, image: CapturedImage, user_request: str = "", research_notes: str = "", context: str = ""
    ) -> InlineImage: ...

    async def search_products(
        self, image: CapturedImage, user_request: str = "", research_notes: str = "", context: str = ""
    ) -> SearchResult: ...


Listener = Callable[[ApplicationState, Phase], None]


class BeautyOrchestrator:
    """Owns the application state and every transition on it.

    Each new source image, each processing run and each reset bumps
    ``generation``. Gateway results are committed only while the generation
    they were started under is still current; anything later is dropped.
    """

    def __init__(
        self,
        gateway: Gateway,
        capture: CaptureAdapter | None = None,
        exporter: SnapshotExporter | None = None,
        clipboard: ClipboardWriter | None = None,
    ) -> None:
        self.gateway = gateway
        self.capture = capture or CaptureAdapter()
        self.exporter = exporter or SnapshotExporter()
        self.clipboard = clipboard or MemoryClipboard()
        self.user_request = ""
        self.research_notes = ""
        self.share_url: Optional[str] = None
        self._state = ApplicationState()
        self._phase = Phase.idle
        self._phase_before_camera = Phase.idle
        self._generation = 0
        self._listeners: List[Listener] = []

    @property
    def state(self) -> ApplicationState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_camera_mode(self) -> bool:
        return self.capture.is_streaming

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _replace(self, state: ApplicationState, phase: Phase | None = None) -> None:
        self._state = state
        if phase is not None:
            self._phase = phase
        for listener in list(self._listeners):
            listener(self._state, self._phase)

    def _commit(self, phase: Phase | None = None, **changes) -> None:
        self._replace(self._state.model_copy(update=changes), phase)

    def _is_current(self, generation: int) -> bool:
        if generation != self._generation:
            logger.info(f"Discarding stale result from generation {generation} (current {self._generation})")
            return False
        return True

    def _set_source(self, image: CapturedImage) -> None:
        self._generation += 1
        # a fresh state drops every derived field together with the old image
        self._replace(ApplicationState(original_image=image), Phase.captured)
        logger.info(f"New {image.source.value} image, generation={self._generation}")

    # Capture

    def _capture_failed(self, error: CaptureError) -> None:
        # a run still in flight keeps the processing phase; only the error is shown
        if self._state.is_loading:
            self._commit(Phase.processing, error=error.user_message)
        else:
            self._commit(Phase.failed, error=error.user_message)

    async def start_camera(self) -> bool:
        if self._phase != Phase.capturing:
            self._phase_before_camera = self._phase
        self._phase = Phase.capturing
        try:
            await self.capture.start_camera()
        except CaptureError as e:
            logger.warning(f"Camera start failed: {e}")
            self._capture_failed(e)
            return False
        self._commit(error=None)
        logger.info(f"Camera mode entered from {self._phase_before_camera.value}")
        return True

    def cancel_camera(self) -> None:
        self.capture.release()
        if self._phase == Phase.capturing:
            self._replace(self._state, self._phase_before_camera)

    async def capture_photo(self) -> Optional[CapturedImage]:
        try:
            image = await self.capture.capture_from_camera()
        except CaptureError as e:
            logger.warning(f"Camera capture failed: {e}")
            self._capture_failed(e)
            return None
        self._set_source(image)
        return image

    async def upload(self, handle: FileHandle) -> Optional[CapturedImage]:
        try:
            image = await self.capture.acquire_from_file(handle)
        except CaptureError as e:
            logger.warning(f"Upload rejected: {e}")
            self._capture_failed(e)
            return None
        self.capture.release()
        self._set_source(image)
        return image

    # Processing

    async def process(self, user_request: str | None = None, research_notes: str | None = None) -> bool:
        """Generate, or regenerate with edited text, from the held image."""
        image = self._state.original_image
        if image is None:
            logger.warning("process called without an image")
            return False
        if user_request is not None:
            self.user_request = user_request
        if research_notes is not None:
            self.research_notes = research_notes
        request = self.user_request.strip()
        notes = self.research_notes.strip()

        self._generation += 1
        generation = self._generation
        self._replace(ApplicationState(original_image=image, is_loading=True), Phase.processing)

        timings: dict[str, float] = {}
        try:
            start_time = time.perf_counter()
            diagnosis = await self.gateway.diagnose(image)
            timings["diagnose_seconds"] = round(time.perf_counter() - start_time, 2)
            if not self._is_current(generation):
                return False

            # shown right away, the look and products are still loading
            self._commit(
                diagnostic_image=to_data_url(diagnosis.report_image, diagnosis.report_mime_type)
                if diagnosis.report_image
                else None,
                diagnostic_summary=diagnosis.summary,
                diagnostic_metrics=list(diagnosis.metrics),
            )
            logger.info(f"[STEP 1] diagnosis published, overlay={'yes' if diagnosis.report_image else 'no'}")

            context = diagnosis_context(diagnosis)
            start_time = time.perf_counter()
            look, search = await asyncio.gather(
                self.gateway.synthesize_look(image, request, notes, context),
                self.gateway.search_products(image, request, notes, context),
                return_exceptions=True,
            )
            timings["look_and_search_seconds"] = round(time.perf_counter() - start_time, 2)
            if not self._is_current(generation):
                return False

            for result in (look, search):
                if isinstance(result, BaseException) and not isinstance(result, BeautyAppError):
                    raise result
            if isinstance(look, BeautyAppError):
                raise look
            if isinstance(search, BeautyAppError):
                logger.warning(f"[STEP 2] product search failed, using fallback: {search}")
                search = SearchResult(description=SEARCH_FALLBACK_DESCRIPTION, products=[])
        except BeautyAppError as e:
            if self._is_current(generation):
                logger.warning(f"Processing failed: {e}")
                self._commit(Phase.failed, is_loading=False, error=e.user_message)
            return False
        except Exception as e:
            if self._is_current(generation):
                logger.exception(f"Unexpected error while processing: {e}")
                self._commit(Phase.failed, is_loading=False, error=GatewayError.user_message)
            return False

        self._commit(
            Phase.succeeded,
            is_loading=False,
            error=None,
            generated_image=look.data_url,
            products=list(search.products),
            look_description=search.description,
        )
        logger.info(f"[STEP 2] look and {len(search.products)} products published")
        logger.info(f"[TIMING] {timings}")
        return True

    # Share, snapshot, reset

    def restore_from_fragment(self, fragment: str) -> bool:
        payload = share_codec.decode(fragment) if fragment else None
        if payload is None:
            return False
        self._commit(products=list(payload.prods), look_description=payload.desc, generated_image=None)
        logger.info(f"Restored shared result with {len(payload.prods)} products")
        return True

    def share(self, base_url: str | None = None) -> Optional[str]:
        if not self._state.look_description:
            return None
        payload = SharedPayload(desc=self._state.look_description, prods=list(self._state.products))
        url = share_codec.build_share_url(base_url or settings.public_base_url, payload)
        try:
            self.clipboard.write_text(url)
        except Exception as e:
            logger.error(f"Could not create share link: {e}")
            return None
        self.share_url = url
        return url

    @property
    def can_save_snapshot(self) -> bool:
        return can_save_snapshot(self._state)

    async def save_snapshot(self) -> Optional[str]:
        if not self.can_save_snapshot:
            return None
        card = ShareCard.from_state(self._state, self.user_request, self.research_notes)
        return await self.exporter.export(card)

    def reset(self) -> None:
        self.capture.release()
        self._generation += 1
        self.user_request = ""
        self.research_notes = ""
        self.share_url = None
        self._replace(ApplicationState(), Phase.idle)

    def close(self) -> None:
        self.capture.release()
