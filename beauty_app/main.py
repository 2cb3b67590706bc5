from __future__ import annotations

import asyncio
from typing import Any, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse, Response

from beauty_app.config import settings
from beauty_app.errors import CaptureError, PermissionDenied
from beauty_app.pipeline.orchestrator import BeautyOrchestrator
from beauty_app.schemas import GenerateRequest, RestoreRequest, ShareRequest
from beauty_app.services.capture import CaptureAdapter
from beauty_app.services.gemini_client import GeminiClient
from beauty_app.services.snapshot import overall_metric
from beauty_app.utils.images import encode_jpeg
from beauty_app.utils.logging import get_logger


app = FastAPI(title="Find Your Beauty", version="0.1.0")
logger = get_logger("app")

_orchestrator: Optional[BeautyOrchestrator] = None
_tasks: set[asyncio.Task] = set()


def _build_orchestrator() -> BeautyOrchestrator:
    from beauty_app.services.opencv_camera import OpenCVCamera

    return BeautyOrchestrator(gateway=GeminiClient(), capture=CaptureAdapter(media=OpenCVCamera()))


def get_orchestrator() -> BeautyOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = _build_orchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: Optional[BeautyOrchestrator]) -> None:
    global _orchestrator
    _orchestrator = orchestrator


def _state_payload(orchestrator: BeautyOrchestrator) -> dict[str, Any]:
    state = orchestrator.state
    overall = overall_metric(state.diagnostic_metrics)
    return {
        "phase": orchestrator.phase.value,
        "generation": orchestrator.generation,
        "originalImage": state.original_image.data_url if state.original_image else None,
        "diagnosticImage": state.diagnostic_image,
        "generatedImage": state.generated_image,
        "products": [p.model_dump(by_alias=True) for p in state.products],
        "isLoading": state.is_loading,
        "error": state.error,
        "lookDescription": state.look_description,
        "diagnosticSummary": state.diagnostic_summary,
        "diagnosticMetrics": [m.model_dump() for m in state.diagnostic_metrics],
        "overallMetric": overall.model_dump() if overall else None,
        "userRequest": orchestrator.user_request,
        "researchNotes": orchestrator.research_notes,
        "isCameraMode": orchestrator.is_camera_mode,
        "canSaveSnapshot": orchestrator.can_save_snapshot,
        "isSavingImage": orchestrator.exporter.busy,
        "shareUrl": orchestrator.share_url,
    }


@app.on_event("startup")
async def on_startup():
    logger.info("API starting up")
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; generation requests will fail")


@app.on_event("shutdown")
async def on_shutdown():
    logger.info("API shutting down")
    if _orchestrator is not None:
        _orchestrator.close()


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/v1/state")
async def get_state():
    return _state_payload(get_orchestrator())


@app.post("/v1/capture/upload")
async def upload_image(file: UploadFile = File(...)):
    orchestrator = get_orchestrator()
    image = await orchestrator.upload(file)
    if image is None:
        raise HTTPException(status_code=400, detail=orchestrator.state.error)
    return _state_payload(orchestrator)


@app.post("/v1/camera/start")
async def camera_start():
    orchestrator = get_orchestrator()
    if not await orchestrator.start_camera():
        raise HTTPException(status_code=403, detail=orchestrator.state.error)
    return _state_payload(orchestrator)


@app.get("/v1/camera/preview")
async def camera_preview():
    orchestrator = get_orchestrator()
    try:
        frame = await orchestrator.capture.preview_frame()
    except PermissionDenied as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CaptureError as e:
        raise HTTPException(status_code=500, detail=e.user_message)
    content = await asyncio.to_thread(encode_jpeg, frame, settings.jpeg_quality)
    return Response(content=content, media_type="image/jpeg")


@app.post("/v1/camera/capture")
async def camera_capture():
    orchestrator = get_orchestrator()
    if await orchestrator.capture_photo() is None:
        raise HTTPException(status_code=409, detail=orchestrator.state.error)
    return _state_payload(orchestrator)


@app.post("/v1/camera/cancel")
async def camera_cancel():
    orchestrator = get_orchestrator()
    orchestrator.cancel_camera()
    return _state_payload(orchestrator)


@app.post("/v1/generate")
async def generate(body: GenerateRequest):
    """Start (or restart) processing in the background; poll /v1/state."""
    orchestrator = get_orchestrator()
    if orchestrator.state.original_image is None:
        raise HTTPException(status_code=409, detail="Upload or capture a photo first")

    task = asyncio.create_task(orchestrator.process(body.user_request, body.research_notes))
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    # let the task enter processing before reporting state
    await asyncio.sleep(0)
    return JSONResponse(status_code=202, content=_state_payload(orchestrator))


@app.post("/v1/reset")
async def reset():
    orchestrator = get_orchestrator()
    orchestrator.reset()
    return _state_payload(orchestrator)


@app.post("/v1/share")
async def share(body: ShareRequest):
    orchestrator = get_orchestrator()
    url = orchestrator.share(body.base_url)
    if url is None:
        raise HTTPException(status_code=409, detail="Nothing to share yet")
    return {"url": url}


@app.post("/v1/restore")
async def restore(body: RestoreRequest):
    orchestrator = get_orchestrator()
    restored = orchestrator.restore_from_fragment(body.fragment)
    return {"restored": restored, **_state_payload(orchestrator)}


@app.post("/v1/snapshot")
async def snapshot():
    orchestrator = get_orchestrator()
    if not orchestrator.can_save_snapshot:
        raise HTTPException(status_code=409, detail="Results are not ready to be saved")
    if orchestrator.exporter.busy:
        raise HTTPException(status_code=409, detail="A snapshot is already being saved")
    path = await orchestrator.save_snapshot()
    if path is None:
        raise HTTPException(status_code=500, detail="Could not save the snapshot")
    return {"path": path}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
