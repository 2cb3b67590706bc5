"""Camera and file acquisition, normalized into a CapturedImage."""
from __future__ import annotations

import asyncio
import base64
from typing import Optional, Protocol

from PIL import Image

from beauty_app.config import settings
from beauty_app.errors import DecodeFailure, FileTooLarge, PermissionDenied
from beauty_app.schemas import CapturedImage, CaptureSource
from beauty_app.utils.images import encode_jpeg, mirror, open_image
from beauty_app.utils.logging import get_logger

logger = get_logger("capture")


class VideoStream(Protocol):
    def read_frame(self) -> Image.Image: ...

    def stop(self) -> None: ...


class MediaCapture(Protocol):
    async def open_stream(self, width: int, height: int, facing_mode: str = "user") -> VideoStream: ...


class FileHandle(Protocol):
    """Anything shaped like an upload: FastAPI's UploadFile fits."""

    filename: Optional[str]
    content_type: Optional[str]
    size: Optional[int]

    async def read(self, size: int = -1) -> bytes: ...


class CaptureAdapter:
    """Owns the single camera stream and turns frames or files into CapturedImage.

    Every way out of camera mode (cancel, successful capture, teardown) goes
    through :meth:`release`, which is safe to call any number of times.
    """

    def __init__(
        self,
        media: MediaCapture | None = None,
        max_upload_bytes: int | None = None,
        jpeg_quality: int | None = None,
        width: int | None = None,
        height: int | None = None,
    ) -> None:
        self.media = media
        self.max_upload_bytes = max_upload_bytes or settings.max_upload_bytes
        self.jpeg_quality = jpeg_quality or settings.jpeg_quality
        self.width = width or settings.camera_width
        self.height = height or settings.camera_height
        self._stream: VideoStream | None = None

    @property
    def is_streaming(self) -> bool:
        return self._stream is not None

    async def start_camera(self) -> None:
        if self.media is None:
            raise PermissionDenied("No camera backend configured")
        self.release()
        try:
            self._stream = await self.media.open_stream(self.width, self.height, facing_mode="user")
        except PermissionDenied:
            raise
        except Exception as e:
            logger.warning(f"Camera access error: {e}")
            raise PermissionDenied(f"Camera access error: {e}") from e
        logger.info(f"Camera stream opened at preferred {self.width}x{self.height}")

    async def preview_frame(self) -> Image.Image:
        """Current frame, mirrored the way a front camera preview is shown."""
        stream = self._stream
        if stream is None:
            raise PermissionDenied("Camera is not running")
        frame = await asyncio.to_thread(stream.read_frame)
        return mirror(frame)

    async def capture_from_camera(self) -> CapturedImage:
        frame = await self.preview_frame()
        data = await asyncio.to_thread(encode_jpeg, frame, self.jpeg_quality)
        self.release()
        logger.info(f"Captured camera frame {frame.width}x{frame.height} ({len(data)} bytes)")
        return CapturedImage(
            data=base64.b64encode(data).decode("ascii"),
            mime_type="image/jpeg",
            source=CaptureSource.camera,
        )

    async def acquire_from_camera(self) -> CapturedImage:
        if not self.is_streaming:
            await self.start_camera()
        return await self.capture_from_camera()

    async def acquire_from_file(self, handle: FileHandle) -> CapturedImage:
        limit = self.max_upload_bytes
        if handle.size is not None and handle.size > limit:
            raise FileTooLarge(f"File is {handle.size} bytes, limit is {limit}")

        content_type = (handle.content_type or "").lower()
        if content_type and not content_type.startswith("image/"):
            raise DecodeFailure(f"Unsupported content type: {content_type}")

        # size may be unknown; read at most one byte past the limit
        data = await handle.read(limit + 1)
        if len(data) > limit:
            raise FileTooLarge(f"File exceeds {limit} bytes")
        if not data:
            raise DecodeFailure("Empty file")

        image = open_image(data)
        mime_type = content_type or Image.MIME.get(image.format or "", "")
        if not mime_type.startswith("image/"):
            raise DecodeFailure(f"Unsupported image format: {image.format}")

        logger.info(f"Loaded upload {handle.filename!r} {image.format} {image.width}x{image.height} ({len(data)} bytes)")
        return CapturedImage(
            data=base64.b64encode(data).decode("ascii"),
            mime_type=mime_type,
            source=CaptureSource.upload,
        )

    def release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            logger.info("Camera stream released")
