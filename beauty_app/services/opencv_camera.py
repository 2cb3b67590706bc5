from __future__ import annotations

import asyncio

import cv2
from PIL import Image

from beauty_app.config import settings
from beauty_app.errors import DecodeFailure, PermissionDenied
from beauty_app.utils.logging import get_logger

logger = get_logger("opencv_camera")


class OpenCVStream:
    def __init__(self, capture: cv2.VideoCapture) -> None:
        self._capture = capture

    def read_frame(self) -> Image.Image:
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise DecodeFailure("Camera returned no frame")
        return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))

    def stop(self) -> None:
        self._capture.release()


class OpenCVCamera:
    """MediaCapture backed by a local webcam.

    OpenCV has no notion of facing mode; the device index picks the camera.
    """

    def __init__(self, index: int | None = None) -> None:
        self.index = settings.camera_index if index is None else index

    async def open_stream(self, width: int, height: int, facing_mode: str = "user") -> OpenCVStream:
        capture = await asyncio.to_thread(cv2.VideoCapture, self.index)
        if not capture.isOpened():
            capture.release()
            raise PermissionDenied(f"Camera {self.index} could not be opened")
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        logger.info(
            f"Opened camera {self.index} ({facing_mode}) at "
            f"{int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))}x{int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))}"
        )
        return OpenCVStream(capture)
