"""Camera sources.

A camera exposes the latest decoded frame as RGBA uint8 and reports two
events: the first decoded frame (the camera is ready) and loss of the stream.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import cv2
import numpy as np

from .config import CAMERA_HEIGHT, CAMERA_INDEX, CAMERA_WIDTH
from .errors import CameraAccessError

logger = logging.getLogger(__name__)

# Consecutive failed reads before the stream is considered lost.
MAX_READ_FAILURES = 30

# How long stop() waits for the capture task before cancelling it.
STOP_TIMEOUT_S = 2.0


class CameraSource:
    """Interface used by the session and the scheduler."""

    on_first_frame: Optional[Callable[[], None]] = None
    on_stream_lost: Optional[Callable[[str], None]] = None

    async def start(self) -> None:
        raise NotImplementedError

    def current_frame(self) -> Optional[np.ndarray]:
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError


class OpenCVCamera(CameraSource):
    """
    cv2.VideoCapture reader. Frames are read on a worker thread and the newest
    one replaces the previous reference; readers never see a partial frame.

    Open, read and release all run on the same single worker, so the device
    is never released while a read is still in progress.
    """

    def __init__(self, index: int = CAMERA_INDEX, width: int = CAMERA_WIDTH, height: int = CAMERA_HEIGHT):
        self.index = index
        self.width = width
        self.height = height
        self.cap: Optional[cv2.VideoCapture] = None
        self.frames_read = 0

        self._latest: Optional[np.ndarray] = None
        self._running = False
        self._released = False
        self._task: Optional[asyncio.Task] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"camera-{self.index}")
        return self._executor

    def _open(self) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(self.index)
        if not cap.isOpened():
            cap.release()
            raise CameraAccessError(f"Failed to open camera {self.index} (permission denied or no device)")
        if not cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width):
            logger.warning("Cannot set camera width to %d; using device default", self.width)
        if not cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height):
            logger.warning("Cannot set camera height to %d; using device default", self.height)
        return cap

    async def _release_capture(self) -> None:
        cap, self.cap = self.cap, None
        if cap is None:
            return
        # Queued behind any read still running on the worker.
        await asyncio.get_running_loop().run_in_executor(self._ensure_executor(), cap.release)

    async def start(self) -> None:
        if self._running:
            return
        if self._released:
            raise CameraAccessError("Camera was already released")
        # A capture left over from a lost stream.
        await self._release_capture()
        loop = asyncio.get_running_loop()
        self.cap = await loop.run_in_executor(self._ensure_executor(), self._open)
        self.frames_read = 0
        self._running = True
        self._task = asyncio.create_task(self._capture_loop(self.cap))
        logger.info("Camera %d opened", self.index)

    def current_frame(self) -> Optional[np.ndarray]:
        return self._latest

    async def _capture_loop(self, cap: cv2.VideoCapture) -> None:
        loop = asyncio.get_running_loop()
        executor = self._ensure_executor()
        failures = 0
        while self._running:
            ok, bgr = await loop.run_in_executor(executor, cap.read)
            if not self._running:
                break
            if not ok or bgr is None:
                failures += 1
                if failures >= MAX_READ_FAILURES:
                    logger.error("Camera %d stream lost after %d failed reads", self.index, failures)
                    self._running = False
                    if self.on_stream_lost is not None:
                        self.on_stream_lost("Camera stream lost")
                    break
                await asyncio.sleep(0.01)
                continue

            failures = 0
            self._latest = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGBA)
            self.frames_read += 1
            if self.frames_read == 1:
                h, w = self._latest.shape[:2]
                logger.info("Camera %d ready: %dx%d", self.index, w, h)
                if self.on_first_frame is not None:
                    self.on_first_frame()

    async def stop(self) -> None:
        """Stop reading and release the device. Safe to call more than once."""
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            _, pending = await asyncio.wait({task}, timeout=STOP_TIMEOUT_S)
            if pending:
                logger.warning("Camera %d read did not finish within %.1f seconds", self.index, STOP_TIMEOUT_S)
                task.cancel()

        if self._released:
            return
        self._released = True
        await self._release_capture()
        self._latest = None
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        logger.info("Camera %d released", self.index)
