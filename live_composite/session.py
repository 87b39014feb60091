from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .background import BackgroundStore
from .camera import CameraSource
from .contracts import EnhancementSetting
from .errors import CameraAccessError, ModelInitError
from .readiness import ModelStatus, Readiness
from .scheduler import FrameScheduler, Sink, Ticker
from .service import SegmentationService

logger = logging.getLogger(__name__)


class LiveSession:
    """
    Owns the readiness state, camera, segmentation service, background store
    and frame scheduler of one live compositing session.

    Initialization errors are reported through `readiness.state` (status and
    error message) instead of being raised; a failed model can be retried
    with `retry_model()`.
    """

    def __init__(
        self,
        service: SegmentationService,
        camera: CameraSource,
        sink: Sink,
        enhancement: Optional[EnhancementSetting] = None,
        ticker: Optional[Ticker] = None,
        inference_timeout_s: Optional[float] = None,
        backgrounds: Optional[BackgroundStore] = None,
    ):
        self.readiness = Readiness()
        self.service = service
        self.camera = camera
        self.backgrounds = backgrounds or BackgroundStore()

        camera.on_first_frame = self.readiness.camera_started
        camera.on_stream_lost = self.readiness.camera_stopped

        self.scheduler = FrameScheduler(
            readiness=self.readiness,
            service=service,
            camera=camera,
            sink=sink,
            backgrounds=self.backgrounds,
            enhancement=enhancement,
            ticker=ticker,
            inference_timeout_s=inference_timeout_s,
        )
        self._closed = False

    async def __aenter__(self) -> "LiveSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def enhancement(self) -> EnhancementSetting:
        return self.scheduler.enhancement

    def set_enhancement(self, setting: EnhancementSetting) -> None:
        self.scheduler.enhancement = setting
        logger.info("Enhancement: %s", setting.mode.value)

    async def select_background(self, source: Optional[str]) -> None:
        await self.backgrounds.select(source)

    def set_running(self, value: bool) -> None:
        self.readiness.set_run_requested(value)

    def toggle_running(self) -> bool:
        return self.readiness.toggle_run()

    async def _init_model(self) -> bool:
        self.readiness.begin_model_load()
        try:
            await self.service.initialize()
        except ModelInitError as e:
            logger.error("Model init failed: %s", e)
            self.readiness.model_failed(str(e))
            return False
        if self._closed:
            return False
        self.readiness.model_ready()
        return True

    async def _init_camera(self) -> bool:
        try:
            await self.camera.start()
        except CameraAccessError as e:
            logger.error("Camera init failed: %s", e)
            self.readiness.report_error(f"Camera init failed: {e}")
            return False
        return True

    async def start(self) -> bool:
        """Initialize model and camera concurrently; True when both succeeded."""
        model_ok, camera_ok = await asyncio.gather(self._init_model(), self._init_camera())
        return model_ok and camera_ok

    async def retry_model(self) -> bool:
        if self.readiness.state.model_status != ModelStatus.ERROR:
            return self.readiness.state.model_status == ModelStatus.READY
        return await self._init_model()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.scheduler.close()
        self.readiness.camera_stopped()
        self.readiness.model_released()
