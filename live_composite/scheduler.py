from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import numpy as np

from .background import BackgroundStore
from .camera import CameraSource
from .composite import compose
from .config import TEARDOWN_TIMEOUT_S, get_inference_timeout_s, get_tick_hz
from .contracts import EnhancementSetting
from .errors import InferenceTimeout, MaskUnavailable
from .mask import reconcile_mask
from .readiness import Readiness, ReadinessState
from .service import SegmentationService

logger = logging.getLogger(__name__)

Sink = Callable[[np.ndarray], None]
Ticker = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class CycleTimings:
    inference_s: float
    reconcile_s: float
    composite_s: float
    total_s: float


@dataclass
class SchedulerStats:
    ticks: int = 0
    busy_ticks: int = 0
    cycles_started: int = 0
    frames_drawn: int = 0
    cycles_skipped: int = 0
    results_dropped: int = 0
    last_timings: Optional[CycleTimings] = None


class IntervalTicker:
    """
    Refresh signal at a nominal rate. Deadlines advance from the previous one
    so slow ticks do not accumulate drift. A tick that is already overdue
    fires immediately and the schedule restarts from that moment.
    """

    def __init__(self, hz: Optional[float] = None):
        self.interval = 1.0 / float(hz or get_tick_hz())
        self._deadline: Optional[float] = None

    async def __call__(self) -> None:
        now = asyncio.get_running_loop().time()
        if self._deadline is None:
            self._deadline = now
        self._deadline += self.interval
        if self._deadline <= now:
            self._deadline = now
        await asyncio.sleep(self._deadline - now)


class FrameScheduler:
    """
    Drives segmentation + compositing once per tick while the readiness gate
    is open.

    - The loop exists only while the gate is open; gate changes (not ticks)
      start it again.
    - Single-flight: a tick that arrives while a cycle is outstanding is skipped.
    - Every cycle carries a generation number. Closing the gate or the
      scheduler bumps it, and results from older generations are dropped
      right before drawing.
    - Per-cycle failures are logged and skipped; the last drawn frame stays.

    Must be constructed and used from inside a running event loop.
    """

    def __init__(
        self,
        readiness: Readiness,
        service: SegmentationService,
        camera: CameraSource,
        sink: Sink,
        backgrounds: Optional[BackgroundStore] = None,
        enhancement: Optional[EnhancementSetting] = None,
        ticker: Optional[Ticker] = None,
        inference_timeout_s: Optional[float] = None,
    ):
        self.readiness = readiness
        self.service = service
        self.camera = camera
        self.sink = sink
        self.backgrounds = backgrounds
        self.enhancement = enhancement or EnhancementSetting()
        self.ticker: Ticker = ticker or IntervalTicker()
        self.inference_timeout_s = inference_timeout_s or get_inference_timeout_s()

        self.stats = SchedulerStats()
        self.last_output: Optional[np.ndarray] = None

        self._generation = 0
        self._live = False
        self._closed = False
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._unsubscribe = readiness.subscribe(self._on_readiness)

        if readiness.can_run:
            self._arm()

    @property
    def running(self) -> bool:
        return self._live

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_readiness(self, state: ReadinessState) -> None:
        if self._closed:
            return
        if state.can_run:
            self._arm()
        else:
            self._disarm()

    def _arm(self) -> None:
        if self._live:
            return
        self._live = True
        self._generation += 1
        # A loop from the previous run may still be waiting on its tick; it
        # sees _live again and carries on.
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Frame loop armed (generation %d)", self._generation)

    def _disarm(self) -> None:
        if not self._live:
            return
        self._live = False
        self._generation += 1
        logger.debug("Frame loop disarmed (generation %d)", self._generation)

    def _is_current(self, generation: int) -> bool:
        return self._live and not self._closed and generation == self._generation

    async def _run(self) -> None:
        logger.info("Frame loop started")
        try:
            while self._live and not self._closed:
                await self.ticker()
                if not self._live or self._closed:
                    break
                self.stats.ticks += 1
                if self._inflight is not None and not self._inflight.done():
                    self.stats.busy_ticks += 1
                    continue
                self._inflight = asyncio.create_task(self._cycle(self._generation))
        finally:
            logger.info("Frame loop stopped")

    def _skip(self, reason: str, *args) -> None:
        self.stats.cycles_skipped += 1
        logger.debug("Cycle skipped: " + reason, *args)

    async def _segment(self, frame: np.ndarray):
        try:
            return await asyncio.wait_for(self.service.predict(frame), timeout=self.inference_timeout_s)
        except asyncio.TimeoutError as e:
            raise InferenceTimeout(f"Segmentation timed out after {self.inference_timeout_s:.2f}s") from e

    async def _cycle(self, generation: int) -> None:
        self.stats.cycles_started += 1
        t0 = time.perf_counter()

        frame = self.camera.current_frame()
        if frame is None:
            self._skip("no camera frame")
            return
        background = self.backgrounds.current if self.backgrounds is not None else None
        enhancement = self.enhancement

        try:
            with self.service.scope():
                raw = await self._segment(frame)
            t_inf = time.perf_counter()

            if not self._is_current(generation):
                self.stats.results_dropped += 1
                return

            h, w = frame.shape[:2]
            mask = reconcile_mask(raw, w, h)
            t_rec = time.perf_counter()
            out = compose(frame, background, mask, enhancement)
            t_comp = time.perf_counter()
        except MaskUnavailable as e:
            self._skip("%s", e)
            return
        except InferenceTimeout as e:
            self.stats.cycles_skipped += 1
            logger.warning("%s; frame skipped", e)
            return
        except Exception:
            self.stats.cycles_skipped += 1
            logger.exception("Segmentation cycle failed; frame skipped")
            return

        if not self._is_current(generation):
            self.stats.results_dropped += 1
            return

        try:
            self.sink(out)
        except Exception:
            self.stats.cycles_skipped += 1
            logger.exception("Display sink failed")
            return

        self.last_output = out
        self.stats.frames_drawn += 1
        self.stats.last_timings = CycleTimings(
            inference_s=t_inf - t0,
            reconcile_s=t_rec - t_inf,
            composite_s=t_comp - t_rec,
            total_s=time.perf_counter() - t0,
        )

    async def wait_idle(self) -> None:
        """Wait for the outstanding cycle, if any, to resolve."""
        task = self._inflight
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        """
        Stop the loop, drop any in-flight result, release the camera and
        dispose of the segmentation service. Only the first call does anything.
        """
        if self._closed:
            return
        self._closed = True
        self._live = False
        self._generation += 1
        self._unsubscribe()

        tasks = [t for t in (self._loop_task, self._inflight) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=TEARDOWN_TIMEOUT_S)
            if pending:
                logger.warning("%d scheduler task(s) did not stop within %.1fs", len(pending), TEARDOWN_TIMEOUT_S)
        self._loop_task = None
        self._inflight = None

        try:
            await self.camera.stop()
        except Exception:
            logger.exception("Camera release failed")
        try:
            self.service.dispose()
        except Exception:
            logger.exception("Segmentation service disposal failed")
        logger.info(
            "Scheduler closed: drawn=%d skipped=%d dropped=%d busy_ticks=%d",
            self.stats.frames_drawn,
            self.stats.cycles_skipped,
            self.stats.results_dropped,
            self.stats.busy_ticks,
        )
