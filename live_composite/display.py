from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import cv2
import numpy as np

from .config import BACKGROUND_PRESETS
from .contracts import EnhancementMode, EnhancementSetting
from .session import LiveSession

logger = logging.getLogger(__name__)

KEY_QUIT = (ord("q"), 27)
KEY_TOGGLE_RUN = ord(" ")
KEY_NEXT_ENHANCEMENT = ord("g")
KEY_NEXT_BACKGROUND = ord("b")


class OpenCVWindowSink:
    """Shows composited RGBA frames in an OpenCV window."""

    def __init__(self, title: str = "live-composite"):
        self.title = title
        self.frames_shown = 0
        self._open = False

    def __call__(self, frame: np.ndarray) -> None:
        cv2.imshow(self.title, cv2.cvtColor(frame, cv2.COLOR_RGBA2BGR))
        self._open = True
        self.frames_shown += 1

    def poll_key(self) -> int:
        key = cv2.waitKey(1)
        return -1 if key < 0 else key & 0xFF

    def close(self) -> None:
        if self._open:
            cv2.destroyWindow(self.title)
            self._open = False


def _log_selection_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background selection failed", exc_info=exc)


class KeyboardControls:
    """
    Maps keys to session actions: space toggles run/pause, `g` cycles the
    enhancement mode, `b` cycles background presets, `q`/Esc quits.
    """

    def __init__(self, session: LiveSession, backgrounds: Optional[List[str]] = None):
        self.session = session
        self.backgrounds = backgrounds if backgrounds is not None else list(BACKGROUND_PRESETS)
        self._modes = list(EnhancementMode)
        self._bg_index = -1
        self._pending: Optional[asyncio.Task] = None

    def handle(self, key: int) -> bool:
        """Apply one key press; returns False when the user asked to quit."""
        if key in KEY_QUIT:
            return False
        if key == KEY_TOGGLE_RUN:
            running = self.session.toggle_running()
            logger.info("Run requested: %s", running)
        elif key == KEY_NEXT_ENHANCEMENT:
            current = self.session.enhancement
            i = self._modes.index(current.mode)
            mode = self._modes[(i + 1) % len(self._modes)]
            self.session.set_enhancement(EnhancementSetting(mode=mode, gamma=current.gamma))
        elif key == KEY_NEXT_BACKGROUND and self.backgrounds:
            self._bg_index = (self._bg_index + 1) % len(self.backgrounds)
            source = self.backgrounds[self._bg_index]
            logger.info("Background: %s", source)
            self._pending = asyncio.get_running_loop().create_task(self.session.select_background(source))
            self._pending.add_done_callback(_log_selection_failure)
        return True


async def run_window(session: LiveSession, sink: OpenCVWindowSink, poll_interval_s: float = 0.015) -> None:
    """Pump OpenCV window events until the user quits."""
    controls = KeyboardControls(session)
    try:
        while True:
            key = sink.poll_key()
            if key >= 0 and not controls.handle(key):
                break
            await asyncio.sleep(poll_interval_s)
    finally:
        sink.close()
