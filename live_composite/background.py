from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import cv2
import numpy as np
import requests

from .composite import cover_background
from .config import BACKGROUND_PRESETS, BACKGROUNDS_DIR, get_background_timeout_s
from .errors import BackgroundLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackgroundSnapshot:
    """
    A fully decoded background image. Never mutated after construction, so a
    cycle holding a reference always sees a complete image.
    """

    source: str
    image: np.ndarray
    _covers: Dict[Tuple[int, int], np.ndarray] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_array(cls, source: str, image: np.ndarray) -> "BackgroundSnapshot":
        if image.ndim != 3 or image.shape[2] not in (3, 4) or image.dtype != np.uint8:
            raise ValueError(f"Expected RGB/RGBA uint8 background, got shape={image.shape} dtype={image.dtype}")
        image = np.ascontiguousarray(image[..., :3])
        image.setflags(write=False)
        return cls(source=source, image=image)

    @property
    def size(self) -> Tuple[int, int]:
        h, w = self.image.shape[:2]
        return w, h

    def cover(self, width: int, height: int) -> np.ndarray:
        """Cover-scaled RGB rendering for a canvas size (memoized, read-only)."""
        key = (int(width), int(height))
        cached = self._covers.get(key, None)
        if cached is None:
            cached = cover_background(self.image, key[0], key[1])
            cached.setflags(write=False)
            # Only the current canvas size is worth keeping.
            self._covers.clear()
            self._covers[key] = cached
        return cached


def resolve_source(source: str) -> str:
    """Map a preset name ("green", "office", "beach") to its file; pass paths/URLs through."""
    preset = BACKGROUND_PRESETS.get(source, None)
    if preset is not None:
        return str(BACKGROUNDS_DIR / preset)
    return source


def _decode(data: bytes, source: str) -> np.ndarray:
    buf = np.frombuffer(data, dtype=np.uint8)
    bgr = cv2.imdecode(buf, cv2.IMREAD_COLOR) if buf.size else None
    if bgr is None:
        raise BackgroundLoadError(f"Could not decode background image: {source}")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def load_background(source: str, timeout_s: Optional[float] = None) -> BackgroundSnapshot:
    """
    Load and decode a background from a preset name, file path or http(s) URL.

    Blocking; run it off the event loop.
    """
    location = resolve_source(source)
    if location.startswith(("http://", "https://")):
        try:
            resp = requests.get(location, timeout=timeout_s or get_background_timeout_s())
            resp.raise_for_status()
        except requests.RequestException as e:
            raise BackgroundLoadError(f"Could not fetch background {location}: {e}") from e
        rgb = _decode(resp.content, location)
    else:
        path = Path(location)
        if not path.is_file():
            raise BackgroundLoadError(f"Background not found: {location}")
        bgr = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if bgr is None:
            raise BackgroundLoadError(f"Could not read background image: {location}")
        rgb = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)

    return BackgroundSnapshot.from_array(source, rgb)


class BackgroundStore:
    """
    Holds the currently selected background.

    Loads run in a worker thread; the finished snapshot replaces the previous
    one by a single reference swap. A load that finishes after a newer
    selection was made is discarded. A failed load leaves no background, so
    the compositor falls back to the solid fill.
    """

    def __init__(self, loader: Callable[[str], BackgroundSnapshot] = load_background):
        self._loader = loader
        self._current: Optional[BackgroundSnapshot] = None
        self._selection = 0

    @property
    def current(self) -> Optional[BackgroundSnapshot]:
        return self._current

    async def select(self, source: Optional[str]) -> Optional[BackgroundSnapshot]:
        self._selection += 1
        token = self._selection
        if not source:
            self._current = None
            return None

        loop = asyncio.get_running_loop()
        try:
            snapshot: Optional[BackgroundSnapshot] = await loop.run_in_executor(None, self._loader, source)
        except BackgroundLoadError as e:
            logger.warning("Failed to load background %s: %s", source, e)
            snapshot = None

        if token != self._selection:
            logger.debug("Discarding superseded background load: %s", source)
            return self._current

        self._current = snapshot
        if snapshot is not None:
            w, h = snapshot.size
            logger.info("Background ready: %s (%dx%d)", source, w, h)
        return snapshot
