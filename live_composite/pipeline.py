from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .background import BackgroundSnapshot
from .composite import compose, save_png
from .contracts import EnhancementSetting
from .mask import reconcile_mask
from .service import SegmentationService


@dataclass(frozen=True)
class StageTimings:
    load_s: float
    inference_s: float
    reconcile_s: float
    composite_s: float
    total_s: float


def load_frame(path: str) -> np.ndarray:
    """
    Load an image as an RGBA uint8 frame of shape (H, W, 4).
    """
    bgr = cv2.imread(path, cv2.IMREAD_COLOR)
    if bgr is None:
        raise FileNotFoundError(f"Could not read image: {path}")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGBA)


def process_image(
    image_path: str,
    out_path: str,
    service: SegmentationService,
    background: Optional[BackgroundSnapshot] = None,
    enhancement: Optional[EnhancementSetting] = None,
) -> StageTimings:
    """
    Deterministic, linear pipeline for one still image:
      1) Load image
      2) Inference
      3) Reconcile mask
      4) Composite
      5) Save PNG

    MaskUnavailable propagates to the caller.
    """
    t0 = time.perf_counter()
    frame = load_frame(image_path)
    t_load = time.perf_counter()

    async def _predict():
        with service.scope():
            return await service.predict(frame)

    raw = asyncio.run(_predict())
    t_inf = time.perf_counter()

    h, w = frame.shape[:2]
    mask = reconcile_mask(raw, w, h)
    t_rec = time.perf_counter()

    out = compose(frame, background, mask, enhancement)
    save_png(out, out_path)
    t_comp = time.perf_counter()

    return StageTimings(
        load_s=t_load - t0,
        inference_s=t_inf - t_load,
        reconcile_s=t_rec - t_inf,
        composite_s=t_comp - t_rec,
        total_s=t_comp - t0,
    )
