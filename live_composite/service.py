from __future__ import annotations

import contextlib
from typing import Any, ContextManager

import numpy as np


class SegmentationService:
    """
    Opaque foreground/background segmentation.

    `predict` takes an RGBA frame and returns something `extract_mask` can
    resolve. Each call is wrapped by the caller in `scope()`, which releases
    per-call scratch state when the cycle ends. `dispose` may be called any
    number of times.
    """

    async def initialize(self) -> None:
        return None

    async def predict(self, frame: np.ndarray) -> Any:
        raise NotImplementedError

    def scope(self) -> ContextManager[None]:
        return contextlib.nullcontext()

    def dispose(self) -> None:
        return None


class EllipseSegmentationService(SegmentationService):
    """
    Soft centered ellipse at half the frame resolution. Stands in for a real
    model in demos and smoke runs.
    """

    def __init__(self, radius: float = 0.4, softness: float = 0.08):
        self.radius = float(radius)
        self.softness = float(softness)
        self.disposed = False

    async def predict(self, frame: np.ndarray) -> np.ndarray:
        h, w = max(1, frame.shape[0] // 2), max(1, frame.shape[1] // 2)
        ys = (np.arange(h, dtype=np.float32) + 0.5) / h - 0.5
        xs = (np.arange(w, dtype=np.float32) + 0.5) / w - 0.5
        # distance in units of the shorter side
        if w >= h:
            dist = np.sqrt((xs[None, :] * (w / h)) ** 2 + ys[:, None] ** 2)
        else:
            dist = np.sqrt(xs[None, :] ** 2 + (ys[:, None] * (h / w)) ** 2)
        return np.clip((self.radius - dist) / self.softness + 0.5, 0.0, 1.0).astype(np.float32)

    def dispose(self) -> None:
        self.disposed = True


def create_service(model_spec: str) -> SegmentationService:
    """
    "ellipse" -> synthetic mask; "hf:<repo>" or a TorchScript path -> torch model.
    """
    if model_spec == "ellipse":
        return EllipseSegmentationService()

    from .inference import TorchSegmentationService

    return TorchSegmentationService(model_spec)
