from __future__ import annotations

import asyncio
import contextlib
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterator, Optional

import cv2
import numpy as np
import torch

from .config import IMAGENET_MEAN, IMAGENET_STD, MODEL_INPUT_SIZE
from .errors import MaskUnavailable, ModelInitError
from .model import forward_model, load_model, release_device_cache
from .service import SegmentationService

logger = logging.getLogger(__name__)


def _extract_primary_output(y):
    """
    Segmentation models may return:
      - a single tensor
      - (tensor, ...) tuple/list (final stage is typically last)
      - dict / ModelOutput with tensor fields
    """
    if isinstance(y, torch.Tensor):
        return y
    if isinstance(y, (list, tuple)) and len(y) > 0:
        for item in reversed(y):
            if isinstance(item, torch.Tensor):
                return item
        return y[-1]
    if isinstance(y, dict):
        for k in ("logits", "pred", "alpha", "mask"):
            v = y.get(k, None)
            if isinstance(v, torch.Tensor):
                return v
        for v in y.values():
            if isinstance(v, torch.Tensor):
                return v
    return y


def frame_to_tensor(frame: np.ndarray, size: int = MODEL_INPUT_SIZE) -> torch.Tensor:
    """
    RGBA uint8 frame -> normalized float32 tensor (1,3,size,size).
    """
    if frame.ndim != 3 or frame.shape[2] not in (3, 4):
        raise ValueError(f"Expected RGB/RGBA frame, got shape={frame.shape}")
    h, w = frame.shape[:2]
    rgb = np.ascontiguousarray(frame[..., :3])
    interpolation = cv2.INTER_AREA if max(h, w) > size else cv2.INTER_LINEAR
    rgb = cv2.resize(rgb, (size, size), interpolation=interpolation)

    x = rgb.astype(np.float32) / 255.0
    mean = np.array(IMAGENET_MEAN, dtype=np.float32).reshape(1, 1, 3)
    std = np.array(IMAGENET_STD, dtype=np.float32).reshape(1, 1, 3)
    x = (x - mean) / std
    x = np.transpose(x, (2, 0, 1))  # CHW
    return torch.from_numpy(x).unsqueeze(0).contiguous()


def output_to_probability(y: Any) -> np.ndarray:
    """
    Primary model output -> float32 probability mask (h, w) in [0,1].
    """
    y = _extract_primary_output(y)
    if not isinstance(y, torch.Tensor):
        raise MaskUnavailable(f"Model output is not a tensor: {type(y).__name__}")

    # Expect either (1,C,H,W) or (1,H,W) or (H,W)
    if y.ndim == 4:
        y = y[0, 0]
    elif y.ndim == 3:
        y = y[0]
    elif y.ndim != 2:
        raise MaskUnavailable(f"Unexpected output tensor shape: {tuple(y.shape)}")

    y = y.float()
    # Logits fall outside [0,1]; probabilities are used as-is.
    if float(y.min()) < 0.0 or float(y.max()) > 1.0:
        y = torch.sigmoid(y)
    if torch.isnan(y).any():
        raise MaskUnavailable("NaNs detected in predicted mask.")
    return np.clip(y.detach().to("cpu").numpy().astype(np.float32, copy=False), 0.0, 1.0)


class TorchSegmentationService(SegmentationService):
    """
    Runs a TorchScript or Hugging Face segmentation model on a single worker
    thread, batch size 1, float32.
    """

    def __init__(self, model_spec: str, device: Optional[torch.device] = None, input_size: int = MODEL_INPUT_SIZE):
        self.model_spec = model_spec
        self.input_size = int(input_size)
        self._device = device
        self._model: Optional[torch.nn.Module] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._disposed = False

    @property
    def device(self) -> Optional[torch.device]:
        return self._device

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="segmentation")
        return self._executor

    async def initialize(self) -> None:
        if self._disposed:
            raise ModelInitError("Segmentation service was disposed")
        loop = asyncio.get_running_loop()
        try:
            model, device = await loop.run_in_executor(self._ensure_executor(), load_model, self.model_spec, self._device)
        except ModelInitError:
            raise
        except Exception as e:  # noqa: BLE001 - anything from torch/transformers
            raise ModelInitError(f"Failed to initialize {self.model_spec}: {e}") from e
        self._model, self._device = model, device
        logger.info("Segmentation model %s loaded on %s", self.model_spec, device)

    def _predict_sync(self, frame: np.ndarray) -> np.ndarray:
        model, device = self._model, self._device
        if model is None or device is None:
            raise MaskUnavailable("Segmentation model is not loaded")
        x = frame_to_tensor(frame, self.input_size).to(device)
        y = forward_model(model, x)
        return output_to_probability(y)

    async def predict(self, frame: np.ndarray) -> np.ndarray:
        if self._disposed:
            raise MaskUnavailable("Segmentation service was disposed")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._ensure_executor(), self._predict_sync, frame)

    @contextlib.contextmanager
    def scope(self) -> Iterator[None]:
        try:
            yield
        finally:
            if self._device is not None:
                release_device_cache(self._device)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._model = None
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        logger.info("Segmentation service disposed")

