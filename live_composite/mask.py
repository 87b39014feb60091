from __future__ import annotations

import logging
from typing import Any

import numpy as np
from PIL import Image

from .buffers import box_mean, resample
from .config import MASK_BLUR_RADIUS
from .errors import MaskUnavailable

logger = logging.getLogger(__name__)

_MASK_ATTRS = ("mask", "segmentation_mask", "category_mask")
_MASK_KEYS = ("mask", "segmentation_mask", "category_mask", "alpha", "pred")


def _unwrap(result: Any) -> Any:
    """
    Segmentation services may return:
      - an array / tensor / PIL image
      - a list of per-person results (first person wins)
      - a dict or result object carrying the mask under a known name
    """
    if isinstance(result, (list, tuple)):
        if len(result) == 0:
            raise MaskUnavailable("Segmentation returned no people.")
        return _unwrap(result[0])
    if isinstance(result, dict):
        for k in _MASK_KEYS:
            v = result.get(k, None)
            if v is not None:
                return _unwrap(v)
        raise MaskUnavailable(f"No mask key in result dict: {sorted(result.keys())}")
    if isinstance(result, (np.ndarray, Image.Image)):
        return result
    for attr in _MASK_ATTRS:
        v = getattr(result, attr, None)
        if v is not None:
            return _unwrap(v)
    return result


def _to_numpy(m: Any) -> np.ndarray:
    if isinstance(m, np.ndarray):
        return m
    if isinstance(m, Image.Image):
        if m.mode in ("RGBA", "LA"):
            return np.asarray(m.getchannel("A"))
        return np.asarray(m.convert("L"))
    # torch tensors (or anything tensor-like)
    if hasattr(m, "detach") and hasattr(m, "cpu"):
        return m.detach().cpu().float().numpy()
    raise MaskUnavailable(f"Unsupported mask type: {type(m).__name__}")


def _to_plane(arr: np.ndarray) -> np.ndarray:
    if arr.size == 0:
        raise MaskUnavailable(f"Mask has zero dimensions: {arr.shape}")
    # Expect (H,W), (H,W,C) or batched model output (1,C,H,W) / (1,H,W).
    if arr.ndim == 4 and arr.shape[0] == 1:
        arr = arr[0, 0]
    elif arr.ndim == 3 and arr.shape[0] == 1:
        # leading singleton axis wins: (1,H,W) is channel-first
        arr = arr[0]
    elif arr.ndim == 3 and arr.shape[2] == 4:
        arr = arr[..., 3]
    elif arr.ndim == 3 and arr.shape[2] in (1, 3):
        arr = arr[..., 0]

    if arr.ndim != 2:
        raise MaskUnavailable(f"Unexpected mask shape: {arr.shape}")
    return arr


def extract_mask(result: Any) -> np.ndarray:
    """
    Resolve any supported segmentation result into a (h, w) uint8 alpha plane.

    Raises MaskUnavailable for missing, empty or malformed masks.
    """
    if result is None:
        raise MaskUnavailable("Segmentation returned no mask.")
    arr = _to_plane(_to_numpy(_unwrap(result)))

    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise MaskUnavailable(f"Mask has zero dimensions: {arr.shape}")

    if arr.dtype == np.uint8:
        return arr
    if arr.dtype == np.bool_:
        return arr.astype(np.uint8) * 255
    if np.issubdtype(arr.dtype, np.floating):
        if not np.isfinite(arr).all():
            raise MaskUnavailable("Non-finite values in predicted mask.")
        # float masks are probabilities in [0,1]
        return np.rint(np.clip(arr, 0.0, 1.0) * 255.0).astype(np.uint8)
    if np.issubdtype(arr.dtype, np.integer):
        return np.clip(arr, 0, 255).astype(np.uint8)
    raise MaskUnavailable(f"Unsupported mask dtype: {arr.dtype}")


def reconcile_mask(raw: Any, width: int, height: int) -> np.ndarray:
    """
    Frame-sized, softened alpha plane:
      1) extract the canonical (h, w) uint8 mask
      2) resample to (width, height) unless it already matches
      3) box blur with the fixed radius MASK_BLUR_RADIUS
    """
    mask = extract_mask(raw)
    mh, mw = mask.shape
    if (mw, mh) != (width, height):
        logger.debug("Resampling mask %dx%d -> %dx%d", mw, mh, width, height)
        mask = resample(mask, width, height)
    return box_mean(mask, MASK_BLUR_RADIUS)
