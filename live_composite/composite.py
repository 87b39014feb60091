from __future__ import annotations

import os
from typing import Any, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .buffers import check_frame
from .config import FALLBACK_COLOR
from .contracts import EnhancementSetting
from .enhance import enhance


def fallback_canvas(width: int, height: int, color: Tuple[int, int, int] = FALLBACK_COLOR) -> np.ndarray:
    """Solid RGB canvas used when no background image is available."""
    canvas = np.empty((height, width, 3), dtype=np.uint8)
    canvas[:] = np.asarray(color, dtype=np.uint8)
    return canvas


def cover_background(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Scale `image` to cover (width, height), keeping its aspect ratio, then crop
    the overflow symmetrically. Returns an RGB uint8 array (height, width, 3).
    """
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Expected RGB/RGBA background, got shape={image.shape}")
    bh, bw = image.shape[:2]
    if bh <= 0 or bw <= 0:
        raise ValueError(f"Invalid background size: {(bh, bw)}")

    scale = max(float(width) / float(bw), float(height) / float(bh))
    scaled_w = max(width, int(round(bw * scale)))
    scaled_h = max(height, int(round(bh * scale)))

    rgb = image[..., :3]
    if (scaled_w, scaled_h) != (bw, bh):
        interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_LINEAR
        rgb = cv2.resize(np.ascontiguousarray(rgb), (scaled_w, scaled_h), interpolation=interpolation)

    x0 = (scaled_w - width) // 2
    y0 = (scaled_h - height) // 2
    return np.ascontiguousarray(rgb[y0 : y0 + height, x0 : x0 + width])


def _background_canvas(background: Any, width: int, height: int) -> np.ndarray:
    if background is None:
        return fallback_canvas(width, height)
    if isinstance(background, np.ndarray):
        return cover_background(background, width, height)
    # BackgroundSnapshot keeps its own cover-scaled cache.
    return background.cover(width, height)


def compose(
    frame: np.ndarray,
    background: Any,
    mask: np.ndarray,
    enhancement: Optional[EnhancementSetting] = None,
) -> np.ndarray:
    """
    Alpha-composite the (optionally enhanced) frame over the background.

    Inputs:
      - frame: RGBA uint8 (H,W,4), not modified
      - background: None (fallback fill), an RGB/RGBA array, or a BackgroundSnapshot
      - mask: reconciled alpha uint8 (H,W)

    Output: new RGBA uint8 (H,W,4), fully opaque.
    """
    check_frame(frame)
    h, w = frame.shape[:2]
    if mask.shape != (h, w):
        raise ValueError(f"Mask shape {mask.shape} does not match frame {(h, w)}")

    fg = enhance(frame, enhancement) if enhancement is not None else frame
    bg = _background_canvas(background, w, h)

    a = mask.astype(np.uint16)[..., None]
    blended = (fg[..., :3].astype(np.uint16) * a + bg.astype(np.uint16) * (255 - a) + 127) // 255

    out = np.empty((h, w, 4), dtype=np.uint8)
    out[..., :3] = blended.astype(np.uint8)
    out[..., 3] = 255
    return out


def save_png(frame: np.ndarray, out_path: str) -> None:
    """
    Save an RGBA frame as a lossless PNG.
    """
    check_frame(frame)
    parent = os.path.dirname(out_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    Image.fromarray(frame).save(out_path, format="PNG", optimize=False)
