from __future__ import annotations

from typing import Optional

import cv2
import numpy as np


def check_frame(buffer: np.ndarray) -> None:
    if buffer.ndim != 3 or buffer.shape[2] != 4:
        raise ValueError(f"Expected RGBA buffer (H,W,4), got shape={buffer.shape}")
    if buffer.dtype != np.uint8:
        raise ValueError(f"Expected uint8 buffer, got dtype={buffer.dtype}")


def gamma_lut(gamma: float) -> np.ndarray:
    """
    256-entry lookup table for 255 * (c/255) ** (1/gamma), rounded and clamped.
    """
    if gamma <= 0:
        raise ValueError(f"Gamma must be positive, got {gamma}")
    x = np.arange(256, dtype=np.float64) / 255.0
    lut = np.rint(255.0 * np.power(x, 1.0 / float(gamma)))
    return np.clip(lut, 0, 255).astype(np.uint8)


def apply_gamma(buffer: np.ndarray, gamma: float, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Gamma-correct the RGB channels of an RGBA buffer; alpha is left untouched.

    Pass `out=buffer` to work in place. Otherwise a new buffer is returned and
    the input is not modified.
    """
    check_frame(buffer)
    lut = gamma_lut(gamma)
    if out is None:
        out = buffer.copy()
    elif out.shape != buffer.shape or out.dtype != np.uint8:
        raise ValueError(f"Output buffer {out.shape} does not match input {buffer.shape}")
    elif out is not buffer:
        out[..., 3] = buffer[..., 3]
    out[..., :3] = lut[buffer[..., :3]]
    return out


def box_mean(plane: np.ndarray, radius: int) -> np.ndarray:
    """
    Mean over the (2r+1)^2 window clipped to the image, rounded half up.

    The divisor shrinks at the borders to the number of in-bounds samples.
    A summed-area table keeps the cost independent of the radius.
    """
    if plane.ndim != 2:
        raise ValueError(f"Expected 2D plane, got shape={plane.shape}")
    r = int(radius)
    if r < 0:
        raise ValueError(f"Radius must be >= 0, got {radius}")
    if r == 0:
        return plane.astype(np.uint8, copy=True)

    h, w = plane.shape
    sat = np.zeros((h + 1, w + 1), dtype=np.int64)
    sat[1:, 1:] = plane.astype(np.int64).cumsum(axis=0).cumsum(axis=1)

    ys = np.arange(h)
    xs = np.arange(w)
    y0 = np.maximum(ys - r, 0)
    y1 = np.minimum(ys + r, h - 1) + 1
    x0 = np.maximum(xs - r, 0)
    x1 = np.minimum(xs + r, w - 1) + 1

    total = (
        sat[y1[:, None], x1[None, :]]
        - sat[y0[:, None], x1[None, :]]
        - sat[y1[:, None], x0[None, :]]
        + sat[y0[:, None], x0[None, :]]
    )
    count = (y1 - y0)[:, None] * (x1 - x0)[None, :]
    return ((2 * total + count) // (2 * count)).astype(np.uint8)


def box_blur_alpha(buffer: np.ndarray, radius: int) -> np.ndarray:
    """
    New RGBA buffer whose alpha is the box-blurred input alpha; color is zeroed.
    """
    check_frame(buffer)
    out = np.zeros_like(buffer)
    out[..., 3] = box_mean(buffer[..., 3], radius)
    return out


def resample(buffer: np.ndarray, target_width: int, target_height: int) -> np.ndarray:
    """
    Smooth resize to (target_width, target_height).

    Enlargement is bilinear, reduction uses area averaging. Returns the input
    itself when the size already matches.
    """
    if target_width <= 0 or target_height <= 0:
        raise ValueError(f"Invalid target size: {(target_width, target_height)}")
    h, w = buffer.shape[:2]
    if (w, h) == (target_width, target_height):
        return buffer

    shrinking = target_width < w and target_height < h
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
    resized = cv2.resize(np.ascontiguousarray(buffer), (int(target_width), int(target_height)), interpolation=interpolation)
    # cv2 drops a trailing singleton channel.
    if buffer.ndim == 3 and resized.ndim == 2:
        resized = resized[:, :, None]
    return resized
