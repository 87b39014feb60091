from __future__ import annotations

from typing import Dict, Tuple

import numpy as np

from .buffers import apply_gamma, check_frame
from .contracts import EnhancementMode, EnhancementSetting

# (brightness, contrast, saturate), applied in that order.
FILTER_PRESETS: Dict[EnhancementMode, Tuple[float, float, float]] = {
    EnhancementMode.AUTO: (1.2, 1.1, 1.0),
    EnhancementMode.LOW_LIGHT: (1.5, 1.3, 1.2),
    EnhancementMode.VIBRANT: (1.0, 1.2, 1.5),
    EnhancementMode.NATURAL: (1.1, 1.05, 1.1),
}

# Luminance weights of the standard saturate() color matrix.
_LUMA = np.array([0.213, 0.715, 0.072], dtype=np.float32)


def _saturate_matrix(s: float) -> np.ndarray:
    m = np.tile(_LUMA * (1.0 - s), (3, 1))
    m[np.diag_indices(3)] += s
    return m.astype(np.float32)


def apply_filters(buffer: np.ndarray, brightness: float, contrast: float, saturate: float) -> np.ndarray:
    """
    brightness -> contrast -> saturate on RGB, clamped after each step.

    Returns a new buffer; alpha is copied through.
    """
    check_frame(buffer)
    rgb = buffer[..., :3].astype(np.float32)
    if brightness != 1.0:
        rgb = np.clip(rgb * brightness, 0.0, 255.0)
    if contrast != 1.0:
        rgb = np.clip((rgb - 127.5) * contrast + 127.5, 0.0, 255.0)
    if saturate != 1.0:
        rgb = np.clip(rgb @ _saturate_matrix(saturate).T, 0.0, 255.0)

    out = np.empty_like(buffer)
    out[..., :3] = np.rint(rgb).astype(np.uint8)
    out[..., 3] = buffer[..., 3]
    return out


def enhance(frame: np.ndarray, setting: EnhancementSetting) -> np.ndarray:
    """
    Enhanced working copy of `frame`. The captured frame is never mutated;
    with mode `none` the frame itself is returned.
    """
    if not setting.enabled:
        return frame
    if setting.mode == EnhancementMode.GAMMA:
        return apply_gamma(frame, setting.gamma)
    brightness, contrast, saturate = FILTER_PRESETS[setting.mode]
    return apply_filters(frame, brightness, contrast, saturate)
