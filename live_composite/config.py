"""
Centralized configuration constants for the live compositing pipeline.

Ground rules:
- Frames are RGBA uint8, (H, W, 4)
- One frame and one mask per cycle
"""

import os
from pathlib import Path

# Enhancement
DEFAULT_GAMMA = 1.5

# Masks are always softened with a radius-1 box blur after reconciliation.
MASK_BLUR_RADIUS = 1

# Neutral light gray (#f0f0f0) shown where there is no background image.
FALLBACK_COLOR = (240, 240, 240)

# Camera request; the device may negotiate something else.
CAMERA_WIDTH = 1280
CAMERA_HEIGHT = 720
CAMERA_INDEX = 0

# Scheduler
TICK_HZ = 60.0
INFERENCE_TIMEOUT_S = 2.0
TEARDOWN_TIMEOUT_S = 2.0

# Segmentation model input (square, batch size 1).
MODEL_INPUT_SIZE = 256
IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]

BACKGROUND_TIMEOUT_S = 10.0
BACKGROUNDS_DIR = Path(__file__).resolve().parent / "backgrounds"
BACKGROUND_PRESETS = {
    "green": "green.ppm",
    "office": "office.ppm",
    "beach": "beach.ppm",
}
DEFAULT_BACKGROUND = "green"


def _get_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def get_inference_timeout_s() -> float:
    return _get_float("LIVE_COMPOSITE_INFERENCE_TIMEOUT_S", INFERENCE_TIMEOUT_S)


def get_tick_hz() -> float:
    return _get_float("LIVE_COMPOSITE_TICK_HZ", TICK_HZ)


def get_background_timeout_s() -> float:
    return _get_float("LIVE_COMPOSITE_BACKGROUND_TIMEOUT_S", BACKGROUND_TIMEOUT_S)
