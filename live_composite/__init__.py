"""
Real-time background replacement for a live camera feed.
"""

from .buffers import apply_gamma, box_blur_alpha, box_mean, resample
from .composite import compose, cover_background
from .contracts import EnhancementMode, EnhancementSetting, SessionConfig
from .mask import extract_mask, reconcile_mask
from .readiness import ModelStatus, Readiness, ReadinessState
from .scheduler import FrameScheduler, IntervalTicker
from .session import LiveSession

__version__ = "0.1.0"

__all__ = [
    "apply_gamma",
    "box_blur_alpha",
    "box_mean",
    "resample",
    "compose",
    "cover_background",
    "EnhancementMode",
    "EnhancementSetting",
    "SessionConfig",
    "extract_mask",
    "reconcile_mask",
    "ModelStatus",
    "Readiness",
    "ReadinessState",
    "FrameScheduler",
    "IntervalTicker",
    "LiveSession",
]
