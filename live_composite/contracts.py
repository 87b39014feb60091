from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .config import CAMERA_HEIGHT, CAMERA_INDEX, CAMERA_WIDTH, DEFAULT_BACKGROUND, DEFAULT_GAMMA


class EnhancementMode(str, Enum):
    NONE = "none"
    GAMMA = "gamma"
    AUTO = "auto"
    LOW_LIGHT = "low_light"
    VIBRANT = "vibrant"
    NATURAL = "natural"


class EnhancementSetting(BaseModel):
    """Foreground enhancement; never applied to the mask."""

    model_config = {"frozen": True}

    mode: EnhancementMode = EnhancementMode.NONE
    gamma: float = Field(default=DEFAULT_GAMMA, gt=0.0)

    @property
    def enabled(self) -> bool:
        return self.mode != EnhancementMode.NONE


class SessionConfig(BaseModel):
    """Runtime settings for a live session (CLI + environment)."""

    model: str = "ellipse"
    camera_index: int = CAMERA_INDEX
    width: int = Field(default=CAMERA_WIDTH, gt=0)
    height: int = Field(default=CAMERA_HEIGHT, gt=0)
    background: Optional[str] = DEFAULT_BACKGROUND
    enhancement: EnhancementSetting = Field(default_factory=EnhancementSetting)
    tick_hz: float = Field(default=60.0, gt=0.0)
    inference_timeout_s: float = Field(default=2.0, gt=0.0)
    start_running: bool = True
