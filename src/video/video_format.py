from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

FPS_MAX = 2147483647
STAGE_WIDTH = 640
STAGE_HEIGHT = 192

# Supported raw pixel layouts and their channel counts
PIXEL_FORMATS = {"RGB": 3}


@dataclass(frozen=True)
class VideoFormat:
    """
    Negotiated raw-video format of a stage pad.

    Fixed once at stage configuration; every buffer crossing the pad must
    declare exactly this width, height and pixel format.
    """

    pixel_format: str = "RGB"
    width: int = STAGE_WIDTH
    height: int = STAGE_HEIGHT
    fps_min: float = 0.0
    fps_max: float = float(FPS_MAX)

    def __post_init__(self):
        if self.pixel_format not in PIXEL_FORMATS:
            raise ValueError(f"Unsupported pixel format: {self.pixel_format}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid frame size: {self.width}x{self.height}")
        if self.fps_min < 0 or self.fps_max < self.fps_min:
            raise ValueError(f"Invalid frame-rate range: [{self.fps_min}, {self.fps_max}]")

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "VideoFormat":
        """The stage's frame size is fixed; the section may only restate it."""
        cfg = cfg or {}
        width = int(cfg.get("width", STAGE_WIDTH))
        height = int(cfg.get("height", STAGE_HEIGHT))
        if (width, height) != (STAGE_WIDTH, STAGE_HEIGHT):
            raise ValueError(f"Frame size is fixed at {STAGE_WIDTH}x{STAGE_HEIGHT}, config asks for {width}x{height}")
        return cls(pixel_format=str(cfg.get("format", "RGB")).upper(), width=width, height=height)

    @property
    def channels(self) -> int:
        return PIXEL_FORMATS[self.pixel_format]

    @property
    def row_bytes(self) -> int:
        return self.width * self.channels

    @property
    def stride(self) -> int:
        # raw video rows are padded to 4-byte boundaries
        return (self.row_bytes + 3) // 4 * 4

    @property
    def size(self) -> int:
        return self.stride * self.height

    @property
    def frame_bytes(self) -> int:
        return self.row_bytes * self.height

    @property
    def shape(self):
        return (self.height, self.width, self.channels)

    def accepts(self, width: int, height: int, pixel_format: str = "RGB") -> bool:
        return width == self.width and height == self.height and pixel_format == self.pixel_format

    def accepts_fps(self, fps: float) -> bool:
        if fps is None or math.isnan(fps):
            return False
        return self.fps_min <= fps <= self.fps_max

    def to_caps(self) -> str:
        fps_hi = FPS_MAX if math.isinf(self.fps_max) else int(self.fps_max)
        return (
            f"video/x-raw,format={self.pixel_format},width={self.width},height={self.height},"
            f"framerate=[{int(self.fps_min)}/1,{fps_hi}/1]"
        )


@dataclass(frozen=True)
class PadCaps:
    name: str
    caps: VideoFormat

    def __str__(self) -> str:
        return f"{self.name}: {self.caps.to_caps()}"
