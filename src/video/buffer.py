from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from src.video.video_format import PIXEL_FORMATS, VideoFormat


@dataclass(eq=False)
class Buffer:
    """
    One video frame: flat pixel storage plus the metadata that travels with it.

    `data` holds `stride * height` bytes (or more); row `y` starts at
    `y * stride`. Timing fields are in seconds and may be None when unknown.
    """

    data: np.ndarray
    width: int
    height: int
    pixel_format: str = "RGB"
    stride: Optional[int] = None
    pts: Optional[float] = None
    dts: Optional[float] = None
    duration: Optional[float] = None
    offset: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        data = np.asarray(self.data)
        if data.dtype != np.uint8:
            raise TypeError(f"Buffer storage must be uint8, got {data.dtype}")
        self.data = data.reshape(-1)
        if self.stride is None:
            self.stride = self.width * PIXEL_FORMATS.get(self.pixel_format, 3)

    @classmethod
    def from_array(
        cls,
        frame: np.ndarray,
        pts: Optional[float] = None,
        dts: Optional[float] = None,
        duration: Optional[float] = None,
        offset: Optional[int] = None,
        pixel_format: str = "RGB",
    ) -> "Buffer":
        """Wrap an (H, W, 3) uint8 frame. The array is used as-is when contiguous."""
        if frame.ndim != 3:
            raise ValueError(f"Expected an (H, W, C) frame, got shape {frame.shape}")
        height, width = frame.shape[:2]
        data = np.ascontiguousarray(frame, dtype=np.uint8)
        return cls(
            data=data.reshape(-1),
            width=width,
            height=height,
            pixel_format=pixel_format,
            stride=width * frame.shape[2],
            pts=pts,
            dts=dts,
            duration=duration,
            offset=offset,
        )

    @classmethod
    def allocate(cls, video_format: VideoFormat, **timing: Any) -> "Buffer":
        return cls(
            data=np.zeros(video_format.size, dtype=np.uint8),
            width=video_format.width,
            height=video_format.height,
            pixel_format=video_format.pixel_format,
            stride=video_format.stride,
            **timing,
        )

    @property
    def size(self) -> int:
        return int(self.data.size)

    @property
    def writable(self) -> bool:
        return bool(self.data.flags.writeable)

    def copy_deep(self) -> "Buffer":
        """Same metadata, freshly allocated pixel storage."""
        return Buffer(
            data=self.data.copy(),
            width=self.width,
            height=self.height,
            pixel_format=self.pixel_format,
            stride=self.stride,
            pts=self.pts,
            dts=self.dts,
            duration=self.duration,
            offset=self.offset,
            meta=deepcopy(self.meta),
        )

    def to_array(self) -> np.ndarray:
        """(H, W, C) copy of the visible pixels, row padding dropped."""
        channels = PIXEL_FORMATS.get(self.pixel_format, 3)
        rows = self.data[: self.stride * self.height].reshape(self.height, self.stride)
        return rows[:, : self.width * channels].reshape(self.height, self.width, channels).copy()

    def __repr__(self) -> str:
        return (
            f"Buffer({self.width}x{self.height} {self.pixel_format}, "
            f"size={self.size}, pts={self.pts}, offset={self.offset})"
        )
