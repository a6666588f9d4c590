from typing import Callable, Optional

import numpy as np
import pytest

from src.video.buffer import Buffer
from src.video.video_format import VideoFormat


@pytest.fixture
def video_format() -> VideoFormat:
    return VideoFormat()


@pytest.fixture
def random_frame(video_format) -> np.ndarray:
    rng = np.random.default_rng(1234)
    return rng.integers(0, 256, size=video_format.shape, dtype=np.uint8)


@pytest.fixture
def make_buffer(video_format) -> Callable[..., Buffer]:
    def _make(frame: Optional[np.ndarray] = None, pts: float = 0.0, offset: int = 0) -> Buffer:
        if frame is None:
            frame = np.zeros(video_format.shape, dtype=np.uint8)
        return Buffer.from_array(frame, pts=pts, duration=1 / 30.0, offset=offset)

    return _make
