from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class FramePacket:
    frame: object
    timestamp: float
    sensor_id: str = "camera_front"
    duration: Optional[float] = None


@dataclass
class FrameRecord:
    frame_id: int
    pts: Optional[float]
    fps: float = 0.0
    stages_ms: Dict[str, float] = field(default_factory=dict)
    dropped: bool = False
    error: Optional[str] = None
