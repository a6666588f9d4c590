from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import numpy as np

try:
    import cv2
except ImportError:  # pragma: no cover
    cv2 = None

from src.perception.segmentation.color_table import ColorTable


def blend_segmentation(frame: np.ndarray, colored: np.ndarray, alpha: float = 0.5) -> np.ndarray:
    """Alpha-blend a colorized mask over the frame it was computed from (same size, same channel order)."""
    if frame.shape != colored.shape:
        raise ValueError(f"Shape mismatch: frame {frame.shape} vs segmentation {colored.shape}")
    alpha = min(max(float(alpha), 0.0), 1.0)
    if cv2 is None:
        raise ImportError("opencv-python is required for blending overlays")
    return cv2.addWeighted(frame, 1.0 - alpha, colored, alpha, 0.0)


def draw_hud(frame: Any, fps: float, stages_ms: Dict[str, float], dropped: int = 0) -> Any:
    """Minimal HUD overlay with FPS, stage timings and dropped-frame count."""
    if cv2 is None:
        return frame

    render = frame.copy()
    y = 18
    cv2.putText(render, f"semseg | FPS: {fps:5.1f}", (8, y), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)
    y += 16

    for name, ms in list(stages_ms.items())[:4]:
        cv2.putText(render, f"{name}: {ms:5.1f} ms", (8, y), cv2.FONT_HERSHEY_SIMPLEX, 0.4, (220, 220, 220), 1)
        y += 14

    if dropped:
        cv2.putText(render, f"dropped: {dropped}", (8, y + 4), cv2.FONT_HERSHEY_SIMPLEX, 0.45, (255, 0, 0), 1)

    return render


def draw_legend(frame: Any, color_table: ColorTable, class_ids: Optional[Iterable[int]] = None) -> Any:
    """Color swatches with class names along the right edge (RGB frame)."""
    if cv2 is None:
        return frame
    render = frame.copy()
    ids = list(class_ids) if class_ids is not None else list(range(color_table.num_classes))
    x = render.shape[1] - 110
    y = 8
    for cid in ids:
        color = tuple(int(c) for c in color_table.lookup(cid))
        cv2.rectangle(render, (x, y), (x + 10, y + 10), color, -1)
        cv2.putText(render, color_table.name_of(cid), (x + 14, y + 9), cv2.FONT_HERSHEY_SIMPLEX, 0.35, (255, 255, 255), 1)
        y += 13
        if y > render.shape[0] - 12:
            break
    return render
