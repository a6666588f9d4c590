#!/usr/bin/env python3
"""
Run the semseg stage on the first frame of a video and save both images.
"""
from __future__ import annotations

import argparse
from pathlib import Path

import cv2

from src.inputs.video_input import VideoInput
from src.runtime.segmentation_stage import SegmentationStage
from src.utils.config import load_config


def main():
    parser = argparse.ArgumentParser(description="Segment a single frame")
    parser.add_argument("--input", default="data/samples/test_drive.mp4", help="Path to input video")
    parser.add_argument("--model", default=None, help="Override segmentation.model_path")
    parser.add_argument("--out", default="results/segment_frame", help="Output directory")
    args = parser.parse_args()

    cfg = load_config()
    if args.model:
        cfg["segmentation"]["model_path"] = args.model
    stage = SegmentationStage.from_config(cfg)

    vin = VideoInput(args.input)
    first = next(vin.buffers(stage.video_format), None)
    vin.stop()
    if first is None:
        raise RuntimeError(f"Failed to read first frame from {args.input}")
    _, buf = first

    outbufs = [None]
    stage.process([buf], outbufs)

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(out_dir / "input.png"), cv2.cvtColor(buf.to_array(), cv2.COLOR_RGB2BGR))
    cv2.imwrite(str(out_dir / "segmentation.png"), cv2.cvtColor(outbufs[0].to_array(), cv2.COLOR_RGB2BGR))

    print("✅ Segmentation OK")
    print("Caps:", stage.video_format.to_caps())
    print("Device:", stage.engine.device)
    for name, ms in stage.last_timer.stages_ms.items():
        print(f"{name} (ms):", round(ms, 2))
    print("Saved to:", out_dir)


if __name__ == "__main__":
    main()
