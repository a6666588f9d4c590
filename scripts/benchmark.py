#!/usr/bin/env python3
"""
Per-frame latency of the semseg stage on random 640x192 frames.
"""
from __future__ import annotations

import argparse
import time
from statistics import mean, median

import numpy as np

from src.runtime.segmentation_stage import SegmentationStage
from src.utils.config import load_config
from src.video.buffer import Buffer

WARMUP = 5


def main():
    parser = argparse.ArgumentParser(description="Benchmark the semseg stage")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--model", default=None, help="Override segmentation.model_path")
    parser.add_argument("--device", default=None, help="Override segmentation.device")
    parser.add_argument("-n", type=int, default=50, help="Timed frames")
    args = parser.parse_args()

    cfg = load_config(args.config)
    if args.model:
        cfg["segmentation"]["model_path"] = args.model
    if args.device:
        cfg["segmentation"]["device"] = args.device

    stage = SegmentationStage.from_config(cfg)
    stage.start()
    fmt = stage.video_format

    rng = np.random.default_rng(0)
    outbufs = [None]
    totals = []
    stages = {}
    for i in range(WARMUP + args.n):
        frame = rng.integers(0, 256, size=fmt.shape, dtype=np.uint8)
        buf = Buffer.from_array(frame, pts=i / 30.0, offset=i)
        t0 = time.perf_counter()
        stage.process([buf], outbufs)
        if i < WARMUP:
            continue
        totals.append((time.perf_counter() - t0) * 1000.0)
        for name, ms in stage.last_timer.stages_ms.items():
            stages.setdefault(name, []).append(ms)

    print(f"\n=== semseg benchmark ({stage.engine.device}) ===")
    print(f"Frames: {args.n}")
    print(f"Latency ms  avg={mean(totals):.2f}  med={median(totals):.2f}  max={max(totals):.2f}")
    for name, values in stages.items():
        print(f"  {name:10s} {mean(values):7.2f} ms")
    print(f"Throughput: {1000.0 / mean(totals):.1f} FPS")


if __name__ == "__main__":
    main()
