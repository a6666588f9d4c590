#!/usr/bin/env python3
import json
import sys
from pathlib import Path
from statistics import mean, median


def safe_mean(xs):
    xs = [x for x in xs if x is not None]
    return mean(xs) if xs else None


def pct(n, d):
    return (100.0 * n / d) if d else 0.0


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/summarize_run.py results/run_YYYYMMDD_HHMMSS")
        sys.exit(1)

    run_dir = Path(sys.argv[1])
    metrics_path = run_dir / "metrics.json"
    if not metrics_path.exists():
        raise FileNotFoundError(f"Missing: {metrics_path}")

    m = json.loads(metrics_path.read_text())
    frames = m.get("frames", [])
    n = len(frames)
    if n == 0:
        print("No frames found in metrics.json")
        return

    ok = [f for f in frames if not f.get("dropped")]
    dropped = [f for f in frames if f.get("dropped")]
    fps_vals = [f.get("fps") for f in ok if f.get("fps")]

    print("\n================ SEMSEG RUN SUMMARY ================")
    print(f"Run dir: {run_dir}")
    stage = m.get("stage", {})
    print(f"Caps:    {stage.get('caps', '(missing)')}")
    print(f"Device:  {stage.get('device', '(missing)')}")
    print(f"Frames:  {n}  processed={len(ok)}  dropped={len(dropped)} ({pct(len(dropped), n):.1f}%)")
    if fps_vals:
        print(f"FPS  avg={mean(fps_vals):.2f}  med={median(fps_vals):.2f}  min={min(fps_vals):.2f}  max={max(fps_vals):.2f}")
    else:
        print("FPS: (missing)")

    print("\nLatency (ms) (avg):")
    for name in ("to_tensor", "inference", "colorize", "write"):
        sm = safe_mean([f.get("stages_ms", {}).get(name) for f in ok])
        print(f"  {name + ':':14s} {sm:.2f}" if sm is not None else f"  {name + ':':14s} (missing)")

    if dropped:
        print("\nDropped frames:")
        for f in dropped[:10]:
            print(f"  #{f.get('frame_id')} pts={f.get('pts')}: {f.get('error')}")
        if len(dropped) > 10:
            print(f"  ... {len(dropped) - 10} more")
    print("====================================================\n")


if __name__ == "__main__":
    main()
