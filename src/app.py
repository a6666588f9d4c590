from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import cv2
except ImportError:  # pragma: no cover
    cv2 = None

from rich.console import Console
from tqdm import tqdm

from src.inputs.video_input import VideoInput
from src.perception.segmentation.errors import FrameError, ModelLoadError
from src.runtime.segmentation_stage import SegmentationStage
from src.utils.config import get, load_config
from src.utils.logger import setup_logger
from src.utils.timing import FPSMeter
from src.utils.types import FrameRecord
from src.video.buffer import Buffer
from src.visualization.overlay import blend_segmentation, draw_hud, draw_legend


def make_run_dir(base_dir: str | Path) -> Path:
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = Path(base_dir) / f"run_{ts}"
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Semantic segmentation stage - colorize a video with a TorchScript model")
    parser.add_argument("--config", default=None, help="Path to YAML config (defaults built in)")
    parser.add_argument("--input", required=True, help="Path to input video")
    parser.add_argument("--model", default=None, help="Override segmentation.model_path")
    parser.add_argument("--device", default=None, help="Override segmentation.device (auto/cpu/cuda/mps)")
    return parser


def apply_overrides(cfg: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    seg = cfg.setdefault("segmentation", {})
    if args.model:
        seg["model_path"] = args.model
    if args.device:
        seg["device"] = args.device
    return cfg


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = apply_overrides(load_config(args.config), args)

    run_dir = make_run_dir(get(cfg, "runtime.output_dir", "results"))
    logger = setup_logger(log_dir=run_dir, level=get(cfg, "runtime.log_level", "INFO"))

    console = Console()
    console.print(f"[bold]semseg[/bold] run dir: {run_dir}")

    try:
        stage = SegmentationStage.from_config(cfg, logger=logger)
        stage.start()
    except ModelLoadError as exc:
        console.print(f"[bold red]Model load failed:[/bold red] {exc}")
        logger.error("Aborting run: %s", exc)
        return 1

    video_format = stage.video_format
    vin = VideoInput(args.input)
    logger.info("Input video: %s", args.input)
    logger.info("Stage caps: %s", video_format.to_caps())

    save_video = bool(get(cfg, "runtime.save_video", True))
    save_metrics = bool(get(cfg, "runtime.save_metrics", True))
    overlay_enabled = bool(get(cfg, "runtime.overlay.enabled", False))
    overlay_alpha = float(get(cfg, "runtime.overlay.alpha", 0.5))

    out_video_path = run_dir / "segmentation.mp4"
    writer = None
    if save_video:
        if cv2 is None:
            raise ImportError("opencv-python is required to save video output")
        fourcc = cv2.VideoWriter_fourcc(*"mp4v")
        writer = cv2.VideoWriter(str(out_video_path), fourcc, vin.fps, (video_format.width, video_format.height))
        if not writer.isOpened():
            raise RuntimeError("Could not open VideoWriter (mp4v). Try a different codec/container.")

    fps_meter = FPSMeter()
    records: List[FrameRecord] = []
    total = vin.meta.frame_count if vin.meta and vin.meta.frame_count > 0 else None
    outbufs: List[Optional[Buffer]] = [None]

    for frame_id, buf in tqdm(vin.buffers(video_format), total=total, desc="Segmenting"):
        try:
            stage.process([buf], outbufs)
        except FrameError as exc:
            records.append(FrameRecord(frame_id=frame_id, pts=buf.pts, fps=fps_meter.fps, dropped=True, error=str(exc)))
            continue

        fps = fps_meter.tick()
        stages_ms = dict(stage.last_timer.stages_ms) if stage.last_timer else {}
        records.append(FrameRecord(frame_id=frame_id, pts=buf.pts, fps=fps, stages_ms=stages_ms))

        if writer is not None:
            render = outbufs[0].to_array()
            if overlay_enabled:
                render = blend_segmentation(buf.to_array(), render, overlay_alpha)
                render = draw_hud(render, fps, stages_ms, dropped=stage.frames_dropped)
                render = draw_legend(render, stage.color_table)
            writer.write(cv2.cvtColor(render, cv2.COLOR_RGB2BGR))

    vin.stop()
    if writer is not None:
        writer.release()
        logger.info("Saved video: %s", out_video_path)

    if save_metrics:
        metrics = {
            "project": cfg.get("project", {}),
            "input": {"path": args.input, "meta": vin.meta.__dict__ if vin.meta else {}},
            "stage": {
                "caps": video_format.to_caps(),
                "device": str(stage.engine.device),
                "frames_processed": stage.frames_processed,
                "frames_dropped": stage.frames_dropped,
            },
            "frames": [r.__dict__ for r in records],
        }
        metrics_path = run_dir / "metrics.json"
        metrics_path.write_text(json.dumps(metrics, indent=2), encoding="utf-8")
        logger.info("Saved metrics: %s", metrics_path)

    console.print(
        f"[bold]Done.[/bold] processed={stage.frames_processed} dropped={stage.frames_dropped}"
    )
    logger.info("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
