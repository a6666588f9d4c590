from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, List, MutableSequence, Optional, Sequence, Tuple

import torch

from src.perception.segmentation.base_segmenter import BaseSegmenter
from src.perception.segmentation.color_table import ColorTable
from src.perception.segmentation.errors import (
    BufferContractViolation,
    FrameError,
    ModelLoadError,
    StageStateError,
)
from src.perception.segmentation.inference_engine import InferenceEngine
from src.utils.config import get
from src.utils.logger import get_logger
from src.utils.timing import StageTimer
from src.video.buffer import Buffer
from src.video.frame_view import FrameView
from src.video.video_format import PadCaps, VideoFormat


class StageState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    CONFIGURED = "CONFIGURED"
    READY = "READY"


class SegmentationStage:
    """
    Inline pipeline stage: RGB frame in, class-colored frame out.

    Buffers past index 0 are forwarded untouched. The video format, color
    table and engine are owned by the stage and fixed at configure(); only the
    engine's model is shared mutable state, and the engine locks it itself.
    """

    NAME = "semseg"
    INPUT_PAD = "rgb"
    OUTPUT_PAD = "depth"

    def __init__(
        self,
        engine: Optional[BaseSegmenter] = None,
        color_table: Optional[ColorTable] = None,
        video_format: Optional[VideoFormat] = None,
        strict_slots: bool = True,
        logger=None,
    ):
        self.logger = logger or get_logger(__name__)
        self.strict_slots = strict_slots
        self.state = StageState.UNINITIALIZED
        self.engine = engine
        self.color_table = color_table
        self.video_format = video_format
        self.frames_processed = 0
        self.frames_dropped = 0
        self.last_timer: Optional[StageTimer] = None
        self._fatal: Optional[ModelLoadError] = None

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], engine: Optional[BaseSegmenter] = None, logger=None) -> "SegmentationStage":
        seg_cfg = cfg.get("segmentation", {}) or {}
        video_format = VideoFormat.from_config(cfg.get("video", {}))
        color_table = ColorTable.cityscapes(overrides=seg_cfg.get("colors"))
        num_classes = int(seg_cfg.get("num_classes", color_table.num_classes))
        if num_classes != color_table.num_classes:
            color_table = ColorTable.from_mapping(seg_cfg.get("colors") or {}, num_classes=num_classes)
        if engine is None:
            engine = InferenceEngine(
                model_path=get(cfg, "segmentation.model_path", "models/semseg/semseg.pt"),
                num_classes=num_classes,
                device=seg_cfg.get("device", "auto"),
                logger=logger,
            )
        stage = cls(
            engine=engine,
            color_table=color_table,
            video_format=video_format,
            strict_slots=bool(seg_cfg.get("strict_slots", True)),
            logger=logger,
        )
        stage.configure(eager_load=bool(seg_cfg.get("eager_load", False)))
        return stage

    def configure(self, eager_load: bool = False) -> None:
        if self.state is not StageState.UNINITIALIZED:
            raise StageStateError(f"{self.NAME} is already {self.state.value}")
        if self.engine is None:
            raise StageStateError("No inference engine supplied")
        if self.video_format is None:
            self.video_format = VideoFormat()
        if self.color_table is None:
            self.color_table = ColorTable.cityscapes()
        if self.color_table.num_classes != self.engine.num_classes:
            raise StageStateError(
                f"Color table has {self.color_table.num_classes} classes, model has {self.engine.num_classes}"
            )
        self.state = StageState.CONFIGURED
        self.logger.info("[%s] configured: %s", self.NAME, self.video_format.to_caps())
        if eager_load:
            self.start()

    def start(self) -> None:
        """Load the model and enter READY. A load failure is final."""
        if self.state is StageState.UNINITIALIZED:
            raise StageStateError(f"{self.NAME} must be configured before it can start")
        if self.state is StageState.READY:
            return
        if self._fatal is not None:
            raise self._fatal
        try:
            self.engine.load()
        except ModelLoadError as exc:
            self._fatal = exc
            self.logger.error("[%s] model load failed, stage cannot start: %s", self.NAME, exc)
            raise
        self.state = StageState.READY
        self.logger.info("[%s] ready on %s", self.NAME, self.engine.device)

    def caps_def(self) -> Tuple[List[PadCaps], List[PadCaps]]:
        video_format = self.video_format or VideoFormat()
        return [PadCaps(self.INPUT_PAD, video_format)], [PadCaps(self.OUTPUT_PAD, video_format)]

    def process(self, inbufs: Sequence[Buffer], outbufs: MutableSequence[Optional[Buffer]]) -> None:
        """
        Segment inbufs[0] into outbufs[0]; forward inbufs[i] to outbufs[i] for i >= 1.

        On a per-frame error outbufs[0] is left as it was and the error is
        re-raised; the stage stays READY for the next frame.
        """
        if self.state is StageState.UNINITIALIZED:
            raise StageStateError(f"{self.NAME} received a frame before configure()")
        if not inbufs:
            raise BufferContractViolation("process() needs at least one input buffer")
        if len(outbufs) < len(inbufs):
            if self.strict_slots:
                raise BufferContractViolation(f"{len(inbufs)} input buffers but only {len(outbufs)} output slots")
            self.logger.debug("[%s] %d inputs without an output slot skipped", self.NAME, len(inbufs) - len(outbufs))
        if not outbufs:
            raise BufferContractViolation("process() needs an output slot for the segmentation frame")

        if self.state is not StageState.READY:
            self.start()

        for i in range(1, min(len(inbufs), len(outbufs))):
            outbufs[i] = inbufs[i]

        src = inbufs[0]
        try:
            colored = self._segment(src)
        except FrameError as exc:
            self.frames_dropped += 1
            self.logger.warning("[%s] dropping frame pts=%s offset=%s: %s", self.NAME, src.pts, src.offset, exc)
            raise

        outbufs[0] = colored
        self.frames_processed += 1

    def _segment(self, src: Buffer) -> Buffer:
        timer = StageTimer()
        device = self.engine.device

        in_view = FrameView.from_readable_buffer(src, self.video_format)
        out_buf = src.copy_deep()
        out_view = FrameView.from_writable_buffer(out_buf, self.video_format)

        t = time.perf_counter()
        tensor = in_view.to_normalized_tensor(device).unsqueeze(0)
        t = timer.mark("to_tensor", t)

        mask = self.engine.infer(tensor)
        t = timer.mark("inference", t)

        # (H, W) ids -> (H*W*3,) interleaved RGB, gathered where the mask lives
        colors = self.color_table.gather(mask)
        if isinstance(colors, torch.Tensor):
            colors = colors.reshape(-1).cpu()
        t = timer.mark("colorize", t)

        out_view.write_rgb(colors)
        timer.mark("write", t)

        self.last_timer = timer
        self.logger.debug("[%s] frame pts=%s segmented in %.2f ms", self.NAME, src.pts, timer.total_ms)
        return out_buf

    def __repr__(self) -> str:
        return f"SegmentationStage(state={self.state.value}, format={self.video_format}, engine={self.engine!r})"
