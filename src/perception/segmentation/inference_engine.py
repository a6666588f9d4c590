from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Optional

import torch

from src.perception.segmentation.base_segmenter import BaseSegmenter
from src.perception.segmentation.errors import InferenceError, ModelLoadError
from src.utils.logger import get_logger


def resolve_device(requested: Optional[str] = "auto", logger=None) -> torch.device:
    """
    Map a configured device name to an available torch device.

    "auto" picks CUDA, then MPS, then CPU. An explicitly requested accelerator
    that is not present falls back to CPU with a warning.
    """
    logger = logger or get_logger(__name__)
    name = (requested or "auto").lower()
    if name == "auto":
        if torch.cuda.is_available():
            return torch.device("cuda")
        if torch.backends.mps.is_available():
            return torch.device("mps")
        return torch.device("cpu")

    device = torch.device(name)
    if device.type == "cuda":
        index = device.index or 0
        if not torch.cuda.is_available() or index >= torch.cuda.device_count():
            logger.warning("CUDA device %s not available; falling back to CPU.", name)
            return torch.device("cpu")
    elif device.type == "mps" and not torch.backends.mps.is_available():
        logger.warning("MPS not available; falling back to CPU.")
        return torch.device("cpu")
    return device


def mask_dtype(num_classes: int) -> torch.dtype:
    """Smallest integer dtype able to hold class ids up to num_classes - 1."""
    if num_classes <= 256:
        return torch.uint8
    if num_classes <= 32768:
        return torch.int16
    return torch.int32


class InferenceEngine(BaseSegmenter):
    """
    Owns one segmentation model and turns normalized frames into class masks.

    The model is loaded at most once and every load/forward pass is serialized
    by an engine-owned lock: TorchScript modules are not guaranteed to be safe
    for concurrent calls from several threads.
    """

    def __init__(
        self,
        model_path: str | Path,
        num_classes: int = 19,
        device: Optional[str] = "auto",
        eager: bool = False,
        logger=None,
    ):
        self.model_path = Path(model_path)
        self.num_classes = int(num_classes)
        self.logger = logger or get_logger(__name__)
        self.device = resolve_device(device, self.logger)
        self.out_dtype = mask_dtype(self.num_classes)
        self.last_latency_ms = 0.0

        self._lock = threading.Lock()
        self._model: Optional[torch.nn.Module] = None
        self._load_error: Optional[ModelLoadError] = None

        if eager:
            self.load()

    @classmethod
    def from_module(
        cls,
        module: torch.nn.Module,
        num_classes: int = 19,
        device: Optional[str] = "cpu",
        logger=None,
    ) -> "InferenceEngine":
        """Wrap a model that is already built instead of loading one from disk."""
        engine = cls(model_path="<in-memory>", num_classes=num_classes, device=device, logger=logger)
        engine._model = module.to(engine.device).eval()
        return engine

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        with self._lock:
            self._load_locked()

    def _load_locked(self) -> None:
        if self._model is not None:
            return
        if self._load_error is not None:
            raise self._load_error

        if not self.model_path.is_file():
            self._load_error = ModelLoadError(f"Model artifact not found: {self.model_path}")
            raise self._load_error

        start = time.perf_counter()
        try:
            model = torch.jit.load(str(self.model_path), map_location=self.device)
        except (RuntimeError, ValueError, OSError) as exc:
            self._load_error = ModelLoadError(f"Could not load model {self.model_path}: {exc}")
            raise self._load_error from exc
        model.eval()
        self._model = model
        self.logger.info(
            "Loaded segmentation model %s on %s (%d classes) in %.1f ms",
            self.model_path,
            self.device,
            self.num_classes,
            (time.perf_counter() - start) * 1000.0,
        )

    @torch.no_grad()
    def infer(self, tensor: torch.Tensor) -> torch.Tensor:
        """
        Args:
            tensor: float32 (1, 3, H, W) in [0, 1]

        Returns:
            (H, W) class-id mask on the engine device, ties resolved to the
            lowest class id.
        """
        if tensor.dim() != 4 or tensor.shape[0] != 1 or tensor.shape[1] != 3:
            raise InferenceError(f"Expected input of shape (1, 3, H, W), got {tuple(tensor.shape)}")
        height, width = int(tensor.shape[2]), int(tensor.shape[3])

        with self._lock:
            self._load_locked()
            start = time.perf_counter()
            try:
                output = self._model(tensor.to(self.device))
            except Exception as exc:
                raise InferenceError(f"Model forward failed: {exc}") from exc
            scores = self._scores(output)
            if scores.shape != (self.num_classes, height, width):
                raise InferenceError(
                    f"Expected scores of shape ({self.num_classes}, {height}, {width}), got {tuple(scores.shape)}"
                )
            # argmax returns the first maximal index, i.e. the lowest class id on ties
            mask = scores.argmax(dim=0).to(self.out_dtype)
            if self.device.type == "cuda":
                torch.cuda.synchronize(self.device)
            self.last_latency_ms = (time.perf_counter() - start) * 1000.0
        return mask

    @staticmethod
    def _scores(output: Any) -> torch.Tensor:
        if isinstance(output, dict):
            output = output.get("out")
        elif isinstance(output, (tuple, list)):
            output = output[0] if output else None
        if not isinstance(output, torch.Tensor):
            raise InferenceError(f"Model returned {type(output).__name__}, expected a scores tensor")
        if output.dim() == 4:
            if output.shape[0] != 1:
                raise InferenceError(f"Expected a batch of one, got {tuple(output.shape)}")
            output = output[0]
        if output.dim() != 3:
            raise InferenceError(f"Expected (C, H, W) scores, got {tuple(output.shape)}")
        return output

    def __repr__(self) -> str:
        return f"InferenceEngine(model={self.model_path}, device={self.device}, loaded={self.loaded})"
