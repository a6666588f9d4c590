from typing import Callable

import torch

from src.perception.segmentation.base_segmenter import BaseSegmenter


class StubSegmenter(BaseSegmenter):
    """Deterministic engine: mask = fn(input tensor)."""

    def __init__(self, fn: Callable[[torch.Tensor], torch.Tensor], num_classes: int = 19):
        self.fn = fn
        self.num_classes = num_classes
        self.device = torch.device("cpu")
        self.calls = 0

    def infer(self, tensor: torch.Tensor) -> torch.Tensor:
        self.calls += 1
        return self.fn(tensor)


def constant_mask(class_id: int, height: int = 192, width: int = 640) -> Callable[[torch.Tensor], torch.Tensor]:
    def fn(tensor: torch.Tensor) -> torch.Tensor:
        return torch.full((height, width), class_id, dtype=torch.uint8)

    return fn


def red_channel_mask(tensor: torch.Tensor) -> torch.Tensor:
    """Class id = red value modulo 19; depends on every pixel of the input."""
    red = (tensor[0, 0] * 255.0).round().to(torch.int64)
    return (red % 19).to(torch.uint8)
