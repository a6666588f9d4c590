#!/usr/bin/env python3
"""
Export a DeepLabV3 (MobileNetV3) Cityscapes segmenter to TorchScript.

The saved module takes (1, 3, 192, 640) float32 in [0, 1] and returns
(1, 19, 192, 640) class scores, which is what the semseg stage loads.
"""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

import torch
import torchvision

HEIGHT = 192
WIDTH = 640
NUM_CLASSES = 19


class ScoresOnly(torch.nn.Module):
    """Unwraps torchvision's {"out": ...} dict so the artifact returns a plain tensor."""

    def __init__(self, model: torch.nn.Module):
        super().__init__()
        self.model = model

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.model(x)["out"]


def build(weights: Optional[Path], num_classes: int = NUM_CLASSES) -> torch.nn.Module:
    model = torchvision.models.segmentation.deeplabv3_mobilenet_v3_large(
        weights=None,
        weights_backbone=None,
        num_classes=num_classes,
        aux_loss=False,
    )
    if weights is not None:
        state = torch.load(str(weights), map_location="cpu")
        model.load_state_dict(state.get("state_dict", state) if isinstance(state, dict) else state)
    return ScoresOnly(model).eval()


def export(weights: Optional[Path], out_path: Path, num_classes: int = NUM_CLASSES) -> None:
    model = build(weights, num_classes)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    dummy = torch.rand(1, 3, HEIGHT, WIDTH)
    with torch.no_grad():
        traced = torch.jit.trace(model, dummy, strict=False)
        scores = traced(dummy)
    if tuple(scores.shape) != (1, num_classes, HEIGHT, WIDTH):
        raise RuntimeError(f"Unexpected output shape {tuple(scores.shape)}")

    traced.save(str(out_path))
    print(f"✅ Segmenter exported to {out_path}")


def main():
    parser = argparse.ArgumentParser(description="Export DeepLabV3 to TorchScript for the semseg stage")
    parser.add_argument("--weights", default=None, help="Optional state_dict trained on Cityscapes train ids")
    parser.add_argument("--out", default="models/semseg/semseg.pt", help="Output TorchScript path")
    parser.add_argument("--num-classes", type=int, default=NUM_CLASSES)
    args = parser.parse_args()

    export(Path(args.weights) if args.weights else None, Path(args.out), args.num_classes)


if __name__ == "__main__":
    main()
