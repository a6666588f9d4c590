from __future__ import annotations

import threading
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import torch

RGB = Tuple[int, int, int]

DEFAULT_COLOR: RGB = (30, 15, 60)

# Cityscapes train ids (19 evaluated classes)
CITYSCAPES_CLASSES: Tuple[str, ...] = (
    "road",
    "sidewalk",
    "building",
    "wall",
    "fence",
    "pole",
    "traffic light",
    "traffic sign",
    "vegetation",
    "terrain",
    "sky",
    "person",
    "rider",
    "car",
    "truck",
    "bus",
    "train",
    "motorcycle",
    "bicycle",
)

# Only the classes worth telling apart on screen get their own color;
# everything else (wall .. sky) falls back to DEFAULT_COLOR.
CITYSCAPES_COLORS: Dict[int, RGB] = {
    0: (128, 64, 128),  # road
    1: (244, 35, 232),  # sidewalk
    2: (70, 70, 70),  # building
    11: (220, 20, 60),  # person
    12: (255, 0, 0),  # rider
    13: (0, 0, 142),  # car
    14: (0, 0, 70),  # truck
    15: (0, 60, 100),  # bus
    16: (0, 80, 100),  # train
    17: (0, 0, 230),  # motorcycle
    18: (119, 11, 32),  # bicycle
}


def _check_color(color: Sequence[int]) -> RGB:
    if len(color) != 3:
        raise ValueError(f"Expected an RGB triplet, got {color!r}")
    out = tuple(int(c) for c in color)
    if any(c < 0 or c > 255 for c in out):
        raise ValueError(f"RGB components must be in [0, 255], got {color!r}")
    return out  # type: ignore[return-value]


class ColorTable:
    """
    Fixed class id -> RGB mapping used to paint a class mask.

    The palette is kept as an (N + 1, 3) uint8 array whose last row is the
    default color, so a whole mask can be colored with one gather: ids outside
    [0, N) are redirected to row N instead of being branched on per pixel.
    """

    def __init__(
        self,
        colors: Sequence[Sequence[int]],
        default: Sequence[int] = DEFAULT_COLOR,
        names: Optional[Sequence[str]] = None,
    ):
        if not colors:
            raise ValueError("ColorTable needs at least one class")
        if names is not None and len(names) != len(colors):
            raise ValueError(f"Got {len(names)} names for {len(colors)} colors")

        self._colors: Tuple[RGB, ...] = tuple(_check_color(c) for c in colors)
        self._default: RGB = _check_color(default)
        self._names: Tuple[str, ...] = tuple(names) if names is not None else tuple(str(i) for i in range(len(colors)))

        palette = np.array(self._colors + (self._default,), dtype=np.uint8)
        palette.setflags(write=False)
        self._palette = palette
        self._tensors: Dict[torch.device, torch.Tensor] = {}
        self._tensor_lock = threading.Lock()

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[int, Sequence[int]],
        num_classes: int,
        default: Sequence[int] = DEFAULT_COLOR,
        names: Optional[Sequence[str]] = None,
    ) -> "ColorTable":
        colors = [default] * num_classes
        for class_id, color in mapping.items():
            class_id = int(class_id)
            if not 0 <= class_id < num_classes:
                raise ValueError(f"Class id {class_id} outside [0, {num_classes})")
            colors[class_id] = color
        return cls(colors, default=default, names=names)

    @classmethod
    def cityscapes(cls, overrides: Optional[Mapping[int, Sequence[int]]] = None) -> "ColorTable":
        mapping = dict(CITYSCAPES_COLORS)
        if overrides:
            mapping.update({int(k): v for k, v in overrides.items()})
        return cls.from_mapping(mapping, num_classes=len(CITYSCAPES_CLASSES), names=CITYSCAPES_CLASSES)

    @property
    def num_classes(self) -> int:
        return len(self._colors)

    @property
    def default(self) -> RGB:
        return self._default

    def __len__(self) -> int:
        return len(self._colors)

    def __repr__(self) -> str:
        return f"ColorTable(num_classes={self.num_classes}, default={self._default})"

    def lookup(self, class_id: int) -> RGB:
        class_id = int(class_id)
        if 0 <= class_id < len(self._colors):
            return self._colors[class_id]
        return self._default

    def name_of(self, class_id: int) -> str:
        class_id = int(class_id)
        if 0 <= class_id < len(self._names):
            return self._names[class_id]
        return "unlabeled"

    def as_array(self) -> np.ndarray:
        """Read-only (N, 3) uint8 palette, default row excluded."""
        return self._palette[:-1]

    def as_tensor(self, device: Union[str, torch.device] = "cpu") -> torch.Tensor:
        """(N + 1, 3) uint8 palette on `device`; the last row is the default color."""
        device = torch.device(device)
        with self._tensor_lock:
            tensor = self._tensors.get(device)
            if tensor is None:
                tensor = torch.from_numpy(self._palette.copy()).to(device)
                self._tensors[device] = tensor
        return tensor

    def gather(self, mask: Union[np.ndarray, torch.Tensor]) -> Union[np.ndarray, torch.Tensor]:
        """
        Color a whole (H, W) class mask in one batched lookup.

        Returns (H, W, 3) uint8 in row-major, interleaved RGB order, of the same
        kind as the input (numpy in, numpy out; torch in, torch out on the
        mask's device).
        """
        n = len(self._colors)
        if isinstance(mask, torch.Tensor):
            ids = mask.reshape(-1).to(torch.int64)
            ids = torch.where((ids >= 0) & (ids < n), ids, torch.full_like(ids, n))
            colors = self.as_tensor(mask.device).index_select(0, ids)
            return colors.reshape(*mask.shape, 3)

        mask = np.asarray(mask)
        ids = mask.reshape(-1).astype(np.int64)
        ids = np.where((ids >= 0) & (ids < n), ids, n)
        return self._palette.take(ids, axis=0).reshape(*mask.shape, 3)
