from __future__ import annotations

import abc

import torch


class BaseSegmenter(abc.ABC):
    num_classes: int
    device: torch.device

    def load(self) -> None:
        """Prepare the model. Stubs without a model have nothing to do."""

    @property
    def loaded(self) -> bool:
        return True

    @abc.abstractmethod
    def infer(self, tensor: torch.Tensor) -> torch.Tensor:
        """
        Input:
            tensor: float32 (1, 3, H, W), values in [0, 1]
        Output:
            (H, W) integer class ids in [0, num_classes), on `self.device`
        """
        raise NotImplementedError
