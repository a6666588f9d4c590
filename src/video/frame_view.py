from __future__ import annotations

from typing import Union

import numpy as np
import torch

from src.perception.segmentation.errors import BufferContractViolation, FormatMismatch, SizeMismatch
from src.video.buffer import Buffer
from src.video.video_format import VideoFormat

PixelSource = Union[bytes, bytearray, memoryview, np.ndarray, torch.Tensor]


class FrameView:
    """
    Bounds-checked view over plane 0 of a Buffer.

    Geometry is validated once when the view is created; afterwards only the
    width x height x channels pixels are reachable, never the row padding or
    anything past the last row. A view does not own memory and must not
    outlive the buffer it was made from.
    """

    def __init__(self, buffer: Buffer, video_format: VideoFormat, writable: bool):
        if not video_format.accepts(buffer.width, buffer.height, buffer.pixel_format):
            raise FormatMismatch(
                f"Buffer is {buffer.width}x{buffer.height} {buffer.pixel_format}, "
                f"expected {video_format.width}x{video_format.height} {video_format.pixel_format}"
            )
        stride = int(buffer.stride)
        if stride < video_format.row_bytes:
            raise FormatMismatch(f"Stride {stride} is shorter than a row ({video_format.row_bytes} bytes)")
        if buffer.size < stride * video_format.height:
            raise FormatMismatch(
                f"Buffer holds {buffer.size} bytes, plane needs {stride * video_format.height}"
            )
        if writable and not buffer.writable:
            raise BufferContractViolation("Cannot map a read-only buffer for writing")

        self.format = video_format
        self.width = video_format.width
        self.height = video_format.height
        self.channels = video_format.channels
        self.stride = stride
        self.writable = writable

        rows = buffer.data[: stride * self.height].reshape(self.height, stride)
        plane = rows[:, : video_format.row_bytes].reshape(self.height, self.width, self.channels)
        if not writable:
            plane = plane.view()
            plane.setflags(write=False)
        self._plane = plane

    @classmethod
    def from_readable_buffer(cls, buffer: Buffer, video_format: VideoFormat) -> "FrameView":
        return cls(buffer, video_format, writable=False)

    @classmethod
    def from_writable_buffer(cls, buffer: Buffer, video_format: VideoFormat) -> "FrameView":
        return cls(buffer, video_format, writable=True)

    @property
    def nbytes(self) -> int:
        return self.width * self.height * self.channels

    def pixels(self) -> np.ndarray:
        """(H, W, C) uint8 view, no copy."""
        return self._plane

    def to_normalized_tensor(self, device: Union[str, torch.device] = "cpu") -> torch.Tensor:
        """
        Channel-first float32 tensor (C, H, W) scaled to [0, 1].

        Pixel (y, x) channel c of the frame lands at [c, y, x]: rows stay rows,
        columns stay columns, top-left is [:, 0, 0].
        """
        hwc = torch.from_numpy(self._plane.copy())
        chw = hwc.to(device).permute(2, 0, 1)
        return chw.to(torch.float32).div_(255.0).contiguous()

    def write_rgb(self, pixels: PixelSource) -> None:
        """Copy exactly width x height x channels bytes into the plane."""
        if not self.writable:
            raise BufferContractViolation("write_rgb on a read-only FrameView")
        src = _as_bytes_array(pixels)
        if src.size != self.nbytes:
            raise SizeMismatch(f"Got {src.size} bytes, plane needs exactly {self.nbytes}")
        self._plane[...] = src.reshape(self.height, self.width, self.channels)

    def __repr__(self) -> str:
        mode = "rw" if self.writable else "r"
        return f"FrameView({self.width}x{self.height}x{self.channels}, stride={self.stride}, {mode})"


def _as_bytes_array(pixels: PixelSource) -> np.ndarray:
    if isinstance(pixels, torch.Tensor):
        if pixels.dtype != torch.uint8:
            raise SizeMismatch(f"Expected uint8 pixels, got {pixels.dtype}")
        return pixels.detach().cpu().contiguous().numpy().reshape(-1)
    if isinstance(pixels, np.ndarray):
        if pixels.dtype != np.uint8:
            raise SizeMismatch(f"Expected uint8 pixels, got {pixels.dtype}")
        return pixels.reshape(-1)
    return np.frombuffer(pixels, dtype=np.uint8)
