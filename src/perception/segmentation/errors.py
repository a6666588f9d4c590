from __future__ import annotations


class SegmentationError(Exception):
    """Base class for every error raised by the segmentation stage."""


class FrameError(SegmentationError):
    """Aborts the current frame only; the stage stays usable."""


class FormatMismatch(FrameError):
    """Buffer dimensions or pixel format differ from the negotiated VideoFormat."""


class SizeMismatch(FrameError):
    """Source byte count differs from the destination plane's width x height x 3."""


class InferenceError(FrameError):
    """The model forward pass failed or returned an unexpected tensor."""


class ModelLoadError(SegmentationError):
    """The model artifact is missing or unreadable. Fatal at startup."""


class BufferContractViolation(SegmentationError):
    """The caller supplied buffers or slots that break the process() contract."""


class StageStateError(SegmentationError):
    """An operation was requested in a state that does not allow it."""
