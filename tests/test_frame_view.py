import warnings

import numpy as np
import pytest
import torch

from src.perception.segmentation.errors import BufferContractViolation, FormatMismatch, SizeMismatch
from src.video.buffer import Buffer
from src.video.frame_view import FrameView
from src.video.video_format import VideoFormat


def test_copy_deep_keeps_metadata_but_not_memory(make_buffer, random_frame):
    buf = make_buffer(random_frame, pts=1.5, offset=45)
    buf.meta["camera"] = "front"
    copy = buf.copy_deep()
    assert (copy.pts, copy.duration, copy.offset) == (buf.pts, buf.duration, buf.offset)
    assert copy.meta == {"camera": "front"}
    assert not np.shares_memory(copy.data, buf.data)
    copy.data[:] = 0
    assert np.array_equal(buf.to_array(), random_frame)


def test_readable_view_rejects_wrong_dimensions(video_format):
    buf = Buffer.from_array(np.zeros((192, 641, 3), dtype=np.uint8))
    with pytest.raises(FormatMismatch):
        FrameView.from_readable_buffer(buf, video_format)
    with pytest.raises(FormatMismatch):
        FrameView.from_writable_buffer(buf, video_format)


def test_view_rejects_short_storage(video_format):
    buf = Buffer(data=np.zeros(video_format.size - 1, dtype=np.uint8), width=640, height=192)
    with pytest.raises(FormatMismatch):
        FrameView.from_readable_buffer(buf, video_format)


def test_view_rejects_wrong_pixel_format(video_format):
    buf = Buffer(data=np.zeros(video_format.size, dtype=np.uint8), width=640, height=192, pixel_format="BGR")
    with pytest.raises(FormatMismatch):
        FrameView.from_readable_buffer(buf, video_format)


def test_readable_view_cannot_be_written(make_buffer, video_format):
    view = FrameView.from_readable_buffer(make_buffer(), video_format)
    assert not view.pixels().flags.writeable
    with pytest.raises(BufferContractViolation):
        view.write_rgb(bytes(view.nbytes))


def test_writable_view_needs_writable_storage(video_format):
    frame = np.zeros(video_format.shape, dtype=np.uint8)
    frame.setflags(write=False)
    buf = Buffer.from_array(frame)
    assert not buf.writable
    with pytest.raises(BufferContractViolation):
        FrameView.from_writable_buffer(buf, video_format)


def test_normalized_tensor_keeps_row_column_channel_order(make_buffer, video_format):
    frame = np.zeros(video_format.shape, dtype=np.uint8)
    frame[5, 7] = (10, 20, 30)
    frame[0, 639] = (255, 0, 0)
    frame[191, 0] = (0, 255, 0)
    tensor = FrameView.from_readable_buffer(make_buffer(frame), video_format).to_normalized_tensor("cpu")

    assert tuple(tensor.shape) == (3, 192, 640)
    assert tensor.dtype == torch.float32
    assert torch.allclose(tensor[:, 5, 7], torch.tensor([10, 20, 30]) / 255.0)
    assert torch.allclose(tensor[:, 0, 639], torch.tensor([1.0, 0.0, 0.0]))
    assert torch.allclose(tensor[:, 191, 0], torch.tensor([0.0, 1.0, 0.0]))
    assert float(tensor.sum()) == pytest.approx((10 + 20 + 30) / 255.0 + 2.0)


def test_normalized_tensor_range(make_buffer, random_frame, video_format):
    tensor = FrameView.from_readable_buffer(make_buffer(random_frame), video_format).to_normalized_tensor()
    assert float(tensor.min()) >= 0.0
    assert float(tensor.max()) <= 1.0
    expected = torch.from_numpy(random_frame).permute(2, 0, 1).float() / 255.0
    assert torch.equal(tensor, expected)


def test_write_rgb_replaces_plane(make_buffer, random_frame, video_format):
    buf = make_buffer()
    FrameView.from_writable_buffer(buf, video_format).write_rgb(random_frame.tobytes())
    assert np.array_equal(buf.to_array(), random_frame)


def test_write_rgb_accepts_tensors(make_buffer, video_format):
    buf = make_buffer()
    src = torch.full((192 * 640 * 3,), 7, dtype=torch.uint8)
    FrameView.from_writable_buffer(buf, video_format).write_rgb(src)
    assert (buf.data == 7).all()


@pytest.mark.parametrize("delta", [-1, 1, -3])
def test_write_rgb_rejects_wrong_length(make_buffer, video_format, delta):
    buf = make_buffer()
    view = FrameView.from_writable_buffer(buf, video_format)
    with pytest.raises(SizeMismatch):
        view.write_rgb(bytes(view.nbytes + delta))
    assert (buf.data == 0).all()


def test_padded_rows_are_never_touched():
    fmt = VideoFormat(width=5, height=2)
    buf = Buffer.allocate(fmt, pts=0.0)
    buf.data[:] = 9
    view = FrameView.from_writable_buffer(buf, fmt)
    view.write_rgb(np.full(30, 200, dtype=np.uint8))

    rows = buf.data.reshape(2, 16)
    assert (rows[:, :15] == 200).all()
    assert (rows[:, 15] == 9).all()
    assert view.pixels().shape == (2, 5, 3)


def test_normalized_tensor_from_read_only_view_does_not_warn(make_buffer, random_frame, video_format):
    view = FrameView.from_readable_buffer(make_buffer(random_frame), video_format)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        tensor = view.to_normalized_tensor()
    tensor[0, 0, 0] = 2.0
    assert np.array_equal(view.pixels(), random_frame)
