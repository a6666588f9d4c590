import threading
import time

import pytest
import torch

from src.perception.segmentation import inference_engine
from src.perception.segmentation.errors import InferenceError, ModelLoadError
from src.perception.segmentation.inference_engine import InferenceEngine, mask_dtype, resolve_device


class FixedClass(torch.nn.Module):
    def __init__(self, class_id: int, num_classes: int = 19):
        super().__init__()
        self.class_id = class_id
        self.num_classes = num_classes

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        scores = torch.zeros([x.shape[0], self.num_classes, x.shape[2], x.shape[3]])
        scores[:, self.class_id] = 1.0
        return scores


class RedChannelClass(torch.nn.Module):
    """One-hot scores from the red value, with a pause to force lock contention."""

    def __init__(self, num_classes: int = 19, pause_s: float = 0.0):
        super().__init__()
        self.num_classes = num_classes
        self.pause_s = pause_s
        self.active = 0
        self.max_active = 0

    def forward(self, x):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        time.sleep(self.pause_s)
        ids = (x[:, 0] * 255.0).round().long().clamp(0, self.num_classes - 1)
        scores = torch.nn.functional.one_hot(ids, self.num_classes).permute(0, 3, 1, 2).float()
        self.active -= 1
        return {"out": scores}


def frame_tensor(value: int, height: int = 8, width: int = 16) -> torch.Tensor:
    return torch.full((1, 3, height, width), value / 255.0)


def test_missing_artifact_raises_model_load_error(tmp_path):
    engine = InferenceEngine(tmp_path / "missing.pt", device="cpu")
    with pytest.raises(ModelLoadError):
        engine.load()
    assert not engine.loaded


def test_missing_artifact_fails_eagerly(tmp_path):
    with pytest.raises(ModelLoadError):
        InferenceEngine(tmp_path / "missing.pt", device="cpu", eager=True)


def test_corrupt_artifact_is_not_retried(tmp_path):
    path = tmp_path / "semseg.pt"
    path.write_bytes(b"definitely not a torchscript archive")
    engine = InferenceEngine(path, device="cpu")
    with pytest.raises(ModelLoadError) as first:
        engine.load()
    with pytest.raises(ModelLoadError) as second:
        engine.infer(frame_tensor(0))
    assert first.value is second.value


def test_torchscript_artifact_is_loaded_lazily_once(tmp_path):
    path = tmp_path / "semseg.pt"
    torch.jit.script(FixedClass(13)).save(str(path))
    engine = InferenceEngine(path, device="cpu")
    assert not engine.loaded

    mask = engine.infer(frame_tensor(0))
    assert engine.loaded
    model = engine._model
    engine.load()
    assert engine._model is model
    assert mask.dtype == torch.uint8
    assert tuple(mask.shape) == (8, 16)
    assert (mask == 13).all()
    assert engine.last_latency_ms >= 0.0


def test_ties_resolve_to_lowest_class_id():
    class Flat(torch.nn.Module):
        def forward(self, x):
            return torch.zeros(1, 19, x.shape[2], x.shape[3])

    engine = InferenceEngine.from_module(Flat())
    assert (engine.infer(frame_tensor(0)) == 0).all()


def test_accepts_dict_tuple_and_unbatched_outputs():
    class Variants(torch.nn.Module):
        def __init__(self, kind):
            super().__init__()
            self.kind = kind

        def forward(self, x):
            scores = torch.zeros(1, 19, x.shape[2], x.shape[3])
            scores[:, 4] = 1.0
            if self.kind == "dict":
                return {"out": scores}
            if self.kind == "tuple":
                return scores, None
            return scores[0]

    for kind in ("dict", "tuple", "unbatched"):
        mask = InferenceEngine.from_module(Variants(kind)).infer(frame_tensor(0))
        assert (mask == 4).all(), kind


@pytest.mark.parametrize("shape", [(3, 8, 16), (2, 3, 8, 16), (1, 4, 8, 16)])
def test_rejects_unexpected_input_shapes(shape):
    engine = InferenceEngine.from_module(FixedClass(0))
    with pytest.raises(InferenceError):
        engine.infer(torch.zeros(shape))


def test_rejects_wrong_number_of_classes():
    engine = InferenceEngine.from_module(FixedClass(0, num_classes=21), num_classes=19)
    with pytest.raises(InferenceError):
        engine.infer(frame_tensor(0))


def test_forward_failure_is_an_inference_error_and_engine_survives():
    class Flaky(torch.nn.Module):
        def __init__(self):
            super().__init__()
            self.fail = True

        def forward(self, x):
            if self.fail:
                raise RuntimeError("device fault")
            return torch.zeros(1, 19, x.shape[2], x.shape[3])

    module = Flaky()
    engine = InferenceEngine.from_module(module)
    with pytest.raises(InferenceError):
        engine.infer(frame_tensor(0))
    module.fail = False
    assert (engine.infer(frame_tensor(0)) == 0).all()


def test_concurrent_infer_calls_are_serialized_and_isolated():
    module = RedChannelClass(pause_s=0.01)
    engine = InferenceEngine.from_module(module)
    results = {}
    errors = []

    def worker(value):
        try:
            results[value] = engine.infer(frame_tensor(value))
        except Exception as exc:  # pragma: no cover - surfaced by the assert below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(v,)) for v in range(19)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert module.max_active == 1
    assert sorted(results) == list(range(19))
    for value, mask in results.items():
        assert (mask == value).all()


def test_requested_accelerator_falls_back_to_cpu(monkeypatch):
    monkeypatch.setattr(inference_engine.torch.cuda, "is_available", lambda: False)
    assert resolve_device("cuda:1") == torch.device("cpu")
    assert resolve_device("cpu") == torch.device("cpu")


def test_auto_device_prefers_cpu_without_accelerators(monkeypatch):
    monkeypatch.setattr(inference_engine.torch.cuda, "is_available", lambda: False)
    monkeypatch.setattr(inference_engine.torch.backends.mps, "is_available", lambda: False)
    assert resolve_device("auto") == torch.device("cpu")


def test_mask_dtype_is_smallest_that_fits():
    assert mask_dtype(19) == torch.uint8
    assert mask_dtype(256) == torch.uint8
    assert mask_dtype(257) == torch.int16
    assert mask_dtype(70000) == torch.int32


class OutOfRangeIndex(torch.nn.Module):
    def forward(self, x):
        scores = torch.zeros(1, 19, x.shape[2], x.shape[3])
        return scores[:, 40]


def test_any_forward_exception_becomes_inference_error():
    engine = InferenceEngine.from_module(OutOfRangeIndex())
    with pytest.raises(InferenceError) as err:
        engine.infer(frame_tensor(0))
    assert isinstance(err.value.__cause__, IndexError)


def test_rejects_scores_with_wrong_spatial_size():
    class Wider(torch.nn.Module):
        def forward(self, x):
            return torch.zeros(1, 19, x.shape[2], x.shape[3] + 1)

    engine = InferenceEngine.from_module(Wider())
    with pytest.raises(InferenceError):
        engine.infer(frame_tensor(0))
