import numpy as np
import pytest

from conftest import DeferredExecutor, ScriptedDecoder


def _artifact(value, detected_at=0.0, marker=0):
    from qrsnap.capture import CaptureArtifact, encode_png

    rgba = np.full((3, 4, 4), 255, dtype=np.uint8)
    rgba[0, 0, 0] = marker
    return CaptureArtifact(
        value=value,
        data=encode_png(rgba),
        width=4,
        height=3,
        detected_at=detected_at,
    )


def _validator(decoder, executor=None, sink=None, clock=None):
    from qrsnap.capture import CaptureCollection
    from qrsnap.validator import CaptureValidator

    collection = CaptureCollection()
    validator = CaptureValidator(
        decoder,
        collection,
        sink=sink,
        executor=executor if executor is not None else DeferredExecutor(),
        clock=clock or (lambda: 1700000000.123),
    )
    return validator, collection


def test_validation_accepts_and_delivers(tmp_path):
    from qrsnap.capture import DirectorySink

    executor = DeferredExecutor()
    validator, collection = _validator(
        ScriptedDecoder("A"), executor, sink=DirectorySink(tmp_path / "out")
    )

    future = validator.submit(_artifact("A", detected_at=2.5))
    assert not future.done()
    assert validator.pending == 1
    executor.run()

    capture = future.result()
    assert capture.filename == "qrcode_1700000000123.png"
    assert capture.value == "A"
    assert capture.captured_at == 2.5
    assert capture.handle == tmp_path / "out" / capture.filename
    assert capture.handle.read_bytes() == capture.data
    assert collection.snapshot() == [capture]
    assert validator.pending == 0


@pytest.mark.parametrize("text", [None, "", "  \n"])
def test_validation_rejects_missing_or_blank_code(tmp_path, text):
    from qrsnap.capture import DirectorySink

    validator, collection = _validator(
        ScriptedDecoder(text), sink=DirectorySink(tmp_path)
    )

    assert validator.validate(_artifact("A")) is None
    assert len(collection) == 0
    assert list(tmp_path.iterdir()) == []


def test_unreadable_artifact_is_discarded():
    from qrsnap.capture import CaptureArtifact

    decoder = ScriptedDecoder(default="A")
    validator, collection = _validator(decoder)
    artifact = CaptureArtifact(
        value="A", data=b"not a png", width=4, height=3, detected_at=0.0
    )

    assert validator.validate(artifact) is None
    assert decoder.calls == []
    assert len(collection) == 0


def test_out_of_order_completion_keeps_every_capture():
    executor = DeferredExecutor()
    stamps = iter([1.0, 1.0])
    validator, collection = _validator(
        ScriptedDecoder(default="ok"), executor, clock=lambda: next(stamps)
    )

    first = validator.submit(_artifact("A", detected_at=0.0))
    second = validator.submit(_artifact("B", detected_at=0.5))
    executor.run(1)  # "B" completes before "A"
    assert second.done() and not first.done()
    executor.run(0)

    values = [c.value for c in collection.snapshot()]
    assert values == ["B", "A"]
    filenames = {c.filename for c in collection.snapshot()}
    assert filenames == {"qrcode_1000.png", "qrcode_1001.png"}


def test_close_cancels_queued_validations():
    executor = DeferredExecutor()
    validator, collection = _validator(ScriptedDecoder(default="A"), executor)

    future = validator.submit(_artifact("A"))
    validator.close(cancel_pending=True)
    executor.run()

    assert future.cancelled()
    assert len(collection) == 0
    with pytest.raises(RuntimeError):
        validator.submit(_artifact("B"))


def test_late_completion_after_close_is_dropped():
    validator, collection = _validator(ScriptedDecoder(default="A"))
    artifact = _artifact("A")

    validator.close(cancel_pending=True)

    # a validation that was already running when the session closed
    assert validator.validate(artifact) is None
    assert len(collection) == 0


def test_close_without_cancel_drains_pending():
    from concurrent.futures import ThreadPoolExecutor

    with ThreadPoolExecutor(max_workers=2) as pool:
        validator, collection = _validator(ScriptedDecoder(default="A"), pool)
        futures = [validator.submit(_artifact(v)) for v in ("A", "B", "C")]
        validator.close(cancel_pending=False)

    assert all(f.done() for f in futures)
    assert sorted(c.value for c in collection.snapshot()) == ["A", "B", "C"]


def test_delivery_failure_still_accepts(tmp_path):
    from qrsnap.capture import DirectorySink

    blocker = tmp_path / "file"
    blocker.write_text("x")
    validator, collection = _validator(
        ScriptedDecoder("A"), sink=DirectorySink(blocker / "out")
    )

    capture = validator.validate(_artifact("A"))

    assert capture is not None
    assert capture.handle is None
    assert collection.snapshot() == [capture]


def test_delivery_happens_outside_validator_lock(tmp_path):
    from qrsnap.capture import DirectorySink

    class RecordingSink(DirectorySink):
        def deliver(self, filename, data):
            held.append(validator._lock.locked())
            return super().deliver(filename, data)

    held = []
    validator, collection = _validator(
        ScriptedDecoder("A"), sink=RecordingSink(tmp_path)
    )

    capture = validator.validate(_artifact("A"))

    assert held == [False]
    assert capture.handle.exists()
    assert collection.snapshot() == [capture]
