from concurrent.futures import Executor, Future

import cv2
import numpy as np
import pytest
import qrcode
from PIL import Image

from qrsnap.qr_decoder import Detection


def make_detection(text):
    points = [(0.0, 0.0), (2.0, 0.0), (2.0, 2.0), (0.0, 2.0)]
    return Detection(text=text, points=points, center=(1.0, 1.0), area=4.0)


class FakeSource:
    """Frame source that paints the frame number into the first pixel."""

    def __init__(self, width=4, height=3, frames=None):
        self.width = width
        self.height = height
        self.paused = False
        self.ended = False
        self.frames = frames
        self.rendered = 0

    def render_into(self, rgba):
        if self.frames is not None and self.rendered >= self.frames:
            self.ended = True
            return False
        rgba[:] = 255
        rgba[0, 0, 0] = self.rendered % 256
        self.rendered += 1
        return True


class ScriptedDecoder:
    """Returns the scripted texts in call order, then ``default``."""

    def __init__(self, *texts, default=None):
        self.texts = list(texts)
        self.default = default
        self.calls = []

    def decode(self, pixels, width, height):
        self.calls.append((width, height, np.asarray(pixels).shape))
        text = self.texts.pop(0) if self.texts else self.default
        if text is None:
            return None
        return make_detection(text)


class DeferredExecutor(Executor):
    """Holds submitted work until the test runs it, in any order it likes."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    def run(self, index=None):
        if index is None:
            jobs, self.jobs = self.jobs, []
        else:
            jobs = [self.jobs.pop(index)]
        for future, fn, args, kwargs in jobs:
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as exc:
                future.set_exception(exc)


@pytest.fixture
def executor():
    return DeferredExecutor()


def qr_rgba(text, box_size=8, border=4):
    qr = qrcode.QRCode(border=border, box_size=box_size)
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    return np.array(img.convert("RGB").convert("RGBA"), dtype=np.uint8)


def pad_rgba(rgba, width, height):
    canvas = Image.new("RGBA", (width, height), (255, 255, 255, 255))
    tile = Image.fromarray(rgba)
    canvas.paste(tile, ((width - tile.width) // 2, (height - tile.height) // 2))
    return np.array(canvas, dtype=np.uint8)


def write_video(path, segments, fps=10.0, size=(480, 360)):
    """Write ``(text or None, frame count)`` segments as an MJPG video."""
    width, height = size
    writer = cv2.VideoWriter(
        str(path), cv2.VideoWriter_fourcc(*"MJPG"), fps, (width, height)
    )
    if not writer.isOpened():
        pytest.skip("no MJPG video writer available")
    blank = np.full((height, width, 3), 255, dtype=np.uint8)
    try:
        for text, count in segments:
            if text is None:
                frame = blank
            else:
                rgba = pad_rgba(qr_rgba(text), width, height)
                frame = cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGR)
            for _ in range(count):
                writer.write(frame)
    finally:
        writer.release()
