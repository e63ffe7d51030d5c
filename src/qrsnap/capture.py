"""
Capture records, the per-session output collection, delivery and archiving.

A capture starts life as a CaptureArtifact (PNG bytes of the frame that was
decoded) and becomes a Capture only after validation accepted it.
"""

import io
import logging
import threading
import zipfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import BinaryIO, List, Optional, Set

import cv2
import numpy as np

log = logging.getLogger("capture")

FILENAME_PREFIX = "qrcode_"
ARCHIVE_NAME = "qrcode_snapshots.zip"
ARCHIVE_FOLDER = "qrcode_snapshots"


@dataclass(frozen=True)
class CaptureArtifact:
    """A frame snapshot waiting for validation."""

    value: str  # decoded text that triggered the capture
    data: bytes  # PNG-encoded RGBA frame
    width: int
    height: int
    detected_at: float


@dataclass(frozen=True)
class Capture:
    """An accepted capture. ``handle`` is where it was delivered, if anywhere."""

    data: bytes
    handle: Optional[Path]
    filename: str
    value: str
    captured_at: float


def filename_for(timestamp_ms: int) -> str:
    return f"{FILENAME_PREFIX}{timestamp_ms}.png"


def encode_png(rgba: np.ndarray) -> bytes:
    bgra = cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA)
    ok, buf = cv2.imencode(".png", bgra)
    if not ok:
        raise RuntimeError("PNG encoding failed")
    return buf.tobytes()


def decode_png(data: bytes) -> Optional[np.ndarray]:
    """Decode PNG bytes back to an RGBA array, or None if unreadable."""
    if not data:
        return None
    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if image is None:
        return None
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    if image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
    return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)


class CaptureCollection:
    """
    Thread-safe list of accepted captures for one session.

    Validations complete on worker threads in any order, so every access
    goes through the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._captures: List[Capture] = []
        self._filenames: Set[str] = set()

    def allocate_filename(self, timestamp: float) -> str:
        """Reserve a filename for ``timestamp`` (seconds since the epoch)."""
        stamp_ms = int(round(timestamp * 1000))
        with self._lock:
            name = filename_for(stamp_ms)
            while name in self._filenames:
                stamp_ms += 1
                name = filename_for(stamp_ms)
            self._filenames.add(name)
            return name

    def append(self, capture: Capture) -> None:
        with self._lock:
            self._filenames.add(capture.filename)
            self._captures.append(capture)

    def snapshot(self) -> List[Capture]:
        with self._lock:
            return list(self._captures)

    def release(self) -> None:
        """Drop display handles; the image data stays available for archiving."""
        with self._lock:
            self._captures = [replace(c, handle=None) for c in self._captures]

    def __len__(self) -> int:
        with self._lock:
            return len(self._captures)


class DirectorySink:
    """Delivers each accepted capture as a PNG file in ``out_dir``."""

    def __init__(self, out_dir: str | Path):
        self.out_dir = Path(out_dir)

    def deliver(self, filename: str, data: bytes) -> Path:
        self.out_dir.mkdir(parents=True, exist_ok=True)
        path = self.out_dir / filename
        path.write_bytes(data)
        log.info("saved %s", path)
        return path


def write_archive(captures: List[Capture], target: str | Path | BinaryIO) -> None:
    """
    Write every capture into a zip under ``qrcode_snapshots/``.

    The folder entry is always written, so an empty session still yields a
    valid archive holding an empty folder.
    """
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.mkdir(ARCHIVE_FOLDER)
        for capture in captures:
            zf.writestr(f"{ARCHIVE_FOLDER}/{capture.filename}", capture.data)


def archive_bytes(captures: List[Capture]) -> bytes:
    buf = io.BytesIO()
    write_archive(captures, buf)
    return buf.getvalue()
