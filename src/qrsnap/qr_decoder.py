"""
QR decoding over raw RGBA pixel buffers.

The sampling loop only ever calls ``decode(pixels, width, height)`` and gets
back the single best detection for the frame, or None. Several backends are
available; OpenCV is always present, pyzbar and zxing-cpp are optional.
"""

import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple, Union

import cv2
import numpy as np

BACKENDS = ("opencv", "opencv_aruco", "pyzbar", "zxingcpp")

Pixels = Union[bytes, bytearray, memoryview, np.ndarray]


@dataclass
class Detection:
    text: str
    points: List[Tuple[float, float]]
    center: Tuple[float, float]
    area: float


class Decoder(Protocol):
    def decode(self, pixels: Pixels, width: int, height: int) -> Optional[Detection]:
        ...


def _polygon_area(points: np.ndarray) -> float:
    if points.shape[0] < 3:
        return 0.0
    return float(cv2.contourArea(points.astype("float32")))


def _make_detection(text: str, quad_points: List[Tuple[float, float]]) -> Detection:
    center_x = sum(p[0] for p in quad_points) / len(quad_points)
    center_y = sum(p[1] for p in quad_points) / len(quad_points)
    return Detection(
        text=text,
        points=quad_points,
        center=(center_x, center_y),
        area=_polygon_area(np.array(quad_points)),
    )


def rgba_to_bgr(pixels: Pixels, width: int, height: int) -> np.ndarray:
    """
    View a row-major RGBA buffer (width * 4 bytes per row) as a BGR image.

    Raises ValueError if the buffer size does not match the dimensions.
    """
    if isinstance(pixels, np.ndarray):
        flat = pixels.reshape(-1)
    else:
        flat = np.frombuffer(pixels, dtype=np.uint8)
    expected = width * height * 4
    if width <= 0 or height <= 0 or flat.size != expected:
        raise ValueError(
            f"RGBA buffer of {flat.size} bytes does not match {width}x{height}"
        )
    rgba = flat.astype(np.uint8, copy=False).reshape(height, width, 4)
    return cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGR)


def pick_detection(detections: List[Detection]) -> Optional[Detection]:
    """Select largest QR code by area (handles overlapping codes)."""
    if not detections:
        return None
    return max(detections, key=lambda d: d.area)


class QRDecoder:
    def __init__(self, backend: str = "opencv"):
        if backend not in BACKENDS:
            raise ValueError(
                f"Unknown QR backend {backend!r}; expected one of {', '.join(BACKENDS)}"
            )
        self.backend = backend
        # OpenCV detectors are not thread-safe; the sampling loop and the
        # validation workers each get their own.
        self._local = threading.local()
        self._pyzbar = None
        self._zxingcpp = None

        if backend == "pyzbar":
            try:
                from pyzbar import pyzbar  # type: ignore
            except ImportError as exc:
                raise RuntimeError(
                    "pyzbar is not installed; install it or use backend=opencv"
                ) from exc
            self._pyzbar = pyzbar
        elif backend == "zxingcpp":
            try:
                import zxingcpp  # type: ignore
            except ImportError as exc:
                raise RuntimeError(
                    "zxing-cpp is not installed; pip install zxing-cpp"
                ) from exc
            self._zxingcpp = zxingcpp
        else:
            self._opencv_detector()

    def _opencv_detector(self):
        detector = getattr(self._local, "detector", None)
        if detector is None:
            if self.backend == "opencv_aruco":
                detector = cv2.QRCodeDetectorAruco()
            else:
                detector = cv2.QRCodeDetector()
            self._local.detector = detector
        return detector

    def detect(self, frame) -> List[Detection]:
        """Run the backend on a BGR frame and return every decoded code."""
        if self.backend == "pyzbar":
            return _detect_pyzbar(frame, self._pyzbar)
        if self.backend == "zxingcpp":
            return _detect_zxingcpp(frame, self._zxingcpp)
        return _detect_opencv(frame, self._opencv_detector())

    def decode(self, pixels: Pixels, width: int, height: int) -> Optional[Detection]:
        frame = rgba_to_bgr(pixels, width, height)
        return pick_detection(self.detect(frame))


def _detect_opencv(frame, detector: cv2.QRCodeDetector) -> List[Detection]:
    detections: List[Detection] = []

    try:
        ok, decoded_info, points, _ = detector.detectAndDecodeMulti(frame)
    except cv2.error:
        ok, decoded_info, points = False, None, None
    if ok and decoded_info and points is not None:
        for text, quad in zip(decoded_info, points):
            if not text:
                continue
            detections.append(
                _make_detection(text, [(float(x), float(y)) for x, y in quad])
            )
        if detections:
            return detections
    try:
        result = detector.detectAndDecode(frame)
    except cv2.error:
        return detections
    if len(result) == 3:
        text, points, _ = result
    else:
        text, points = result
    if text and points is not None:
        detections.append(
            _make_detection(text, [(float(x), float(y)) for x, y in points[0]])
        )

    return detections


def _detect_pyzbar(frame, pyzbar) -> List[Detection]:
    detections: List[Detection] = []
    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    for obj in pyzbar.decode(gray):
        text = obj.data.decode("utf-8", errors="replace")
        if not text:
            continue
        points = obj.polygon or []
        if points:
            quad_points = [(float(p.x), float(p.y)) for p in points]
        else:
            rect = obj.rect
            quad_points = [
                (float(rect.left), float(rect.top)),
                (float(rect.left + rect.width), float(rect.top)),
                (float(rect.left + rect.width), float(rect.top + rect.height)),
                (float(rect.left), float(rect.top + rect.height)),
            ]
        detections.append(_make_detection(text, quad_points))
    return detections


def _detect_zxingcpp(frame, zxingcpp) -> List[Detection]:
    detections: List[Detection] = []
    for result in zxingcpp.read_barcodes(frame):
        if not result.text:
            continue
        pos = result.position
        quad_points = [
            (float(pos.top_left.x), float(pos.top_left.y)),
            (float(pos.top_right.x), float(pos.top_right.y)),
            (float(pos.bottom_right.x), float(pos.bottom_right.y)),
            (float(pos.bottom_left.x), float(pos.bottom_left.y)),
        ]
        detections.append(_make_detection(result.text, quad_points))
    return detections
