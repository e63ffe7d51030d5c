"""
OpenCV preview window for a scan session.

Shows the current frame with overlays:
- Decoded QR polygon and value (green, red while on cooldown or duplicate)
- Playback state and capture count

Controls:
- Press space to pause / resume the video
- Press 'q' or close the window to quit
"""

from typing import Optional

import cv2
import numpy as np

from .qr_decoder import Detection
from .sampling_loop import TickResult


class PreviewWindow:
    """Renders frames from the sampling loop and forwards pause/quit keys."""

    def __init__(self, on_toggle_pause=None):
        self.neon = (57, 255, 20)
        self.red = (0, 0, 255)
        self.window_name = "qrsnap"
        self._on_toggle_pause = on_toggle_pause
        cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)

    def render(
        self,
        frame,
        detection: Optional[Detection],
        result: TickResult,
        captures: int,
        paused: bool,
    ) -> bool:
        """
        Draw overlays on a copy of ``frame`` and show it.

        Returns:
            True to continue, False if user quit
        """
        if frame is None:
            return self.process_events()
        display = frame.copy()
        height = display.shape[0]

        if detection is not None and result is not TickResult.MISS:
            color = self.neon if result is TickResult.CAPTURE else self.red
            pts = np.array(
                [(int(x), int(y)) for x, y in detection.points], dtype="int32"
            )
            cv2.polylines(display, [pts], True, color, 4)
            cv2.putText(
                display,
                detection.text.strip()[:40],
                (int(detection.center[0]), int(detection.center[1])),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.8,
                color,
                2,
                cv2.LINE_AA,
            )

        status = f"{'PAUSED' if paused else 'PLAYING'} | captures: {captures}"
        cv2.putText(
            display,
            status,
            (10, height - 12),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.8,
            self.neon,
            2,
            cv2.LINE_AA,
        )

        try:
            if cv2.getWindowProperty(self.window_name, cv2.WND_PROP_VISIBLE) < 0:
                return False
            cv2.imshow(self.window_name, display)
            return self._handle_key()
        except cv2.error:
            return True

    def process_events(self) -> bool:
        """Poll keyboard events without drawing."""
        try:
            return self._handle_key()
        except cv2.error:
            return True

    def _handle_key(self) -> bool:
        key = cv2.waitKey(1) & 0xFF
        if key == ord(" ") and self._on_toggle_pause:
            self._on_toggle_pause()
        return key != ord("q")

    def close(self) -> None:
        cv2.destroyWindow(self.window_name)
