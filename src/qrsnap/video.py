"""Video file playback as a frame source for the sampling loop."""

import logging
import time
from pathlib import Path
from typing import Callable, Optional

import cv2
import numpy as np

log = logging.getLogger("video")


class VideoFileSource:
    """
    Plays a video file and renders the current frame on demand.

    Args:
        path: Video file to open
        realtime: Follow playback speed. The current frame is held until the
            next one is due and frames are dropped when the sampler falls
            behind. When False every render advances exactly
            one frame, which processes a file as fast as decoding allows.
        clock: Wall clock in seconds used for realtime pacing

    Note:
        - ``paused`` is controlled by the host (preview window, caller)
        - ``ended`` becomes True once the container runs out of frames
        - ``position()`` is the media clock in seconds
    """

    def __init__(
        self,
        path: str | Path,
        realtime: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.path = Path(path)
        cap = cv2.VideoCapture(str(self.path))
        if not cap.isOpened():
            raise RuntimeError(f"Failed to open video {self.path}")
        self._cap = cap
        self.width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.fps = float(cap.get(cv2.CAP_PROP_FPS)) or 30.0
        self.frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        self.realtime = realtime
        self._clock = clock
        self.paused = False
        self.ended = False
        self.current_frame: Optional[np.ndarray] = None
        self._position_ms = 0.0
        self._frame_index = -1
        self._play_started: Optional[float] = None
        self._paused_at: Optional[float] = None
        log.info(
            "opened %s (%dx%d @ %.1f fps, %d frames)",
            self.path, self.width, self.height, self.fps, self.frame_count,
        )

    @property
    def has_metadata(self) -> bool:
        return self.width > 0 and self.height > 0

    def pause(self) -> None:
        if self.paused:
            return
        self.paused = True
        self._paused_at = self._clock()

    def resume(self) -> None:
        if not self.paused:
            return
        self.paused = False
        if self._play_started is not None and self._paused_at is not None:
            self._play_started += self._clock() - self._paused_at
        self._paused_at = None

    def toggle_pause(self) -> None:
        if self.paused:
            self.resume()
        else:
            self.pause()

    def position(self) -> float:
        return self._position_ms / 1000.0

    @property
    def frame_index(self) -> int:
        """Index of the frame on screen, -1 before the first render."""
        return self._frame_index

    def _due_frame(self) -> int:
        """Index of the frame the wall clock says should be on screen."""
        now = self._clock()
        if self._play_started is None:
            self._play_started = now
        return int((now - self._play_started) * self.fps)

    def render_into(self, rgba: np.ndarray) -> bool:
        """
        Draw the current frame into ``rgba``, advancing playback if due.

        Returns False (and sets ``ended``) when no frame is left.
        """
        if self.ended:
            return False
        if self.realtime:
            due = self._due_frame()
            if self.current_frame is not None and due <= self._frame_index:
                cv2.cvtColor(self.current_frame, cv2.COLOR_BGR2RGBA, dst=rgba)
                return True
            for _ in range(due - self._frame_index - 1):
                if not self._cap.grab():
                    break
                self._frame_index += 1
        ok, frame = self._cap.read()
        if not ok or frame is None:
            self.ended = True
            log.info("end of video %s at %.2fs", self.path, self.position())
            return False
        self._frame_index += 1
        self._position_ms = float(self._cap.get(cv2.CAP_PROP_POS_MSEC))
        if frame.shape[1] != self.width or frame.shape[0] != self.height:
            frame = cv2.resize(frame, (self.width, self.height))
        self.current_frame = frame
        cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA, dst=rgba)
        return True

    def release(self) -> None:
        self._cap.release()

    def __enter__(self) -> "VideoFileSource":
        return self

    def __exit__(self, *_) -> None:
        self.release()
