"""
Frame sampling loop.

One tick = render the current frame, decode it once, run the dedup gates,
and on a new value snapshot that same frame and hand it to the validator.
Ticks are driven by a refresh signal (``refresh_ticks``) rather than by the
loop calling itself, and a tick never waits for validation to finish.

States
──────
IDLE     stream not loaded yet (``start`` not called or failed)
RUNNING  sampling on every tick
PAUSED   RUNNING, but the stream is paused or has ended; ticks keep polling
         so sampling resumes as soon as the stream does
STOPPED  session torn down
"""

import enum
import logging
import threading
import time
from concurrent.futures import Future
from typing import Callable, Iterable, Iterator, Optional, Protocol

import cv2
import numpy as np

from .capture import CaptureArtifact, encode_png
from .dedup_state import DedupState
from .qr_decoder import Decoder, Detection
from .validator import CaptureValidator

log = logging.getLogger("sampling_loop")


class LoopState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class TickResult(enum.Enum):
    IDLE = "idle"  # nothing sampled (not running, paused or ended)
    MISS = "miss"  # no code, or only whitespace
    COOLDOWN = "cooldown"  # value seen too recently
    DUPLICATE = "duplicate"  # value already captured this session
    CAPTURE = "capture"  # capture handed to the validator


class FrameSource(Protocol):
    width: int
    height: int
    paused: bool
    ended: bool

    def render_into(self, rgba: np.ndarray) -> bool:
        ...


def refresh_ticks(
    hz: float, stop: Optional[threading.Event] = None, throttle: bool = True
) -> Iterator[int]:
    """
    Yield tick numbers at ``hz`` per second until ``stop`` is set.

    With ``throttle`` False ticks come back-to-back, for offline processing.
    """
    interval = 1.0 / hz if hz > 0 else 0.0
    next_at = time.monotonic()
    count = 0
    while stop is None or not stop.is_set():
        if throttle and interval:
            delay = next_at - time.monotonic()
            if delay > 0:
                time.sleep(delay)
            next_at = max(next_at + interval, time.monotonic() - interval)
        yield count
        count += 1


class SamplingLoop:
    def __init__(
        self,
        source: Optional[FrameSource],
        decoder: Decoder,
        validator: CaptureValidator,
        cooldown: float = 3.0,
        dedup: Optional[DedupState] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._decoder = decoder
        self._validator = validator
        self.cooldown = cooldown
        self.dedup = dedup if dedup is not None else DedupState()
        self._clock = clock
        self._state = LoopState.IDLE
        self._buffer: Optional[np.ndarray] = None
        self.last_detection: Optional[Detection] = None
        self.last_future: Optional[Future] = None
        self.attempts = 0

    @property
    def state(self) -> LoopState:
        if self._state is LoopState.RUNNING and (
            self._source.paused or self._source.ended
        ):
            return LoopState.PAUSED
        return self._state

    @property
    def buffer(self) -> Optional[np.ndarray]:
        return self._buffer

    def start(self) -> bool:
        """Stream metadata is available: size the pixel buffer and start sampling."""
        if self._state is not LoopState.IDLE:
            return self._state is LoopState.RUNNING
        source = self._source
        if source is None:
            log.error("no frame source, not starting")
            return False
        if source.width <= 0 or source.height <= 0:
            log.error(
                "frame source has no usable size (%sx%s), not starting",
                source.width, source.height,
            )
            return False
        self._buffer = np.zeros((source.height, source.width, 4), dtype=np.uint8)
        self._state = LoopState.RUNNING
        log.info("sampling %dx%d frames", source.width, source.height)
        return True

    def stop(self) -> None:
        self._state = LoopState.STOPPED

    def tick(self, now: Optional[float] = None) -> TickResult:
        if self._state is not LoopState.RUNNING:
            return TickResult.IDLE
        source = self._source
        if source.paused or source.ended:
            return TickResult.IDLE
        if not source.render_into(self._buffer):
            return TickResult.IDLE
        if now is None:
            now = self._clock()

        height, width = self._buffer.shape[:2]
        detection = self._decoder.decode(self._buffer, width, height)
        self.last_detection = detection
        value = detection.text.strip() if detection else ""
        if not value:
            return TickResult.MISS

        skip = self.dedup.should_skip(value, now, self.cooldown)
        self.dedup.record_seen(value, now)
        if skip:
            return TickResult.COOLDOWN
        if not self.dedup.is_new(value):
            return TickResult.DUPLICATE

        log.info("new code %r at %.2fs", value, now)
        try:
            artifact = CaptureArtifact(
                value=value,
                data=encode_png(self._buffer),
                width=width,
                height=height,
                detected_at=now,
            )
            self.last_future = self._validator.submit(artifact)
            self.attempts += 1
        except (RuntimeError, cv2.error) as exc:
            log.error("capture of %r failed: %s", value, exc)
        finally:
            self.dedup.mark_captured(value)
        return TickResult.CAPTURE

    def run(
        self,
        ticks: Iterable,
        stop: Optional[threading.Event] = None,
        on_tick: Optional[Callable[[TickResult], bool]] = None,
    ) -> None:
        """
        Tick once per element of ``ticks``.

        Ends when ``ticks`` runs out, ``stop`` is set, the loop is stopped, or
        ``on_tick`` returns False.
        """
        for _ in ticks:
            if stop is not None and stop.is_set():
                break
            if self._state is LoopState.STOPPED:
                break
            result = self.tick()
            if on_tick is not None and not on_tick(result):
                break
