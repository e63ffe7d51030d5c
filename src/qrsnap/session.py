"""
A scan session: one loaded video stream from stream-ready to teardown.

Owns the dedup state (through the loop), the validator and the output
collection. Nothing outlives the session.
"""

import logging
import time
from concurrent.futures import Executor
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional

from .capture import Capture, CaptureCollection, DirectorySink, write_archive
from .qr_decoder import Decoder
from .sampling_loop import FrameSource, SamplingLoop
from .validator import CaptureValidator

log = logging.getLogger("session")


class ScanSession:
    def __init__(
        self,
        source: Optional[FrameSource],
        decoder: Decoder,
        cooldown: float = 3.0,
        sink: Optional[DirectorySink] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
        validate_workers: int = 2,
    ):
        self.source = source
        self.collection = CaptureCollection()
        self.validator = CaptureValidator(
            decoder,
            self.collection,
            sink=sink,
            executor=executor,
            max_workers=validate_workers,
        )
        self.loop = SamplingLoop(
            source, decoder, self.validator, cooldown=cooldown, clock=clock
        )
        self.closed = False

    def on_stream_ready(self) -> bool:
        return self.loop.start()

    @property
    def captures(self) -> List[Capture]:
        return self.collection.snapshot()

    def write_archive(self, target: str | Path | BinaryIO) -> None:
        """Archive the captures accepted so far."""
        captures = self.collection.snapshot()
        if isinstance(target, (str, Path)):
            Path(target).parent.mkdir(parents=True, exist_ok=True)
        write_archive(captures, target)
        if isinstance(target, (str, Path)):
            log.info("wrote %d capture(s) to %s", len(captures), target)

    def close(self, cancel_pending: bool = True) -> None:
        if self.closed:
            return
        self.closed = True
        self.loop.stop()
        self.validator.close(cancel_pending=cancel_pending)
        self.collection.release()
        log.info(
            "session closed: %d capture(s) accepted out of %d attempt(s)",
            len(self.collection), self.loop.attempts,
        )

    def __enter__(self) -> "ScanSession":
        return self

    def __exit__(self, exc_type, *_) -> None:
        self.close(cancel_pending=exc_type is not None)
