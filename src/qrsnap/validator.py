"""
Second-pass validation of captured frames.

Encoding a frame and reading it back can lose the code (compression, a frame
swapped underneath the snapshot). A capture is only accepted once its own
PNG bytes decode to a non-empty value again.

Validation is two-phase: ``submit`` hands the artifact to an executor and
returns a Future straight away, ``validate`` does the decode-and-accept
work later on a worker. Futures complete in no particular order.
"""

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Callable, Optional, Set

from .capture import Capture, CaptureArtifact, CaptureCollection, DirectorySink, decode_png
from .qr_decoder import Decoder

log = logging.getLogger("validator")


class CaptureValidator:
    def __init__(
        self,
        decoder: Decoder,
        collection: CaptureCollection,
        sink: Optional[DirectorySink] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.time,
        max_workers: int = 2,
    ):
        self._decoder = decoder
        self._collection = collection
        self._sink = sink
        self._clock = clock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="capture-validate"
        )
        self._lock = threading.Lock()
        self._pending: Set[Future] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, artifact: CaptureArtifact) -> Future:
        """Schedule validation of ``artifact``; resolves to the Capture or None."""
        with self._lock:
            if self._closed:
                raise RuntimeError("capture validator is closed")
        future = self._executor.submit(self.validate, artifact)
        with self._lock:
            if not future.done():
                self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            log.error("validation crashed: %r", future.exception())

    def validate(self, artifact: CaptureArtifact) -> Optional[Capture]:
        rgba = decode_png(artifact.data)
        if rgba is None:
            log.info("capture for %r is unreadable, discarding", artifact.value)
            return None
        height, width = rgba.shape[:2]
        detection = self._decoder.decode(rgba, width, height)
        text = detection.text.strip() if detection else ""
        if not text:
            log.info("capture for %r holds no valid code, discarding", artifact.value)
            return None
        if text != artifact.value:
            log.debug("capture for %r re-decoded as %r", artifact.value, text)

        with self._lock:
            if self._closed:
                log.debug("session closed, dropping capture for %r", artifact.value)
                return None
            filename = self._collection.allocate_filename(self._clock())

        handle = None
        if self._sink is not None:
            try:
                handle = self._sink.deliver(filename, artifact.data)
            except OSError as exc:
                log.error("could not deliver %s: %s", filename, exc)

        with self._lock:
            if self._closed:
                log.debug("session closed while delivering %s", filename)
                return None
            capture = Capture(
                data=artifact.data,
                handle=handle,
                filename=filename,
                value=artifact.value,
                captured_at=artifact.detected_at,
            )
            self._collection.append(capture)
        log.info("accepted capture %s for %r", filename, artifact.value)
        return capture

    def close(self, cancel_pending: bool = True) -> None:
        """
        Stop accepting work.

        With ``cancel_pending`` queued validations are cancelled and any that
        are already running finish without touching the collection. Otherwise
        outstanding validations are drained first.
        """
        with self._lock:
            pending = list(self._pending)
        if cancel_pending:
            with self._lock:
                self._closed = True
            for future in pending:
                future.cancel()
        else:
            wait(pending)
            with self._lock:
                self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=not cancel_pending, cancel_futures=cancel_pending)
