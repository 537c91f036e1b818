"""Request pacing and cooperative cancellation for device I/O."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from loguru import logger

from pixelbridge.errors import SyncCancelled


class CancelToken:
    """
    Thread-safe cancellation flag checked at every device suspension point.

    ``shield()`` suspends cancellation for steps that must run to completion
    once started (e.g. re-creating a directory right after clearing it).
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._shield_depth = 0
        self._lock = threading.Lock()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.warning("Cancellation requested")
        self._event.set()

    @property
    def requested(self) -> bool:
        """True once cancel() was called, shielded or not."""
        return self._event.is_set()

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._event.is_set() and self._shield_depth == 0

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise SyncCancelled("Sync cancelled")

    @contextmanager
    def shield(self) -> Iterator[None]:
        with self._lock:
            self._shield_depth += 1
        try:
            yield
        finally:
            with self._lock:
                self._shield_depth -= 1


class FixedIntervalGate:
    """
    Keep at least ``interval`` seconds between the end of one gated call
    and the start of the next.

    The device's single-threaded web server drops requests when flooded;
    every mutating call goes through ``slot()``.
    """

    def __init__(
        self,
        interval: float,
        cancel: CancelToken | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._interval = max(0.0, interval)
        self._cancel = cancel
        self._clock = clock
        self._sleep = sleep
        self._last_release: float | None = None
        self._lock = threading.Lock()

    @property
    def interval(self) -> float:
        return self._interval

    def _check_cancel(self) -> None:
        if self._cancel is not None:
            self._cancel.raise_if_cancelled()

    def wait(self) -> None:
        """Block until the next gated call may start."""
        self._check_cancel()
        if self._last_release is None:
            return
        remaining = self._last_release + self._interval - self._clock()
        if remaining > 0:
            self._sleep(remaining)
            self._check_cancel()

    def release(self) -> None:
        """Mark the end of a gated call."""
        self._last_release = self._clock()

    @contextmanager
    def slot(self) -> Iterator[None]:
        with self._lock:
            self.wait()
            try:
                yield
            finally:
                self.release()
