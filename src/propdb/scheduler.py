"""Schedulers: the clock that drives save pulses.

A scheduler receives the database token and a pulse callback when the
database initializes, and is told to stop when the database closes. It must
not invoke the callback after on_close() returns.

IntervalScheduler runs pulses on one daemon thread. The stop event is only
checked between pulses, so a pulse that is writing always runs to
completion; on_close() waits for it and then joins the thread.

ManualScheduler hands the clock to the host: call pulse() from your own loop.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from propdb.token import InitializationToken

logger = logging.getLogger("propdb.scheduler")

Pulse = Callable[[], None]


class Scheduler(ABC):
    """Contract between the database and whatever decides when to write."""

    @abstractmethod
    def schedule_repeating_task(self, token: InitializationToken, on_pulse: Pulse) -> None:
        """Start invoking on_pulse at appropriate times while token is valid."""

    @abstractmethod
    def on_close(self) -> None:
        """Stop invoking on_pulse. Must not return while a pulse is running."""


class IntervalScheduler(Scheduler):
    """Pulse every `interval` seconds on a background daemon thread."""

    def __init__(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval!r}")
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        logger.debug("Using interval scheduler at a period of %.3fs", interval)

    def schedule_repeating_task(self, token: InitializationToken, on_pulse: Pulse) -> None:
        if self._thread is not None:
            raise RuntimeError("IntervalScheduler is already running")
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, args=(token, on_pulse),
            name="propdb-pulse", daemon=True,
        )
        self._thread.start()

    def _run(self, token: InitializationToken, on_pulse: Pulse) -> None:
        # wait() returns True as soon as stop is set, so sleep is the only
        # cancellation point; a running pulse is never cut short.
        while not self._stop.wait(self.interval):
            if not token.valid():
                break
            try:
                on_pulse()
            except Exception:
                logger.exception("Save pulse failed")

    def on_close(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __repr__(self) -> str:
        return f"IntervalScheduler(interval={self.interval!r}, running={self.running})"


class ManualScheduler(Scheduler):
    """Pulses only when the host calls pulse(), e.g. once per tick of its main loop."""

    def __init__(self) -> None:
        self._on_pulse: Pulse | None = None
        self._lock = threading.RLock()

    def schedule_repeating_task(self, token: InitializationToken, on_pulse: Pulse) -> None:
        with self._lock:
            self._on_pulse = on_pulse

    def pulse(self) -> bool:
        """Run one pulse now. Returns False once the database has closed."""
        with self._lock:
            if self._on_pulse is None:
                return False
            self._on_pulse()
            return True

    def on_close(self) -> None:
        # Holding the lock waits out a pulse running on another thread.
        with self._lock:
            self._on_pulse = None

    def __repr__(self) -> str:
        return "ManualScheduler()"
