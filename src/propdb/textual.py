"""Textual integration for propdb. Opt-in, requires textual.

TextualScheduler drives save pulses from the app's own timer, so writes
happen on the app's event loop between frames instead of on a separate
thread. Textual coupling is isolated in this module; the core never imports
it.

    class MyApp(App):
        def on_mount(self) -> None:
            self.db = PropertyDB(scheduler=TextualScheduler(self, 2.0))
            self.token = self.db.initialize()

        def on_unmount(self) -> None:
            self.db.close(self.token)
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from textual.timer import Timer

from propdb.scheduler import Pulse, Scheduler

if TYPE_CHECKING:
    from textual.app import App

    from propdb.token import InitializationToken

logger = logging.getLogger("propdb.textual")


class TextualScheduler(Scheduler):
    """Pulse every `interval` seconds from a Textual app's set_interval timer.

    Creating and stopping the timer is marshaled onto the app thread with
    call_from_thread when the database is initialized or closed elsewhere.
    """

    def __init__(self, app: App, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval!r}")
        self._app = app
        self.interval = interval
        self._main = threading.get_ident()
        self._timer: Timer | None = None
        self._closed = False

    def _on_app_thread(self, fn, *args):
        if threading.get_ident() != self._main:
            return self._app.call_from_thread(fn, *args)
        return fn(*args)

    def schedule_repeating_task(self, token: InitializationToken, on_pulse: Pulse) -> None:
        def _tick() -> None:
            if self._closed or not token.valid():
                return
            try:
                on_pulse()
            except Exception:
                logger.exception("Save pulse failed")

        self._closed = False
        self._timer = self._on_app_thread(self._app.set_interval, self.interval, _tick)

    def on_close(self) -> None:
        # Ticks run on the app thread, so once this flag is visible there no
        # new pulse starts; call_from_thread waits for a running one.
        self._closed = True
        timer, self._timer = self._timer, None
        if timer is not None:
            self._on_app_thread(timer.stop)

    def __repr__(self) -> str:
        return f"TextualScheduler(interval={self.interval!r})"
