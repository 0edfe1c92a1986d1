"""Tests for propdb.textual: Textual tick-loop scheduler."""

import pickle
import threading

import pytest

from propdb import PropertyDB
from propdb.textual import TextualScheduler


class _MockTimer:
    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.stopped = False

    def stop(self):
        self.stopped = True


class _MockApp:
    """Minimal mock matching the Textual App interface TextualScheduler needs."""

    def __init__(self):
        self.timers = []
        self._call_from_thread_log = []

    def set_interval(self, interval, callback):
        timer = _MockTimer(interval, callback)
        self.timers.append(timer)
        return timer

    def call_from_thread(self, fn, *args):
        self._call_from_thread_log.append((fn, args))
        return fn(*args)

    def tick(self):
        """Fire every running timer once, as the event loop would."""
        for timer in self.timers:
            if not timer.stopped:
                timer.callback()


def _read(path):
    with open(path, "rb") as fh:
        return pickle.load(fh)


class TestTextualScheduler:
    def test_timer_drives_pulses(self, store_dir):
        app = _MockApp()
        db = PropertyDB(scheduler=TextualScheduler(app, 2.0))
        token = db.initialize()
        assert len(app.timers) == 1
        assert app.timers[0].interval == 2.0

        n = db.initiate(store_dir, "n", 1, 0)
        n.set(4)
        app.tick()
        assert _read(store_dir / "n_1.property") == 4
        db.close(token)

    def test_close_stops_timer(self, store_dir):
        app = _MockApp()
        scheduler = TextualScheduler(app, 1.0)
        db = PropertyDB(scheduler=scheduler)
        token = db.initialize()
        db.close(token)
        assert app.timers[0].stopped

    def test_stale_tick_is_ignored(self):
        app = _MockApp()
        scheduler = TextualScheduler(app, 1.0)
        pulses = []

        class _Token:
            def valid(self):
                return True

        scheduler.schedule_repeating_task(_Token(), lambda: pulses.append(1))
        callback = app.timers[0].callback
        scheduler.on_close()
        callback()  # a tick already queued on the loop when close ran
        assert pulses == []

    def test_thread_marshal(self):
        app = _MockApp()
        scheduler = TextualScheduler(app, 1.0)
        db = PropertyDB(scheduler=scheduler)
        result = []

        def _bg():
            result.append(db.initialize())

        t = threading.Thread(target=_bg)
        t.start()
        t.join()
        assert len(app._call_from_thread_log) == 1
        assert len(app.timers) == 1

        db.close(result[0])
        assert app.timers[0].stopped

    def test_pulse_errors_are_logged(self, caplog):
        app = _MockApp()
        scheduler = TextualScheduler(app, 1.0)

        class _Token:
            def valid(self):
                return True

        def _boom():
            raise RuntimeError("boom")

        scheduler.schedule_repeating_task(_Token(), _boom)
        app.tick()
        assert "Save pulse failed" in caplog.text

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            TextualScheduler(_MockApp(), 0)
