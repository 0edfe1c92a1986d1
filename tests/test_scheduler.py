"""Tests for IntervalScheduler and ManualScheduler."""

import threading
import time

import pytest

from propdb import IntervalScheduler, ManualScheduler


class _Token:
    """Stand-in token whose validity the test controls."""

    def __init__(self):
        self.is_valid = True

    def valid(self):
        return self.is_valid


class TestIntervalScheduler:
    def test_pulses_repeatedly(self):
        s = IntervalScheduler(0.01)
        pulses = []
        three = threading.Event()

        def on_pulse():
            pulses.append(time.monotonic())
            if len(pulses) >= 3:
                three.set()

        s.schedule_repeating_task(_Token(), on_pulse)
        try:
            assert three.wait(timeout=2)
        finally:
            s.on_close()

    def test_no_pulse_after_close(self):
        s = IntervalScheduler(0.01)
        pulses = []
        s.schedule_repeating_task(_Token(), lambda: pulses.append(1))
        time.sleep(0.05)
        s.on_close()
        assert not s.running
        count = len(pulses)
        time.sleep(0.05)
        assert len(pulses) == count

    def test_close_waits_for_running_pulse(self):
        s = IntervalScheduler(0.01)
        started = threading.Event()
        finished = []

        def slow_pulse():
            started.set()
            time.sleep(0.1)
            finished.append(True)

        s.schedule_repeating_task(_Token(), slow_pulse)
        assert started.wait(timeout=2)
        s.on_close()
        assert finished  # the write ran to completion before on_close returned

    def test_stops_when_token_invalid(self):
        s = IntervalScheduler(0.01)
        token = _Token()
        pulses = []
        s.schedule_repeating_task(token, lambda: pulses.append(1))
        token.is_valid = False
        time.sleep(0.05)
        assert not s.running
        assert len(pulses) <= 1
        s.on_close()

    def test_pulse_exception_is_logged_and_loop_continues(self, caplog):
        s = IntervalScheduler(0.01)
        calls = []
        again = threading.Event()

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first pulse fails")
            again.set()

        s.schedule_repeating_task(_Token(), flaky)
        try:
            assert again.wait(timeout=2)
        finally:
            s.on_close()
        assert "Save pulse failed" in caplog.text

    def test_close_before_schedule_is_noop(self):
        IntervalScheduler(1.0).on_close()

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            IntervalScheduler(0)


class TestManualScheduler:
    def test_pulse_runs_callback(self):
        s = ManualScheduler()
        pulses = []
        assert s.pulse() is False
        s.schedule_repeating_task(_Token(), lambda: pulses.append(1))
        assert s.pulse() is True
        assert s.pulse() is True
        assert pulses == [1, 1]

    def test_no_pulse_after_close(self):
        s = ManualScheduler()
        pulses = []
        s.schedule_repeating_task(_Token(), lambda: pulses.append(1))
        s.on_close()
        assert s.pulse() is False
        assert pulses == []

    def test_close_from_inside_pulse(self):
        s = ManualScheduler()
        s.schedule_repeating_task(_Token(), lambda: s.on_close())
        assert s.pulse() is True
        assert s.pulse() is False
