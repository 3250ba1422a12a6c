"""Tests for the periodic check scheduler."""

import threading

import pytest

from erpinsight.engine.scheduler import InsightCheckScheduler


class TestInsightCheckScheduler:
    """Test ticks, manual triggers and the background thread."""

    def test_tick_runs_checks(self):
        scheduler = InsightCheckScheduler(lambda: {"created": 2}, interval_seconds=60)
        assert scheduler.tick() == {"created": 2}
        assert scheduler.runs == 1
        assert scheduler.last_result == {"created": 2}

    def test_tick_skipped_while_running(self):
        calls = []
        scheduler = InsightCheckScheduler(lambda: calls.append(1), interval_seconds=60)
        scheduler._run_lock.acquire()
        try:
            assert scheduler.tick() is None
        finally:
            scheduler._run_lock.release()
        assert calls == []
        assert scheduler.runs == 0

    def test_tick_failure_is_counted_not_raised(self):
        errors = []

        def broken():
            raise RuntimeError("database is locked")

        scheduler = InsightCheckScheduler(broken, interval_seconds=60, on_error=errors.append)
        assert scheduler.tick() is None
        assert scheduler.failures == 1
        assert scheduler.runs == 1
        assert isinstance(errors[0], RuntimeError)

    def test_trigger_now_raises(self):
        def broken():
            raise RuntimeError("database is locked")

        scheduler = InsightCheckScheduler(broken, interval_seconds=60)
        with pytest.raises(RuntimeError):
            scheduler.trigger_now()
        assert scheduler.failures == 1

    def test_trigger_now_passes_arguments(self):
        scheduler = InsightCheckScheduler(lambda db=None, registry=None: (db, registry), interval_seconds=60)
        assert scheduler.trigger_now("session", registry="rules") == ("session", "rules")
        assert scheduler.tick() == (None, None)
        assert scheduler.runs == 2

    def test_trigger_now_waits_for_running_tick(self):
        started = threading.Event()
        release = threading.Event()
        results = []

        def run():
            results.append(len(results))
            if len(results) == 1:
                started.set()
                release.wait(5)
            return len(results)

        scheduler = InsightCheckScheduler(run, interval_seconds=60)
        ticker = threading.Thread(target=scheduler.tick)
        ticker.start()
        assert started.wait(5)

        triggered = []
        trigger = threading.Thread(target=lambda: triggered.append(scheduler.trigger_now()))
        trigger.start()
        release.set()
        ticker.join(5)
        trigger.join(5)

        # The manual trigger ran after the tick finished, not instead of it.
        assert triggered == [2]
        assert scheduler.runs == 2

    def test_disabled_when_interval_not_positive(self):
        scheduler = InsightCheckScheduler(lambda: None, interval_seconds=0)
        scheduler.start()
        assert scheduler.running is False

    def test_background_thread(self):
        ran = threading.Event()

        def run():
            ran.set()
            return "ok"

        scheduler = InsightCheckScheduler(run, interval_seconds=0.01, name="notification-check")
        scheduler.start()
        try:
            assert scheduler.running
            assert ran.wait(5)
            assert scheduler._thread.name == "notification-check-scheduler"
        finally:
            scheduler.stop()
        assert scheduler.running is False
        assert scheduler.last_result == "ok"
