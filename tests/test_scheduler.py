import logging
import threading
import time

from app.core.scheduler import PeriodicRunner


def test_job_runs_repeatedly_until_stopped():
    runner = PeriodicRunner()
    calls = []
    ran_twice = threading.Event()

    def _job():
        calls.append(1)
        if len(calls) >= 2:
            ran_twice.set()

    runner.start("tick", _job, interval_seconds=0.01)
    assert ran_twice.wait(2.0)
    assert list(runner.list()) == ["tick"]

    runner.stop("tick")

    assert list(runner.list()) == []
    count = len(calls)
    time.sleep(0.05)
    assert len(calls) == count


def test_failing_job_is_logged_and_keeps_schedule(caplog):
    runner = PeriodicRunner()
    attempts = []
    retried = threading.Event()

    def _job():
        attempts.append(1)
        if len(attempts) >= 2:
            retried.set()
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR, logger="app.core.scheduler"):
        runner.start("flaky", _job, interval_seconds=0.01)
        assert retried.wait(2.0)
        runner.stop_all()

    assert any("Periodic job flaky failed" in r.getMessage() for r in caplog.records)


def test_starting_a_running_job_twice_is_ignored():
    runner = PeriodicRunner()
    started = threading.Event()

    runner.start("once", started.set, interval_seconds=60)
    runner.start("once", started.set, interval_seconds=60)
    assert started.wait(2.0)

    assert list(runner.list()) == ["once"]
    runner.stop_all()


def test_stop_unknown_job_is_a_no_op():
    PeriodicRunner().stop("missing")
