"""Threaded periodic job runner with stop support."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from threading import Event, Thread

logger = logging.getLogger(__name__)


class PeriodicRunner:
    """Run named jobs on fixed intervals, each on its own daemon thread.

    Every job gets a :class:`threading.Event` used as its stop flag; the
    thread waits on that event between runs, so :meth:`stop` interrupts the
    sleep immediately. Exceptions raised by a job are logged and the job keeps
    its schedule.
    """

    Job = Callable[[], object]

    def __init__(self) -> None:
        self._events: dict[str, Event] = {}
        self._threads: dict[str, Thread] = {}

    def start(
        self, name: str, fn: Job, interval_seconds: float, *, run_immediately: bool = True
    ) -> None:
        if name in self._threads and self._threads[name].is_alive():
            logger.info("Periodic job %s already running", name)
            return
        stop_event = Event()

        def _loop() -> None:
            if run_immediately:
                self._run_safely(name, fn)
            while not stop_event.wait(interval_seconds):
                self._run_safely(name, fn)

        thread = Thread(target=_loop, name=f"periodic-{name}", daemon=True)
        self._events[name] = stop_event
        self._threads[name] = thread
        thread.start()
        logger.info("Started periodic job %s (every %ss)", name, interval_seconds)

    def stop(self, name: str, timeout: float | None = 5.0) -> None:
        event = self._events.pop(name, None)
        if event:
            event.set()
        thread = self._threads.pop(name, None)
        if thread:
            thread.join(timeout)

    def stop_all(self) -> None:
        for name in list(self._threads):
            self.stop(name)

    def list(self) -> Iterable[str]:
        return list(self._threads)

    @staticmethod
    def _run_safely(name: str, fn: Job) -> None:
        try:
            fn()
        except Exception:
            logger.exception("Periodic job %s failed", name)
