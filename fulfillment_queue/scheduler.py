from __future__ import annotations

# Periodic background task.
#
# A Ticker calls one function every `interval` seconds on a daemon thread until
# stopped. The host owns start/stop; tests call `step()` instead of sleeping.
#
# Each start() gets its own stop event. A thread that outlived a stop() join
# timeout still sees its own event set and exits after its current run, even
# if the ticker has been started again in the meantime.

import threading
from typing import Callable

from loguru import logger


class Ticker:
    def __init__(self, fn: Callable[[], object], interval: float, *, name: str = "ticker") -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._fn = fn
        self.interval = interval
        self.name = name

        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive()

    def start(self) -> None:
        if self.running:
            return
        stop_event = threading.Event()
        self._stop_event = stop_event
        self._thread = threading.Thread(target=self._loop, args=(stop_event,), name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop. A call already in progress is allowed to finish."""
        if self._stop_event is not None:
            self._stop_event.set()
        t = self._thread
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=timeout)
            if t.is_alive():
                logger.warning("{} still finishing a run after {}s; it will exit afterwards", self.name, timeout)
        self._thread = None
        self._stop_event = None

    def step(self) -> object:
        return self._fn()

    def _loop(self, stop_event: threading.Event) -> None:
        # Wait first: the first tick happens one interval after start.
        while not stop_event.wait(self.interval):
            try:
                self._fn()
            except Exception:
                # Keep ticking even if one run fails.
                logger.exception("{} run failed", self.name)
