"""Fixed-interval background work on a daemon thread."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class IntervalTask:
    """Run ``fn`` every ``interval_sec`` until stopped.

    The first run happens one interval after ``start()``. Exceptions from
    ``fn`` are logged and the loop keeps going.
    """

    name: str
    interval_sec: float
    fn: Callable[[], object]

    _stop_event: threading.Event = field(default_factory=threading.Event, init=False)
    _thread: threading.Thread | None = field(default=None, init=False)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        if self.interval_sec <= 0:
            raise ValueError(f"interval_sec must be positive, got {self.interval_sec}")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name=f"polytrack-{self.name}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("interval_task_started", task=self.name, interval_sec=self.interval_sec)

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            logger.debug("interval_task_stopped", task=self.name)

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_sec):
            try:
                self.fn()
            except Exception:
                logger.exception("interval_task_failed", task=self.name)
