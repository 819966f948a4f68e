"""
Fixed-interval background polling that never overlaps with itself.
"""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class IntervalPoller:
    """
    Run ``task`` every ``interval`` seconds on a daemon thread.

    Each tick runs on its own worker thread so a slow tick does not delay the
    schedule; a tick that comes due while the previous one is still running
    is skipped. Exceptions raised by the task are logged and the poller keeps
    going.
    """

    def __init__(
        self,
        task: Callable[[], None],
        interval: float,
        name: str = "poller",
        logger: Optional[logging.Logger] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.task = task
        self.interval = interval
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.ticks_run = 0
        self.ticks_skipped = 0
        self._in_flight = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._tick_thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> bool:
        """
        Run the task once unless a previous run is still in flight.

        Returns:
            True if the task ran, False if the tick was skipped
        """
        if not self._in_flight.acquire(blocking=False):
            self.ticks_skipped += 1
            self.logger.debug("%s: previous tick still running, skipping", self.name)
            return False
        try:
            self.task()
            self.ticks_run += 1
        except Exception as e:
            self.logger.error("%s: tick failed: %s", self.name, e)
        finally:
            self._in_flight.release()
        return True

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            if self._tick_thread is not None and self._tick_thread.is_alive():
                self.ticks_skipped += 1
                self.logger.debug("%s: previous tick still running, skipping", self.name)
                continue
            self._tick_thread = threading.Thread(target=self.tick, name=f"{self.name}-tick", daemon=True)
            self._tick_thread.start()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        self.logger.info("%s started (every %ss)", self.name, self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop scheduling ticks and wait for the tick in flight to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._tick_thread is not None:
            self._tick_thread.join(timeout)
            self._tick_thread = None
