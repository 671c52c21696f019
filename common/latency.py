import logging
import threading
import time
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)

WINDOW_S = 30.0
SWEEP_INTERVAL_S = 5.0


class LatencyAggregator:
    """Rolling window of request durations used for alerting.

    ``average()`` filters at read time, so the sweeper only bounds memory
    and never affects the reported value.
    """

    def __init__(self, window_s: float = WINDOW_S, clock: Callable[[], float] = time.monotonic):
        self.window_s = window_s
        self._clock = clock
        self._samples: deque = deque()  # (observed_at, duration_s), oldest first
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def record(self, duration_s: float) -> None:
        with self._lock:
            self._samples.append((self._clock(), float(duration_s)))

    def _live(self) -> list[float]:
        cutoff = self._clock() - self.window_s
        return [d for observed_at, d in self._samples if observed_at >= cutoff]

    def average(self) -> float:
        with self._lock:
            live = self._live()
        if not live:
            return 0.0
        return sum(live) / len(live)

    def count(self) -> int:
        with self._lock:
            return len(self._live())

    def purge(self) -> int:
        """Drop expired samples and return how many were removed."""
        cutoff = self._clock() - self.window_s
        removed = 0
        with self._lock:
            while self._samples and self._samples[0][0] < cutoff:
                self._samples.popleft()
                removed += 1
        return removed

    def start_sweeper(self, interval_s: float = SWEEP_INTERVAL_S) -> None:
        if self._sweeper and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, args=(interval_s,), name="latency-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper:
            self._sweeper.join(timeout=1)
            self._sweeper = None

    def _sweep_loop(self, interval_s: float) -> None:
        while not self._stop.wait(interval_s):
            removed = self.purge()
            if removed:
                logger.debug("Purged %d expired latency samples", removed)
