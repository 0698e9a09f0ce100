"""Stage timing for pipeline runs."""

import time
from contextlib import contextmanager
from typing import Iterator


class MetricsCollector:
    """Collects per-stage latency totals across a run."""

    def __init__(self):
        self._start_times: dict[str, float] = {}
        self.totals: dict[str, float] = {}

    def start_timer(self, name: str) -> None:
        """Start a named timer."""
        self._start_times[name] = time.perf_counter()

    def stop_timer(self, name: str) -> float:
        """Stop a named timer, add it to the stage total and return elapsed time."""
        if name not in self._start_times:
            return 0.0
        elapsed = time.perf_counter() - self._start_times.pop(name)
        self.totals[name] = self.totals.get(name, 0.0) + elapsed
        return elapsed

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        """Time the enclosed block, including when it raises."""
        self.start_timer(name)
        try:
            yield
        finally:
            self.stop_timer(name)

    def total(self, name: str) -> float:
        return self.totals.get(name, 0.0)

    def reset(self) -> None:
        self._start_times.clear()
        self.totals.clear()
