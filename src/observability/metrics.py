import threading
import time


class MetricsCollector:
    """Collects webhook delivery outcomes over a rolling window, per event type."""

    def __init__(self, window_seconds: float = 300):
        self._window_seconds = window_seconds
        self._samples: list[tuple[float, str, bool]] = []  # (monotonic time, event type, success)
        self._lock = threading.Lock()

    def record(self, event_type: str, success: bool) -> None:
        with self._lock:
            self._samples.append((time.monotonic(), event_type, success))

    def record_success(self, event_type: str) -> None:
        self.record(event_type, True)

    def record_failure(self, event_type: str) -> None:
        self.record(event_type, False)

    def _window(self, event_type: str | None) -> list[tuple[float, str, bool]]:
        cutoff = time.monotonic() - self._window_seconds
        # Drop expired samples as we go so the list stays bounded
        self._samples = [s for s in self._samples if s[0] >= cutoff]
        return [s for s in self._samples if event_type is None or s[1] == event_type]

    def failure_rate(self, event_type: str | None = None) -> float:
        """Failure rate in the current rolling window (0.0 to 1.0)."""
        with self._lock:
            samples = self._window(event_type)
            if not samples:
                return 0.0
            return sum(1 for s in samples if not s[2]) / len(samples)

    def total_in_window(self, event_type: str | None = None) -> int:
        with self._lock:
            return len(self._window(event_type))

    def failure_count_in_window(self, event_type: str | None = None) -> int:
        with self._lock:
            return sum(1 for s in self._window(event_type) if not s[2])

    def success_count_in_window(self, event_type: str | None = None) -> int:
        with self._lock:
            return sum(1 for s in self._window(event_type) if s[2])

    def by_event_type(self) -> dict[str, dict[str, int]]:
        with self._lock:
            summary: dict[str, dict[str, int]] = {}
            for _, event_type, success in self._window(None):
                counts = summary.setdefault(event_type, {"delivered": 0, "failed": 0})
                counts["delivered" if success else "failed"] += 1
            return summary

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
