import logging
import threading

from src.models.delivery import DeliveryAttempt

log = logging.getLogger(__name__)


class DeliveryLogger:
    """Thread-safe audit trail of every webhook delivery attempt.

    Attempts are kept after an event reaches a terminal status, and across
    operator replays, so the full history of an event stays queryable.
    """

    def __init__(self):
        self._attempts: list[DeliveryAttempt] = []
        self._lock = threading.Lock()

    def log(self, attempt: DeliveryAttempt) -> None:
        with self._lock:
            self._attempts.append(attempt)
        if attempt.succeeded:
            log.info(
                "Delivered %s to %s (attempt %d, %.0fms)",
                attempt.event_id, attempt.url, attempt.attempt_number, attempt.response_time_ms,
            )
        else:
            log.warning(
                "Delivery of %s to %s failed on attempt %d: %s",
                attempt.event_id,
                attempt.url,
                attempt.attempt_number,
                attempt.status_code if attempt.status_code is not None else attempt.error,
            )

    def get_attempts(
        self, event_id: str | None = None, endpoint_id: str | None = None
    ) -> list[DeliveryAttempt]:
        with self._lock:
            return [
                a for a in self._attempts
                if (event_id is None or a.event_id == event_id)
                and (endpoint_id is None or a.endpoint_id == endpoint_id)
            ]

    def get_failed_attempts(self) -> list[DeliveryAttempt]:
        with self._lock:
            return [a for a in self._attempts if not a.succeeded]

    def clear(self) -> None:
        with self._lock:
            self._attempts.clear()
