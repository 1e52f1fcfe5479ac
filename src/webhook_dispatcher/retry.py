import random
from datetime import timedelta

from src.config.settings import DeliverySettings


class RetryPolicy:
    """Retry decisions and backoff scheduling for webhook delivery."""

    # Client errors that will not succeed on a second try
    DEFAULT_NO_RETRY_CODES = frozenset({400, 401, 403, 410})

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 3600.0,
        jitter: float = 0.2,
        no_retry_codes: frozenset[int] | None = None,
        rng: random.Random | None = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.no_retry_codes = (
            no_retry_codes if no_retry_codes is not None else self.DEFAULT_NO_RETRY_CODES
        )
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: DeliverySettings, rng: random.Random | None = None) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
            no_retry_codes=settings.non_retryable_codes,
            rng=rng,
        )

    def should_retry(self, status_code: int | None) -> bool:
        """Determine if a failed delivery may be retried based on its status code.

        Returns True for:
        - None (connection error / timeout)
        - 5xx, 429 and any other non-2xx code not listed as non-retryable
        Returns False for:
        - 2xx success
        - 400, 401, 403, 410 (by default)
        """
        if status_code is None:
            return True
        if 200 <= status_code < 300:
            return False
        return status_code not in self.no_retry_codes

    def has_attempts_remaining(self, attempts: int) -> bool:
        """Check if another attempt is allowed after ``attempts`` were made."""
        return attempts < self.max_attempts

    def next_delay(self, attempts: int) -> float:
        """Seconds to wait after the ``attempts``-th failed attempt (1-indexed)."""
        delay = min(self.base_delay * (2 ** max(attempts - 1, 0)), self.max_delay)
        if self.jitter:
            spread = delay * self.jitter
            delay += self._rng.uniform(-spread, spread)
        return max(0.0, min(delay, self.max_delay))

    def next_attempt_delta(self, attempts: int) -> timedelta:
        return timedelta(seconds=self.next_delay(attempts))
