from dataclasses import dataclass
from datetime import datetime


@dataclass
class DeliveryAttempt:
    attempt_id: str
    event_id: str
    endpoint_id: str
    attempt_number: int
    url: str
    status_code: int | None
    timestamp: datetime
    response_time_ms: float
    error: str | None = None
    response_body: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


@dataclass(frozen=True)
class DeliveryOutcome:
    """What a single HTTP attempt produced, as handed to the event store."""

    status_code: int | None
    response_body: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300
