"""Durable record of outbound webhook events.

The store is the only writer of delivery bookkeeping (status, attempts,
response fields). The state machine asks it to create events; dispatcher
workers claim events, deliver them, and report outcomes back through
``record_attempt``. All bookkeeping happens under one short-lived lock that
is never held across network I/O.

Delivery order is FIFO per endpoint: only the oldest open event of an
endpoint can be claimed, and never while another event of the same
endpoint is in flight or waiting out its backoff.
"""

from __future__ import annotations

import copy
import itertools
import json
import logging
import threading
import uuid
from bisect import insort
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from src.event_store.errors import EventNotFound, ReplayNotAllowed, StaleClaim
from src.models.delivery import DeliveryOutcome
from src.models.webhook import EventStatus, EventType, WebhookEvent
from src.storage.base import WebhookEndpointRepository
from src.utils.crypto import idempotency_key

if TYPE_CHECKING:
    from src.webhook_dispatcher.retry import RetryPolicy

logger = logging.getLogger(__name__)

MAX_RESPONSE_BODY = 1000


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def freeze_payload(payload: dict) -> str:
    return json.dumps(payload, default=_json_default, separators=(",", ":"))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EventRequest:
    """One event the state machine wants materialized."""

    endpoint_id: str
    event_type: EventType
    payload: dict
    source_id: str
    revision: int

    @property
    def idempotency_key(self) -> str:
        return idempotency_key(
            self.source_id, self.event_type.value, self.endpoint_id, self.revision
        )


class EventStore:
    def __init__(
        self,
        endpoints: WebhookEndpointRepository,
        retry_policy: RetryPolicy,
        visibility_timeout: float = 60.0,
    ):
        self._endpoints = endpoints
        self.retry_policy = retry_policy
        self.visibility_timeout = timedelta(seconds=visibility_timeout)
        self._events: dict[str, WebhookEvent] = {}
        self._by_key: dict[str, str] = {}
        # endpoint_id -> open (not delivered, not dead) events as (sequence, event_id)
        self._queues: dict[str, list[tuple[int, str]]] = {}
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    # -- creation ---------------------------------------------------------

    def create_event(
        self,
        endpoint_id: str,
        event_type: EventType,
        payload: dict,
        *,
        source_id: str,
        revision: int,
    ) -> WebhookEvent:
        """Create a pending event, or return the one already created for the same key."""
        request = EventRequest(endpoint_id, event_type, payload, source_id, revision)
        return self.create_events([request])[0]

    def create_events(self, requests: Iterable[EventRequest], now: datetime | None = None) -> list[WebhookEvent]:
        """Create a batch of events atomically: all are stored or none are."""
        now = now or _utcnow()
        requests = list(requests)
        # Serialize before taking the lock so a bad payload aborts the whole batch
        frozen = [freeze_payload(r.payload) for r in requests]
        for r in requests:
            if not isinstance(r.event_type, EventType):
                raise ValueError(f"Unknown event type: {r.event_type!r}")

        created: list[WebhookEvent] = []
        with self._lock:
            for r, payload_json in zip(requests, frozen):
                key = r.idempotency_key
                existing_id = self._by_key.get(key)
                if existing_id is not None:
                    created.append(copy.deepcopy(self._events[existing_id]))
                    continue
                event = WebhookEvent(
                    event_id=f"evt_{uuid.uuid4().hex[:24]}",
                    endpoint_id=r.endpoint_id,
                    event_type=r.event_type,
                    payload_json=payload_json,
                    idempotency_key=key,
                    source_id=r.source_id,
                    revision=r.revision,
                    sequence=next(self._sequence),
                    created_at=now,
                )
                self._events[event.event_id] = event
                self._by_key[key] = event.event_id
                self._queues.setdefault(r.endpoint_id, []).append((event.sequence, event.event_id))
                created.append(copy.deepcopy(event))
                logger.debug(
                    "Queued %s event %s for endpoint %s", r.event_type.value, event.event_id, r.endpoint_id
                )
        return created

    # -- claiming ---------------------------------------------------------

    def _is_claimable(self, event: WebhookEvent, now: datetime) -> bool:
        if event.status is EventStatus.PENDING:
            return True
        if event.status is EventStatus.FAILED:
            return (
                self.retry_policy.has_attempts_remaining(event.attempts)
                and event.next_attempt_at is not None
                and now >= event.next_attempt_at
            )
        if event.status is EventStatus.IN_FLIGHT:
            return event.claimed_at is not None and now - event.claimed_at >= self.visibility_timeout
        return False

    def _candidate(self, queue: list[tuple[int, str]], now: datetime) -> WebhookEvent | None:
        # A replayed event can sit ahead of one already in flight, so the
        # whole queue is checked for a live claim, not just the head.
        for _, event_id in queue:
            event = self._events[event_id]
            if event.status is EventStatus.IN_FLIGHT:
                return event if self._is_claimable(event, now) else None
        head = self._events[queue[0][1]]
        return head if self._is_claimable(head, now) else None

    def claim_next_deliverable(self, limit: int, now: datetime | None = None) -> list[WebhookEvent]:
        """Atomically claim up to ``limit`` events, at most one per endpoint.

        Claimed events are marked in flight with a fresh claim token that must
        be presented to ``record_attempt`` or ``release``.
        """
        now = now or _utcnow()
        claimed: list[WebhookEvent] = []
        with self._lock:
            heads: list[WebhookEvent] = []
            for endpoint_id, queue in self._queues.items():
                if not queue:
                    continue
                endpoint = self._endpoints.get(endpoint_id)
                if endpoint is None or not endpoint.active:
                    continue
                candidate = self._candidate(queue, now)
                if candidate is not None:
                    heads.append(candidate)
            heads.sort(key=lambda e: e.sequence)
            for event in heads[:limit]:
                if event.status is EventStatus.IN_FLIGHT:
                    logger.warning(
                        "Reclaiming event %s: claim from %s exceeded visibility timeout",
                        event.event_id,
                        event.claimed_at.isoformat(),
                    )
                event.status = EventStatus.IN_FLIGHT
                event.claim_token = uuid.uuid4().hex
                event.claimed_at = now
                claimed.append(copy.deepcopy(event))
        return claimed

    def _claimed(self, event_id: str, claim_token: str) -> WebhookEvent:
        event = self._events.get(event_id)
        if event is None:
            raise EventNotFound(event_id)
        if event.status is not EventStatus.IN_FLIGHT or event.claim_token != claim_token:
            raise StaleClaim(f"Claim on event {event_id} is no longer held")
        return event

    def _close(self, event: WebhookEvent) -> None:
        queue = self._queues.get(event.endpoint_id, [])
        entry = (event.sequence, event.event_id)
        if entry in queue:
            queue.remove(entry)

    # -- outcomes ---------------------------------------------------------

    def record_attempt(
        self,
        event_id: str,
        claim_token: str,
        outcome: DeliveryOutcome,
        now: datetime | None = None,
    ) -> WebhookEvent:
        """Record one delivery attempt and compute the event's next status."""
        now = now or _utcnow()
        with self._lock:
            event = self._claimed(event_id, claim_token)
            event.attempts += 1
            event.last_attempt = now
            event.response_code = outcome.status_code
            body = outcome.response_body if outcome.response_body is not None else outcome.error
            event.response_body = body[:MAX_RESPONSE_BODY] if body is not None else None
            event.claim_token = None
            event.claimed_at = None

            if outcome.succeeded:
                event.status = EventStatus.DELIVERED
                event.next_attempt_at = None
                self._close(event)
            elif self.retry_policy.should_retry(outcome.status_code) and (
                self.retry_policy.has_attempts_remaining(event.attempts)
            ):
                event.status = EventStatus.FAILED
                event.next_attempt_at = now + self.retry_policy.next_attempt_delta(event.attempts)
            else:
                event.status = EventStatus.FAILED
                event.next_attempt_at = None
                self._close(event)
                logger.warning(
                    "Event %s permanently failed after %d attempt(s) (last status %s)",
                    event.event_id,
                    event.attempts,
                    outcome.status_code if outcome.status_code is not None else outcome.error,
                )
            return copy.deepcopy(event)

    def release(self, event_id: str, claim_token: str) -> WebhookEvent:
        """Give a claim back without consuming an attempt."""
        with self._lock:
            event = self._claimed(event_id, claim_token)
            event.claim_token = None
            event.claimed_at = None
            if event.attempts == 0:
                event.status = EventStatus.PENDING
            else:
                event.status = EventStatus.FAILED
                if event.next_attempt_at is None:
                    event.next_attempt_at = _utcnow()
            return copy.deepcopy(event)

    def reset_for_replay(self, event_id: str) -> WebhookEvent:
        """Operator action: put a dead event back in its endpoint's queue with attempts reset."""
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise EventNotFound(event_id)
            if not is_dead(event):
                raise ReplayNotAllowed(
                    f"Event {event_id} is {event.status.value}; only permanently failed events can be replayed"
                )
            event.status = EventStatus.PENDING
            event.attempts = 0
            event.next_attempt_at = None
            insort(self._queues.setdefault(event.endpoint_id, []), (event.sequence, event.event_id))
            logger.info("Event %s reset for replay", event_id)
            return copy.deepcopy(event)

    # -- queries ----------------------------------------------------------

    def get_event(self, event_id: str) -> WebhookEvent:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise EventNotFound(event_id)
            return copy.deepcopy(event)

    def list_events(
        self,
        endpoint_ids: Iterable[str] | None = None,
        status: EventStatus | None = None,
        limit: int | None = None,
    ) -> list[WebhookEvent]:
        """Events newest first, optionally filtered by endpoint and status."""
        wanted = set(endpoint_ids) if endpoint_ids is not None else None
        with self._lock:
            rows = [
                e for e in self._events.values()
                if (wanted is None or e.endpoint_id in wanted)
                and (status is None or e.status is status)
            ]
            rows.sort(key=lambda e: e.sequence, reverse=True)
            if limit is not None:
                rows = rows[:limit]
            return [copy.deepcopy(e) for e in rows]

    def dead_events(self, endpoint_ids: Iterable[str] | None = None) -> list[WebhookEvent]:
        return [e for e in self.list_events(endpoint_ids, EventStatus.FAILED) if is_dead(e)]

    def has_undelivered(self, endpoint_id: str) -> bool:
        with self._lock:
            return any(
                e.endpoint_id == endpoint_id and e.status is not EventStatus.DELIVERED
                for e in self._events.values()
            )


def is_dead(event: WebhookEvent) -> bool:
    """True for events that will not be retried without operator action."""
    return event.status is EventStatus.FAILED and event.next_attempt_at is None
