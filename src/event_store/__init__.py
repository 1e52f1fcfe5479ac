from .errors import EventNotFound, EventStoreError, ReplayNotAllowed, StaleClaim
from .store import EventRequest, EventStore, freeze_payload, is_dead

__all__ = [
    "EventNotFound", "EventStoreError", "ReplayNotAllowed", "StaleClaim",
    "EventRequest", "EventStore", "freeze_payload", "is_dead",
]
