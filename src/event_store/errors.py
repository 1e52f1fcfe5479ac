class EventStoreError(Exception):
    pass


class EventNotFound(EventStoreError):
    def __init__(self, event_id: str):
        super().__init__(f"Webhook event {event_id} not found")
        self.event_id = event_id


class StaleClaim(EventStoreError):
    """The caller's claim on an event expired or was taken over by another worker."""


class ReplayNotAllowed(EventStoreError):
    pass
