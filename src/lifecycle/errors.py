class ValidationError(Exception):
    """A request was rejected before any side effect was performed."""


class NotFound(ValidationError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransition(ValidationError):
    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"Cannot move {entity} from {current} to {target}")
        self.entity = entity
        self.current = current
        self.target = target


class TxHashConflict(ValidationError):
    pass


class RefundExceedsPayment(ValidationError):
    pass


class AlreadyRefunded(ValidationError):
    pass


class DuplicateInvoiceNumber(ValidationError):
    pass


class InvalidEndpoint(ValidationError):
    pass


class EndpointInUse(ValidationError):
    pass


class ConcurrentModification(Exception):
    """The entity's version changed since the caller last read it."""

    def __init__(self, entity: str, entity_id: str, expected: int, actual: int):
        super().__init__(
            f"{entity} {entity_id} is at version {actual}, expected {expected}"
        )
        self.expected = expected
        self.actual = actual
