"""Error taxonomy for the orders core.

Every expected failure is an ``OrderError`` subclass tagged with an
``ErrorKind`` so callers can branch on the cause (bad input, wrong state,
provider trouble, storage trouble) and render a different response for each.
``http_status`` is what the API layer returns for the kind.
"""

from enum import Enum


class ErrorKind(Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    STATE_CONFLICT = "state_conflict"
    PROVIDER = "provider"
    PERSISTENCE = "persistence"


class OrderError(Exception):
    kind: ErrorKind
    http_status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind.value}


class ValidationError(OrderError):
    """Malformed input, e.g. a blank order id or a non-positive quantity."""

    kind = ErrorKind.VALIDATION
    http_status = 400


class NotFoundError(OrderError):
    """The order, payment or shipment does not exist."""

    kind = ErrorKind.NOT_FOUND
    http_status = 404


class StateConflictError(OrderError):
    """The operation is not valid for the order's current state."""

    kind = ErrorKind.STATE_CONFLICT
    http_status = 409


class ProviderError(OrderError):
    """A payment gateway or shipping carrier call failed; nothing was persisted."""

    kind = ErrorKind.PROVIDER
    http_status = 502
    outcome_unknown = False


class ProviderTimeoutError(ProviderError):
    """A provider call did not answer in time. It may or may not have taken effect."""

    http_status = 504
    outcome_unknown = True


class PersistenceError(OrderError):
    kind = ErrorKind.PERSISTENCE
    http_status = 500


def require_id(value: str | None, name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"Invalid {name}")
    return str(value).strip()
