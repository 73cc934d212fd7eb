"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
This enables swapping between FakeGateway (dev/test) and StripeGateway
(production) without changing the order orchestrator.

Adapters translate the processor's native status vocabulary through
``map_payment_status`` and wrap every processor or network failure in
``GatewayError``. They never retry; retry policy belongs to the caller.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from shared.statuses import PaymentStatus


class GatewayError(Exception):
    """A payment processor call failed. Carries the processor's message."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


# Processor status -> internal status. Anything not listed maps to FAILED.
_STATUS_MAP = {
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "processing": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.AUTHORIZED,
    "succeeded": PaymentStatus.CAPTURED,
    "canceled": PaymentStatus.VOIDED,
}


def map_payment_status(provider_status: str | None) -> PaymentStatus:
    return _STATUS_MAP.get(provider_status or "", PaymentStatus.FAILED)


@dataclass(frozen=True)
class PaymentIntent:
    """A processor-side payment, as seen after the last call."""

    id: str
    amount_cents: int
    currency: str
    status: PaymentStatus
    client_secret: str | None = None
    amount_received_cents: int = 0


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund request. ``status`` is pending, succeeded or failed."""

    id: str
    amount_cents: int
    status: str
    reason: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """A verified webhook notification from the processor."""

    id: str
    type: str
    data: dict = field(default_factory=dict)
    created: int = 0


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str = "gateway"

    @abstractmethod
    def authorize(
        self,
        amount_cents: int,
        currency: str,
        payment_method_id: str,
        customer_id: str | None = None,
        metadata: dict | None = None,
    ) -> PaymentIntent:
        """Reserve funds on a payment method without capturing them."""
        ...

    @abstractmethod
    def capture(self, payment_intent_id: str, amount_cents: int | None = None) -> PaymentIntent:
        """Capture a previously authorized payment, fully or partially."""
        ...

    @abstractmethod
    def refund(
        self,
        charge_id: str,
        amount_cents: int,
        reason: str | None = None,
        metadata: dict | None = None,
    ) -> RefundResult:
        """Return captured funds."""
        ...

    @abstractmethod
    def void(self, payment_intent_id: str, reason: str | None = None) -> PaymentIntent:
        """Cancel an authorization before capture."""
        ...

    @abstractmethod
    def get_payment(self, payment_intent_id: str) -> PaymentIntent:
        """Fetch the current state of a payment."""
        ...

    @abstractmethod
    def verify_webhook(self, payload: str | bytes, signature: str) -> WebhookEvent:
        """Verify a webhook payload is authentically from the processor and parse it.

        Raises:
            GatewayError: if the signature does not match or the payload is malformed.
        """
        ...
