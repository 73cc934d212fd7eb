"""Configurable fake payment gateway for development and testing.

This adapter simulates a real payment processor without any external calls.
It can be configured at runtime to succeed or fail, making it useful for:
- Automated tests with predictable outcomes
- Development without real processor credentials

Intents are kept in memory so captures and voids see the amounts that were
authorized. An optional ``delay`` makes calls slow enough to exercise the
orchestrator's provider timeout.
"""

import json
import time
from uuid import uuid4

from payments.gateway.port import (
    GatewayError,
    PaymentGateway,
    PaymentIntent,
    RefundResult,
    WebhookEvent,
)
from shared.statuses import PaymentStatus


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.refund_status: str = "succeeded"
        self.delay: float = 0.0
        self.calls: list[dict] = []
        self.intents: dict[str, PaymentIntent] = {}

    def configure(
        self,
        should_succeed: bool,
        failure_reason: str = "Card declined",
        refund_status: str = "succeeded",
        delay: float = 0.0,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.refund_status = refund_status
        self.delay = delay

    def calls_to(self, method: str) -> list[dict]:
        return [c for c in self.calls if c["method"] == method]

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if self.delay:
            time.sleep(self.delay)
        if not self.should_succeed:
            raise GatewayError(self.failure_reason, code="fake_failure")

    def authorize(
        self,
        amount_cents: int,
        currency: str,
        payment_method_id: str,
        customer_id: str | None = None,
        metadata: dict | None = None,
    ) -> PaymentIntent:
        self._record(
            "authorize",
            amount_cents=amount_cents,
            currency=currency,
            payment_method_id=payment_method_id,
            customer_id=customer_id,
            metadata=metadata or {},
        )
        intent = PaymentIntent(
            id=f"pi_fake_{uuid4().hex[:12]}",
            amount_cents=amount_cents,
            currency=currency,
            status=PaymentStatus.AUTHORIZED,
            client_secret=f"secret_{uuid4().hex[:8]}",
        )
        self.intents[intent.id] = intent
        return intent

    def capture(self, payment_intent_id: str, amount_cents: int | None = None) -> PaymentIntent:
        self._record("capture", payment_intent_id=payment_intent_id, amount_cents=amount_cents)
        known = self.intents.get(payment_intent_id)
        authorized = known.amount_cents if known else (amount_cents or 0)
        intent = PaymentIntent(
            id=payment_intent_id,
            amount_cents=authorized,
            currency=known.currency if known else "USD",
            status=PaymentStatus.CAPTURED,
            amount_received_cents=amount_cents if amount_cents is not None else authorized,
        )
        self.intents[payment_intent_id] = intent
        return intent

    def refund(
        self,
        charge_id: str,
        amount_cents: int,
        reason: str | None = None,
        metadata: dict | None = None,
    ) -> RefundResult:
        self._record(
            "refund",
            charge_id=charge_id,
            amount_cents=amount_cents,
            reason=reason,
            metadata=metadata or {},
        )
        return RefundResult(
            id=f"re_fake_{uuid4().hex[:12]}",
            amount_cents=amount_cents,
            status=self.refund_status,
            reason=reason,
        )

    def void(self, payment_intent_id: str, reason: str | None = None) -> PaymentIntent:
        self._record("void", payment_intent_id=payment_intent_id, reason=reason)
        known = self.intents.get(payment_intent_id)
        intent = PaymentIntent(
            id=payment_intent_id,
            amount_cents=known.amount_cents if known else 0,
            currency=known.currency if known else "USD",
            status=PaymentStatus.VOIDED,
        )
        self.intents[payment_intent_id] = intent
        return intent

    def get_payment(self, payment_intent_id: str) -> PaymentIntent:
        self._record("get_payment", payment_intent_id=payment_intent_id)
        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise GatewayError(f"No such payment_intent: '{payment_intent_id}'", code="resource_missing")
        return intent

    def verify_webhook(self, payload: str | bytes, signature: str) -> WebhookEvent:
        # Bypasses should_succeed: signature checks are local, not a processor call
        self.calls.append({"method": "verify_webhook", "signature": signature})
        if signature != "test-signature":
            raise GatewayError("Invalid webhook signature", code="signature_verification_failed")
        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise GatewayError(f"Malformed webhook payload: {exc}") from exc
        return WebhookEvent(
            id=body.get("id", ""),
            type=body.get("type", ""),
            data=body.get("data", {}),
            created=body.get("created", 0),
        )
