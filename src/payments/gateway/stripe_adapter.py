"""Stripe payment gateway adapter.

Uses the stripe-python SDK to:
- Create manual-capture PaymentIntents (authorize), capture and cancel them
- Issue refunds against a PaymentIntent or a Charge
- Verify webhook signatures using Stripe's signing secret

The API key is passed per request rather than set on the ``stripe`` module so
several adapters (e.g. test and live keys) can coexist in one process.
"""

import stripe
import structlog

from payments.gateway.port import (
    GatewayError,
    PaymentGateway,
    PaymentIntent,
    RefundResult,
    WebhookEvent,
    map_payment_status,
)

logger = structlog.get_logger(__name__)

# Stripe only accepts a fixed set of refund/cancellation reasons; free text
# travels in metadata instead.
_REFUND_REASON = "requested_by_customer"
_CANCELLATION_REASON = "requested_by_customer"


def _to_intent(obj) -> PaymentIntent:
    return PaymentIntent(
        id=obj["id"],
        amount_cents=int(obj.get("amount") or 0),
        currency=(obj.get("currency") or "usd").upper(),
        status=map_payment_status(obj.get("status")),
        client_secret=obj.get("client_secret"),
        amount_received_cents=int(obj.get("amount_received") or 0),
    )


def _wrap(exc: Exception) -> GatewayError:
    message = getattr(exc, "user_message", None) or str(exc)
    return GatewayError(f"Stripe error: {message}", code=getattr(exc, "code", None))


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    name = "stripe"

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def authorize(
        self,
        amount_cents: int,
        currency: str,
        payment_method_id: str,
        customer_id: str | None = None,
        metadata: dict | None = None,
    ) -> PaymentIntent:
        params = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "payment_method": payment_method_id,
            "capture_method": "manual",
            "confirm": True,
            "metadata": metadata or {},
        }
        if customer_id:
            params["customer"] = customer_id
        try:
            obj = stripe.PaymentIntent.create(api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            raise _wrap(exc) from exc
        return _to_intent(obj)

    def capture(self, payment_intent_id: str, amount_cents: int | None = None) -> PaymentIntent:
        params = {}
        if amount_cents is not None:
            params["amount_to_capture"] = amount_cents
        try:
            obj = stripe.PaymentIntent.capture(payment_intent_id, api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            raise _wrap(exc) from exc
        return _to_intent(obj)

    def refund(
        self,
        charge_id: str,
        amount_cents: int,
        reason: str | None = None,
        metadata: dict | None = None,
    ) -> RefundResult:
        params = {
            "amount": amount_cents,
            "reason": _REFUND_REASON,
            "metadata": {**(metadata or {}), **({"reason": reason} if reason else {})},
        }
        # Payments store the PaymentIntent id; older records may hold a Charge id
        if charge_id.startswith("pi_"):
            params["payment_intent"] = charge_id
        else:
            params["charge"] = charge_id
        try:
            obj = stripe.Refund.create(api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            raise _wrap(exc) from exc
        return RefundResult(
            id=obj["id"],
            amount_cents=int(obj.get("amount") or amount_cents),
            status=obj.get("status") or "pending",
            reason=reason,
        )

    def void(self, payment_intent_id: str, reason: str | None = None) -> PaymentIntent:
        if reason:
            logger.info("stripe_void_requested", payment_intent_id=payment_intent_id, reason=reason)
        try:
            obj = stripe.PaymentIntent.cancel(
                payment_intent_id,
                api_key=self.api_key,
                cancellation_reason=_CANCELLATION_REASON,
            )
        except stripe.StripeError as exc:
            raise _wrap(exc) from exc
        return _to_intent(obj)

    def get_payment(self, payment_intent_id: str) -> PaymentIntent:
        try:
            obj = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise _wrap(exc) from exc
        return _to_intent(obj)

    def verify_webhook(self, payload: str | bytes, signature: str) -> WebhookEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise GatewayError("Invalid webhook signature", code="signature_verification_failed") from exc
        except ValueError as exc:
            raise GatewayError(f"Malformed webhook payload: {exc}") from exc
        return WebhookEvent(
            id=event["id"],
            type=event["type"],
            data=dict(event["data"]),
            created=int(event.get("created") or 0),
        )
