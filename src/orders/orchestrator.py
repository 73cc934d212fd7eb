"""Order orchestrator, the one entry point for changing an order.

Each mutating operation follows the same sequence:

    lock order → load → validate → provider call → mutate aggregate
    → commit (one unit of work) → unlock → audit

Validation and state checks complete before any provider is called, so a
rejected request never reaches Stripe or the carrier. A failed primary provider
call aborts the operation with nothing persisted. Secondary failures (voids
during cancellation, audit writes) are logged and do not fail the operation.
"""

import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, replace
from datetime import UTC, date, datetime

import structlog
from protean.exceptions import ValidationError as ProteanValidationError

from orders.audit.audit_log import ActorType
from orders.audit.queries import DEFAULT_LIMIT, audit_history
from orders.audit.recorder import AuditRecorder
from orders.errors import (
    NotFoundError,
    ProviderError,
    StateConflictError,
    ValidationError,
    require_id,
)
from orders.locking import OrderLocks
from orders.order.order import MAX_REASON_LENGTH, Address, Order, RefundAllocation
from orders.order.views import order_view, payment_view, refund_view, shipment_view
from orders.provider_calls import DEFAULT_TIMEOUT_SECONDS, ProviderCalls
from orders.queries import OrderExport, OrderFilters, OrderPage, OrderSort, Pagination, export_of, page_of
from orders.store import OrderStore
from payments.gateway.port import GatewayError, PaymentGateway, WebhookEvent
from shared.statuses import PaymentStatus, RefundStatus, ShipmentStatus
from shipping.carrier import port as carrier_port
from shipping.carrier.port import (
    DEFAULT_CARRIER,
    DEFAULT_ITEM_WEIGHT_GRAMS,
    DEFAULT_SERVICE,
    ShipmentItemSpec,
    ShipmentRequest,
    ShippingCarrier,
    ShippingRate,
    map_tracking_status,
)

logger = structlog.get_logger(__name__)

_REFUND_STATUS_MAP = {
    "pending": RefundStatus.PROCESSING,
    "requires_action": RefundStatus.PROCESSING,
    "succeeded": RefundStatus.SUCCEEDED,
}


@dataclass
class TrackingUpdate:
    status: ShipmentStatus | str
    description: str | None = None
    location: str | None = None
    timestamp: datetime | None = None
    estimated_delivery: datetime | None = None

    def resolved_status(self) -> ShipmentStatus:
        if isinstance(self.status, ShipmentStatus):
            return self.status
        try:
            return ShipmentStatus(str(self.status).upper())
        except ValueError as exc:
            raise ValidationError(f"Unknown shipment status: {self.status}") from exc


def refund_allocation_from_env() -> RefundAllocation:
    return RefundAllocation(os.environ.get("REFUND_ALLOCATION", RefundAllocation.EQUAL.value).lower())


def origin_address_from_env() -> carrier_port.Address | None:
    """Warehouse address labels ship from; ``None`` when not configured."""
    address1 = os.environ.get("FULFILLMENT_ORIGIN_ADDRESS1")
    if not address1:
        return None
    return carrier_port.Address(
        address1=address1,
        address2=os.environ.get("FULFILLMENT_ORIGIN_ADDRESS2"),
        city=os.environ["FULFILLMENT_ORIGIN_CITY"],
        state=os.environ.get("FULFILLMENT_ORIGIN_STATE"),
        postal_code=os.environ["FULFILLMENT_ORIGIN_POSTAL_CODE"],
        country=os.environ.get("FULFILLMENT_ORIGIN_COUNTRY", "US"),
        company=os.environ.get("FULFILLMENT_ORIGIN_COMPANY"),
        phone=os.environ.get("FULFILLMENT_ORIGIN_PHONE"),
    )


def _to_carrier_address(address: Address) -> carrier_port.Address:
    return carrier_port.Address(
        address1=address.address1,
        address2=address.address2,
        city=address.city,
        state=address.state,
        postal_code=address.postal_code,
        country=address.country or "US",
        first_name=address.first_name,
        last_name=address.last_name,
        company=address.company,
        phone=address.phone,
    )


def _to_order_address(address: carrier_port.Address) -> Address:
    return Address(**asdict(address))


def _normalize_lines(items: list | None) -> list[dict]:
    lines = []
    for item in items or []:
        if not isinstance(item, dict):
            item = {"order_item_id": getattr(item, "order_item_id", None), "quantity": getattr(item, "quantity", None)}
        lines.append(item)
    return lines


def _messages(exc: ProteanValidationError) -> str:
    return "; ".join(f"{field}: {', '.join(map(str, errors))}" for field, errors in exc.messages.items())


class OrderOrchestrator:
    """Coordinates the order store, payment gateway, shipping carrier and audit trail.

    Collaborators are injected; nothing here reads provider configuration.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        carrier: ShippingCarrier,
        store: OrderStore,
        audit: AuditRecorder,
        provider_calls: ProviderCalls | None = None,
        locks: OrderLocks | None = None,
        refund_allocation: RefundAllocation = RefundAllocation.EQUAL,
        origin_address: carrier_port.Address | None = None,
    ) -> None:
        self.gateway = gateway
        self.carrier = carrier
        self.store = store
        self.audit = audit
        self.calls = provider_calls or ProviderCalls(timeout=DEFAULT_TIMEOUT_SECONDS)
        self.locks = locks if locks is not None else OrderLocks()
        self.refund_allocation = refund_allocation
        self.origin_address = origin_address

    @property
    def domain(self):
        return self.store.domain

    # -------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------
    @contextmanager
    def _operation(self, name: str, order_id: str | None = None) -> Iterator[None]:
        with structlog.contextvars.bound_contextvars(operation=name, order_id=order_id):
            with self.domain.domain_context():
                try:
                    yield
                except ProteanValidationError as exc:
                    raise ValidationError(_messages(exc)) from exc

    @contextmanager
    def _locked(self, name: str, order_id: str) -> Iterator[None]:
        with self._operation(name, order_id), self.locks.hold(order_id):
            yield

    def _record_audit(self, **entry) -> None:
        try:
            self.audit.record(**entry)
        except Exception:
            logger.exception("audit_write_failed", entity_type=entry.get("entity_type"), action=entry.get("action"))

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_orders(
        self,
        filters: OrderFilters | None = None,
        sort: OrderSort | None = None,
        pagination: Pagination | None = None,
    ) -> OrderPage:
        with self._operation("get_orders"):
            pagination = pagination or Pagination()
            window, total = self.store.page(filters or OrderFilters(), sort or OrderSort(), pagination)
            return page_of(window, total, pagination)

    def get_order(self, order_id: str) -> dict:
        order_id = require_id(order_id, "order id")
        with self._operation("get_order", order_id):
            return order_view(self.store.get(order_id))

    def export_orders(self, filters: OrderFilters | None = None) -> OrderExport:
        with self._operation("export_orders"):
            return export_of(self.store.all_matching(filters or OrderFilters(), OrderSort("created_at", "desc")))

    def audit_history(
        self,
        order_id: str,
        entity_type: str | None = None,
        actor: str | None = None,
        action: str | None = None,
        created_from: date | datetime | None = None,
        created_to: date | datetime | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[dict]:
        return audit_history(
            self.domain,
            order_id,
            entity_type=entity_type,
            actor=actor,
            action=action,
            created_from=created_from,
            created_to=created_to,
            limit=limit,
        )

    def quote_rates(self, request: ShipmentRequest) -> list[ShippingRate]:
        if not request.items:
            raise ValidationError("At least one item is required to quote rates")
        with self._operation("quote_rates"):
            rates = self.calls.call(self.carrier.name, "quote_rates", self.carrier.quote_rates, request)
        return sorted(rates, key=lambda r: r.cost_cents)

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def cancel_order(self, order_id: str, reason: str, actor: str = "system") -> dict:
        order_id = require_id(order_id, "order id")
        reason = (reason or "").strip()
        if not 1 <= len(reason) <= MAX_REASON_LENGTH:
            raise ValidationError(f"Cancel reason must be 1-{MAX_REASON_LENGTH} characters")

        with self._locked("cancel_order", order_id):
            order = self.store.get(order_id)
            order.check_cancellable()

            voided = []
            for payment in order.authorized_payments():
                if not payment.provider_charge_id:
                    continue
                try:
                    intent = self.calls.call(
                        self.gateway.name, "void", self.gateway.void, payment.provider_charge_id, reason
                    )
                except ProviderError as exc:
                    logger.warning("void_failed_during_cancel", payment_id=str(payment.id), error=exc.message)
                    continue
                if intent.status == PaymentStatus.VOIDED:
                    voided.append(str(payment.id))
                else:
                    logger.warning("void_not_confirmed", payment_id=str(payment.id), status=intent.status.value)

            cancelled_shipments = order.cancel(reason, voided_payment_ids=voided)
            self.store.save(order)
            logger.info("order_cancelled", voided_payments=len(voided), cancelled_shipments=len(cancelled_shipments))
            result = order_view(order)

        self._record_audit(
            order_id=order_id,
            entity_type="order",
            entity_id=order_id,
            action="cancelled",
            actor=actor,
            actor_type=ActorType.ADMIN,
            changes={"cancel_reason": reason, "voided_payment_ids": voided},
        )
        return result

    # -------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------
    def create_fulfillment(
        self,
        order_id: str,
        items: list,
        carrier: str | None = None,
        service: str | None = None,
        options: dict | None = None,
        actor: str = "system",
    ) -> dict:
        order_id = require_id(order_id, "order id")
        lines = _normalize_lines(items)
        carrier = carrier or DEFAULT_CARRIER
        service = service or DEFAULT_SERVICE
        options = options or {}

        with self._locked("create_fulfillment", order_id):
            order = self.store.get(order_id)
            requested = order.check_fulfillable(lines)
            if order.shipping_address is None:
                raise StateConflictError("Order has no shipping address")

            to_address = _to_carrier_address(order.shipping_address)
            from_address = self.origin_address or to_address
            specs = [
                ShipmentItemSpec(
                    name=order.get_item(item_id).name,
                    quantity=quantity,
                    weight_grams=DEFAULT_ITEM_WEIGHT_GRAMS,
                    value_cents=order.get_item(item_id).price_cents,
                )
                for item_id, quantity in requested.items()
            ]
            request = ShipmentRequest(
                from_address=from_address,
                to_address=to_address,
                items=specs,
                carrier=carrier,
                service=service,
                signature=bool(options.get("signature")),
            )
            if options.get("insurance"):
                request = replace(request, insurance_cents=request.total_value_cents)

            label = self.calls.call(self.carrier.name, "buy_label", self.carrier.buy_label, request)

            shipment = order.record_shipment(
                lines,
                carrier=carrier,
                service=service,
                tracking_number=label.tracking_number,
                label_url=label.label_url,
                cost_cents=label.cost_cents,
                label_id=label.label_id,
                estimated_delivery=label.estimated_delivery,
                from_address=_to_order_address(from_address),
                to_address=_to_order_address(to_address),
            )
            self.store.save(order)
            logger.info("shipment_created", shipment_id=str(shipment.id), tracking_number=label.tracking_number)
            result = shipment_view(order, shipment)

        self._record_audit(
            order_id=order_id,
            entity_type="shipment",
            entity_id=str(shipment.id),
            action="created",
            actor=actor,
            actor_type=ActorType.ADMIN,
            changes={"tracking_number": label.tracking_number, "carrier": carrier, "service": service},
        )
        return result

    def update_shipment_tracking(
        self,
        shipment_id: str,
        update: TrackingUpdate,
        actor: str = "system",
        actor_type: ActorType = ActorType.SYSTEM,
    ) -> dict:
        shipment_id = require_id(shipment_id, "shipment id")
        status = update.resolved_status()
        timestamp = update.timestamp or datetime.now(UTC)

        with self._operation("update_shipment_tracking"):
            order_id = str(self.store.find_by_shipment(shipment_id).id)

        with self._locked("update_shipment_tracking", order_id):
            order = self.store.get(order_id)
            order.record_tracking(
                shipment_id,
                status,
                timestamp,
                description=update.description,
                location=update.location,
                estimated_delivery=update.estimated_delivery,
            )
            self.store.save(order)
            logger.info("shipment_tracking_updated", shipment_id=shipment_id, status=status.value)
            result = shipment_view(order, order.get_shipment(shipment_id))

        self._record_audit(
            order_id=order_id,
            entity_type="shipment",
            entity_id=shipment_id,
            action="tracking_updated",
            actor=actor,
            actor_type=actor_type,
            changes={"status": status.value, "location": update.location, "timestamp": timestamp.isoformat()},
        )
        return result

    def record_carrier_update(
        self,
        tracking_number: str,
        status: str,
        description: str | None = None,
        location: str | None = None,
        timestamp: datetime | None = None,
    ) -> dict:
        """Apply a carrier webhook. ``status`` is the carrier's raw tracking status."""
        tracking_number = require_id(tracking_number, "tracking number")
        with self._operation("record_carrier_update"):
            order = self.store.find_by_tracking_number(tracking_number)
            shipment_id = str(order.shipment_by_tracking_number(tracking_number).id)

        return self.update_shipment_tracking(
            shipment_id,
            TrackingUpdate(
                status=map_tracking_status(status),
                description=description,
                location=location,
                timestamp=timestamp,
            ),
            actor="carrier",
            actor_type=ActorType.WEBHOOK,
        )

    # -------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------
    def authorize_payment(
        self,
        order_id: str,
        payment_method_id: str,
        amount_cents: int | None = None,
        currency: str | None = None,
        actor: str = "system",
    ) -> dict:
        order_id = require_id(order_id, "order id")
        payment_method_id = require_id(payment_method_id, "payment method id")

        with self._locked("authorize_payment", order_id):
            order = self.store.get(order_id)
            order.check_authorizable()
            amount = order.grand_total_cents if amount_cents is None else amount_cents
            if not isinstance(amount, int) or amount < 1:
                raise ValidationError("Authorization amount must be a positive number of cents")
            currency = (currency or order.currency or "USD").upper()

            intent = self.calls.call(
                self.gateway.name,
                "authorize",
                self.gateway.authorize,
                amount,
                currency,
                payment_method_id,
                customer_id=str(order.customer_id) if order.customer_id else None,
                metadata={"order_id": order_id, "order_number": order.number},
            )
            if intent.status not in (PaymentStatus.AUTHORIZED, PaymentStatus.PENDING):
                raise ProviderError(f"Authorization was not accepted (status {intent.status.value})")

            payment = order.record_authorization(
                amount_cents=amount,
                currency=currency,
                provider=self.gateway.name,
                provider_charge_id=intent.id,
                status=intent.status,
            )
            self.store.save(order)
            logger.info("payment_authorized", payment_id=str(payment.id), amount_cents=amount)
            result = payment_view(payment)

        self._record_audit(
            order_id=order_id,
            entity_type="payment",
            entity_id=str(payment.id),
            action="authorized",
            actor=actor,
            actor_type=ActorType.ADMIN,
            changes={"amount_cents": amount, "status": intent.status.value},
        )
        return result

    def capture_payment(self, order_id: str, amount_cents: int | None = None, actor: str = "system") -> dict:
        order_id = require_id(order_id, "order id")

        with self._locked("capture_payment", order_id):
            order = self.store.get(order_id)
            payment, amount = order.check_capturable(amount_cents)

            intent = self.calls.call(
                self.gateway.name, "capture", self.gateway.capture, payment.provider_charge_id, amount
            )
            if intent.status != PaymentStatus.CAPTURED:
                raise ProviderError(f"Capture was not confirmed (status {intent.status.value})")

            captured = intent.amount_received_cents or amount
            order.record_capture(str(payment.id), captured)
            self.store.save(order)
            logger.info("payment_captured", payment_id=str(payment.id), captured_cents=captured)
            result = payment_view(order.get_payment(payment.id))

        self._record_audit(
            order_id=order_id,
            entity_type="payment",
            entity_id=str(payment.id),
            action="captured",
            actor=actor,
            actor_type=ActorType.ADMIN,
            changes={"captured_cents": captured},
        )
        return result

    def verify_payment_webhook(self, payload: str | bytes, signature: str) -> WebhookEvent:
        try:
            return self.gateway.verify_webhook(payload, signature)
        except GatewayError as exc:
            logger.warning("payment_webhook_rejected", error=exc.message)
            raise ValidationError(exc.message) from exc

    def record_payment_event(self, event: WebhookEvent) -> dict | None:
        """Apply a verified payment-processor webhook. Returns the payment, or None if ignored."""
        obj = (event.data or {}).get("object", {})
        if event.type == "payment_intent.succeeded":
            return self._apply_payment_succeeded(obj)
        if event.type == "payment_intent.payment_failed":
            return self._apply_payment_failed(obj)
        if event.type == "charge.dispute.created":
            return self._record_dispute(obj)
        logger.info("payment_webhook_ignored", event_id=event.id, event_type=event.type)
        return None

    def _order_id_for_charge(self, charge_id: str | None) -> str:
        charge_id = require_id(charge_id, "payment intent id")
        with self._operation("record_payment_event"):
            return str(self.store.find_by_charge_id(charge_id).id)

    def _apply_payment_succeeded(self, obj: dict) -> dict:
        charge_id = obj.get("id")
        order_id = self._order_id_for_charge(charge_id)
        with self._locked("record_payment_event", order_id):
            order = self.store.get(order_id)
            payment = order.payment_by_charge_id(charge_id)
            if payment.status not in (PaymentStatus.AUTHORIZED.value, PaymentStatus.PENDING.value):
                logger.info("payment_webhook_already_applied", payment_id=str(payment.id), status=payment.status)
                return payment_view(payment)

            captured = obj.get("amount_received") or obj.get("amount") or payment.amount_cents
            # The processor has already moved the money; record it so it can be refunded
            if order.is_cancelled:
                logger.warning("payment_captured_on_cancelled_order", payment_id=str(payment.id), captured_cents=captured)
            order.record_capture(str(payment.id), captured)
            self.store.save(order)
            result = payment_view(payment)

        self._record_audit(
            order_id=order_id,
            entity_type="payment",
            entity_id=str(payment.id),
            action="payment_succeeded",
            actor=self.gateway.name,
            actor_type=ActorType.WEBHOOK,
            changes={"captured_cents": captured, "order_cancelled": order.is_cancelled},
        )
        return result

    def _apply_payment_failed(self, obj: dict) -> dict:
        charge_id = obj.get("id")
        reason = (obj.get("last_payment_error") or {}).get("message") or "Payment failed"
        order_id = self._order_id_for_charge(charge_id)
        with self._locked("record_payment_event", order_id):
            order = self.store.get(order_id)
            payment = order.payment_by_charge_id(charge_id)
            order.record_payment_failure(str(payment.id), reason)
            self.store.save(order)
            result = payment_view(payment)

        self._record_audit(
            order_id=order_id,
            entity_type="payment",
            entity_id=str(payment.id),
            action="payment_failed",
            actor=self.gateway.name,
            actor_type=ActorType.WEBHOOK,
            changes={"failure_reason": reason},
        )
        return result

    def _record_dispute(self, obj: dict) -> dict:
        charge_id = obj.get("payment_intent") or obj.get("charge")
        order_id = self._order_id_for_charge(charge_id)
        with self._operation("record_payment_event", order_id):
            order = self.store.get(order_id)
            payment = order.payment_by_charge_id(charge_id)
            if payment is None:
                raise NotFoundError(f"No payment with provider id {charge_id}")
            result = payment_view(payment)

        logger.warning("payment_disputed", order_id=order_id, payment_id=str(payment.id))
        self._record_audit(
            order_id=order_id,
            entity_type="payment",
            entity_id=str(payment.id),
            action="dispute_created",
            actor=self.gateway.name,
            actor_type=ActorType.WEBHOOK,
            changes={"dispute_id": obj.get("id"), "amount_cents": obj.get("amount"), "reason": obj.get("reason")},
        )
        return result

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def process_refund(
        self,
        order_id: str,
        amount_cents: int,
        items: list | None = None,
        reason: str | None = None,
        actor: str = "system",
    ) -> dict:
        order_id = require_id(order_id, "order id")
        if not isinstance(amount_cents, int) or amount_cents < 1:
            raise ValidationError("Refund amount must be a positive number of cents")
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"Refund reason must be at most {MAX_REASON_LENGTH} characters")
        lines = _normalize_lines(items)

        with self._locked("process_refund", order_id):
            order = self.store.get(order_id)
            payment, _ = order.check_refundable(amount_cents, lines)

            result = self.calls.call(
                self.gateway.name,
                "refund",
                self.gateway.refund,
                payment.provider_charge_id,
                amount_cents,
                reason=reason,
                metadata={"order_id": order_id},
            )
            status = _REFUND_STATUS_MAP.get((result.status or "").lower())
            if status is None:
                raise ProviderError(f"Refund was rejected by {self.gateway.name} (status {result.status})")

            refund = order.record_refund(
                str(payment.id),
                amount_cents,
                lines,
                reason=reason,
                status=status,
                provider=self.gateway.name,
                provider_refund_id=result.id,
                allocation=self.refund_allocation,
            )
            self.store.save(order)
            logger.info("refund_issued", refund_id=str(refund.id), amount_cents=amount_cents, status=status.value)
            view = refund_view(order, refund)

        self._record_audit(
            order_id=order_id,
            entity_type="refund",
            entity_id=str(refund.id),
            action="created",
            actor=actor,
            actor_type=ActorType.ADMIN,
            changes={"amount_cents": amount_cents, "reason": reason, "items": view["items"]},
        )
        return view

    # -------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------
    def update_order_metadata(
        self,
        order_id: str,
        tags: list[str] | None = None,
        notes: str | None = None,
        actor: str = "system",
    ) -> dict:
        order_id = require_id(order_id, "order id")
        with self._locked("update_order_metadata", order_id):
            order: Order = self.store.get(order_id)
            changes = order.update_metadata(tags=tags, notes=notes)
            self.store.save(order)
            result = order_view(order)

        self._record_audit(
            order_id=order_id,
            entity_type="order",
            entity_id=order_id,
            action="updated",
            actor=actor,
            actor_type=ActorType.ADMIN,
            changes=changes,
        )
        return result
