"""Order aggregate (CQRS), the consistency boundary of the orders domain.

The Order owns its items, payments, shipments and refunds. Every change to any
of them goes through a method on the aggregate and is persisted with the
aggregate in a single unit of work, so a shipment is never stored without the
quantity increments it implies, and a refund never without its balance update.

Shipment items, tracking events and refund items are held on the aggregate and
point back to their shipment/refund by id.

Statuses:
    payment_status      derived from payments (see _derive_payment_status)
    fulfillment_status  UNFULFILLED → PARTIALLY_FULFILLED → FULFILLED
                        → PARTIALLY_DELIVERED → DELIVERED
                        any state except DELIVERED → CANCELLED
    shipment.status     LABEL_CREATED → IN_TRANSIT → OUT_FOR_DELIVERY → DELIVERED
                        (EXCEPTION at any point; PENDING/LABEL_CREATED → CANCELLED)
"""

import json
from collections import OrderedDict
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from orders import errors
from orders.domain import orders
from orders.order.events import (
    OrderCancelled,
    OrderMetadataUpdated,
    PaymentAuthorized,
    PaymentCaptured,
    PaymentFailed,
    PaymentVoided,
    RefundIssued,
    ShipmentCreated,
    ShipmentTrackingUpdated,
)
from shared.statuses import FulfillmentStatus, PaymentStatus, RefundStatus, ShipmentStatus

MAX_NOTES_LENGTH = 2000
MAX_REASON_LENGTH = 500


class RefundAllocation(Enum):
    EQUAL = "equal"
    PROPORTIONAL = "proportional"


_CANCELLABLE_SHIPMENT_STATUSES = {ShipmentStatus.PENDING.value, ShipmentStatus.LABEL_CREATED.value}
_REFUNDABLE_PAYMENT_STATUSES = {PaymentStatus.CAPTURED.value, PaymentStatus.PARTIALLY_REFUNDED.value}
_CAPTURED_PAYMENT_STATUSES = _REFUNDABLE_PAYMENT_STATUSES | {PaymentStatus.REFUNDED.value}
_LIVE_PAYMENT_STATUSES = {PaymentStatus.AUTHORIZED.value} | _CAPTURED_PAYMENT_STATUSES


def _round_half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@orders.value_object(part_of="Order")
class Address:
    """A postal address captured on the order or on a shipment."""

    first_name = String(max_length=100)
    last_name = String(max_length=100)
    company = String(max_length=100)
    address1 = String(required=True, max_length=200)
    address2 = String(max_length=200)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(max_length=2, default="US")
    phone = String(max_length=20)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orders.entity(part_of="Order")
class OrderItem:
    """A line of the order. Tracks how much of it has shipped and been refunded."""

    name = String(required=True, max_length=255)
    sku = String(max_length=100)
    quantity = Integer(required=True, min_value=1)
    price_cents = Integer(required=True, min_value=0)
    fulfilled_qty = Integer(default=0, min_value=0)
    refunded_qty = Integer(default=0, min_value=0)

    @property
    def available_to_fulfill(self) -> int:
        return self.quantity - self.fulfilled_qty

    @property
    def available_to_refund(self) -> int:
        return self.quantity - self.refunded_qty


@orders.entity(part_of="Order")
class Payment:
    """One authorization/capture at the payment processor."""

    amount_cents = Integer(required=True, min_value=0)
    captured_cents = Integer(default=0, min_value=0)
    refunded_cents = Integer(default=0, min_value=0)
    currency = String(max_length=3, default="USD")
    provider = String(max_length=50)
    provider_charge_id = String(max_length=255)
    status = String(max_length=30, choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    failure_reason = String(max_length=500)
    authorized_at = DateTime()
    captured_at = DateTime()
    voided_at = DateTime()

    @property
    def refundable_cents(self) -> int:
        return self.captured_cents - self.refunded_cents


@orders.entity(part_of="Order")
class Shipment:
    """One physical package with its own label and carrier tracking."""

    carrier = String(required=True, max_length=50)
    service = String(required=True, max_length=50)
    tracking_number = String(max_length=255)
    label_id = String(max_length=255)
    label_url = String(max_length=500)
    cost_cents = Integer(default=0, min_value=0)
    status = String(max_length=30, choices=ShipmentStatus, default=ShipmentStatus.PENDING.value)
    from_address = ValueObject(Address)
    to_address = ValueObject(Address)
    estimated_delivery = DateTime()
    actual_delivery = DateTime()
    created_at = DateTime()


@orders.entity(part_of="Order")
class ShipmentItem:
    shipment_id = Identifier(required=True)
    order_item_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@orders.entity(part_of="Order")
class TrackingEvent:
    """A carrier tracking event."""

    shipment_id = Identifier(required=True)
    status = String(required=True, max_length=30)
    description = String(max_length=500)
    location = String(max_length=200)
    timestamp = DateTime(required=True)


@orders.entity(part_of="Order")
class Refund:
    payment_id = Identifier(required=True)
    amount_cents = Integer(required=True, min_value=1)
    reason = String(max_length=MAX_REASON_LENGTH)
    status = String(max_length=30, choices=RefundStatus, default=RefundStatus.PROCESSING.value)
    provider = String(max_length=50)
    provider_refund_id = String(max_length=255)
    created_at = DateTime()


@orders.entity(part_of="Order")
class RefundItem:
    refund_id = Identifier(required=True)
    order_item_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    amount_cents = Integer(default=0, min_value=0)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@orders.aggregate
class Order:
    number = String(required=True, max_length=50)
    payment_status = String(
        max_length=30,
        choices=PaymentStatus,
        default=PaymentStatus.PENDING.value,
    )
    fulfillment_status = String(
        max_length=30,
        choices=FulfillmentStatus,
        default=FulfillmentStatus.UNFULFILLED.value,
    )
    grand_total_cents = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="USD")
    customer_id = Identifier()
    customer_name = String(max_length=200)
    email = String(max_length=255)
    billing_address = ValueObject(Address)
    shipping_address = ValueObject(Address)
    cancel_reason = String(max_length=MAX_REASON_LENGTH)
    cancelled_at = DateTime()
    tags = Text(default="[]")  # JSON list of strings
    notes = Text()
    items = HasMany(OrderItem)
    payments = HasMany(Payment)
    shipments = HasMany(Shipment)
    shipment_items = HasMany(ShipmentItem)
    tracking_events = HasMany(TrackingEvent)
    refunds = HasMany(Refund)
    refund_items = HasMany(RefundItem)
    created_at = DateTime(default=lambda: datetime.now(UTC))
    updated_at = DateTime(default=lambda: datetime.now(UTC))

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def item_quantities_stay_within_ordered_quantity(self):
        for item in self.items or []:
            if not 0 <= item.fulfilled_qty <= item.quantity:
                raise ValidationError({"items": [f"Fulfilled quantity of {item.name} must be between 0 and {item.quantity}"]})
            if not 0 <= item.refunded_qty <= item.quantity:
                raise ValidationError({"items": [f"Refunded quantity of {item.name} must be between 0 and {item.quantity}"]})

    @invariant.post
    def refunds_never_exceed_captured_amount(self):
        for payment in self.payments or []:
            if payment.captured_cents - payment.refunded_cents < 0:
                raise ValidationError({"payments": ["Refunded amount cannot exceed captured amount"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        number: str,
        grand_total_cents: int,
        items_data: list[dict],
        customer_id: str | None = None,
        customer_name: str | None = None,
        email: str | None = None,
        shipping_address: dict | None = None,
        billing_address: dict | None = None,
        currency: str = "USD",
    ):
        """Build an order in its initial pending state.

        Orders are placed by the storefront; this exists for seeding and tests.
        """
        now = datetime.now(UTC)
        order = cls(
            number=number,
            grand_total_cents=grand_total_cents,
            currency=currency,
            customer_id=customer_id,
            customer_name=customer_name,
            email=email,
            shipping_address=Address(**shipping_address) if shipping_address else None,
            billing_address=Address(**billing_address) if billing_address else None,
            payment_status=PaymentStatus.PENDING.value,
            fulfillment_status=FulfillmentStatus.UNFULFILLED.value,
            created_at=now,
            updated_at=now,
        )
        for item_data in items_data:
            order.add_items(OrderItem(**item_data))
        return order

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def get_item(self, item_id: str) -> OrderItem | None:
        return next((i for i in self.items or [] if str(i.id) == str(item_id)), None)

    def get_payment(self, payment_id: str) -> Payment | None:
        return next((p for p in self.payments or [] if str(p.id) == str(payment_id)), None)

    def get_shipment(self, shipment_id: str) -> Shipment | None:
        return next((s for s in self.shipments or [] if str(s.id) == str(shipment_id)), None)

    def get_refund(self, refund_id: str) -> Refund | None:
        return next((r for r in self.refunds or [] if str(r.id) == str(refund_id)), None)

    def payment_by_charge_id(self, charge_id: str) -> Payment | None:
        return next((p for p in self.payments or [] if p.provider_charge_id == charge_id), None)

    def shipment_by_tracking_number(self, tracking_number: str) -> Shipment | None:
        return next((s for s in self.shipments or [] if s.tracking_number == tracking_number), None)

    def items_of_shipment(self, shipment_id: str) -> list[ShipmentItem]:
        return [si for si in self.shipment_items or [] if str(si.shipment_id) == str(shipment_id)]

    def tracking_of_shipment(self, shipment_id: str) -> list[TrackingEvent]:
        """Tracking events for a shipment, newest first."""
        events = [e for e in self.tracking_events or [] if str(e.shipment_id) == str(shipment_id)]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def items_of_refund(self, refund_id: str) -> list[RefundItem]:
        return [ri for ri in self.refund_items or [] if str(ri.refund_id) == str(refund_id)]

    def authorized_payments(self) -> list[Payment]:
        return [p for p in self.payments or [] if p.status == PaymentStatus.AUTHORIZED.value]

    @property
    def tag_list(self) -> list[str]:
        return json.loads(self.tags) if self.tags else []

    @property
    def is_cancelled(self) -> bool:
        return self.fulfillment_status == FulfillmentStatus.CANCELLED.value

    # -------------------------------------------------------------------
    # Derived statuses
    # -------------------------------------------------------------------
    def _derive_payment_status(self) -> PaymentStatus:
        payments = list(self.payments or [])
        captured = sum(p.captured_cents for p in payments)
        refunded = sum(p.refunded_cents for p in payments)
        statuses = {p.status for p in payments}

        if captured > 0:
            if refunded >= captured:
                return PaymentStatus.REFUNDED
            if refunded > 0:
                return PaymentStatus.PARTIALLY_REFUNDED
            return PaymentStatus.CAPTURED
        if PaymentStatus.AUTHORIZED.value in statuses:
            return PaymentStatus.AUTHORIZED
        if payments and statuses == {PaymentStatus.VOIDED.value}:
            return PaymentStatus.VOIDED
        if PaymentStatus.FAILED.value in statuses:
            return PaymentStatus.FAILED
        return PaymentStatus.PENDING

    def _refresh_payment_status(self) -> None:
        self.payment_status = self._derive_payment_status().value

    def _refresh_fulfillment_status(self) -> None:
        total = sum(i.quantity for i in self.items or [])
        fulfilled = sum(i.fulfilled_qty for i in self.items or [])
        if fulfilled >= total:
            self.fulfillment_status = FulfillmentStatus.FULFILLED.value
        elif fulfilled > 0:
            self.fulfillment_status = FulfillmentStatus.PARTIALLY_FULFILLED.value

    def _refresh_delivery_status(self) -> None:
        if self.is_cancelled:
            return
        live = [s for s in self.shipments or [] if s.status != ShipmentStatus.CANCELLED.value]
        delivered = [s for s in live if s.status == ShipmentStatus.DELIVERED.value]
        if not delivered:
            return
        if len(delivered) == len(live):
            self.fulfillment_status = FulfillmentStatus.DELIVERED.value
        else:
            self.fulfillment_status = FulfillmentStatus.PARTIALLY_DELIVERED.value

    def _sum_lines(self, lines: list[dict]) -> "OrderedDict[str, int]":
        """Collapse request lines into quantities per order item, validating each."""
        requested: OrderedDict[str, int] = OrderedDict()
        for line in lines:
            item_id = str(line.get("order_item_id") or "").strip()
            quantity = line.get("quantity")
            if not item_id:
                raise errors.ValidationError("Each item needs an order_item_id")
            if not isinstance(quantity, int) or quantity < 1:
                raise errors.ValidationError(f"Quantity for item {item_id} must be a positive integer")
            if self.get_item(item_id) is None:
                raise errors.ValidationError(f"Order item {item_id} not found on order {self.number}")
            requested[item_id] = requested.get(item_id, 0) + quantity
        return requested

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def check_cancellable(self) -> None:
        if self.fulfillment_status == FulfillmentStatus.DELIVERED.value:
            raise errors.StateConflictError("Cannot cancel an order that has been delivered")
        if self.is_cancelled:
            raise errors.StateConflictError("Order is already cancelled")

    def cancel(self, reason: str, voided_payment_ids: list[str] | None = None) -> list[str]:
        """Cancel the order locally. Returns the ids of shipments that were cancelled.

        ``voided_payment_ids`` are authorizations the processor has already released.
        """
        reason = (reason or "").strip()
        if not reason or len(reason) > MAX_REASON_LENGTH:
            raise errors.ValidationError(f"Cancel reason must be 1-{MAX_REASON_LENGTH} characters")
        self.check_cancellable()

        now = datetime.now(UTC)
        voided = [self.get_payment(pid) for pid in voided_payment_ids or []]
        cancelled_shipments = []
        with atomic_change(self):
            for payment in voided:
                if payment is not None and payment.status == PaymentStatus.AUTHORIZED.value:
                    payment.status = PaymentStatus.VOIDED.value
                    payment.voided_at = now
            for shipment in self.shipments or []:
                if shipment.status in _CANCELLABLE_SHIPMENT_STATUSES:
                    shipment.status = ShipmentStatus.CANCELLED.value
                    cancelled_shipments.append(str(shipment.id))
            self.fulfillment_status = FulfillmentStatus.CANCELLED.value
            self.cancel_reason = reason
            self.cancelled_at = now
            self.updated_at = now
            self._refresh_payment_status()

        voided_ids = [str(p.id) for p in voided if p is not None and p.status == PaymentStatus.VOIDED.value]
        for payment_id in voided_ids:
            self.raise_(PaymentVoided(order_id=str(self.id), payment_id=payment_id, voided_at=now))
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                reason=reason,
                voided_payment_ids=json.dumps(voided_ids),
                cancelled_shipment_ids=json.dumps(cancelled_shipments),
                cancelled_at=now,
            )
        )
        return cancelled_shipments

    # -------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------
    def check_fulfillable(self, lines: list[dict]) -> "OrderedDict[str, int]":
        """Validate a fulfillment request and return the quantity wanted per item."""
        if not lines:
            raise errors.ValidationError("At least one item is required to create a fulfillment")
        if self.is_cancelled:
            raise errors.StateConflictError("Cannot fulfill a cancelled order")
        if self.payment_status != PaymentStatus.CAPTURED.value:
            raise errors.StateConflictError("Order must be paid before fulfillment")

        requested = self._sum_lines(lines)
        for item_id, quantity in requested.items():
            item = self.get_item(item_id)
            if quantity > item.available_to_fulfill:
                raise errors.StateConflictError(
                    f"Cannot fulfill {quantity} of {item.name}: only {item.available_to_fulfill} available"
                )
        return requested

    def record_shipment(
        self,
        lines: list[dict],
        carrier: str,
        service: str,
        tracking_number: str,
        label_url: str,
        cost_cents: int,
        label_id: str | None = None,
        estimated_delivery: datetime | None = None,
        from_address: Address | None = None,
        to_address: Address | None = None,
    ) -> Shipment:
        """Record a purchased label: shipment, allocated items and quantity increments together."""
        requested = self.check_fulfillable(lines)

        now = datetime.now(UTC)
        shipment = Shipment(
            carrier=carrier,
            service=service,
            tracking_number=tracking_number,
            label_id=label_id,
            label_url=label_url,
            cost_cents=cost_cents,
            status=ShipmentStatus.LABEL_CREATED.value,
            from_address=from_address,
            to_address=to_address,
            estimated_delivery=estimated_delivery,
            created_at=now,
        )
        with atomic_change(self):
            self.add_shipments(shipment)
            for item_id, quantity in requested.items():
                self.add_shipment_items(
                    ShipmentItem(shipment_id=str(shipment.id), order_item_id=item_id, quantity=quantity)
                )
                item = self.get_item(item_id)
                item.fulfilled_qty = item.fulfilled_qty + quantity
            self._refresh_fulfillment_status()
            self.updated_at = now

        self.raise_(
            ShipmentCreated(
                order_id=str(self.id),
                shipment_id=str(shipment.id),
                carrier=carrier,
                service=service,
                tracking_number=tracking_number,
                items=json.dumps([{"order_item_id": k, "quantity": v} for k, v in requested.items()]),
                fulfillment_status=self.fulfillment_status,
                created_at=now,
            )
        )
        return shipment

    def record_tracking(
        self,
        shipment_id: str,
        status: ShipmentStatus,
        timestamp: datetime,
        description: str | None = None,
        location: str | None = None,
        estimated_delivery: datetime | None = None,
    ) -> TrackingEvent:
        shipment = self.get_shipment(shipment_id)
        if shipment is None:
            raise errors.NotFoundError(f"Shipment {shipment_id} not found")
        if shipment.status == ShipmentStatus.CANCELLED.value:
            raise errors.StateConflictError("Cannot update tracking for a cancelled shipment")

        event = TrackingEvent(
            shipment_id=str(shipment.id),
            status=status.value,
            description=description or status.value,
            location=location,
            timestamp=timestamp,
        )
        with atomic_change(self):
            self.add_tracking_events(event)
            shipment.status = status.value
            if status == ShipmentStatus.DELIVERED:
                shipment.actual_delivery = timestamp
            if estimated_delivery is not None:
                shipment.estimated_delivery = estimated_delivery
            self._refresh_delivery_status()
            self.updated_at = datetime.now(UTC)

        self.raise_(
            ShipmentTrackingUpdated(
                order_id=str(self.id),
                shipment_id=str(shipment.id),
                status=status.value,
                description=event.description,
                location=location,
                occurred_at=timestamp,
            )
        )
        return event

    # -------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------
    def check_authorizable(self) -> None:
        if self.is_cancelled:
            raise errors.StateConflictError("Cannot take payment for a cancelled order")
        if any(p.status in _LIVE_PAYMENT_STATUSES for p in self.payments or []):
            raise errors.StateConflictError("Order already has an active payment")

    def record_authorization(
        self,
        amount_cents: int,
        currency: str,
        provider: str,
        provider_charge_id: str,
        status: PaymentStatus = PaymentStatus.AUTHORIZED,
    ) -> Payment:
        self.check_authorizable()
        now = datetime.now(UTC)
        payment = Payment(
            amount_cents=amount_cents,
            currency=currency,
            provider=provider,
            provider_charge_id=provider_charge_id,
            status=status.value,
            authorized_at=now if status == PaymentStatus.AUTHORIZED else None,
        )
        with atomic_change(self):
            self.add_payments(payment)
            self._refresh_payment_status()
            self.updated_at = now

        if status == PaymentStatus.AUTHORIZED:
            self.raise_(
                PaymentAuthorized(
                    order_id=str(self.id),
                    payment_id=str(payment.id),
                    provider_charge_id=provider_charge_id,
                    amount_cents=amount_cents,
                    authorized_at=now,
                )
            )
        return payment

    def check_capturable(self, amount_cents: int | None = None) -> tuple[Payment, int]:
        """Return the authorized payment to capture and the amount to capture."""
        if self.is_cancelled:
            raise errors.StateConflictError("Cannot capture payment for a cancelled order")
        authorized = self.authorized_payments()
        if not authorized:
            raise errors.StateConflictError("No authorized payment found")
        payment = authorized[0]

        amount = payment.amount_cents if amount_cents is None else amount_cents
        if not isinstance(amount, int) or not 1 <= amount <= payment.amount_cents:
            raise errors.ValidationError(f"Capture amount must be between 1 and {payment.amount_cents} cents")
        return payment, amount

    def record_capture(self, payment_id: str, captured_cents: int) -> Payment:
        payment = self.get_payment(payment_id)
        if payment is None:
            raise errors.NotFoundError(f"Payment {payment_id} not found")
        if payment.status not in (PaymentStatus.AUTHORIZED.value, PaymentStatus.PENDING.value):
            raise errors.StateConflictError(f"Cannot capture a payment in status {payment.status}")

        now = datetime.now(UTC)
        with atomic_change(self):
            payment.status = PaymentStatus.CAPTURED.value
            payment.captured_cents = captured_cents
            payment.captured_at = now
            self._refresh_payment_status()
            self.updated_at = now

        self.raise_(
            PaymentCaptured(
                order_id=str(self.id),
                payment_id=str(payment.id),
                captured_cents=captured_cents,
                captured_at=now,
            )
        )
        return payment

    def record_payment_failure(self, payment_id: str, reason: str | None = None) -> Payment:
        payment = self.get_payment(payment_id)
        if payment is None:
            raise errors.NotFoundError(f"Payment {payment_id} not found")
        if payment.status not in (PaymentStatus.AUTHORIZED.value, PaymentStatus.PENDING.value):
            raise errors.StateConflictError(f"Cannot fail a payment in status {payment.status}")

        now = datetime.now(UTC)
        with atomic_change(self):
            payment.status = PaymentStatus.FAILED.value
            payment.failure_reason = (reason or "")[:500] or None
            self._refresh_payment_status()
            self.updated_at = now

        self.raise_(PaymentFailed(order_id=str(self.id), payment_id=str(payment.id), reason=reason, failed_at=now))
        return payment

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def refundable_payment(self) -> Payment | None:
        """The first captured payment with balance left, else any captured payment."""
        captured = [p for p in self.payments or [] if p.status in _CAPTURED_PAYMENT_STATUSES]
        with_balance = [p for p in captured if p.status in _REFUNDABLE_PAYMENT_STATUSES and p.refundable_cents > 0]
        if with_balance:
            return with_balance[0]
        return captured[0] if captured else None

    def check_refundable(self, amount_cents: int, lines: list[dict] | None = None) -> tuple[Payment, "OrderedDict[str, int]"]:
        """Validate a refund request. Returns the payment to refund and quantities per item."""
        if not isinstance(amount_cents, int) or amount_cents < 1:
            raise errors.ValidationError("Refund amount must be a positive number of cents")
        payment = self.refundable_payment()
        if payment is None:
            raise errors.StateConflictError("No captured payment found")
        if amount_cents > payment.refundable_cents:
            raise errors.StateConflictError(
                f"Refund amount exceeds available balance ({payment.refundable_cents} cents available)"
            )

        requested = self._sum_lines(lines) if lines else OrderedDict()
        for item_id, quantity in requested.items():
            item = self.get_item(item_id)
            if quantity > item.available_to_refund:
                raise errors.StateConflictError(
                    f"Cannot refund {quantity} of {item.name}: only {item.available_to_refund} refundable"
                )
        return payment, requested

    def allocate_refund(
        self,
        amount_cents: int,
        requested: "OrderedDict[str, int]",
        strategy: RefundAllocation = RefundAllocation.EQUAL,
    ) -> dict[str, int]:
        """Split a refund amount across the named items.

        EQUAL gives every named item the same share, rounded half up, whatever
        its price. Nothing absorbs the rounding, so the shares need not add up
        to the amount: 101 cents over two items records 51 each. PROPORTIONAL
        splits by line value (price x quantity) and puts any rounding remainder
        on the last item, so its shares always sum to the amount.
        """
        if not requested:
            return {}
        item_ids = list(requested)
        if strategy == RefundAllocation.EQUAL:
            share = _round_half_up(amount_cents, len(item_ids))
            return {item_id: share for item_id in item_ids}

        weights = {item_id: self.get_item(item_id).price_cents * qty for item_id, qty in requested.items()}
        total_weight = sum(weights.values())
        if total_weight == 0:
            weights = {item_id: 1 for item_id in item_ids}
            total_weight = len(item_ids)
        allocation = {item_id: amount_cents * weights[item_id] // total_weight for item_id in item_ids}
        allocation[item_ids[-1]] += amount_cents - sum(allocation.values())
        return allocation

    def record_refund(
        self,
        payment_id: str,
        amount_cents: int,
        lines: list[dict] | None = None,
        reason: str | None = None,
        status: RefundStatus = RefundStatus.PROCESSING,
        provider: str | None = None,
        provider_refund_id: str | None = None,
        allocation: RefundAllocation = RefundAllocation.EQUAL,
    ) -> Refund:
        """Record a refund the processor accepted, with its items and balance updates."""
        payment, requested = self.check_refundable(amount_cents, lines)
        if str(payment.id) != str(payment_id):
            payment = self.get_payment(payment_id)
            if payment is None:
                raise errors.NotFoundError(f"Payment {payment_id} not found")
            if amount_cents > payment.refundable_cents:
                raise errors.StateConflictError("Refund amount exceeds available balance")
        amounts = self.allocate_refund(amount_cents, requested, allocation)

        now = datetime.now(UTC)
        refund = Refund(
            payment_id=str(payment.id),
            amount_cents=amount_cents,
            reason=reason,
            status=status.value,
            provider=provider,
            provider_refund_id=provider_refund_id,
            created_at=now,
        )
        with atomic_change(self):
            self.add_refunds(refund)
            for item_id, quantity in requested.items():
                self.add_refund_items(
                    RefundItem(
                        refund_id=str(refund.id),
                        order_item_id=item_id,
                        quantity=quantity,
                        amount_cents=amounts[item_id],
                    )
                )
                item = self.get_item(item_id)
                item.refunded_qty = item.refunded_qty + quantity
            payment.refunded_cents = payment.refunded_cents + amount_cents
            if payment.captured_cents - payment.refunded_cents > 0:
                payment.status = PaymentStatus.PARTIALLY_REFUNDED.value
            else:
                payment.status = PaymentStatus.REFUNDED.value
            self._refresh_payment_status()
            self.updated_at = now

        self.raise_(
            RefundIssued(
                order_id=str(self.id),
                refund_id=str(refund.id),
                payment_id=str(payment.id),
                amount_cents=amount_cents,
                reason=reason,
                items=json.dumps(
                    [{"order_item_id": k, "quantity": v, "amount_cents": amounts[k]} for k, v in requested.items()]
                ),
                issued_at=now,
            )
        )
        return refund

    # -------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------
    def update_metadata(self, tags: list[str] | None = None, notes: str | None = None) -> dict:
        """Replace tags and/or notes. Returns the changed fields."""
        changes = {}
        if tags is not None:
            cleaned = list(dict.fromkeys(t.strip() for t in tags if t and t.strip()))
            changes["tags"] = cleaned
        if notes is not None:
            if len(notes) > MAX_NOTES_LENGTH:
                raise errors.ValidationError(f"Notes must be at most {MAX_NOTES_LENGTH} characters")
            changes["notes"] = notes
        if not changes:
            raise errors.ValidationError("Nothing to update: provide tags or notes")

        now = datetime.now(UTC)
        if "tags" in changes:
            self.tags = json.dumps(changes["tags"])
        if "notes" in changes:
            self.notes = changes["notes"]
        self.updated_at = now
        self.raise_(
            OrderMetadataUpdated(
                order_id=str(self.id),
                tags=self.tags,
                notes=self.notes,
                updated_at=now,
            )
        )
        return changes
