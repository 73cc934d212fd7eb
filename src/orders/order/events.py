"""Order domain events: immutable facts about payment and fulfillment changes.

All events are past tense, versioned, and raised by the Order aggregate.
They are dispatched by the unit of work when the aggregate is committed.
"""

from protean.fields import DateTime, Identifier, Integer, String, Text

from orders.domain import orders


@orders.event(part_of="Order")
class PaymentAuthorized:
    """Funds were reserved on the customer's payment method."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    provider_charge_id = String(required=True)
    amount_cents = Integer(required=True)
    authorized_at = DateTime(required=True)


@orders.event(part_of="Order")
class PaymentCaptured:
    """Authorized funds were captured."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    captured_cents = Integer(required=True)
    captured_at = DateTime(required=True)


@orders.event(part_of="Order")
class PaymentVoided:
    """An authorization was released before capture."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    voided_at = DateTime(required=True)


@orders.event(part_of="Order")
class PaymentFailed:
    """The processor reported a payment as failed."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    reason = String(max_length=500)
    failed_at = DateTime(required=True)


@orders.event(part_of="Order")
class RefundIssued:
    """Captured funds were returned, fully or partially."""

    __version__ = 1

    order_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    amount_cents = Integer(required=True)
    reason = String(max_length=500)
    items = Text()  # JSON list of {order_item_id, quantity, amount_cents}
    issued_at = DateTime(required=True)


@orders.event(part_of="Order")
class ShipmentCreated:
    """A shipping label was bought and items were allocated to a shipment."""

    __version__ = 1

    order_id = Identifier(required=True)
    shipment_id = Identifier(required=True)
    carrier = String(required=True)
    service = String(required=True)
    tracking_number = String(required=True)
    items = Text(required=True)  # JSON list of {order_item_id, quantity}
    fulfillment_status = String(required=True)
    created_at = DateTime(required=True)


@orders.event(part_of="Order")
class ShipmentTrackingUpdated:
    """The carrier reported a new tracking status for a shipment."""

    __version__ = 1

    order_id = Identifier(required=True)
    shipment_id = Identifier(required=True)
    status = String(required=True)
    description = String(max_length=500)
    location = String()
    occurred_at = DateTime(required=True)


@orders.event(part_of="Order")
class OrderCancelled:
    """The order was cancelled."""

    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    voided_payment_ids = Text()  # JSON list
    cancelled_shipment_ids = Text()  # JSON list
    cancelled_at = DateTime(required=True)


@orders.event(part_of="Order")
class OrderMetadataUpdated:
    """Tags or notes on the order were changed."""

    __version__ = 1

    order_id = Identifier(required=True)
    tags = Text()  # JSON list
    notes = Text()
    updated_at = DateTime(required=True)
