"""Tests for shipments and carrier tracking on the Order aggregate."""

import json
from datetime import UTC, datetime, timedelta

import pytest

from orders import errors
from orders.order.events import ShipmentCreated, ShipmentTrackingUpdated
from orders.order.order import Order
from shared.statuses import FulfillmentStatus, ShipmentStatus


def _make_paid_order():
    order = Order.create(
        number="ORD-2",
        grand_total_cents=5500,
        items_data=[
            {"name": "Widget", "sku": "WID-1", "quantity": 2, "price_cents": 1500},
            {"name": "Gadget", "sku": "GAD-1", "quantity": 1, "price_cents": 2500},
        ],
        shipping_address={"address1": "12 Analytical Way", "city": "Portland", "postal_code": "97201"},
    )
    payment = order.record_authorization(5500, "USD", "fake", "pi_1")
    order.record_capture(str(payment.id), 5500)
    return order


def _item_id(order, name):
    return str(next(i.id for i in order.items if i.name == name))


def _ship(order, lines, tracking_number="1Z0001"):
    return order.record_shipment(
        lines,
        carrier="ups",
        service="ground",
        tracking_number=tracking_number,
        label_url="https://labels.example.com/1.pdf",
        cost_cents=899,
    )


class TestCheckFulfillable:
    def test_requires_items(self):
        with pytest.raises(errors.ValidationError, match="At least one item"):
            _make_paid_order().check_fulfillable([])

    def test_requires_captured_payment(self):
        order = Order.create(number="ORD-3", grand_total_cents=100, items_data=[{"name": "Pin", "quantity": 1, "price_cents": 100}])
        lines = [{"order_item_id": _item_id(order, "Pin"), "quantity": 1}]
        with pytest.raises(errors.StateConflictError, match="must be paid"):
            order.check_fulfillable(lines)

    def test_cancelled_order(self):
        order = _make_paid_order()
        order.cancel("Fraud suspected")
        with pytest.raises(errors.StateConflictError, match="cancelled order"):
            order.check_fulfillable([{"order_item_id": _item_id(order, "Widget"), "quantity": 1}])

    def test_unknown_item(self):
        with pytest.raises(errors.ValidationError, match="not found on order ORD-2"):
            _make_paid_order().check_fulfillable([{"order_item_id": "nope", "quantity": 1}])

    def test_quantity_must_be_positive(self):
        order = _make_paid_order()
        with pytest.raises(errors.ValidationError, match="positive integer"):
            order.check_fulfillable([{"order_item_id": _item_id(order, "Widget"), "quantity": 0}])

    def test_duplicate_lines_are_summed(self):
        order = _make_paid_order()
        widget = _item_id(order, "Widget")
        requested = order.check_fulfillable(
            [{"order_item_id": widget, "quantity": 1}, {"order_item_id": widget, "quantity": 1}]
        )
        assert requested == {widget: 2}

    def test_summed_lines_cannot_exceed_available(self):
        order = _make_paid_order()
        widget = _item_id(order, "Widget")
        with pytest.raises(errors.StateConflictError, match="Cannot fulfill 3 of Widget: only 2 available"):
            order.check_fulfillable([{"order_item_id": widget, "quantity": 2}, {"order_item_id": widget, "quantity": 1}])


class TestRecordShipment:
    def test_partial_shipment(self):
        order = _make_paid_order()
        shipment = _ship(order, [{"order_item_id": _item_id(order, "Widget"), "quantity": 1}])

        assert shipment.status == ShipmentStatus.LABEL_CREATED.value
        assert order.fulfillment_status == FulfillmentStatus.PARTIALLY_FULFILLED.value
        assert order.get_item(_item_id(order, "Widget")).fulfilled_qty == 1
        assert len(order.items_of_shipment(str(shipment.id))) == 1

    def test_full_shipment(self):
        order = _make_paid_order()
        _ship(
            order,
            [
                {"order_item_id": _item_id(order, "Widget"), "quantity": 2},
                {"order_item_id": _item_id(order, "Gadget"), "quantity": 1},
            ],
        )
        assert order.fulfillment_status == FulfillmentStatus.FULFILLED.value

    def test_raises_shipment_created(self):
        order = _make_paid_order()
        widget = _item_id(order, "Widget")
        shipment = _ship(order, [{"order_item_id": widget, "quantity": 2}])

        event = next(e for e in order._events if isinstance(e, ShipmentCreated))
        assert event.shipment_id == str(shipment.id)
        assert event.tracking_number == "1Z0001"
        assert json.loads(event.items) == [{"order_item_id": widget, "quantity": 2}]

    def test_over_fulfillment_leaves_order_untouched(self):
        order = _make_paid_order()
        gadget = _item_id(order, "Gadget")
        _ship(order, [{"order_item_id": gadget, "quantity": 1}])

        with pytest.raises(errors.StateConflictError):
            _ship(order, [{"order_item_id": gadget, "quantity": 1}], tracking_number="1Z0002")
        assert len(order.shipments) == 1
        assert order.get_item(gadget).fulfilled_qty == 1


class TestRecordTracking:
    def _shipped(self):
        order = _make_paid_order()
        shipment = _ship(
            order,
            [
                {"order_item_id": _item_id(order, "Widget"), "quantity": 2},
                {"order_item_id": _item_id(order, "Gadget"), "quantity": 1},
            ],
        )
        return order, shipment

    def test_in_transit(self):
        order, shipment = self._shipped()
        event = order.record_tracking(str(shipment.id), ShipmentStatus.IN_TRANSIT, datetime.now(UTC), location="Reno, NV")

        assert shipment.status == ShipmentStatus.IN_TRANSIT.value
        assert event.description == ShipmentStatus.IN_TRANSIT.value
        assert event.location == "Reno, NV"
        assert order.fulfillment_status == FulfillmentStatus.FULFILLED.value

    def test_delivery_sets_actual_delivery(self):
        order, shipment = self._shipped()
        delivered_at = datetime.now(UTC)
        order.record_tracking(str(shipment.id), ShipmentStatus.DELIVERED, delivered_at)

        assert shipment.actual_delivery == delivered_at
        assert order.fulfillment_status == FulfillmentStatus.DELIVERED.value

    def test_estimated_delivery_is_updated(self):
        order, shipment = self._shipped()
        eta = datetime.now(UTC) + timedelta(days=3)
        order.record_tracking(str(shipment.id), ShipmentStatus.IN_TRANSIT, datetime.now(UTC), estimated_delivery=eta)
        assert shipment.estimated_delivery == eta

    def test_raises_tracking_updated(self):
        order, shipment = self._shipped()
        order.record_tracking(str(shipment.id), ShipmentStatus.OUT_FOR_DELIVERY, datetime.now(UTC), description="On the truck")

        event = next(e for e in order._events if isinstance(e, ShipmentTrackingUpdated))
        assert event.status == ShipmentStatus.OUT_FOR_DELIVERY.value
        assert event.description == "On the truck"

    def test_events_are_listed_newest_first(self):
        order, shipment = self._shipped()
        earlier = datetime.now(UTC) - timedelta(hours=2)
        later = datetime.now(UTC)
        order.record_tracking(str(shipment.id), ShipmentStatus.OUT_FOR_DELIVERY, later)
        order.record_tracking(str(shipment.id), ShipmentStatus.IN_TRANSIT, earlier)

        statuses = [e.status for e in order.tracking_of_shipment(str(shipment.id))]
        assert statuses == [ShipmentStatus.OUT_FOR_DELIVERY.value, ShipmentStatus.IN_TRANSIT.value]

    def test_unknown_shipment(self):
        order, _ = self._shipped()
        with pytest.raises(errors.NotFoundError):
            order.record_tracking("missing", ShipmentStatus.IN_TRANSIT, datetime.now(UTC))


class TestDeliveryAcrossShipments:
    def test_partially_then_fully_delivered(self):
        order = _make_paid_order()
        first = _ship(order, [{"order_item_id": _item_id(order, "Widget"), "quantity": 2}])
        second = _ship(order, [{"order_item_id": _item_id(order, "Gadget"), "quantity": 1}], tracking_number="1Z0002")

        order.record_tracking(str(first.id), ShipmentStatus.DELIVERED, datetime.now(UTC))
        assert order.fulfillment_status == FulfillmentStatus.PARTIALLY_DELIVERED.value

        order.record_tracking(str(second.id), ShipmentStatus.DELIVERED, datetime.now(UTC))
        assert order.fulfillment_status == FulfillmentStatus.DELIVERED.value

    def test_exception_keeps_order_partially_delivered(self):
        order = _make_paid_order()
        first = _ship(order, [{"order_item_id": _item_id(order, "Widget"), "quantity": 2}])
        second = _ship(order, [{"order_item_id": _item_id(order, "Gadget"), "quantity": 1}], tracking_number="1Z0002")

        order.record_tracking(str(first.id), ShipmentStatus.DELIVERED, datetime.now(UTC))
        order.record_tracking(str(second.id), ShipmentStatus.EXCEPTION, datetime.now(UTC), description="Address not found")
        assert order.fulfillment_status == FulfillmentStatus.PARTIALLY_DELIVERED.value
