"""Shared BDD fixtures and step definitions for the order lifecycle."""

import pytest
from pytest_bdd import given, parsers, then

from orders import errors


@pytest.fixture()
def ctx():
    """Scenario state: the order under test, shipments bought so far and the last error."""
    return {"order_id": None, "shipments": [], "exc": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a pending order for 2 Widgets and 1 Gadget", target_fixture="order_id")
def pending_order(make_order, ctx):
    order = make_order()
    ctx["order_id"] = str(order.id)
    return ctx["order_id"]


@given("a paid order for 2 Widgets and 1 Gadget", target_fixture="order_id")
def paid_order_step(paid_order, ctx):
    ctx["order_id"] = str(paid_order.id)
    return ctx["order_id"]


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the payment status is "{status}"'))
def payment_status_is(store, order_id, status):
    assert store.get(order_id).payment_status == status


@then(parsers.cfparse('the fulfillment status is "{status}"'))
def fulfillment_status_is(store, order_id, status):
    assert store.get(order_id).fulfillment_status == status


@then(parsers.cfparse('{quantity:d} {name} shipped'))
def quantity_shipped(store, item_of, order_id, quantity, name):
    assert item_of(store.get(order_id), name.rstrip("s")).fulfilled_qty == quantity


@then(parsers.cfparse('{quantity:d} {name} refunded'))
def quantity_refunded(store, item_of, order_id, quantity, name):
    assert item_of(store.get(order_id), name.rstrip("s")).refunded_qty == quantity


@then(parsers.cfparse('the request is rejected as "{kind}"'))
def rejected_as(ctx, kind):
    assert isinstance(ctx["exc"], errors.OrderError)
    assert ctx["exc"].kind.value == kind


@then(parsers.cfparse("the payment gateway received {count:d} refund requests"))
def gateway_refund_calls(gateway, count):
    assert len(gateway.calls_to("refund")) == count
