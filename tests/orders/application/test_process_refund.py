"""Tests for refunding captured payments."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from orders import errors
from orders.order.order import RefundAllocation
from orders.orchestrator import OrderOrchestrator
from shared.statuses import PaymentStatus, RefundStatus


class TestProcessRefund:
    def test_partial_refund(self, paid_order, orchestrator, gateway, store):
        refund = orchestrator.process_refund(str(paid_order.id), 2000, reason="Late delivery")

        assert refund["amount_cents"] == 2000
        assert refund["status"] == RefundStatus.SUCCEEDED.value
        assert refund["provider_refund_id"].startswith("re_fake_")
        assert gateway.calls_to("refund")[0]["charge_id"] == paid_order.payments[0].provider_charge_id

        order = store.get(str(paid_order.id))
        assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert order.payments[0].refunded_cents == 2000

    def test_full_refund(self, paid_order, orchestrator, store):
        orchestrator.process_refund(str(paid_order.id), 5500)
        assert store.get(str(paid_order.id)).payment_status == PaymentStatus.REFUNDED.value

    def test_pending_refund_is_processing(self, paid_order, orchestrator, gateway):
        gateway.configure(should_succeed=True, refund_status="pending")
        refund = orchestrator.process_refund(str(paid_order.id), 1000)
        assert refund["status"] == RefundStatus.PROCESSING.value

    def test_item_refund_splits_amount_equally(self, paid_order, orchestrator, item_of):
        widget, gadget = item_of(paid_order, "Widget"), item_of(paid_order, "Gadget")
        refund = orchestrator.process_refund(
            str(paid_order.id),
            3000,
            items=[{"order_item_id": str(widget.id), "quantity": 1}, {"order_item_id": str(gadget.id), "quantity": 1}],
        )
        assert [i["amount_cents"] for i in refund["items"]] == [1500, 1500]

    def test_item_refund_splits_proportionally_when_configured(
        self, paid_order, gateway, carrier, store, audit, provider_calls, item_of
    ):
        orchestrator = OrderOrchestrator(
            gateway=gateway,
            carrier=carrier,
            store=store,
            audit=audit,
            provider_calls=provider_calls,
            refund_allocation=RefundAllocation.PROPORTIONAL,
        )
        widget, gadget = item_of(paid_order, "Widget"), item_of(paid_order, "Gadget")
        refund = orchestrator.process_refund(
            str(paid_order.id),
            4000,
            items=[{"order_item_id": str(widget.id), "quantity": 1}, {"order_item_id": str(gadget.id), "quantity": 1}],
        )
        assert [i["amount_cents"] for i in refund["items"]] == [1500, 2500]

    def test_refunded_quantities_are_tracked(self, paid_order, orchestrator, store, item_of):
        gadget = item_of(paid_order, "Gadget")
        orchestrator.process_refund(str(paid_order.id), 2500, items=[{"order_item_id": str(gadget.id), "quantity": 1}])

        assert item_of(store.get(str(paid_order.id)), "Gadget").refunded_qty == 1
        with pytest.raises(errors.StateConflictError, match="only 0 refundable"):
            orchestrator.process_refund(str(paid_order.id), 100, items=[{"order_item_id": str(gadget.id), "quantity": 1}])


class TestRefundGuards:
    def test_over_refund_never_reaches_gateway(self, paid_order, orchestrator, gateway):
        with pytest.raises(errors.StateConflictError, match=r"5500 cents available"):
            orchestrator.process_refund(str(paid_order.id), 5501)
        assert gateway.calls_to("refund") == []

    def test_successive_refunds_cannot_exceed_capture(self, paid_order, orchestrator, gateway):
        orchestrator.process_refund(str(paid_order.id), 5000)
        with pytest.raises(errors.StateConflictError, match=r"500 cents available"):
            orchestrator.process_refund(str(paid_order.id), 501)
        assert len(gateway.calls_to("refund")) == 1

    def test_uncaptured_order(self, authorized_order, orchestrator, gateway):
        with pytest.raises(errors.StateConflictError, match="No captured payment found"):
            orchestrator.process_refund(str(authorized_order.id), 100)
        assert gateway.calls_to("refund") == []

    @pytest.mark.parametrize("amount", [0, -5, "100"])
    def test_amount_must_be_positive_integer(self, paid_order, orchestrator, amount):
        with pytest.raises(errors.ValidationError):
            orchestrator.process_refund(str(paid_order.id), amount)

    def test_reason_length_is_limited(self, paid_order, orchestrator):
        with pytest.raises(errors.ValidationError):
            orchestrator.process_refund(str(paid_order.id), 100, reason="x" * 501)


class TestRefundProviderFailures:
    def test_gateway_error_persists_nothing(self, paid_order, orchestrator, gateway, store):
        gateway.configure(should_succeed=False, failure_reason="Charge already refunded")

        with pytest.raises(errors.ProviderError):
            orchestrator.process_refund(str(paid_order.id), 1000)

        order = store.get(str(paid_order.id))
        assert not order.refunds
        assert order.payments[0].refunded_cents == 0

    def test_rejected_refund_persists_nothing(self, paid_order, orchestrator, gateway, store):
        gateway.configure(should_succeed=True, refund_status="failed")

        with pytest.raises(errors.ProviderError, match="status failed"):
            orchestrator.process_refund(str(paid_order.id), 1000)
        assert store.get(str(paid_order.id)).payment_status == PaymentStatus.CAPTURED.value


class TestConcurrentRefunds:
    def test_concurrent_refunds_never_exceed_capture(self, paid_order, orchestrator, gateway, store):
        def attempt():
            try:
                orchestrator.process_refund(str(paid_order.id), 3000)
                return "ok"
            except errors.StateConflictError:
                return "conflict"

        with ThreadPoolExecutor(max_workers=3) as pool:
            outcomes = list(pool.map(lambda _: attempt(), range(3)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 2
        assert len(gateway.calls_to("refund")) == 1
        payment = store.get(str(paid_order.id)).payments[0]
        assert payment.refunded_cents == 3000
        assert payment.refunded_cents <= payment.captured_cents
