"""Tests for listing, searching and exporting orders."""

import csv
import io
from datetime import UTC, datetime, timedelta

import pytest

from orders import errors
from orders.order import repository
from orders.order.order import Order
from orders.queries import EXPORT_HEADERS, OrderFilters, OrderSort, Pagination


@pytest.fixture
def three_orders(make_order, orchestrator):
    small = make_order("ORD-1", items=[{"name": "Pin", "quantity": 1, "price_cents": 500}], email="pin@example.com")
    medium = make_order("ORD-2", customer_name="Grace Hopper", email="grace@example.com")
    large = make_order("ORD-3", items=[{"name": "Desk", "quantity": 1, "price_cents": 45000}], customer_name=None)
    orchestrator.authorize_payment(str(medium.id), "pm_card_visa")
    orchestrator.capture_payment(str(medium.id))
    return small, medium, large


class TestGetOrders:
    def test_newest_first_by_default(self, three_orders, orchestrator):
        page = orchestrator.get_orders()
        assert [o["number"] for o in page.orders] == ["ORD-3", "ORD-2", "ORD-1"]
        assert page.total == 3
        assert page.total_pages == 1

    def test_sort_by_total(self, three_orders, orchestrator):
        page = orchestrator.get_orders(sort=OrderSort("grand_total_cents", "asc"))
        assert [o["grand_total_cents"] for o in page.orders] == [500, 5500, 45000]

    def test_filter_by_payment_status(self, three_orders, orchestrator):
        page = orchestrator.get_orders(OrderFilters(payment_status={"captured"}))
        assert [o["number"] for o in page.orders] == ["ORD-2"]

    def test_filter_by_total_range(self, three_orders, orchestrator):
        page = orchestrator.get_orders(OrderFilters(min_total_cents=1000, max_total_cents=10000))
        assert [o["number"] for o in page.orders] == ["ORD-2"]

    def test_search_matches_email_or_name(self, three_orders, orchestrator):
        assert [o["number"] for o in orchestrator.get_orders(OrderFilters(q="GRACE")).orders] == ["ORD-2"]
        assert [o["number"] for o in orchestrator.get_orders(OrderFilters(q="pin@")).orders] == ["ORD-1"]

    def test_search_matches_tracking_number(self, three_orders, orchestrator, item_of, store):
        medium = store.get(str(three_orders[1].id))
        shipment = orchestrator.create_fulfillment(
            str(medium.id), [{"order_item_id": str(item_of(medium, "Widget").id), "quantity": 1}]
        )

        page = orchestrator.get_orders(OrderFilters(q=shipment["tracking_number"].lower()))
        assert [o["number"] for o in page.orders] == ["ORD-2"]
        assert orchestrator.get_orders(OrderFilters(q=shipment["tracking_number"], payment_status={"PENDING"})).total == 0

    def test_filter_by_created_date(self, three_orders, orchestrator):
        today = datetime.now(UTC).date()
        assert orchestrator.get_orders(OrderFilters(created_from=today, created_to=today)).total == 3
        assert orchestrator.get_orders(OrderFilters(created_to=today - timedelta(days=1))).total == 0

    def test_pagination(self, three_orders, orchestrator):
        page = orchestrator.get_orders(pagination=Pagination(page=2, page_size=2))
        assert [o["number"] for o in page.orders] == ["ORD-1"]
        assert page.total == 3
        assert page.total_pages == 2

    def test_orders_created_elsewhere_are_listed(self, three_orders, orchestrator, store):
        store.save(Order(number="EXT-2", grand_total_cents=100))
        today = datetime.now(UTC).date()

        assert orchestrator.get_orders().total == 4
        assert orchestrator.get_orders(OrderFilters(created_from=today)).total == 4
        assert orchestrator.get_orders(sort=OrderSort("created_at", "asc")).orders[-1]["number"] == "EXT-2"

    def test_summary_fields(self, three_orders, orchestrator):
        summary = orchestrator.get_orders(OrderFilters(q="ORD-2")).orders[0]
        assert summary["item_count"] == 3
        assert summary["payment_status"] == "CAPTURED"
        assert summary["tags"] == []


class TestQueryValidation:
    def test_unknown_status(self):
        with pytest.raises(errors.ValidationError):
            OrderFilters(payment_status={"PAID"})

    def test_inverted_total_range(self):
        with pytest.raises(errors.ValidationError):
            OrderFilters(min_total_cents=100, max_total_cents=50)

    def test_unknown_sort_field(self):
        with pytest.raises(errors.ValidationError):
            OrderSort("email")

    @pytest.mark.parametrize("page,page_size", [(0, 20), (1, 0), (1, 101)])
    def test_page_bounds(self, page, page_size):
        with pytest.raises(errors.ValidationError):
            Pagination(page, page_size)


class TestGetOrder:
    def test_full_view(self, paid_order, orchestrator):
        view = orchestrator.get_order(str(paid_order.id))

        assert view["number"] == "ORD-1001"
        assert len(view["items"]) == 2
        assert view["payments"][0]["captured_cents"] == 5500
        assert view["shipping_address"]["city"] == "Portland"
        assert view["shipments"] == []

    def test_unknown_order(self, orchestrator):
        with pytest.raises(errors.NotFoundError):
            orchestrator.get_order("missing")

    def test_blank_id(self, orchestrator):
        with pytest.raises(errors.ValidationError):
            orchestrator.get_order(" ")


class TestExportOrders:
    def test_rows(self, three_orders, orchestrator):
        export = orchestrator.export_orders()

        assert export.headers == EXPORT_HEADERS
        assert [row[0] for row in export.rows] == ["ORD-3", "ORD-2", "ORD-1"]
        desk, grace, pin = export.rows
        assert desk[2] == "Guest"
        assert desk[4] == "450.00"
        assert grace[7] == "Widget (2); Gadget (1)"
        assert pin[1] == datetime.now(UTC).date().isoformat()

    def test_csv(self, three_orders, orchestrator):
        rows = list(csv.reader(io.StringIO(orchestrator.export_orders(OrderFilters(q="ORD-1")).to_csv())))
        assert rows[0] == EXPORT_HEADERS
        assert rows[1][0] == "ORD-1"
        assert len(rows) == 2

    def test_reads_every_batch(self, three_orders, orchestrator, monkeypatch):
        monkeypatch.setattr(repository, "BATCH_SIZE", 1)

        assert [row[0] for row in orchestrator.export_orders().rows] == ["ORD-3", "ORD-2", "ORD-1"]
        assert orchestrator.get_orders(pagination=Pagination(page_size=2)).total == 3

    def test_tracking_numbers_are_listed(self, paid_order, orchestrator, item_of):
        shipment = orchestrator.create_fulfillment(
            str(paid_order.id), [{"order_item_id": str(item_of(paid_order, "Gadget").id), "quantity": 1}]
        )
        [row] = orchestrator.export_orders().rows
        assert row[8] == shipment["tracking_number"]
