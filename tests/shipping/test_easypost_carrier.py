"""Tests for the EasyPost adapter against a mocked HTTP transport."""

import json

import httpx
import pytest

from shared.statuses import ShipmentStatus
from shipping.carrier.easypost_adapter import EasyPostCarrier
from shipping.carrier.port import Address, CarrierError, ShipmentItemSpec, ShipmentRequest

ADDRESS = Address(address1="1 Main St", city="Portland", state="OR", postal_code="97201", first_name="Ada", last_name="Lovelace")

SHIPMENT = {
    "id": "shp_1",
    "rates": [
        {"id": "rate_ground", "carrier": "UPS", "service": "Ground", "rate": "8.99", "delivery_days": 5, "currency": "USD"},
        {"id": "rate_priority", "carrier": "USPS", "service": "Priority", "rate": "7.95", "delivery_days": None},
    ],
}


class FakeEasyPost:
    """Routes requests to canned responses and keeps what was sent."""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.routes[request.url.path]
        return httpx.Response(status, json=body)

    def body(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


def _carrier(api: FakeEasyPost) -> EasyPostCarrier:
    client = httpx.Client(base_url="https://api.easypost.com/v2", transport=httpx.MockTransport(api))
    return EasyPostCarrier(api_key="EZTK_test", client=client)


def _request(carrier="ups", service="ground", **kwargs):
    return ShipmentRequest(
        from_address=ADDRESS,
        to_address=ADDRESS,
        items=[ShipmentItemSpec(name="Widget", quantity=2, weight_grams=450, value_cents=1500)],
        carrier=carrier,
        service=service,
        **kwargs,
    )


class TestQuoteRates:
    def test_parses_rates(self):
        api = FakeEasyPost({"/v2/shipments": (201, SHIPMENT)})
        rates = _carrier(api).quote_rates(_request())

        assert [(r.carrier, r.service, r.cost_cents) for r in rates] == [("UPS", "Ground", 899), ("USPS", "Priority", 795)]
        assert rates[1].estimated_days == 7

    def test_sends_address_and_parcel(self):
        api = FakeEasyPost({"/v2/shipments": (201, SHIPMENT)})
        _carrier(api).quote_rates(_request(signature=True))

        shipment = api.body(0)["shipment"]
        assert shipment["to_address"]["name"] == "Ada Lovelace"
        assert shipment["to_address"]["zip"] == "97201"
        assert shipment["parcel"]["weight"] == pytest.approx(900 / 28.35)
        assert shipment["options"] == {"delivery_confirmation": "SIGNATURE"}

    def test_api_error(self):
        api = FakeEasyPost({"/v2/shipments": (422, {"error": {"code": "ADDRESS.VERIFY.FAILURE", "message": "Invalid zip"}})})
        with pytest.raises(CarrierError, match="Invalid zip") as exc_info:
            _carrier(api).quote_rates(_request())
        assert exc_info.value.code == "ADDRESS.VERIFY.FAILURE"

    def test_network_error(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused")

        client = httpx.Client(base_url="https://api.easypost.com/v2", transport=httpx.MockTransport(unreachable))
        with pytest.raises(CarrierError, match="EasyPost request failed"):
            EasyPostCarrier(api_key="EZTK_test", client=client).quote_rates(_request())


class TestBuyLabel:
    def test_buys_matching_rate(self):
        bought = {
            "id": "shp_1",
            "tracking_code": "1Z999",
            "postage_label": {"label_url": "https://easypost.example/label.pdf"},
            "selected_rate": {"rate": "8.99", "delivery_date": "2026-03-05T17:00:00Z"},
        }
        api = FakeEasyPost({"/v2/shipments": (201, SHIPMENT), "/v2/shipments/shp_1/buy": (200, bought)})

        label = _carrier(api).buy_label(_request(insurance_cents=3000))

        assert label.tracking_number == "1Z999"
        assert label.cost_cents == 899
        assert label.label_id == "shp_1"
        assert label.estimated_delivery.year == 2026
        assert api.body(1) == {"rate": {"id": "rate_ground"}, "insurance": "30.00"}

    def test_unreadable_purchase_names_the_shipment(self):
        bought = {"id": "shp_1", "postage_label": {"label_url": "https://easypost.example/label.pdf"}}
        api = FakeEasyPost({"/v2/shipments": (201, SHIPMENT), "/v2/shipments/shp_1/buy": (200, bought)})

        with pytest.raises(CarrierError, match="shipment shp_1") as exc_info:
            _carrier(api).buy_label(_request())
        assert exc_info.value.code == "unreadable_label"
        assert "tracking_code" in exc_info.value.message

    def test_missing_rate_buys_nothing(self):
        api = FakeEasyPost({"/v2/shipments": (201, SHIPMENT)})
        with pytest.raises(CarrierError, match="Rate not found for fedex ground"):
            _carrier(api).buy_label(_request(carrier="fedex"))
        assert len(api.requests) == 1


class TestTrackingAndAddresses:
    def test_track(self):
        tracker = {
            "est_delivery_date": "2026-03-06T00:00:00Z",
            "tracking_details": [
                {"status": "pre_transit", "message": "Label created", "datetime": "2026-03-01T09:00:00Z", "tracking_location": {}},
                {
                    "status": "in_transit",
                    "message": "Departed facility",
                    "datetime": "2026-03-02T09:00:00Z",
                    "tracking_location": {"city": "Reno", "state": "NV"},
                },
            ],
        }
        api = FakeEasyPost({"/v2/trackers": (201, tracker)})

        events = _carrier(api).track("1Z999", carrier="UPS")

        assert [e.status for e in events] == [ShipmentStatus.IN_TRANSIT, ShipmentStatus.LABEL_CREATED]
        assert events[0].location == "Reno, NV"
        assert events[1].location is None
        assert api.body(0) == {"tracker": {"tracking_code": "1Z999", "carrier": "UPS"}}

    def test_validate_address(self):
        verified = {"street1": "1 MAIN ST", "city": "PORTLAND", "zip": "97201-1234", "verifications": {"delivery": {"success": True}}}
        api = FakeEasyPost({"/v2/addresses": (200, verified)})

        address = _carrier(api).validate_address(ADDRESS)

        assert address.postal_code == "97201-1234"
        assert address.first_name == "Ada"

    def test_unverifiable_address(self):
        failed = {"verifications": {"delivery": {"success": False, "errors": [{"message": "Address not found"}]}}}
        api = FakeEasyPost({"/v2/addresses": (200, failed)})
        with pytest.raises(CarrierError, match="Address not found"):
            _carrier(api).validate_address(ADDRESS)

    def test_void_label(self):
        api = FakeEasyPost({"/v2/shipments/shp_1/refund": (200, {"refund_status": "submitted"})})
        assert _carrier(api).void_label("shp_1") is True

    def test_void_label_rejected(self):
        api = FakeEasyPost({"/v2/shipments/shp_1/refund": (400, {"error": {"message": "Label already used"}})})
        assert _carrier(api).void_label("shp_1") is False
