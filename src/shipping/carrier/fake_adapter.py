"""Fake carrier adapter: a deterministic carrier for testing and development.

Generates mock rates, tracking numbers, labels, and tracking events.
Configurable success/failure behavior for integration testing.
"""

import time
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from shared.statuses import ShipmentStatus
from shipping.carrier.port import (
    Address,
    CarrierError,
    ShipmentRequest,
    ShippingCarrier,
    ShippingLabel,
    ShippingRate,
    TrackingInfo,
)

# (carrier, service, base cost in cents, days)
_RATE_CARD = [
    ("ups", "ground", 899, 5),
    ("ups", "2day", 1899, 2),
    ("ups", "next_day_air", 3499, 1),
    ("usps", "priority", 795, 3),
    ("fedex", "home_delivery", 1049, 4),
]


class FakeCarrier(ShippingCarrier):
    """Fake carrier that always succeeds by default."""

    name = "fake"

    def __init__(self):
        self.should_succeed = True
        self.failure_reason = "Carrier unavailable"
        self.delay = 0.0
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool = True, failure_reason: str = "Carrier unavailable", delay: float = 0.0):
        """Configure the fake carrier behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.delay = delay

    def calls_to(self, method: str) -> list[dict]:
        return [c for c in self.calls if c["method"] == method]

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if self.delay:
            time.sleep(self.delay)
        if not self.should_succeed:
            raise CarrierError(self.failure_reason, code="fake_failure")

    def quote_rates(self, request: ShipmentRequest) -> list[ShippingRate]:
        self._record("quote_rates", request=request)
        # Heavier parcels cost a little more, so tests can tell rates apart
        surcharge = int(request.total_weight_grams // 1000) * 100
        return [
            ShippingRate(carrier=c, service=s, cost_cents=cost + surcharge, estimated_days=days)
            for c, s, cost, days in _RATE_CARD
        ]

    def buy_label(self, request: ShipmentRequest) -> ShippingLabel:
        rates = self.quote_rates(request)
        rate = next(
            (r for r in rates if r.carrier == request.carrier and r.service == request.service),
            None,
        )
        if rate is None:
            raise CarrierError(f"Rate not found for {request.carrier} {request.service}")

        self._record("buy_label", request=request, rate=rate)
        label_id = f"shp_{uuid4().hex[:8]}"
        return ShippingLabel(
            tracking_number=f"FAKE-{uuid4().hex[:12].upper()}",
            label_url=f"https://fake-carrier.example.com/labels/{label_id}.pdf",
            cost_cents=rate.cost_cents,
            estimated_delivery=datetime.now(UTC) + timedelta(days=rate.estimated_days),
            label_id=label_id,
        )

    def void_label(self, label_id: str) -> bool:
        self.calls.append({"method": "void_label", "label_id": label_id})
        return self.should_succeed

    def track(self, tracking_number: str, carrier: str | None = None) -> list[TrackingInfo]:
        self._record("track", tracking_number=tracking_number, carrier=carrier)
        now = datetime.now(UTC)
        return [
            TrackingInfo(
                status=ShipmentStatus.IN_TRANSIT,
                description="Package in transit",
                location="Distribution Center, NY",
                timestamp=now,
            ),
            TrackingInfo(
                status=ShipmentStatus.LABEL_CREATED,
                description="Shipping label created",
                location="Warehouse, CA",
                timestamp=now - timedelta(days=1),
            ),
        ]

    def validate_address(self, address: Address) -> Address:
        self._record("validate_address", address=address)
        return replace(
            address,
            city=address.city.upper(),
            state=address.state.upper() if address.state else None,
            country=address.country.upper(),
        )
