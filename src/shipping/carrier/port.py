"""Carrier port: the abstract interface for shipping carrier integrations.

All carrier adapters must implement this interface. The order orchestrator
programs against the port; adapters are swapped via configuration.

Request and response shapes are frozen dataclasses so adapters cannot leak
provider payloads into the order core.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from shared.statuses import ShipmentStatus

DEFAULT_CARRIER = "ups"
DEFAULT_SERVICE = "ground"
DEFAULT_ITEM_WEIGHT_GRAMS = 450

# Parcel used when real package dimensions are unknown (inches)
DEFAULT_PARCEL = {"length": 12, "width": 9, "height": 3}
GRAMS_PER_OUNCE = 28.35


class CarrierError(Exception):
    """A carrier or rate-aggregator call failed. Carries the provider's message."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


_TRACKING_STATUS_MAP = {
    "pre_transit": ShipmentStatus.LABEL_CREATED,
    "in_transit": ShipmentStatus.IN_TRANSIT,
    "out_for_delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "exception": ShipmentStatus.EXCEPTION,
    "return_to_sender": ShipmentStatus.EXCEPTION,
    "failure": ShipmentStatus.EXCEPTION,
    "cancelled": ShipmentStatus.CANCELLED,
}


def map_tracking_status(provider_status: str | None) -> ShipmentStatus:
    """Translate a provider tracking status; unknown values are treated as in transit."""
    return _TRACKING_STATUS_MAP.get((provider_status or "").lower(), ShipmentStatus.IN_TRANSIT)


def parcel_weight_ounces(total_grams: float) -> float:
    return max(1.0, total_grams / GRAMS_PER_OUNCE)


@dataclass(frozen=True)
class Address:
    address1: str
    city: str
    postal_code: str
    country: str = "US"
    state: str | None = None
    address2: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    phone: str | None = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


@dataclass(frozen=True)
class ShipmentItemSpec:
    name: str
    quantity: int
    weight_grams: float = DEFAULT_ITEM_WEIGHT_GRAMS
    value_cents: int = 0


@dataclass(frozen=True)
class ShipmentRequest:
    from_address: Address
    to_address: Address
    items: list[ShipmentItemSpec] = field(default_factory=list)
    carrier: str | None = None
    service: str | None = None
    insurance_cents: int | None = None
    signature: bool = False

    @property
    def total_weight_grams(self) -> float:
        return sum(i.weight_grams * i.quantity for i in self.items)

    @property
    def total_value_cents(self) -> int:
        return sum(i.value_cents * i.quantity for i in self.items)


@dataclass(frozen=True)
class ShippingRate:
    carrier: str
    service: str
    cost_cents: int
    estimated_days: int
    currency: str = "USD"


@dataclass(frozen=True)
class ShippingLabel:
    tracking_number: str
    label_url: str
    cost_cents: int
    estimated_delivery: datetime | None = None
    label_id: str | None = None


@dataclass(frozen=True)
class TrackingInfo:
    status: ShipmentStatus
    description: str
    timestamp: datetime
    location: str | None = None
    estimated_delivery: datetime | None = None


class ShippingCarrier(ABC):
    """Abstract interface for carrier adapters."""

    name: str = "carrier"

    @abstractmethod
    def quote_rates(self, request: ShipmentRequest) -> list[ShippingRate]:
        """Return the available rates for a shipment."""
        ...

    @abstractmethod
    def buy_label(self, request: ShipmentRequest) -> ShippingLabel:
        """Quote, then purchase the rate matching ``request.carrier`` / ``request.service``.

        Raises:
            CarrierError: if the pair is not among the quoted rates (no purchase
                is attempted) or the purchase itself fails.
        """
        ...

    @abstractmethod
    def void_label(self, label_id: str) -> bool:
        """Request a refund of an unused label. Returns False if the carrier refuses."""
        ...

    @abstractmethod
    def track(self, tracking_number: str, carrier: str | None = None) -> list[TrackingInfo]:
        """Return tracking events, newest first."""
        ...

    @abstractmethod
    def validate_address(self, address: Address) -> Address:
        """Return the carrier-normalized address, or raise CarrierError."""
        ...
