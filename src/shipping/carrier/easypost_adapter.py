"""EasyPost carrier adapter.

Talks to the EasyPost REST API (v2) over a synchronous ``httpx.Client``.
EasyPost authenticates with HTTP basic auth, the API key as the username.

``buy_label`` is two calls: create a shipment (which returns quoted rates),
then buy the rate matching the requested carrier/service. No purchase is
attempted when the pair is missing from the quote.
"""

from datetime import UTC, datetime

import httpx
import structlog

from shipping.carrier.port import (
    DEFAULT_PARCEL,
    Address,
    CarrierError,
    ShipmentRequest,
    ShippingCarrier,
    ShippingLabel,
    ShippingRate,
    TrackingInfo,
    map_tracking_status,
    parcel_weight_ounces,
)

logger = structlog.get_logger(__name__)

EASYPOST_API_URL = "https://api.easypost.com/v2"
DEFAULT_DELIVERY_DAYS = 7


def _cents(amount) -> int:
    return round(float(amount) * 100)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _address_payload(address: Address) -> dict:
    payload = {
        "name": address.full_name or None,
        "company": address.company,
        "street1": address.address1,
        "street2": address.address2,
        "city": address.city,
        "state": address.state,
        "zip": address.postal_code,
        "country": address.country,
        "phone": address.phone,
    }
    return {k: v for k, v in payload.items() if v}


def _address_from_payload(data: dict, original: Address) -> Address:
    return Address(
        address1=data.get("street1") or original.address1,
        address2=data.get("street2") or original.address2,
        city=data.get("city") or original.city,
        state=data.get("state") or original.state,
        postal_code=data.get("zip") or original.postal_code,
        country=data.get("country") or original.country,
        first_name=original.first_name,
        last_name=original.last_name,
        company=data.get("company") or original.company,
        phone=data.get("phone") or original.phone,
    )


class EasyPostCarrier(ShippingCarrier):
    """Production carrier adapter backed by EasyPost."""

    name = "easypost"

    def __init__(
        self,
        api_key: str,
        base_url: str = EASYPOST_API_URL,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.client = client or httpx.Client(
            base_url=base_url,
            auth=(api_key, ""),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    # -------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------
    def _post(self, path: str, payload: dict | None = None) -> dict:
        try:
            response = self.client.post(path, json=payload or {})
        except httpx.HTTPError as exc:
            raise CarrierError(f"EasyPost request failed: {exc}") from exc

        if response.is_error:
            try:
                error = response.json().get("error", {})
                message = error.get("message") or response.text
                code = error.get("code")
            except ValueError:
                message, code = response.text, None
            raise CarrierError(f"EasyPost error: {message}", code=code)
        return response.json()

    def _shipment_payload(self, request: ShipmentRequest) -> dict:
        shipment = {
            "from_address": _address_payload(request.from_address),
            "to_address": _address_payload(request.to_address),
            "parcel": {**DEFAULT_PARCEL, "weight": parcel_weight_ounces(request.total_weight_grams)},
        }
        if request.signature:
            shipment["options"] = {"delivery_confirmation": "SIGNATURE"}
        return {"shipment": shipment}

    @staticmethod
    def _rates(shipment: dict) -> list[ShippingRate]:
        return [
            ShippingRate(
                carrier=rate["carrier"],
                service=rate["service"],
                cost_cents=_cents(rate["rate"]),
                estimated_days=rate.get("delivery_days") or DEFAULT_DELIVERY_DAYS,
                currency=rate.get("currency") or "USD",
            )
            for rate in shipment.get("rates", [])
        ]

    # -------------------------------------------------------------------
    # Capability surface
    # -------------------------------------------------------------------
    def quote_rates(self, request: ShipmentRequest) -> list[ShippingRate]:
        shipment = self._post("/shipments", self._shipment_payload(request))
        return self._rates(shipment)

    def buy_label(self, request: ShipmentRequest) -> ShippingLabel:
        shipment = self._post("/shipments", self._shipment_payload(request))

        wanted = ((request.carrier or "").lower(), (request.service or "").lower())
        rate = next(
            (r for r in shipment.get("rates", []) if (r["carrier"].lower(), r["service"].lower()) == wanted),
            None,
        )
        if rate is None:
            raise CarrierError(f"Rate not found for {request.carrier} {request.service}")

        purchase = {"rate": {"id": rate["id"]}}
        if request.insurance_cents:
            purchase["insurance"] = f"{request.insurance_cents / 100:.2f}"
        bought = self._post(f"/shipments/{shipment['id']}/buy", purchase)

        # The label is paid for at this point, so a bad response must still name the shipment
        try:
            selected = bought.get("selected_rate") or rate
            return ShippingLabel(
                tracking_number=bought["tracking_code"],
                label_url=bought["postage_label"]["label_url"],
                cost_cents=_cents(selected["rate"]),
                estimated_delivery=_parse_datetime(selected.get("delivery_date")),
                label_id=bought.get("id", shipment["id"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CarrierError(
                f"EasyPost bought a label for shipment {shipment['id']} but the response could not be read: {exc!r}",
                code="unreadable_label",
            ) from exc

    def void_label(self, label_id: str) -> bool:
        try:
            result = self._post(f"/shipments/{label_id}/refund")
        except CarrierError as exc:
            logger.warning("easypost_void_label_failed", label_id=label_id, error=str(exc))
            return False
        return result.get("refund_status") != "rejected"

    def track(self, tracking_number: str, carrier: str | None = None) -> list[TrackingInfo]:
        tracker = {"tracking_code": tracking_number}
        if carrier:
            tracker["carrier"] = carrier
        result = self._post("/trackers", {"tracker": tracker})

        estimated = _parse_datetime(result.get("est_delivery_date"))
        events = []
        for detail in result.get("tracking_details", []):
            loc = detail.get("tracking_location") or {}
            location = ", ".join(p for p in (loc.get("city"), loc.get("state")) if p) or None
            events.append(
                TrackingInfo(
                    status=map_tracking_status(detail.get("status")),
                    description=detail.get("message") or detail.get("status") or "",
                    location=location,
                    timestamp=_parse_datetime(detail.get("datetime")) or datetime.now(UTC),
                    estimated_delivery=estimated,
                )
            )
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events

    def validate_address(self, address: Address) -> Address:
        result = self._post("/addresses", {"address": _address_payload(address), "verify": ["delivery"]})
        delivery = (result.get("verifications") or {}).get("delivery") or {}
        if not delivery.get("success", False):
            errors = "; ".join(e.get("message", "") for e in delivery.get("errors", [])) or "unknown reason"
            raise CarrierError(f"Address could not be verified: {errors}")
        return _address_from_payload(result, address)
