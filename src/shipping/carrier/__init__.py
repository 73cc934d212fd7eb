"""Carrier adapter abstraction for pluggable shipping carrier integration."""

import os

from shipping.carrier.port import ShippingCarrier


def build_carrier() -> ShippingCarrier:
    """Return a new carrier adapter for the configured ``SHIPPING_PROVIDER``.

    Uses FakeCarrier by default. The composition root calls this once and
    injects the result into the orchestrator.
    """
    adapter = os.environ.get("SHIPPING_PROVIDER", "fake")
    if adapter == "fake":
        from shipping.carrier.fake_adapter import FakeCarrier

        return FakeCarrier()
    if adapter == "easypost":
        from shipping.carrier.easypost_adapter import EasyPostCarrier

        return EasyPostCarrier(
            api_key=os.environ["EASYPOST_API_KEY"],
            timeout=float(os.environ.get("PROVIDER_TIMEOUT_SECONDS", "30")),
        )
    raise ValueError(f"Unknown carrier adapter: {adapter}")
