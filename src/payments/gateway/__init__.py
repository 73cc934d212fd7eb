"""Payment gateway adapters.

``build_gateway()`` picks an implementation from the environment:
- FakeGateway for development and testing (default)
- StripeGateway for production

It is called once by the composition root; the orchestrator receives the
gateway through its constructor.
"""

import os

from payments.gateway.fake_adapter import FakeGateway
from payments.gateway.port import PaymentGateway


def build_gateway() -> PaymentGateway:
    """Return a new gateway for the configured ``PAYMENT_PROVIDER``."""
    provider = os.environ.get("PAYMENT_PROVIDER", "fake")
    if provider == "fake":
        return FakeGateway()
    if provider == "stripe":
        from payments.gateway.stripe_adapter import StripeGateway

        return StripeGateway(
            api_key=os.environ["STRIPE_SECRET_KEY"],
            webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET", ""),
        )
    raise ValueError(f"Unknown payment provider: {provider}")
