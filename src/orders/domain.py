"""Orders bounded context covering payment, fulfillment and audit orchestration.

Tracks each order's payment and fulfillment lifecycle after checkout: captures,
refunds and voids against the payment gateway, shipping labels and tracking
through the carrier, and an append-only audit trail of every change. Uses CQRS
(not event sourcing): the Order aggregate is the consistency boundary and is
persisted whole in one unit of work.
"""

import logging

import structlog
from protean.domain import Domain

orders = Domain(name="orders")

logger = structlog.get_logger(__name__)

# Suppress noisy library loggers
logging.getLogger("protean").setLevel(logging.WARNING)
