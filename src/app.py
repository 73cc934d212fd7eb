"""Orders FastAPI application and composition root.

Builds the payment gateway and shipping carrier from the environment, wires
them into a single OrderOrchestrator and exposes it to the routers through
``app.state``.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orders.api.errors import install_error_handlers
from orders.api.routes import order_router, shipment_router, shipping_router, webhook_router
from orders.audit.recorder import AuditRecorder
from orders.domain import orders
from orders.orchestrator import OrderOrchestrator, origin_address_from_env, refund_allocation_from_env
from orders.provider_calls import DEFAULT_TIMEOUT_SECONDS, ProviderCalls
from orders.store import OrderStore
from orders.utils.db import setup_db
from orders.utils.logging import configure_logging
from payments.gateway import build_gateway
from shipping.carrier import build_carrier


def build_orchestrator() -> OrderOrchestrator:
    """The one place adapters are chosen and credentials are read."""
    timeout = float(os.environ.get("PROVIDER_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
    return OrderOrchestrator(
        gateway=build_gateway(),
        carrier=build_carrier(),
        store=OrderStore(orders),
        audit=AuditRecorder(orders),
        provider_calls=ProviderCalls(timeout=timeout),
        refund_allocation=refund_allocation_from_env(),
        origin_address=origin_address_from_env(),
    )


def create_app(orchestrator: OrderOrchestrator) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        orchestrator.calls.shutdown()

    app = FastAPI(
        title="Orders API",
        description="Order payment and fulfillment lifecycle: capture, refund, void, labels and tracking",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)
    app.state.orchestrator = orchestrator

    for router in (order_router, shipment_router, shipping_router, webhook_router):
        app.include_router(router)

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "domain": orders.name,
            "payment_provider": orchestrator.gateway.name,
            "shipping_provider": orchestrator.carrier.name,
        }

    return app


# ---------------------------------------------------------------------------
# Module-level app for uvicorn workers.
# PROTEAN_ENV selects the domain.toml overlay (e.g. "production" → PostgreSQL).
# ---------------------------------------------------------------------------
configure_logging()
orders.init()
setup_db(orders)
app = create_app(build_orchestrator())
