import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from orders.api.errors import install_error_handlers
from orders.api.routes import order_router, shipment_router, shipping_router, webhook_router


@pytest.fixture(scope="session", autouse=True)
def setup_db(orders_bed):
    from orders.domain import orders
    from orders.utils.db import drop_db, setup_db

    setup_db(orders)

    yield

    drop_db(orders)


@pytest.fixture()
def client(orchestrator):
    app = FastAPI()
    install_error_handlers(app)
    app.state.orchestrator = orchestrator
    app.include_router(order_router)
    app.include_router(shipment_router)
    app.include_router(shipping_router)
    app.include_router(webhook_router)
    return TestClient(app)
