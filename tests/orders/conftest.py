import pytest
from protean.integrations.pytest import DomainFixture

from orders.audit.recorder import AuditRecorder
from orders.order.order import Order
from orders.orchestrator import OrderOrchestrator
from orders.provider_calls import ProviderCalls
from orders.store import OrderStore
from payments.gateway.fake_adapter import FakeGateway
from shipping.carrier.fake_adapter import FakeCarrier

SHIPPING_ADDRESS = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "address1": "12 Analytical Way",
    "city": "Portland",
    "state": "OR",
    "postal_code": "97201",
    "country": "US",
}


@pytest.fixture(scope="session")
def orders_bed():
    from orders.domain import orders

    bed = DomainFixture(orders)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(orders_bed):
    with orders_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()


@pytest.fixture
def domain(orders_bed):
    from orders.domain import orders

    return orders


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def carrier():
    return FakeCarrier()


@pytest.fixture
def store(domain):
    return OrderStore(domain)


@pytest.fixture
def audit(domain):
    return AuditRecorder(domain)


@pytest.fixture
def provider_calls():
    calls = ProviderCalls(timeout=2.0)
    yield calls
    calls.shutdown()


@pytest.fixture
def orchestrator(gateway, carrier, store, audit, provider_calls):
    return OrderOrchestrator(gateway=gateway, carrier=carrier, store=store, audit=audit, provider_calls=provider_calls)


def build_order(number="ORD-1001", items=None, **kwargs) -> Order:
    """Widget x2 at $15.00 and Gadget x1 at $25.00 unless ``items`` says otherwise."""
    items = items or [
        {"name": "Widget", "sku": "WID-1", "quantity": 2, "price_cents": 1500},
        {"name": "Gadget", "sku": "GAD-1", "quantity": 1, "price_cents": 2500},
    ]
    defaults = {
        "grand_total_cents": sum(i["quantity"] * i["price_cents"] for i in items),
        "customer_name": "Ada Lovelace",
        "email": "ada@example.com",
        "shipping_address": SHIPPING_ADDRESS,
    }
    defaults.update(kwargs)
    return Order.create(number=number, items_data=items, **defaults)


def item_named(order: Order, name: str):
    return next(i for i in order.items if i.name == name)


@pytest.fixture
def make_order(store):
    """Build and persist an order in its initial pending/unfulfilled state."""

    def _make(number="ORD-1001", items=None, **kwargs) -> Order:
        order = build_order(number, items, **kwargs)
        store.save(order)
        return store.get(str(order.id))

    return _make


@pytest.fixture
def authorized_order(make_order, orchestrator):
    """An order with an authorized (not yet captured) payment for its full total."""
    order = make_order()
    orchestrator.authorize_payment(str(order.id), "pm_card_visa")
    return orchestrator.store.get(str(order.id))


@pytest.fixture
def paid_order(authorized_order, orchestrator):
    """An order whose payment has been captured in full."""
    orchestrator.capture_payment(str(authorized_order.id))
    return orchestrator.store.get(str(authorized_order.id))


@pytest.fixture
def new_order():
    """Factory for unsaved orders, for aggregate-level tests."""
    return build_order


@pytest.fixture
def item_of():
    return item_named
