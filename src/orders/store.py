"""Persistence boundary for the Order aggregate.

Translates Protean's repository exceptions into the orders error taxonomy and
commits every save inside its own unit of work.
"""

import structlog
from protean import UnitOfWork
from protean.domain import Domain
from protean.exceptions import ObjectNotFoundError
from protean.exceptions import ValidationError as ProteanValidationError

from orders.errors import NotFoundError, PersistenceError, ValidationError
from orders.order.order import Order
from orders.order.repository import OrderRepository
from orders.queries import OrderFilters, OrderSort, Pagination

logger = structlog.get_logger(__name__)


class OrderStore:
    def __init__(self, domain: Domain) -> None:
        self.domain = domain

    @property
    def repository(self) -> OrderRepository:
        return self.domain.repository_for(Order)

    def get(self, order_id: str) -> Order:
        with self.domain.domain_context():
            try:
                return self.repository.get(order_id)
            except ObjectNotFoundError as exc:
                raise NotFoundError(f"Order {order_id} not found") from exc

    def find_by_shipment(self, shipment_id: str) -> Order:
        with self.domain.domain_context():
            order = self.repository.find_by_shipment(shipment_id)
        if order is None:
            raise NotFoundError(f"Shipment {shipment_id} not found")
        return order

    def find_by_tracking_number(self, tracking_number: str) -> Order:
        with self.domain.domain_context():
            order = self.repository.find_by_tracking_number(tracking_number)
        if order is None:
            raise NotFoundError(f"No shipment with tracking number {tracking_number}")
        return order

    def find_by_charge_id(self, charge_id: str) -> Order:
        with self.domain.domain_context():
            order = self.repository.find_by_charge_id(charge_id)
        if order is None:
            raise NotFoundError(f"No payment with provider id {charge_id}")
        return order

    def page(self, filters: OrderFilters, sort: OrderSort, pagination: Pagination) -> tuple[list[Order], int]:
        """One page of matching orders and the total number of matches."""
        with self.domain.domain_context():
            return self.repository.search(
                filters.criteria(), sort.order_by, pagination.offset, pagination.page_size, filters.search_text
            )

    def all_matching(self, filters: OrderFilters, sort: OrderSort) -> list[Order]:
        """Every matching order, read from the database in batches."""
        with self.domain.domain_context():
            return list(self.repository.each(filters.criteria(), sort.order_by, filters.search_text))

    def save(self, order: Order) -> Order:
        """Persist the aggregate and everything it owns in one transaction."""
        with self.domain.domain_context():
            try:
                with UnitOfWork():
                    self.repository.add(order)
            except ProteanValidationError as exc:
                raise ValidationError(str(exc.messages)) from exc
            except Exception as exc:
                logger.error("order_save_failed", order_id=str(order.id), error=str(exc))
                raise PersistenceError(f"Failed to save order {order.number}: {exc}") from exc
        return order
