"""Repository for the Order aggregate."""

from collections.abc import Iterator

from protean.utils.globals import current_domain
from protean.utils.query import Q

from orders.domain import orders
from orders.order.order import Order, Payment, Shipment

# Rows fetched per round trip when walking a whole result set
BATCH_SIZE = 500


@orders.repository(part_of=Order)
class OrderRepository:
    """Order lookups beyond ``get`` by id.

    Filtering, sorting and paging run in the database. Matching rows are re-read
    through ``get`` so that callers always work with a fully loaded aggregate.
    """

    def search(
        self,
        criteria: Q,
        order_by: list[str],
        offset: int = 0,
        limit: int = BATCH_SIZE,
        text: str | None = None,
    ) -> tuple[list[Order], int]:
        """One window of matching orders and the total number of matches."""
        criteria = self._with_text(criteria, text)
        query = self._dao.query
        if criteria:
            query = query.filter(criteria)
        results = query.order_by(order_by).offset(offset).limit(limit).all()
        return [self.get(record.id) for record in results.items], results.total

    def each(self, criteria: Q, order_by: list[str], text: str | None = None) -> Iterator[Order]:
        """Every matching order, fetched in batches."""
        offset = 0
        while True:
            batch, total = self.search(criteria, order_by, offset, BATCH_SIZE, text)
            yield from batch
            offset += BATCH_SIZE
            if not batch or offset >= total:
                return

    def find_by_number(self, number: str) -> Order | None:
        record = self._dao.query.filter(number=number).limit(1).all().first
        return self.get(record.id) if record else None

    def find_by_shipment(self, shipment_id: str) -> Order | None:
        return self._owner_of(Shipment, id=shipment_id)

    def find_by_tracking_number(self, tracking_number: str) -> Order | None:
        return self._owner_of(Shipment, tracking_number=tracking_number)

    def find_by_charge_id(self, charge_id: str) -> Order | None:
        return self._owner_of(Payment, provider_charge_id=charge_id)

    def _owner_of(self, child_cls, **conditions) -> Order | None:
        record = current_domain.repository_for(child_cls)._dao.query.filter(**conditions).limit(1).all().first
        return self.get(record.order_id) if record else None

    def _with_text(self, criteria: Q, text: str | None) -> Q:
        """Narrow ``criteria`` to orders whose number, email, customer or tracking number contains ``text``."""
        if not text:
            return criteria

        matches = Q(number__icontains=text) | Q(email__icontains=text) | Q(customer_name__icontains=text)
        shipments = (
            current_domain.repository_for(Shipment)._dao.query.filter(tracking_number__icontains=text).limit(None).all()
        )
        shipped = sorted({str(s.order_id) for s in shipments.items})
        if shipped:
            matches = matches | Q(id__in=shipped)
        return criteria & matches if criteria else matches
