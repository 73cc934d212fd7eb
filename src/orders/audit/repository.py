"""Repository for the AuditLog aggregate."""

from datetime import datetime

from orders.audit.audit_log import AuditLog
from orders.domain import orders


@orders.repository(part_of=AuditLog)
class AuditLogRepository:
    def for_order(
        self,
        order_id: str,
        limit: int,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        **filters,
    ) -> list[AuditLog]:
        """The newest ``limit`` entries for an order matching the exact-value ``filters``."""
        criteria = {"order_id": order_id, **{k: v for k, v in filters.items() if v is not None}}
        if created_from is not None:
            criteria["created_at__gte"] = created_from
        if created_to is not None:
            criteria["created_at__lte"] = created_to
        return self._dao.query.filter(**criteria).order_by("-created_at").limit(limit).all().items
