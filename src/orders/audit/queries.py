"""Read side of the audit trail."""

import json
from datetime import UTC, date, datetime, time

from protean.domain import Domain

from orders.audit.audit_log import AuditLog
from orders.errors import ValidationError, require_id

DEFAULT_LIMIT = 50
MAX_LIMIT = 100


def as_utc(value: date | datetime | None, end_of_day: bool = False) -> datetime | None:
    """Normalize a date or datetime bound to an aware UTC datetime."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.max if end_of_day else time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def audit_entry_view(entry: AuditLog) -> dict:
    return {
        "id": str(entry.id),
        "order_id": str(entry.order_id) if entry.order_id else None,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "action": entry.action,
        "actor": entry.actor,
        "actor_type": entry.actor_type,
        "changes": json.loads(entry.changes) if entry.changes else {},
        "created_at": entry.created_at,
    }


def audit_history(
    domain: Domain,
    order_id: str,
    entity_type: str | None = None,
    actor: str | None = None,
    action: str | None = None,
    created_from: date | datetime | None = None,
    created_to: date | datetime | None = None,
    limit: int = DEFAULT_LIMIT,
) -> list[dict]:
    """Audit entries for one order, newest first."""
    order_id = require_id(order_id, "order id")
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {MAX_LIMIT}")

    start = as_utc(created_from)
    end = as_utc(created_to, end_of_day=True)
    with domain.domain_context():
        entries = domain.repository_for(AuditLog).for_order(
            order_id,
            limit,
            created_from=start,
            created_to=end,
            entity_type=entity_type,
            actor=actor,
            action=action,
        )
        return [audit_entry_view(e) for e in entries]
