"""AuditLog aggregate: an append-only record of every state change on an order.

Entries are written after the change they describe has been committed and are
never updated or deleted.
"""

from enum import Enum

from protean.fields import DateTime, Identifier, String, Text

from orders.domain import orders


class ActorType(Enum):
    ADMIN = "admin"
    SYSTEM = "system"
    WEBHOOK = "webhook"


@orders.aggregate
class AuditLog:
    order_id = Identifier()
    entity_type = String(required=True, max_length=50)
    entity_id = String(required=True, max_length=255)
    action = String(required=True, max_length=50)
    actor = String(required=True, max_length=255)
    actor_type = String(max_length=20, choices=ActorType, default=ActorType.SYSTEM.value)
    changes = Text()  # JSON object
    created_at = DateTime(required=True)
