"""Append-only audit trail writer."""

import json
from datetime import UTC, datetime

import structlog
from protean.domain import Domain

from orders.audit.audit_log import ActorType, AuditLog
from orders.errors import PersistenceError

logger = structlog.get_logger(__name__)


class AuditRecorder:
    """Writes one ``AuditLog`` per committed change.

    ``record`` raises ``PersistenceError`` when the write fails; the orchestrator
    decides whether that matters.
    """

    def __init__(self, domain: Domain) -> None:
        self.domain = domain

    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor: str = "system",
        actor_type: ActorType = ActorType.SYSTEM,
        order_id: str | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        with self.domain.domain_context():
            entry = AuditLog(
                order_id=order_id,
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action,
                actor=actor or "system",
                actor_type=actor_type.value,
                changes=json.dumps(changes or {}, default=str),
                created_at=datetime.now(UTC),
            )
            try:
                self.domain.repository_for(AuditLog).add(entry)
            except Exception as exc:
                raise PersistenceError(f"Failed to write audit log: {exc}") from exc

        logger.debug("audit_recorded", entity_type=entity_type, entity_id=str(entity_id), action=action)
        return entry
