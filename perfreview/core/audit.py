from typing import Any

from perfreview.core.context import ServiceContext
from perfreview.models.audit_event import AuditEvent


def log_event(
    *,
    ctx: ServiceContext,
    action: str,
    entity_type: str,
    entity_id,
    metadata: dict[str, Any] | None = None,
):
    event = AuditEvent(
        organization_id=ctx.organization_id,
        actor_user_id=ctx.actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        event_metadata=metadata,
    )
    ctx.db.add(event)
