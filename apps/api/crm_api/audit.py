from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from crm_api.context import get_correlation_id
from crm_api.platform.security.context import IdentityContext


logger = logging.getLogger("crm_api.audit")


@dataclass(frozen=True, slots=True)
class AuditEntry:
    actor_user_id: str
    tenant_id: str | None
    entity_type: str
    entity_id: str
    action: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    correlation_id: str | None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# In-process trail; a durable sink would subscribe to the same calls.
audit_entries: list[AuditEntry] = []


def record(
    actor: IdentityContext,
    *,
    tenant_id: str | None,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> AuditEntry:
    entry = AuditEntry(
        actor_user_id=actor.user_id,
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        before=before,
        after=after,
        correlation_id=actor.correlation_id or get_correlation_id(),
    )
    audit_entries.append(entry)
    logger.info(
        "audit_recorded",
        extra={
            "user_id": actor.user_id,
            "tenant_id": tenant_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "reason": action,
        },
    )
    return entry


def entries_for(entity_type: str, entity_id: str) -> list[AuditEntry]:
    return [entry for entry in audit_entries if entry.entity_type == entity_type and entry.entity_id == entity_id]
