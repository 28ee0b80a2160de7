from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from crm_api.context import get_correlation_id
from crm_api.core.events import event_bus
from crm_api.platform.security.context import IdentityContext


EVENT_VERSION = 1

published_events: list[dict[str, Any]] = []


def publish_domain_event(
    actor: IdentityContext,
    event_type: str,
    *,
    tenant_id: str,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """Wrap ``payload`` in the standard envelope and fan it out on the bus."""

    envelope = {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor.user_id,
        "tenant_id": tenant_id,
        "correlation_id": actor.correlation_id or get_correlation_id(),
        "version": EVENT_VERSION,
        "payload": payload,
    }
    published_events.append(envelope)
    event_bus.publish(event_type, envelope)
    return envelope
