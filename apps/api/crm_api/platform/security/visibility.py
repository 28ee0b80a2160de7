from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Protocol, TypeVar

from crm_api.metrics import observe_hidden_reads
from crm_api.platform.security.context import IdentityContext


class TenantScoped(Protocol):
    tenant_id: str
    created_by: str
    visible_to: list[str] | None


RecordT = TypeVar("RecordT", bound=TenantScoped)


def normalize_visible_to(value: Any) -> list[str]:
    """Coerce a visibility allow-list to a de-duplicated list of user ids."""

    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = [value]
    else:
        items = value
    seen: list[str] = []
    for item in items:
        text = str(item).strip()
        if text and text not in seen:
            seen.append(text)
    return seen


def is_visible(record: TenantScoped, identity: IdentityContext) -> bool:
    """Tenant + visibility predicate shared by every tenant-scoped entity.

    A record is visible iff it belongs to the caller's tenant and either has
    an empty allow-list, lists the caller, or was created by the caller.
    """

    if record.tenant_id != identity.tenant_id:
        return False
    allowed = record.visible_to or []
    if not allowed:
        return True
    return identity.user_id in allowed or record.created_by == identity.user_id


def filter_visible(resource: str, records: Sequence[RecordT], identity: IdentityContext) -> list[RecordT]:
    visible = [record for record in records if is_visible(record, identity)]
    observe_hidden_reads(resource, len(records) - len(visible))
    return visible
