from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, TypeVar

from crm_api.core.database import Base
from crm_api.metrics import observe_hidden_reads
from crm_api.platform.security.context import IdentityContext
from crm_api.platform.security.errors import AlreadyDeleted, Conflict, NotDeleted, NotFound, ValidationFailed
from crm_api.platform.security.visibility import filter_visible, is_visible, normalize_visible_to
from crm_api.platform.store import RecordStore


ModelT = TypeVar("ModelT", bound=Base)

# Columns the repository stamps itself; callers never set these.
PROTECTED_FIELDS = frozenset(
    {
        "id",
        "tenant_id",
        "created_by",
        "created_at",
        "updated_by",
        "updated_at",
        "is_deleted",
        "deleted_by",
        "deleted_at",
    }
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantScopedRepository(Generic[ModelT]):
    """CRUD for one tenant-scoped entity type.

    Reads fetch by tenant and then apply the visibility predicate in process.
    Records that exist but are invisible to the caller raise ``NotFound``,
    exactly like records that do not exist. Every write is conditioned on the
    tenant and the deletion flag so a racing soft-delete turns a late update
    into a ``Conflict``.
    """

    model: ClassVar[type[Base]]
    resource: ClassVar[str] = ""
    owner_field: ClassVar[str] = ""
    searchable_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def create(self, payload: dict[str, Any], identity: IdentityContext) -> ModelT:
        values = self._writable(payload)
        now = self._clock()
        values["visible_to"] = normalize_visible_to(values.get("visible_to"))
        if self.owner_field and not values.get(self.owner_field):
            values[self.owner_field] = identity.user_id
        record = self.model(
            **values,
            id=str(uuid.uuid4()),
            tenant_id=identity.tenant_id,
            created_by=identity.user_id,
            updated_by=identity.user_id,
            created_at=now,
            updated_at=now,
            is_deleted=False,
        )
        result = await self._store.put_if_absent(record)
        if not result.applied:
            raise Conflict(f"{self.resource} id already exists")
        return result.record  # type: ignore[return-value]

    async def get_by_id(self, record_id: str, identity: IdentityContext) -> ModelT:
        record = await self._load_visible(record_id, identity)
        if record.is_deleted:
            raise NotFound(f"{self.resource} not found")
        return record

    async def list_by_tenant(self, identity: IdentityContext, include_deleted: bool = False) -> list[ModelT]:
        criteria = [self.model.tenant_id == identity.tenant_id]
        if not include_deleted:
            criteria.append(self.model.is_deleted.is_(False))
        records = await self._store.query(self.model, *criteria, order_by=self.model.created_at)
        return filter_visible(self.resource, records, identity)

    async def list_by_owner(self, owner: str, identity: IdentityContext) -> list[ModelT]:
        if not self.owner_field:
            raise ValidationFailed(f"{self.resource} has no owner field")
        records = await self._store.query(
            self.model,
            self.model.tenant_id == identity.tenant_id,
            self.model.is_deleted.is_(False),
            getattr(self.model, self.owner_field) == owner,
            order_by=self.model.created_at,
        )
        return filter_visible(self.resource, records, identity)

    async def search(self, term: str, identity: IdentityContext) -> list[ModelT]:
        records = await self.list_by_tenant(identity)
        needle = term.strip().lower()
        if not needle:
            return records
        return [record for record in records if self._matches(record, needle)]

    async def update(self, record_id: str, patch: dict[str, Any], identity: IdentityContext) -> ModelT:
        await self.get_by_id(record_id, identity)
        values = self._writable(patch)
        if "visible_to" in values:
            values["visible_to"] = normalize_visible_to(values["visible_to"])
        values["updated_by"] = identity.user_id
        values["updated_at"] = self._clock()
        result = await self._store.update_where(
            self.model,
            record_id,
            {"tenant_id": identity.tenant_id, "is_deleted": False},
            values,
        )
        if not result.applied:
            raise Conflict(f"{self.resource} was deleted or modified concurrently")
        return result.record  # type: ignore[return-value]

    async def soft_delete(self, record_id: str, identity: IdentityContext) -> ModelT:
        existing = await self._load_visible(record_id, identity)
        if existing.is_deleted:
            raise AlreadyDeleted(f"{self.resource} is already deleted")
        now = self._clock()
        result = await self._store.update_where(
            self.model,
            record_id,
            {"tenant_id": identity.tenant_id, "is_deleted": False},
            {
                "is_deleted": True,
                "deleted_by": identity.user_id,
                "deleted_at": now,
                "updated_by": identity.user_id,
                "updated_at": now,
            },
        )
        if not result.applied:
            raise AlreadyDeleted(f"{self.resource} is already deleted")
        return result.record  # type: ignore[return-value]

    async def restore(self, record_id: str, identity: IdentityContext) -> ModelT:
        existing = await self._load_visible(record_id, identity)
        if not existing.is_deleted:
            raise NotDeleted(f"{self.resource} is not deleted")
        result = await self._store.update_where(
            self.model,
            record_id,
            {"tenant_id": identity.tenant_id, "is_deleted": True},
            {
                "is_deleted": False,
                "deleted_by": None,
                "deleted_at": None,
                "updated_by": identity.user_id,
                "updated_at": self._clock(),
            },
        )
        if not result.applied:
            raise NotDeleted(f"{self.resource} is not deleted")
        return result.record  # type: ignore[return-value]

    async def hard_delete(self, record_id: str, identity: IdentityContext) -> ModelT:
        existing = await self._load_visible(record_id, identity)
        result = await self._store.delete_where(self.model, record_id, {"tenant_id": identity.tenant_id})
        if not result.applied:
            raise NotFound(f"{self.resource} not found")
        return existing

    async def _load_visible(self, record_id: str, identity: IdentityContext) -> ModelT:
        record = await self._store.get(self.model, record_id)
        if record is None:
            raise NotFound(f"{self.resource} not found")
        if not is_visible(record, identity):
            observe_hidden_reads(self.resource)
            raise NotFound(f"{self.resource} not found")
        return record  # type: ignore[return-value]

    def _writable(self, payload: dict[str, Any]) -> dict[str, Any]:
        columns = set(self.model.__table__.columns.keys())
        unknown = sorted(key for key in payload if key not in columns)
        if unknown:
            raise ValidationFailed(f"Unknown {self.resource} fields", details={"fields": unknown})
        return {key: value for key, value in payload.items() if key not in PROTECTED_FIELDS}

    def _matches(self, record: ModelT, needle: str) -> bool:
        for field in self.searchable_fields:
            value = getattr(record, field, None)
            if value is not None and needle in str(value).lower():
                return True
        return False
