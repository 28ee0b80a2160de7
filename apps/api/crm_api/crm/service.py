from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from crm_api import audit
from crm_api.crm.repositories import (
    ContactRepository,
    DealerRepository,
    DealRepository,
    LeadRepository,
    SubsidiaryRepository,
)
from crm_api.crm.schemas import ContactRead, DealerRead, DealRead, LeadRead, SubsidiaryRead
from crm_api.events import publish_domain_event
from crm_api.platform.security.context import IdentityContext
from crm_api.platform.security.errors import PermissionDenied
from crm_api.platform.security.repository import TenantScopedRepository
from crm_api.platform.security.roles import is_admin
from crm_api.platform.store import RecordStore


logger = logging.getLogger("crm_api.crm.service")

ReadT = TypeVar("ReadT", bound=BaseModel)


DEFAULT_STAGE_PROBABILITY = {
    "Need Analysis": 10,
    "Value Proposition": 25,
    "Identify Decision Makers": 50,
    "Negotiation/Review": 75,
    "Closed Won": 100,
    "Closed Lost": 0,
    "Closed Lost to Competition": 0,
}


class EntityService(Generic[ReadT]):
    """Entity operations on top of the tenant-scoped repository.

    Adds what the repository leaves to its callers: the admin-only gate on
    hard deletes, the audit trail and ``crm.<entity>.<action>`` events.
    """

    read_schema: type[ReadT]

    def __init__(self, repository: TenantScopedRepository[Any], read_schema: type[ReadT]) -> None:
        self.repository = repository
        self.read_schema = read_schema
        self.entity_type = f"crm.{repository.resource}"

    async def create(self, identity: IdentityContext, payload: dict[str, Any]) -> ReadT:
        record = await self.repository.create(self.prepare_create(payload), identity)
        created = self._to_read(record)
        self._record(identity, created.id, "create", None, created)
        return created

    async def get(self, identity: IdentityContext, record_id: str) -> ReadT:
        return self._to_read(await self.repository.get_by_id(record_id, identity))

    async def list_all(self, identity: IdentityContext, include_deleted: bool = False) -> list[ReadT]:
        records = await self.repository.list_by_tenant(identity, include_deleted=include_deleted)
        return [self._to_read(record) for record in records]

    async def list_by_owner(self, identity: IdentityContext, owner: str) -> list[ReadT]:
        return [self._to_read(record) for record in await self.repository.list_by_owner(owner, identity)]

    async def search(self, identity: IdentityContext, term: str) -> list[ReadT]:
        return [self._to_read(record) for record in await self.repository.search(term, identity)]

    async def update(self, identity: IdentityContext, record_id: str, patch: dict[str, Any]) -> ReadT:
        before = await self.get(identity, record_id)
        updated = self._to_read(await self.repository.update(record_id, patch, identity))
        self._record(identity, record_id, "update", before, updated)
        return updated

    async def soft_delete(self, identity: IdentityContext, record_id: str) -> ReadT:
        deleted = self._to_read(await self.repository.soft_delete(record_id, identity))
        self._record(identity, record_id, "soft_delete", None, deleted)
        return deleted

    async def restore(self, identity: IdentityContext, record_id: str) -> ReadT:
        restored = self._to_read(await self.repository.restore(record_id, identity))
        self._record(identity, record_id, "restore", None, restored)
        return restored

    async def hard_delete(self, identity: IdentityContext, record_id: str) -> None:
        if not is_admin(identity.role):
            raise PermissionDenied("Only admins can permanently delete records")
        removed = self._to_read(await self.repository.hard_delete(record_id, identity))
        self._record(identity, record_id, "hard_delete", removed, None)
        logger.info(
            "entity_hard_deleted",
            extra={"entity_type": self.entity_type, "entity_id": record_id, "user_id": identity.user_id},
        )

    def prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        return payload

    def _to_read(self, record: Any) -> ReadT:
        return self.read_schema.model_validate(record)

    def _record(
        self,
        identity: IdentityContext,
        record_id: str,
        action: str,
        before: ReadT | None,
        after: ReadT | None,
    ) -> None:
        audit.record(
            identity,
            tenant_id=identity.tenant_id,
            entity_type=self.entity_type,
            entity_id=record_id,
            action=action,
            before=before.model_dump(mode="json") if before is not None else None,
            after=after.model_dump(mode="json") if after is not None else None,
        )
        publish_domain_event(
            identity,
            f"{self.entity_type}.{action}",
            tenant_id=identity.tenant_id,
            payload={"id": record_id},
        )


class DealService(EntityService[DealRead]):
    def prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        values = dict(payload)
        if values.get("probability") is None:
            values["probability"] = DEFAULT_STAGE_PROBABILITY.get(values.get("stage", ""), 25)
        if values.get("close_date") is None:
            values["close_date"] = date.today() + timedelta(days=30)
        return values


ENTITY_KEYS = ("leads", "deals", "contacts", "dealers", "subsidiaries")


def build_entity_services(store: RecordStore) -> dict[str, EntityService[Any]]:
    return {
        "leads": EntityService(LeadRepository(store), LeadRead),
        "deals": DealService(DealRepository(store), DealRead),
        "contacts": EntityService(ContactRepository(store), ContactRead),
        "dealers": EntityService(DealerRepository(store), DealerRead),
        "subsidiaries": EntityService(SubsidiaryRepository(store), SubsidiaryRead),
    }
