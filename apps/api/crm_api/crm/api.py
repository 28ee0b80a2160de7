from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import Response
from pydantic import BaseModel

from crm_api.crm.schemas import (
    ContactCreate,
    ContactRead,
    ContactUpdate,
    DealCreate,
    DealerCreate,
    DealerRead,
    DealerUpdate,
    DealRead,
    DealUpdate,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    SubsidiaryCreate,
    SubsidiaryRead,
    SubsidiaryUpdate,
)
from crm_api.crm.service import EntityService
from crm_api.platform.security.authenticator import get_identity
from crm_api.platform.security.context import IdentityContext


def build_entity_router(
    key: str,
    create_schema: type[BaseModel],
    update_schema: type[BaseModel],
    read_schema: type[BaseModel],
) -> APIRouter:
    """Routes for one entity type; every entity exposes the same surface."""

    router = APIRouter(prefix=f"/api/crm/{key}", tags=[f"crm.{key}"])

    def get_service(request: Request) -> EntityService[Any]:
        return request.app.state.crm_services[key]

    @router.get("", response_model=list[read_schema])
    async def list_records(
        include_deleted: bool = Query(default=False, alias="includeDeleted"),
        identity: IdentityContext = Depends(get_identity),
        service: EntityService[Any] = Depends(get_service),
    ) -> list[Any]:
        return await service.list_all(identity, include_deleted=include_deleted)

    @router.get("/search", response_model=list[read_schema])
    async def search_records(
        q: str = Query(default=""),
        identity: IdentityContext = Depends(get_identity),
        service: EntityService[Any] = Depends(get_service),
    ) -> list[Any]:
        return await service.search(identity, q)

    @router.get("/by-owner/{owner}", response_model=list[read_schema])
    async def list_by_owner(
        owner: str,
        identity: IdentityContext = Depends(get_identity),
        service: EntityService[Any] = Depends(get_service),
    ) -> list[Any]:
        return await service.list_by_owner(identity, owner)

    @router.get("/{record_id}", response_model=read_schema)
    async def get_record(
        record_id: str,
        identity: IdentityContext = Depends(get_identity),
        service: EntityService[Any] = Depends(get_service),
    ) -> Any:
        return await service.get(identity, record_id)

    @router.post("", response_model=read_schema, status_code=status.HTTP_201_CREATED)
    async def create_record(
        dto: create_schema,  # type: ignore[valid-type]
        identity: IdentityContext = Depends(get_identity),
        service: EntityService[Any] = Depends(get_service),
    ) -> Any:
        return await service.create(identity, dto.model_dump())

    @router.put("/{record_id}", response_model=read_schema)
    async def update_record(
        record_id: str,
        dto: update_schema,  # type: ignore[valid-type]
        identity: IdentityContext = Depends(get_identity),
        service: EntityService[Any] = Depends(get_service),
    ) -> Any:
        return await service.update(identity, record_id, dto.model_dump(exclude_unset=True))

    @router.delete("/{record_id}", response_model=read_schema)
    async def soft_delete_record(
        record_id: str,
        identity: IdentityContext = Depends(get_identity),
        service: EntityService[Any] = Depends(get_service),
    ) -> Any:
        return await service.soft_delete(identity, record_id)

    @router.post("/{record_id}/restore", response_model=read_schema)
    async def restore_record(
        record_id: str,
        identity: IdentityContext = Depends(get_identity),
        service: EntityService[Any] = Depends(get_service),
    ) -> Any:
        return await service.restore(identity, record_id)

    @router.delete("/{record_id}/hard", status_code=status.HTTP_204_NO_CONTENT)
    async def hard_delete_record(
        record_id: str,
        identity: IdentityContext = Depends(get_identity),
        service: EntityService[Any] = Depends(get_service),
    ) -> Response:
        await service.hard_delete(identity, record_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return router


leads_router = build_entity_router("leads", LeadCreate, LeadUpdate, LeadRead)
deals_router = build_entity_router("deals", DealCreate, DealUpdate, DealRead)
contacts_router = build_entity_router("contacts", ContactCreate, ContactUpdate, ContactRead)
dealers_router = build_entity_router("dealers", DealerCreate, DealerUpdate, DealerRead)
subsidiaries_router = build_entity_router("subsidiaries", SubsidiaryCreate, SubsidiaryUpdate, SubsidiaryRead)
