from __future__ import annotations

from datetime import date, datetime

from pydantic import EmailStr, Field

from crm_api.core.schemas import CamelModel


class TenantScopedRead(CamelModel):
    id: str
    tenant_id: str
    visible_to: list[str]
    created_by: str
    created_at: datetime
    updated_by: str
    updated_at: datetime
    is_deleted: bool
    deleted_by: str | None = None
    deleted_at: datetime | None = None


class LeadCreate(CamelModel):
    lead_owner: str | None = None
    first_name: str = Field(min_length=1)
    last_name: str = ""
    company: str = ""
    email: EmailStr | None = None
    lead_source: str | None = None
    lead_status: str = "New"
    phone: str | None = None
    value: float | None = Field(default=None, ge=0)
    visible_to: list[str] = Field(default_factory=list)


class LeadUpdate(CamelModel):
    lead_owner: str | None = None
    first_name: str | None = Field(default=None, min_length=1)
    last_name: str | None = None
    company: str | None = None
    email: EmailStr | None = None
    lead_source: str | None = None
    lead_status: str | None = None
    phone: str | None = None
    value: float | None = Field(default=None, ge=0)
    visible_to: list[str] | None = None


class LeadRead(TenantScopedRead):
    lead_owner: str
    first_name: str
    last_name: str
    company: str
    email: str | None
    lead_source: str | None
    lead_status: str
    phone: str | None
    value: float | None


class DealCreate(CamelModel):
    deal_owner: str | None = None
    deal_name: str = Field(min_length=1)
    lead_source: str | None = None
    stage: str = Field(min_length=1)
    amount: float = Field(default=0.0, ge=0)
    probability: int | None = Field(default=None, ge=0, le=100)
    close_date: date | None = None
    description: str = ""
    visible_to: list[str] = Field(default_factory=list)


class DealUpdate(CamelModel):
    deal_owner: str | None = None
    deal_name: str | None = Field(default=None, min_length=1)
    lead_source: str | None = None
    stage: str | None = None
    amount: float | None = Field(default=None, ge=0)
    probability: int | None = Field(default=None, ge=0, le=100)
    close_date: date | None = None
    description: str | None = None
    visible_to: list[str] | None = None


class DealRead(TenantScopedRead):
    deal_owner: str
    deal_name: str
    lead_source: str | None
    stage: str
    amount: float
    probability: int
    close_date: date | None
    description: str


class ContactCreate(CamelModel):
    contact_owner: str | None = None
    first_name: str = Field(min_length=1)
    company_name: str = ""
    email: EmailStr | None = None
    lead_source: str | None = None
    phone: str | None = None
    title: str | None = None
    status: str = "Active"
    visible_to: list[str] = Field(default_factory=list)


class ContactUpdate(CamelModel):
    contact_owner: str | None = None
    first_name: str | None = Field(default=None, min_length=1)
    company_name: str | None = None
    email: EmailStr | None = None
    lead_source: str | None = None
    phone: str | None = None
    title: str | None = None
    status: str | None = None
    visible_to: list[str] | None = None


class ContactRead(TenantScopedRead):
    contact_owner: str
    first_name: str
    company_name: str
    email: str | None
    lead_source: str | None
    phone: str | None
    title: str | None
    status: str


class DealerCreate(CamelModel):
    dealer_owner: str | None = None
    name: str = Field(min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    company: str = ""
    location: str | None = None
    territory: str | None = None
    status: str = "Active"
    visible_to: list[str] = Field(default_factory=list)


class DealerUpdate(CamelModel):
    dealer_owner: str | None = None
    name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    company: str | None = None
    location: str | None = None
    territory: str | None = None
    status: str | None = None
    visible_to: list[str] | None = None


class DealerRead(TenantScopedRead):
    dealer_owner: str
    name: str
    email: str | None
    phone: str | None
    company: str
    location: str | None
    territory: str | None
    status: str


class SubsidiaryCreate(CamelModel):
    subsidiary_owner: str | None = None
    name: str = Field(min_length=1)
    email: EmailStr | None = None
    address: str | None = None
    contact: str | None = None
    total_employees: int = Field(default=0, ge=0)
    visible_to: list[str] = Field(default_factory=list)


class SubsidiaryUpdate(CamelModel):
    subsidiary_owner: str | None = None
    name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    address: str | None = None
    contact: str | None = None
    total_employees: int | None = Field(default=None, ge=0)
    visible_to: list[str] | None = None


class SubsidiaryRead(TenantScopedRead):
    subsidiary_owner: str
    name: str
    email: str | None
    address: str | None
    contact: str | None
    total_employees: int
