from __future__ import annotations

from crm_api.crm.models import CRMContact, CRMDeal, CRMDealer, CRMLead, CRMSubsidiary
from crm_api.platform.security.repository import TenantScopedRepository


class LeadRepository(TenantScopedRepository[CRMLead]):
    model = CRMLead
    resource = "lead"
    owner_field = "lead_owner"
    searchable_fields = ("first_name", "last_name", "company", "email")


class DealRepository(TenantScopedRepository[CRMDeal]):
    model = CRMDeal
    resource = "deal"
    owner_field = "deal_owner"
    searchable_fields = ("deal_name", "stage", "description", "lead_source")


class ContactRepository(TenantScopedRepository[CRMContact]):
    model = CRMContact
    resource = "contact"
    owner_field = "contact_owner"
    searchable_fields = ("first_name", "company_name", "email", "title")


class DealerRepository(TenantScopedRepository[CRMDealer]):
    model = CRMDealer
    resource = "dealer"
    owner_field = "dealer_owner"
    searchable_fields = ("name", "company", "email", "location", "territory")


class SubsidiaryRepository(TenantScopedRepository[CRMSubsidiary]):
    model = CRMSubsidiary
    resource = "subsidiary"
    owner_field = "subsidiary_owner"
    searchable_fields = ("name", "email", "address", "contact")
