from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import StrEnum

from crm_api.platform.security.errors import PermissionDenied


class Role(StrEnum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    SALES_MANAGER = "SALES_MANAGER"
    SALES_REP = "SALES_REP"


class Capability(StrEnum):
    CREATE_ADMIN = "CREATE_ADMIN"
    DELETE_ADMIN = "DELETE_ADMIN"
    VIEW_ALL_TENANTS = "VIEW_ALL_TENANTS"
    MANAGE_SYSTEM = "MANAGE_SYSTEM"
    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    DELETE_USER = "DELETE_USER"
    VIEW_ALL_REPORTS = "VIEW_ALL_REPORTS"
    VIEW_TENANT_REPORTS = "VIEW_TENANT_REPORTS"
    VIEW_TEAM_REPORTS = "VIEW_TEAM_REPORTS"
    MANAGE_ROLES = "MANAGE_ROLES"
    MANAGE_TENANT_ROLES = "MANAGE_TENANT_ROLES"
    CREATE_LEAD = "CREATE_LEAD"
    UPDATE_LEAD = "UPDATE_LEAD"
    VIEW_LEADS = "VIEW_LEADS"
    UPDATE_OWN_LEADS = "UPDATE_OWN_LEADS"


_SALES_REP = frozenset({Capability.CREATE_LEAD, Capability.VIEW_LEADS, Capability.UPDATE_OWN_LEADS})
_SALES_MANAGER = _SALES_REP | {Capability.UPDATE_LEAD, Capability.VIEW_TEAM_REPORTS}
_ADMIN = _SALES_MANAGER | {
    Capability.CREATE_USER,
    Capability.UPDATE_USER,
    Capability.DELETE_USER,
    Capability.VIEW_TENANT_REPORTS,
    Capability.MANAGE_TENANT_ROLES,
}
_SUPER_ADMIN = _SALES_MANAGER | {
    Capability.CREATE_ADMIN,
    Capability.DELETE_ADMIN,
    Capability.VIEW_ALL_TENANTS,
    Capability.MANAGE_SYSTEM,
    Capability.CREATE_USER,
    Capability.UPDATE_USER,
    Capability.DELETE_USER,
    Capability.VIEW_ALL_REPORTS,
    Capability.MANAGE_ROLES,
}

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.SUPER_ADMIN: frozenset(_SUPER_ADMIN),
    Role.ADMIN: frozenset(_ADMIN),
    Role.SALES_MANAGER: frozenset(_SALES_MANAGER),
    Role.SALES_REP: _SALES_REP,
}

# Lowest rank first.
ROLE_HIERARCHY: tuple[Role, ...] = (Role.SALES_REP, Role.SALES_MANAGER, Role.ADMIN, Role.SUPER_ADMIN)

ADMIN_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})


def parse_role(value: str | None) -> Role | None:
    if not value:
        return None
    try:
        return Role(value.upper())
    except ValueError:
        return None


def is_known_role(value: str | None) -> bool:
    return parse_role(value) is not None


def capabilities_for(role: str | None) -> frozenset[Capability]:
    parsed = parse_role(role)
    if parsed is None:
        return frozenset()
    return ROLE_CAPABILITIES[parsed]


def has_capability(role: str | None, capability: Capability) -> bool:
    return capability in capabilities_for(role)


def is_admin(role: str | None) -> bool:
    return parse_role(role) in ADMIN_ROLES


def rank(role: str | None) -> int:
    parsed = parse_role(role)
    if parsed is None:
        return -1
    return ROLE_HIERARCHY.index(parsed)


@dataclass(frozen=True, slots=True)
class TenantAssignment:
    role: Role
    tenant_id: str


def authorize_user_creation(creator_role: str, creator_tenant_id: str, requested_role: str) -> TenantAssignment:
    """Apply the role-creation hierarchy and decide the new account's tenant.

    A SUPER_ADMIN may only create ADMIN accounts, and each one founds a new
    tenant. An ADMIN creates SALES_MANAGER or SALES_REP accounts inside its own
    tenant. Nobody else creates accounts.
    """

    creator = parse_role(creator_role)
    target = parse_role(requested_role)
    if target is None:
        raise PermissionDenied(f"Unknown role: {requested_role}")

    if creator == Role.SUPER_ADMIN:
        if target != Role.ADMIN:
            raise PermissionDenied("Super admins can only create admins")
        return TenantAssignment(role=target, tenant_id=str(uuid.uuid4()))

    if creator == Role.ADMIN:
        if target == Role.ADMIN:
            raise PermissionDenied("Admins cannot create other admins")
        if target == Role.SUPER_ADMIN:
            raise PermissionDenied("Admins cannot create super admins")
        return TenantAssignment(role=target, tenant_id=creator_tenant_id)

    if target in ADMIN_ROLES:
        raise PermissionDenied("Insufficient permissions to create admin or super admin")
    raise PermissionDenied("Admin or super admin role required to create users")


def authorize_user_deletion(
    actor_user_id: str,
    actor_role: str,
    actor_tenant_id: str,
    target_user_id: str,
    target_role: str,
    target_tenant_id: str,
) -> None:
    actor = parse_role(actor_role)
    target = parse_role(target_role)

    if actor not in ADMIN_ROLES:
        raise PermissionDenied("Admin or super admin role required to delete users")
    if actor_user_id == target_user_id:
        raise PermissionDenied("Cannot delete your own account")

    if actor == Role.ADMIN:
        if target_tenant_id != actor_tenant_id:
            raise PermissionDenied("Cannot delete user from different tenant")
        if target == Role.ADMIN:
            raise PermissionDenied("Admins cannot delete other admins")
        if target == Role.SUPER_ADMIN:
            raise PermissionDenied("Admins cannot delete super admins")
        return

    if target == Role.SUPER_ADMIN:
        raise PermissionDenied("Super admin cannot delete other super admins")


def authorize_role_change(actor_role: str, actor_tenant_id: str, target_tenant_id: str, new_role: str) -> Role:
    if not is_admin(actor_role):
        raise PermissionDenied("Only admins can change roles")
    assignment = authorize_user_creation(actor_role, actor_tenant_id, new_role)
    if parse_role(actor_role) == Role.ADMIN and target_tenant_id != actor_tenant_id:
        raise PermissionDenied("Cannot change roles in a different tenant")
    return assignment.role


def can_see_in_directory(viewer_role: str, viewer_tenant_id: str, user_role: str, user_tenant_id: str) -> bool:
    """Who shows up in a caller's tenant user directory."""

    viewer = parse_role(viewer_role)
    target = parse_role(user_role)
    if viewer == Role.SUPER_ADMIN:
        return target in ADMIN_ROLES
    if target == Role.SUPER_ADMIN or user_tenant_id != viewer_tenant_id:
        return False
    if viewer == Role.ADMIN:
        return True
    return rank(user_role) <= rank(viewer_role)
