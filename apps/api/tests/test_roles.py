from __future__ import annotations

import pytest

from crm_api.platform.security.errors import PermissionDenied
from crm_api.platform.security.roles import (
    Capability,
    Role,
    authorize_role_change,
    authorize_user_creation,
    authorize_user_deletion,
    can_see_in_directory,
    capabilities_for,
    has_capability,
    is_admin,
    rank,
)


def test_capability_table() -> None:
    assert capabilities_for("SALES_REP") == {Capability.CREATE_LEAD, Capability.VIEW_LEADS, Capability.UPDATE_OWN_LEADS}
    assert Capability.UPDATE_LEAD in capabilities_for("SALES_MANAGER")
    assert Capability.VIEW_TEAM_REPORTS in capabilities_for("SALES_MANAGER")
    assert Capability.MANAGE_TENANT_ROLES in capabilities_for("ADMIN")
    assert Capability.CREATE_ADMIN not in capabilities_for("ADMIN")
    assert Capability.CREATE_ADMIN in capabilities_for("SUPER_ADMIN")
    assert Capability.VIEW_TENANT_REPORTS not in capabilities_for("SUPER_ADMIN")


@pytest.mark.parametrize("role", [None, "", "JANITOR", "root"])
def test_unknown_roles_have_no_capabilities(role: str | None) -> None:
    assert capabilities_for(role) == frozenset()
    assert has_capability(role, Capability.VIEW_LEADS) is False
    assert is_admin(role) is False
    assert rank(role) == -1


def test_roles_are_case_insensitive() -> None:
    assert has_capability("sales_rep", Capability.CREATE_LEAD)
    assert rank("SALES_REP") < rank("sales_manager") < rank("ADMIN") < rank("SUPER_ADMIN")


def test_super_admin_creates_admins_in_fresh_tenants() -> None:
    first = authorize_user_creation("SUPER_ADMIN", "platform", "ADMIN")
    second = authorize_user_creation("SUPER_ADMIN", "platform", "ADMIN")

    assert first.role == Role.ADMIN
    assert first.tenant_id != "platform"
    assert second.tenant_id not in {"platform", first.tenant_id}


@pytest.mark.parametrize("requested", ["SUPER_ADMIN", "SALES_MANAGER", "SALES_REP"])
def test_super_admin_creates_only_admins(requested: str) -> None:
    with pytest.raises(PermissionDenied):
        authorize_user_creation("SUPER_ADMIN", "platform", requested)


@pytest.mark.parametrize("requested", ["SALES_MANAGER", "SALES_REP", "sales_rep"])
def test_admin_creates_sales_roles_in_own_tenant(requested: str) -> None:
    assignment = authorize_user_creation("ADMIN", "tenant-a", requested)
    assert assignment.tenant_id == "tenant-a"
    assert assignment.role == Role(requested.upper())


@pytest.mark.parametrize("requested", ["ADMIN", "SUPER_ADMIN"])
def test_admin_cannot_create_admin_roles(requested: str) -> None:
    with pytest.raises(PermissionDenied):
        authorize_user_creation("ADMIN", "tenant-a", requested)


@pytest.mark.parametrize("creator", ["SALES_MANAGER", "SALES_REP", "UNKNOWN"])
@pytest.mark.parametrize("requested", ["ADMIN", "SUPER_ADMIN", "SALES_REP"])
def test_non_admins_cannot_create_users(creator: str, requested: str) -> None:
    with pytest.raises(PermissionDenied):
        authorize_user_creation(creator, "tenant-a", requested)


def test_unknown_requested_role_is_denied() -> None:
    with pytest.raises(PermissionDenied):
        authorize_user_creation("ADMIN", "tenant-a", "OVERLORD")


def test_deletion_hierarchy() -> None:
    authorize_user_deletion("admin", "ADMIN", "t1", "rep", "SALES_REP", "t1")
    authorize_user_deletion("root", "SUPER_ADMIN", "p", "admin", "ADMIN", "t1")

    denied = [
        ("admin", "ADMIN", "t1", "rep", "SALES_REP", "t2"),
        ("admin", "ADMIN", "t1", "admin2", "ADMIN", "t1"),
        ("admin", "ADMIN", "t1", "root", "SUPER_ADMIN", "p"),
        ("root", "SUPER_ADMIN", "p", "root2", "SUPER_ADMIN", "p"),
        ("admin", "ADMIN", "t1", "admin", "ADMIN", "t1"),
        ("root", "SUPER_ADMIN", "p", "root", "SUPER_ADMIN", "p"),
        ("mgr", "SALES_MANAGER", "t1", "rep", "SALES_REP", "t1"),
    ]
    for args in denied:
        with pytest.raises(PermissionDenied):
            authorize_user_deletion(*args)


def test_role_change_follows_creation_hierarchy() -> None:
    assert authorize_role_change("ADMIN", "t1", "t1", "SALES_MANAGER") == Role.SALES_MANAGER
    with pytest.raises(PermissionDenied):
        authorize_role_change("ADMIN", "t1", "t1", "ADMIN")
    with pytest.raises(PermissionDenied):
        authorize_role_change("ADMIN", "t1", "t2", "SALES_REP")
    with pytest.raises(PermissionDenied):
        authorize_role_change("SALES_MANAGER", "t1", "t1", "SALES_REP")


def test_directory_visibility() -> None:
    assert can_see_in_directory("SUPER_ADMIN", "p", "ADMIN", "t1")
    assert not can_see_in_directory("SUPER_ADMIN", "p", "SALES_REP", "t1")
    assert can_see_in_directory("ADMIN", "t1", "SALES_MANAGER", "t1")
    assert can_see_in_directory("ADMIN", "t1", "ADMIN", "t1")
    assert not can_see_in_directory("ADMIN", "t1", "SUPER_ADMIN", "t1")
    assert not can_see_in_directory("ADMIN", "t1", "SALES_REP", "t2")
    assert can_see_in_directory("SALES_MANAGER", "t1", "SALES_REP", "t1")
    assert not can_see_in_directory("SALES_REP", "t1", "SALES_MANAGER", "t1")
