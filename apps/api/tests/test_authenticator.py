from __future__ import annotations

from dataclasses import FrozenInstanceError
from typing import Any

import pytest
from prometheus_client import REGISTRY

from crm_api.identity.models import UserAccount
from crm_api.platform.security.authenticator import RequestAuthenticator, extract_bearer_token
from crm_api.platform.security.errors import InvalidToken, StoreUnavailable, Unauthenticated
from crm_api.platform.security.tokens import TokenService
from crm_api.platform.store import RecordStore


@pytest.fixture()
def tokens(store: RecordStore) -> TokenService:
    return TokenService(store, access_secret="access-secret", refresh_secret="refresh-secret")


@pytest.fixture()
def authenticator(tokens: TokenService, store: RecordStore) -> RequestAuthenticator:
    return RequestAuthenticator(tokens, store)


class UnavailableStore:
    async def get(self, model: Any, key: Any) -> Any:
        raise StoreUnavailable()


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, None),
        ("", None),
        ("Bearer", None),
        ("Bearer   ", None),
        ("Basic abc", None),
        ("Bearer abc", "abc"),
        ("bearer abc", "abc"),
    ],
)
def test_extract_bearer_token(header: str | None, expected: str | None) -> None:
    assert extract_bearer_token(header) == expected


async def test_missing_header_is_unauthenticated(authenticator: RequestAuthenticator) -> None:
    with pytest.raises(Unauthenticated) as exc_info:
        await authenticator.authenticate(None)
    assert exc_info.type is Unauthenticated


async def test_bad_token_is_invalid(authenticator: RequestAuthenticator) -> None:
    with pytest.raises(InvalidToken):
        await authenticator.authenticate("Bearer nonsense")


async def test_identity_uses_the_live_record(
    authenticator: RequestAuthenticator, tokens: TokenService, store: RecordStore, seed_user
) -> None:
    user = await seed_user("rep@example.com", role="SALES_REP", tenant_id="t1")
    token = tokens.issue_access_token(user)
    await store.update_where(UserAccount, user.email, {}, {"role": "SALES_MANAGER", "tenant_id": "t2"})

    identity = await authenticator.authenticate(f"Bearer {token}")

    assert identity.user_id == user.user_id
    assert identity.role == "SALES_MANAGER"
    assert identity.tenant_id == "t2"
    assert identity.first_name == "Rep"
    assert identity.degraded is False
    with pytest.raises(FrozenInstanceError):
        identity.role = "ADMIN"  # type: ignore[misc]


async def test_missing_user_is_rejected(authenticator: RequestAuthenticator, tokens: TokenService, seed_user) -> None:
    user = await seed_user("ghost@example.com", role="SALES_REP", tenant_id="t1")
    user.email = "nobody@example.com"
    token = tokens.issue_access_token(user)

    with pytest.raises(Unauthenticated, match="User not found"):
        await authenticator.authenticate(f"Bearer {token}")


async def test_deleted_user_is_rejected(authenticator: RequestAuthenticator, tokens: TokenService, seed_user) -> None:
    user = await seed_user("gone@example.com", role="SALES_REP", tenant_id="t1", is_deleted=True)

    with pytest.raises(Unauthenticated, match="deleted"):
        await authenticator.authenticate(f"Bearer {tokens.issue_access_token(user)}")


async def test_store_outage_falls_back_to_degraded_claims(tokens: TokenService, seed_user) -> None:
    user = await seed_user("rep@example.com", role="SALES_REP", tenant_id="t1")
    token = tokens.issue_access_token(user)
    authenticator = RequestAuthenticator(tokens, UnavailableStore())  # type: ignore[arg-type]
    before = REGISTRY.get_sample_value("auth_degraded_total") or 0.0

    identity = await authenticator.authenticate(f"Bearer {token}")

    assert identity.degraded is True
    assert identity.role == "SALES_REP"
    assert identity.tenant_id == "t1"
    assert (REGISTRY.get_sample_value("auth_degraded_total") or 0.0) == before + 1
