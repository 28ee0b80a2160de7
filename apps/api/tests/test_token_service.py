from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from crm_api.identity.models import RefreshTokenRecord, UserAccount
from crm_api.platform.security.errors import InvalidToken, TokenExpired, TokenRevoked, Unauthenticated
from crm_api.platform.security.tokens import RefreshClaims, TokenService
from crm_api.platform.store import RecordStore


ACCESS_SECRET = "access-secret-for-tests"
REFRESH_SECRET = "refresh-secret-for-tests"


@pytest.fixture()
def tokens(store: RecordStore) -> TokenService:
    return TokenService(store, access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture()
async def user(seed_user) -> UserAccount:
    return await seed_user("rep@example.com", role="SALES_REP", tenant_id="t1")


def _loader(store: RecordStore):
    async def load(claims: RefreshClaims) -> UserAccount | None:
        return await store.get(UserAccount, claims.email)

    return load


def test_secrets_must_differ(store: RecordStore) -> None:
    with pytest.raises(ValueError):
        TokenService(store, access_secret="same", refresh_secret="same")


async def test_access_token_carries_identity_claims(tokens: TokenService, user: UserAccount) -> None:
    token = tokens.issue_access_token(user)

    raw = jwt.decode(token, ACCESS_SECRET, algorithms=["HS256"])
    assert {raw["userId"], raw["email"], raw["role"], raw["tenantId"]} == {user.user_id, user.email, "SALES_REP", "t1"}
    assert raw["exp"] - raw["iat"] == 24 * 3600

    claims = tokens.verify_access_token(token)
    assert claims.user_id == user.user_id
    assert claims.tenant_id == "t1"


async def test_refresh_token_is_persisted_under_its_jti(tokens: TokenService, store: RecordStore, user: UserAccount) -> None:
    token = await tokens.issue_refresh_token(user)

    claims = await tokens.verify_refresh_token(token)
    record = await store.get(RefreshTokenRecord, claims.jti)
    assert record is not None
    assert record.user_id == user.user_id
    assert set(jwt.decode(token, REFRESH_SECRET, algorithms=["HS256"])) == {"userId", "email", "jti", "iat", "exp"}


async def test_tokens_are_not_accepted_by_the_other_verifier(tokens: TokenService, user: UserAccount) -> None:
    access = tokens.issue_access_token(user)
    refresh = await tokens.issue_refresh_token(user)

    with pytest.raises(InvalidToken):
        tokens.verify_access_token(refresh)
    with pytest.raises(InvalidToken):
        await tokens.verify_refresh_token(access)


async def test_garbage_and_expired_access_tokens_are_invalid(store: RecordStore, user: UserAccount) -> None:
    past = datetime.now(timezone.utc) - timedelta(days=2)
    stale = TokenService(store, access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, clock=lambda: past)
    current = TokenService(store, access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)

    with pytest.raises(InvalidToken):
        current.verify_access_token(stale.issue_access_token(user))
    with pytest.raises(InvalidToken):
        current.verify_access_token("not-a-jwt")


async def test_rotation_consumes_the_presented_token(tokens: TokenService, store: RecordStore, user: UserAccount) -> None:
    first = await tokens.issue_refresh_token(user)

    pair = await tokens.rotate(first, _loader(store))

    assert pair.refresh_token != first
    assert tokens.verify_access_token(pair.access_token).user_id == user.user_id
    with pytest.raises(TokenRevoked):
        await tokens.rotate(first, _loader(store))
    await tokens.verify_refresh_token(pair.refresh_token)


async def test_concurrent_rotation_has_exactly_one_winner(file_store: RecordStore) -> None:
    tokens = TokenService(file_store, access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)
    now = datetime.now(timezone.utc)
    user = UserAccount(
        email="racer@example.com",
        user_id="user-racer",
        password_hash="unused",
        role="SALES_REP",
        tenant_id="t1",
        created_by="seed",
        created_at=now,
        updated_at=now,
    )
    assert (await file_store.put_if_absent(user)).applied
    token = await tokens.issue_refresh_token(user)

    results = await asyncio.gather(
        tokens.rotate(token, _loader(file_store)),
        tokens.rotate(token, _loader(file_store)),
        return_exceptions=True,
    )

    winners = [result for result in results if not isinstance(result, BaseException)]
    losers = [result for result in results if isinstance(result, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], TokenRevoked)
    remaining = await file_store.query(RefreshTokenRecord, RefreshTokenRecord.user_id == user.user_id)
    assert [record.token for record in remaining] == [winners[0].refresh_token]


async def test_rotation_reads_the_live_user(tokens: TokenService, store: RecordStore, user: UserAccount) -> None:
    token = await tokens.issue_refresh_token(user)
    await store.update_where(UserAccount, user.email, {}, {"role": "SALES_MANAGER", "tenant_id": "t9"})

    pair = await tokens.rotate(token, _loader(store))

    claims = tokens.verify_access_token(pair.access_token)
    assert claims.role == "SALES_MANAGER"
    assert claims.tenant_id == "t9"


async def test_rotation_rejects_deleted_users(tokens: TokenService, store: RecordStore, user: UserAccount) -> None:
    token = await tokens.issue_refresh_token(user)
    await store.update_where(UserAccount, user.email, {}, {"is_deleted": True})

    with pytest.raises(Unauthenticated):
        await tokens.rotate(token, _loader(store))


async def test_expired_record_is_deleted_on_verification(tokens: TokenService, store: RecordStore, user: UserAccount) -> None:
    token = await tokens.issue_refresh_token(user)
    jti = jwt.get_unverified_claims(token)["jti"]
    await store.update_where(
        RefreshTokenRecord,
        jti,
        {},
        {"expires_at": datetime.now(timezone.utc) - timedelta(minutes=1)},
    )

    with pytest.raises(TokenExpired):
        await tokens.verify_refresh_token(token)
    assert await store.get(RefreshTokenRecord, jti) is None
    with pytest.raises(TokenRevoked):
        await tokens.verify_refresh_token(token)


async def test_invalidate_is_idempotent(tokens: TokenService, store: RecordStore, user: UserAccount) -> None:
    token = await tokens.issue_refresh_token(user)
    jti = jwt.get_unverified_claims(token)["jti"]

    await tokens.invalidate_refresh_token(jti)
    await tokens.invalidate_refresh_token(jti)

    with pytest.raises(TokenRevoked):
        await tokens.verify_refresh_token(token)


async def test_invalidate_all_for_user(tokens: TokenService, store: RecordStore, user: UserAccount, seed_user) -> None:
    other = await seed_user("other@example.com", role="SALES_REP", tenant_id="t1")
    mine = [await tokens.issue_refresh_token(user) for _ in range(3)]
    theirs = await tokens.issue_refresh_token(other)

    removed = await tokens.invalidate_all_for_user(user.user_id)

    assert removed == 3
    for token in mine:
        with pytest.raises(TokenRevoked):
            await tokens.verify_refresh_token(token)
    await tokens.verify_refresh_token(theirs)
