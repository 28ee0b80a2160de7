from __future__ import annotations

from datetime import datetime, timezone

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.ext.asyncio import create_async_engine

from crm_api.core.database import create_session_factory
from crm_api.identity.models import RefreshTokenRecord, UserAccount
from crm_api.platform.security.errors import StoreUnavailable, ValidationFailed
from crm_api.platform.store import RecordStore, WriteOutcome


def _user(email: str, user_id: str, phone: str | None = None) -> UserAccount:
    now = datetime.now(timezone.utc)
    return UserAccount(
        email=email,
        user_id=user_id,
        password_hash="x",
        role="SALES_REP",
        tenant_id="t1",
        created_by="seed",
        phone_number=phone,
        created_at=now,
        updated_at=now,
    )


async def test_put_if_absent_rejects_existing_key(store: RecordStore) -> None:
    first = await store.put_if_absent(_user("a@example.com", "u-a"))
    second = await store.put_if_absent(_user("a@example.com", "u-b"))

    assert first.outcome == WriteOutcome.APPLIED
    assert second.outcome == WriteOutcome.CONDITION_FAILED
    assert second.record is None
    stored = await store.get(UserAccount, "a@example.com")
    assert stored is not None and stored.user_id == "u-a"


async def test_unique_secondary_columns_fail_the_condition(store: RecordStore) -> None:
    assert (await store.put_if_absent(_user("a@example.com", "u-a", phone="+100"))).applied

    assert not (await store.put_if_absent(_user("b@example.com", "u-b", phone="+100"))).applied
    assert not (await store.put_if_absent(_user("c@example.com", "u-a"))).applied


async def test_update_where_checks_expected_values(store: RecordStore) -> None:
    await store.put_if_absent(_user("a@example.com", "u-a"))

    missed = await store.update_where(UserAccount, "a@example.com", {"is_deleted": True}, {"role": "ADMIN"})
    hit = await store.update_where(UserAccount, "a@example.com", {"is_deleted": False}, {"role": "ADMIN"})
    absent = await store.update_where(UserAccount, "z@example.com", {}, {"role": "ADMIN"})

    assert not missed.applied
    assert hit.applied and hit.record is not None and hit.record.role == "ADMIN"
    assert not absent.applied


async def test_update_where_refuses_null_for_required_columns(store: RecordStore) -> None:
    await store.put_if_absent(_user("a@example.com", "u-a", phone="+100"))

    with pytest.raises(ValidationFailed) as excinfo:
        await store.update_where(
            UserAccount, "a@example.com", {}, {"role": None, "first_name": None, "phone_number": None}
        )

    assert excinfo.value.details == {"table": "identity_user", "fields": ["first_name", "role"]}
    stored = await store.get(UserAccount, "a@example.com")
    assert stored is not None
    assert (stored.role, stored.phone_number) == ("SALES_REP", "+100")


async def test_delete_where_applies_once(store: RecordStore) -> None:
    now = datetime.now(timezone.utc)
    await store.put_if_absent(RefreshTokenRecord(jti="j1", user_id="u-a", token="t", expires_at=now, created_at=now))

    assert (await store.delete_where(RefreshTokenRecord, "j1")).applied
    assert not (await store.delete_where(RefreshTokenRecord, "j1")).applied


async def test_delete_many_counts_rows(store: RecordStore) -> None:
    now = datetime.now(timezone.utc)
    for jti, user_id in (("j1", "u-a"), ("j2", "u-a"), ("j3", "u-b")):
        await store.put_if_absent(RefreshTokenRecord(jti=jti, user_id=user_id, token=jti, expires_at=now, created_at=now))

    assert await store.delete_many(RefreshTokenRecord, RefreshTokenRecord.user_id == "u-a") == 2
    assert [record.jti for record in await store.query(RefreshTokenRecord)] == ["j3"]


async def test_unreachable_database_is_retried_then_unavailable(tmp_path) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'crm.db'}")
    store = RecordStore(create_session_factory(engine), retry_attempts=3, retry_wait_max_seconds=0.01)
    before = REGISTRY.get_sample_value("store_retries_total", {"operation": "get"}) or 0.0

    try:
        with pytest.raises(StoreUnavailable) as exc_info:
            await store.get(UserAccount, "a@example.com")
    finally:
        await engine.dispose()

    assert exc_info.value.details == {"table": "identity_user", "operation": "get"}
    assert REGISTRY.get_sample_value("store_retries_total", {"operation": "get"}) == before + 2
