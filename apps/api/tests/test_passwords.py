from __future__ import annotations

from passlib.hash import bcrypt

from crm_api.platform.security.passwords import hash_password, verify_and_maybe_upgrade, verify_password


def test_hash_and_verify() -> None:
    stored = hash_password("Secret123!")

    assert stored.startswith("$argon2")
    assert verify_password("Secret123!", stored)
    assert not verify_password("secret123!", stored)


def test_garbage_hash_does_not_verify() -> None:
    assert verify_password("Secret123!", "not-a-hash") is False


def test_legacy_bcrypt_hash_is_upgraded() -> None:
    legacy = bcrypt.using(rounds=4).hash("Secret123!")

    ok, upgraded = verify_and_maybe_upgrade("Secret123!", legacy)
    rejected, nothing = verify_and_maybe_upgrade("wrong", legacy)

    assert ok is True
    assert upgraded is not None and upgraded.startswith("$argon2")
    assert rejected is False and nothing is None


def test_current_hash_is_not_rehashed() -> None:
    ok, upgraded = verify_and_maybe_upgrade("Secret123!", hash_password("Secret123!"))

    assert ok is True
    assert upgraded is None
