from __future__ import annotations

from passlib.context import CryptContext


# argon2 for new hashes; bcrypt hashes carried over from older accounts still
# verify and get rehashed on the next successful login.
pwd_context = CryptContext(
    schemes=["argon2", "bcrypt"],
    default="argon2",
    deprecated="auto",
    argon2__time_cost=2,
    argon2__memory_cost=19456,
    argon2__parallelism=1,
)


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, stored_hash: str | None) -> bool:
    if not stored_hash:
        return False
    try:
        return pwd_context.verify(plain, stored_hash)
    except ValueError:
        return False


def verify_and_maybe_upgrade(plain: str, stored_hash: str | None) -> tuple[bool, str | None]:
    """Return ``(ok, new_hash)``; ``new_hash`` is set when the stored one is deprecated."""

    if not stored_hash:
        return False, None
    try:
        return pwd_context.verify_and_update(plain, stored_hash)
    except ValueError:
        return False, None
