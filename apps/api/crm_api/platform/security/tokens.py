from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from jose import JWTError, jwt
from opentelemetry import trace

from crm_api.core.config import Settings
from crm_api.identity.models import RefreshTokenRecord, UserAccount
from crm_api.metrics import observe_auth_failure, observe_token_issued
from crm_api.platform.security.errors import Conflict, InvalidToken, TokenExpired, TokenRevoked, Unauthenticated
from crm_api.platform.store import RecordStore


logger = logging.getLogger("crm_api.security.tokens")
tracer = trace.get_tracer("crm_api.security.tokens")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TokenSubject(Protocol):
    user_id: str
    email: str
    role: str
    tenant_id: str


@dataclass(frozen=True, slots=True)
class AccessClaims:
    user_id: str
    email: str
    role: str
    tenant_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class RefreshClaims:
    user_id: str
    email: str
    jti: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str
    refresh_token: str


UserLoader = Callable[[RefreshClaims], Awaitable[UserAccount | None]]


class TokenService:
    """Issues, verifies and rotates the access/refresh token pair.

    Access tokens are stateless. Refresh tokens are backed by a
    ``RefreshTokenRecord`` keyed by the token's ``jti``: a refresh token is
    only honoured while its record exists, so deleting the record revokes it.
    Nothing in here retries; a failed verification is final.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._store = store
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._algorithm = algorithm
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, store: RecordStore, settings: Settings, **kwargs: Any) -> TokenService:
        return cls(
            store,
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            algorithm=settings.jwt_algorithm,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_ttl_days),
            **kwargs,
        )

    def issue_access_token(self, subject: TokenSubject) -> str:
        now = self._clock()
        claims = {
            "userId": subject.user_id,
            "email": subject.email,
            "role": subject.role,
            "tenantId": subject.tenant_id,
            "iat": int(now.timestamp()),
            "exp": int((now + self._access_ttl).timestamp()),
        }
        token = jwt.encode(claims, self._access_secret, algorithm=self._algorithm)
        observe_token_issued("access")
        return token

    async def issue_refresh_token(self, subject: TokenSubject) -> str:
        now = self._clock()
        expires_at = now + self._refresh_ttl
        jti = str(uuid.uuid4())
        claims = {
            "userId": subject.user_id,
            "email": subject.email,
            "jti": jti,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(claims, self._refresh_secret, algorithm=self._algorithm)
        result = await self._store.put_if_absent(
            RefreshTokenRecord(jti=jti, user_id=subject.user_id, token=token, expires_at=expires_at, created_at=now)
        )
        if not result.applied:
            raise Conflict("Refresh token id collision")
        observe_token_issued("refresh")
        return token

    def verify_access_token(self, token: str) -> AccessClaims:
        claims = self._decode(token, self._access_secret)
        try:
            return AccessClaims(
                user_id=str(claims["userId"]),
                email=str(claims["email"]),
                role=str(claims["role"]),
                tenant_id=str(claims["tenantId"]),
                issued_at=datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as exc:
            observe_auth_failure("invalid_token")
            raise InvalidToken() from exc

    async def verify_refresh_token(self, token: str) -> RefreshClaims:
        claims = self._decode(token, self._refresh_secret)
        try:
            parsed = RefreshClaims(
                user_id=str(claims["userId"]),
                email=str(claims["email"]),
                jti=str(claims["jti"]),
                expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as exc:
            observe_auth_failure("invalid_token")
            raise InvalidToken() from exc

        record = await self._store.get(RefreshTokenRecord, parsed.jti)
        if record is None or record.token != token:
            observe_auth_failure("token_revoked")
            logger.info("refresh_token_revoked", extra={"user_id": parsed.user_id, "jti": parsed.jti})
            raise TokenRevoked()
        if as_aware(record.expires_at) <= self._clock():
            await self._store.delete_where(RefreshTokenRecord, parsed.jti)
            observe_auth_failure("token_expired")
            raise TokenExpired()
        return parsed

    async def invalidate_refresh_token(self, jti: str) -> None:
        await self._store.delete_where(RefreshTokenRecord, jti)

    async def invalidate_all_for_user(self, user_id: str) -> int:
        removed = await self._store.delete_many(RefreshTokenRecord, RefreshTokenRecord.user_id == user_id)
        logger.info("refresh_tokens_invalidated", extra={"user_id": user_id, "reason": f"count={removed}"})
        return removed

    async def rotate(self, token: str, load_user: UserLoader) -> TokenPair:
        """Exchange a refresh token for a new pair, consuming the old one.

        The old ``jti`` is deleted with a conditional delete before anything is
        issued, so of two concurrent rotations of the same token exactly one
        wins and the other sees ``TokenRevoked``.
        """

        with tracer.start_as_current_span("auth.rotate_refresh_token") as span:
            claims = await self.verify_refresh_token(token)
            span.set_attribute("auth.user_id", claims.user_id)

            consumed = await self._store.delete_where(RefreshTokenRecord, claims.jti)
            if not consumed.applied:
                observe_auth_failure("token_revoked")
                logger.warning("refresh_token_replayed", extra={"user_id": claims.user_id, "jti": claims.jti})
                raise TokenRevoked()

            user = await load_user(claims)
            if user is None or user.is_deleted:
                observe_auth_failure("user_missing")
                raise Unauthenticated("User not found")

            return TokenPair(
                access_token=self.issue_access_token(user),
                refresh_token=await self.issue_refresh_token(user),
            )

    def _decode(self, token: str, secret: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(token, secret, algorithms=[self._algorithm], options={"verify_exp": False})
        except JWTError as exc:
            observe_auth_failure("invalid_token")
            raise InvalidToken() from exc
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self._clock().timestamp():
            observe_auth_failure("invalid_token")
            raise InvalidToken("Token expired")
        return claims
