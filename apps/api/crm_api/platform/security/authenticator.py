from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends
from starlette.requests import Request

from crm_api.context import bind_identity, get_correlation_id
from crm_api.identity.models import UserAccount
from crm_api.metrics import observe_auth_degraded, observe_auth_failure
from crm_api.platform.security.context import IdentityContext
from crm_api.platform.security.errors import PermissionDenied, StoreUnavailable, Unauthenticated
from crm_api.platform.security.roles import Role, parse_role
from crm_api.platform.security.tokens import TokenService
from crm_api.platform.store import RecordStore


logger = logging.getLogger("crm_api.security.authenticator")


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class RequestAuthenticator:
    """Turns a bearer token into an ``IdentityContext``.

    Role and tenant always come from the live user record, never from the
    token. The token claims are only used when the store is unreachable, and
    the resulting context is flagged ``degraded``.
    """

    def __init__(self, tokens: TokenService, store: RecordStore) -> None:
        self._tokens = tokens
        self._store = store

    async def authenticate(self, authorization: str | None) -> IdentityContext:
        token = extract_bearer_token(authorization)
        if token is None:
            observe_auth_failure("missing_token")
            raise Unauthenticated()

        claims = self._tokens.verify_access_token(token)

        try:
            user = await self._store.get(UserAccount, claims.email)
        except StoreUnavailable:
            observe_auth_degraded()
            logger.warning(
                "auth_degraded_identity",
                extra={"user_id": claims.user_id, "tenant_id": claims.tenant_id, "reason": "store_unavailable"},
            )
            return IdentityContext(
                user_id=claims.user_id,
                email=claims.email,
                role=claims.role,
                tenant_id=claims.tenant_id,
                correlation_id=get_correlation_id(),
                degraded=True,
            )

        if user is None:
            observe_auth_failure("user_missing")
            raise Unauthenticated("User not found")
        if user.is_deleted:
            observe_auth_failure("user_deleted")
            raise Unauthenticated("User account has been deleted")

        return IdentityContext(
            user_id=user.user_id,
            email=user.email,
            role=user.role,
            tenant_id=user.tenant_id,
            first_name=user.first_name,
            last_name=user.last_name,
            correlation_id=get_correlation_id(),
        )


async def get_identity(request: Request) -> IdentityContext:
    authenticator: RequestAuthenticator = request.app.state.authenticator
    identity = await authenticator.authenticate(request.headers.get("authorization"))
    request.state.identity = identity
    bind_identity(identity.user_id, identity.tenant_id)
    return identity


def require_roles(*roles: Role) -> Callable[..., object]:
    allowed = frozenset(roles)

    async def checker(identity: IdentityContext = Depends(get_identity)) -> IdentityContext:
        if parse_role(identity.role) not in allowed:
            raise PermissionDenied(f"Requires one of: {', '.join(sorted(allowed))}")
        return identity

    return checker
