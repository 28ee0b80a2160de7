from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class RequestScope:
    """What the current request is known to be about, for logs and audit."""

    correlation_id: str | None = None
    user_id: str | None = None
    tenant_id: str | None = None


_scope: ContextVar[RequestScope] = ContextVar("crm_request_scope", default=RequestScope())


def current_scope() -> RequestScope:
    return _scope.get()


def get_correlation_id() -> str | None:
    return _scope.get().correlation_id


def begin_request(correlation_id: str | None) -> Token[RequestScope]:
    return _scope.set(RequestScope(correlation_id=correlation_id))


def end_request(token: Token[RequestScope]) -> None:
    _scope.reset(token)


def bind_identity(user_id: str, tenant_id: str) -> None:
    # Only visible to code running in the endpoint's task.
    _scope.set(replace(_scope.get(), user_id=user_id, tenant_id=tenant_id))
