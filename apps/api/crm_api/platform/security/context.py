from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class IdentityContext:
    """Request-scoped caller identity.

    Built from the live user record on every request; ``degraded`` is only set
    when the record store could not be reached and the token claims were used
    instead.
    """

    user_id: str
    email: str
    role: str
    tenant_id: str
    first_name: str = ""
    last_name: str = ""
    correlation_id: str | None = None
    degraded: bool = False
