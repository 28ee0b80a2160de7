from crm_api.platform.security.context import IdentityContext
from crm_api.platform.security.errors import (
    AlreadyDeleted,
    Conflict,
    CoreError,
    InvalidToken,
    NotDeleted,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
    TokenExpired,
    TokenRevoked,
    Unauthenticated,
    ValidationFailed,
)
from crm_api.platform.security.roles import Capability, Role, has_capability
from crm_api.platform.security.visibility import filter_visible, is_visible

__all__ = [
    "AlreadyDeleted",
    "Capability",
    "Conflict",
    "CoreError",
    "IdentityContext",
    "InvalidToken",
    "NotDeleted",
    "NotFound",
    "PermissionDenied",
    "Role",
    "StoreUnavailable",
    "TokenExpired",
    "TokenRevoked",
    "Unauthenticated",
    "ValidationFailed",
    "filter_visible",
    "has_capability",
    "is_visible",
]
