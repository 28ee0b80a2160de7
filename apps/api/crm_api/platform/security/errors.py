from __future__ import annotations

from typing import Any


class CoreError(Exception):
    """Base class for every error the access core lets escape.

    Each subclass carries the HTTP status it maps to, so the API layer never
    needs to know about store- or token-library exception types.
    """

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal error"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class Unauthenticated(CoreError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Authentication required"


class InvalidToken(Unauthenticated):
    code = "INVALID_TOKEN"
    default_message = "Invalid token"


class TokenRevoked(Unauthenticated):
    code = "TOKEN_REVOKED"
    default_message = "Refresh token is no longer valid"


class TokenExpired(Unauthenticated):
    code = "TOKEN_EXPIRED"
    default_message = "Refresh token expired"


class PermissionDenied(CoreError):
    status_code = 403
    code = "PERMISSION_DENIED"
    default_message = "Permission denied"


class NotFound(CoreError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class Conflict(CoreError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Conflicting write"


class AlreadyDeleted(Conflict):
    code = "ALREADY_DELETED"
    default_message = "Record is already deleted"


class NotDeleted(Conflict):
    code = "NOT_DELETED"
    default_message = "Record is not deleted"


class ValidationFailed(CoreError):
    status_code = 422
    code = "VALIDATION_FAILED"
    default_message = "Invalid data provided"


class StoreUnavailable(CoreError):
    status_code = 503
    code = "STORE_UNAVAILABLE"
    default_message = "Record store is temporarily unavailable"
