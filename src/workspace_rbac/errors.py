from __future__ import annotations


class AppError(Exception):
    """Base error for expected failures."""

    code = "APP_ERROR"

    def __init__(self, message: str, *, http_status: int = 400):
        super().__init__(message)
        self.message = message
        self.http_status = http_status


class AuthError(AppError):
    code = "AUTHENTICATION_REQUIRED"

    def __init__(self, message: str = "unauthorized"):
        super().__init__(message, http_status=401)


class ForbiddenError(AppError):
    code = "INSUFFICIENT_PERMISSIONS"

    def __init__(self, message: str = "forbidden"):
        super().__init__(message, http_status=403)


class NotFoundError(AppError):
    code = "NOT_FOUND"

    def __init__(self, message: str = "not found"):
        super().__init__(message, http_status=404)


class MutationConflictError(AppError):
    """A role or assignment write was rejected; nothing was changed."""

    code = "MUTATION_CONFLICT"

    def __init__(self, message: str = "conflict"):
        super().__init__(message, http_status=409)


class InvalidRoleReferenceError(AppError):
    code = "INVALID_ROLE_REFERENCE"

    def __init__(self, message: str = "role not found or inactive"):
        super().__init__(message, http_status=422)


class StoreUnavailableError(Exception):
    """A permission store call failed (timeout, network or query error)."""


class CacheUnavailableError(Exception):
    """A cache backend could not serve the call."""
