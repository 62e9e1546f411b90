"""Exception hierarchy shared by the user store and its HTTP layer."""
from __future__ import annotations


class UserServiceError(Exception):
    """Base class for errors raised by the user service."""


class DuplicateError(UserServiceError):
    """Raised when a client-supplied identifier collides with a stored record."""


class ValidationError(UserServiceError):
    """Raised when a request is incomplete or attempts to set server-owned data."""


class NotFoundError(UserServiceError):
    """Raised when the targeted record does not exist."""


class NotAllowedError(UserServiceError):
    """Raised when a client tries to change an immutable audit field."""


class InternalError(UserServiceError):
    """Raised when the backing storage cannot be read or written."""


__all__ = [
    "UserServiceError",
    "DuplicateError",
    "ValidationError",
    "NotFoundError",
    "NotAllowedError",
    "InternalError",
]
