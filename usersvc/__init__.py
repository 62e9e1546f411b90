"""Core utilities for the user record service."""

from __future__ import annotations

from typing import Any

from .errors import (
    DuplicateError,
    InternalError,
    NotAllowedError,
    NotFoundError,
    UserServiceError,
    ValidationError,
)
from .models import AuthType, User
from .store import UserStore


def create_application(*args: Any, **kwargs: Any):
    """Factory function that returns the configured HTTP application."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


__all__ = [
    "AuthType",
    "DuplicateError",
    "InternalError",
    "NotAllowedError",
    "NotFoundError",
    "User",
    "UserServiceError",
    "UserStore",
    "ValidationError",
    "create_application",
]
