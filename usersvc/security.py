"""Principal resolution for the user API."""
from __future__ import annotations

import secrets
from typing import Mapping, Optional

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import DEFAULT_PRINCIPAL


class PrincipalAuth:
    """Map bearer tokens to principal names using constant-time comparisons.

    With no tokens configured every request acts as ``default_principal``.
    """

    def __init__(self, tokens: Optional[Mapping[str, str]] = None, *, default_principal: str = DEFAULT_PRINCIPAL):
        self._tokens = {token.strip(): principal for token, principal in (tokens or {}).items() if token.strip()}
        self._default_principal = default_principal
        self._bearer = HTTPBearer(auto_error=False)

    @property
    def enabled(self) -> bool:
        return bool(self._tokens)

    async def __call__(self, request: Request) -> str:
        if not self._tokens:
            return self._default_principal

        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing bearer token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        provided = credentials.credentials
        principal: Optional[str] = None
        for token, name in self._tokens.items():
            if secrets.compare_digest(provided, token):
                principal = name

        if principal is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API token")
        return principal


__all__ = ["PrincipalAuth"]
