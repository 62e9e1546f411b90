"""FastAPI application exposing the user store over HTTP."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from functools import partial
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Type

import anyio
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    DuplicateError,
    InternalError,
    NotAllowedError,
    NotFoundError,
    UserServiceError,
    ValidationError,
)
from .models import AuthType, User
from .security import PrincipalAuth
from .store import UserStore

logger = logging.getLogger("usersvc.api")

DEFAULT_PAGE_SIZE = 50

_ERROR_STATUS: Dict[Type[UserServiceError], int] = {
    DuplicateError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    NotAllowedError: status.HTTP_403_FORBIDDEN,
    InternalError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class UserPayload(BaseModel):
    """Request body for create and update calls.

    Required fields are optional here so that empty or missing values reach
    the store and are reported with its validation messages.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    login_id: Optional[str] = Field(default=None, alias="loginId")
    contact_id: Optional[str] = Field(default=None, alias="contactId")
    hashed_password: Optional[str] = Field(default=None, alias="hashedPassword")
    salt: Optional[str] = None
    auth_type: Optional[AuthType] = Field(default=None, alias="authType")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    created_by: Optional[str] = Field(default=None, alias="createdBy")
    modified_at: Optional[datetime] = Field(default=None, alias="modifiedAt")
    modified_by: Optional[str] = Field(default=None, alias="modifiedBy")

    def to_user(self) -> User:
        return User(
            id=self.id or None,
            login_id=self.login_id or "",
            contact_id=self.contact_id or "",
            hashed_password=self.hashed_password or "",
            salt=self.salt or "",
            auth_type=self.auth_type,
            created_at=self.created_at,
            created_by=self.created_by,
            modified_at=self.modified_at,
            modified_by=self.modified_by,
        )


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    login_id: str = Field(alias="loginId")
    contact_id: str = Field(alias="contactId")
    hashed_password: str = Field(alias="hashedPassword")
    salt: str
    auth_type: AuthType = Field(alias="authType")
    created_at: datetime = Field(alias="createdAt")
    created_by: str = Field(alias="createdBy")
    modified_at: datetime = Field(alias="modifiedAt")
    modified_by: str = Field(alias="modifiedBy")


class CountResponse(BaseModel):
    count: int


def user_to_response(user: User) -> UserResponse:
    return UserResponse.model_validate(user.to_dict())


def create_app(
    *,
    store: UserStore,
    auth: Optional[PrincipalAuth] = None,
    on_shutdown: Sequence[Callable[[], None]] = (),
) -> FastAPI:
    """Create the HTTP application around an initialised ``store``.

    ``on_shutdown`` callables release resources owned by the store's
    collaborators, such as the contact service client.
    """

    principal_dependency = auth or PrincipalAuth()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            for hook in on_shutdown:
                hook()

    app = FastAPI(title="User Record Service", lifespan=lifespan)
    app.state.store = store

    def get_store(request: Request) -> UserStore:
        return request.app.state.store

    router = APIRouter(prefix="/api/users", dependencies=[Depends(principal_dependency)])

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @router.get("", response_model=List[UserResponse])
    async def list_users(
        query: Optional[str] = Query(default=None),
        query_type: Optional[str] = Query(default=None, alias="queryType"),
        position: int = Query(default=0, ge=0),
        size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1),
        users: UserStore = Depends(get_store),
    ) -> List[UserResponse]:
        selection = await anyio.to_thread.run_sync(
            partial(users.list, query, query_type, position=position, size=size)
        )
        return [user_to_response(user) for user in selection]

    @router.get("/count", response_model=CountResponse)
    async def count_users(users: UserStore = Depends(get_store)) -> CountResponse:
        total = await anyio.to_thread.run_sync(users.count)
        return CountResponse(count=total)

    @router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    async def create_user(
        payload: UserPayload,
        principal: str = Depends(principal_dependency),
        users: UserStore = Depends(get_store),
    ) -> UserResponse:
        created = await anyio.to_thread.run_sync(users.create, payload.to_user(), principal)
        return user_to_response(created)

    @router.get("/{user_id}", response_model=UserResponse)
    async def read_user(user_id: str, users: UserStore = Depends(get_store)) -> UserResponse:
        user = await anyio.to_thread.run_sync(users.read, user_id)
        return user_to_response(user)

    @router.put("/{user_id}", response_model=UserResponse)
    async def update_user(
        user_id: str,
        payload: UserPayload,
        principal: str = Depends(principal_dependency),
        users: UserStore = Depends(get_store),
    ) -> UserResponse:
        updated = await anyio.to_thread.run_sync(users.update, user_id, payload.to_user(), principal)
        return user_to_response(updated)

    @router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_user(user_id: str, users: UserStore = Depends(get_store)) -> Response:
        await anyio.to_thread.run_sync(users.delete, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    app.include_router(router)

    @app.exception_handler(UserServiceError)
    async def handle_service_error(_: Request, exc: UserServiceError):
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        for error_type, code in _ERROR_STATUS.items():
            if isinstance(exc, error_type):
                status_code = code
                break
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("User store failure: %s", exc, exc_info=exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(error.get("loc", ())), "msg": str(error.get("msg", ""))}
            for error in exc.errors()
        ]
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": errors})

    return app


__all__ = ["CountResponse", "UserPayload", "UserResponse", "create_app", "user_to_response"]
