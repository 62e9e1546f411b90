"""Thread-safe in-memory user index with optional JSON file persistence."""
from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .config import DEFAULT_PRINCIPAL, OVERRIDE_POLICIES
from .contacts import ContactResolver, accept_any_contact
from .errors import (
    DuplicateError,
    InternalError,
    NotAllowedError,
    NotFoundError,
    ValidationError,
)
from .models import DEFAULT_AUTH_TYPE, FIELD_ALIASES, REQUIRED_FIELDS, AuthType, User
from .query import parse_query

logger = logging.getLogger("usersvc.store")

MAX_PAGE_SIZE = sys.maxsize


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _sort_key(user: User):
    # Records always carry created_at once stored; the fallback keeps legacy files sortable.
    created = user.created_at or datetime.min.replace(tzinfo=timezone.utc)
    return (created, user.id or "")


def _describe(user: User) -> str:
    """Render a record for log output without credential material."""

    return (
        f"<id={user.id} loginId={user.login_id} contactId={user.contact_id} "
        f"authType={user.auth_type.value if user.auth_type else None} "
        f"modifiedAt={user.modified_at.isoformat() if user.modified_at else None} "
        f"modifiedBy={user.modified_by}>"
    )


def read_users_file(path: Path) -> List[User]:
    """Parse a JSON array of user records from ``path``."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except OSError as exc:
        raise InternalError(f"Failed to read user records from {path}") from exc
    except ValueError as exc:
        raise InternalError(f"User record file {path} is not valid JSON") from exc

    if not isinstance(raw, list):
        raise InternalError(f"User record file {path} must contain a JSON array")
    try:
        return [User.from_dict(item) for item in raw]
    except (TypeError, ValueError, AttributeError) as exc:
        raise InternalError(f"User record file {path} contains an invalid record") from exc


def write_users_file(path: Path, users: Iterable[User]) -> None:
    """Atomically replace ``path`` with a JSON array of ``users``."""

    try:
        payload = json.dumps([user.to_dict() for user in users], indent=2)
    except (TypeError, ValueError) as exc:
        raise InternalError("Failed to serialise user records") from exc

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".users-", suffix=".json", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise InternalError(f"Failed to write user records to {path}") from exc


class UserStore:
    """Keyed collection of :class:`User` records.

    A host application creates one store per deployment and calls
    :meth:`initialize` once at start-up; subsequent calls are no-ops. All
    operations are serialised by a single re-entrant lock, and when a
    ``storage_path`` is configured every successful mutation rewrites the
    whole collection to that file before the lock is released. Contact
    lookups for ``create`` and ``update`` run before the lock is taken, so a
    slow contact service delays only the calling request.

    Records are sorted by creation time, then identifier, for listing.
    """

    def __init__(
        self,
        storage_path: Optional[Path] = None,
        *,
        resolve_contact: ContactResolver = accept_any_contact,
        override_policy: str = "ignore",
        default_auth_type: AuthType = DEFAULT_AUTH_TYPE,
        default_principal: str = DEFAULT_PRINCIPAL,
        seed_path: Optional[Path] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if override_policy not in OVERRIDE_POLICIES:
            raise ValueError(f"Unknown override policy {override_policy!r}")
        self._storage_path = storage_path
        self._seed_path = seed_path
        self._resolve_contact = resolve_contact
        self._override_policy = override_policy
        self._default_auth_type = default_auth_type
        self._default_principal = default_principal
        self._clock = clock
        self._index: Dict[str, User] = {}
        self._lock = threading.RLock()
        self._initialized = False

    @property
    def persistent(self) -> bool:
        return self._storage_path is not None

    @property
    def storage_path(self) -> Optional[Path]:
        return self._storage_path

    @property
    def override_policy(self) -> str:
        return self._override_policy

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> int:
        """Populate the index from storage exactly once.

        Returns the number of records imported, which is ``0`` when the store
        was already initialised or already holds records.
        """

        with self._lock:
            if self._initialized or self._index:
                self._initialized = True
                return 0

            users: List[User] = []
            if self._storage_path is not None and self._storage_path.exists():
                users = read_users_file(self._storage_path)
            elif self._seed_path is not None and self._seed_path.exists():
                users = read_users_file(self._seed_path)
                logger.info("Seeding user store from %s", self._seed_path)

            for user in users:
                if not user.id:
                    raise InternalError("Stored user record without an id")
                if user.id in self._index:
                    raise InternalError(f"Stored user records contain duplicate id <{user.id}>")
                self._index[user.id] = user

            if users and self._storage_path is not None and not self._storage_path.exists():
                write_users_file(self._storage_path, self._index.values())

            self._initialized = True
            logger.info("%d users imported.", len(users))
            return len(users)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list(
        self,
        query: Optional[str] = None,
        query_type: Optional[str] = None,
        position: int = 0,
        size: int = MAX_PAGE_SIZE,
    ) -> List[User]:
        """Return one page of the sorted, filtered collection."""

        if position < 0:
            raise ValidationError(f"position must not be negative, got {position}")
        if size < 0:
            raise ValidationError(f"size must not be negative, got {size}")
        query_filter = parse_query(query, query_type)

        with self._lock:
            users = sorted(self._index.values(), key=_sort_key)
            matching = [user for user in users if query_filter.matches(user)]
            selection = [replace(user) for user in matching[position : position + size]]

        logger.info(
            "list(<%s>, <%s>, <%d>, <%d>) -> %d users.",
            query,
            query_type,
            position,
            size,
            len(selection),
        )
        return selection

    def count(self) -> int:
        with self._lock:
            return len(self._index)

    def read(self, user_id: str) -> User:
        with self._lock:
            user = self._index.get(user_id)
            if user is None:
                raise NotFoundError(f"no user with ID <{user_id}> was found.")
            snapshot = replace(user)
        logger.info("read(%s) -> %s", user_id, _describe(snapshot))
        return snapshot

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create(self, user: User, principal: Optional[str] = None) -> User:
        """Store a new record and return it with server-assigned fields."""

        logger.info("create(%s)", _describe(user))
        acting = principal or self._default_principal

        if user.id:
            with self._lock:
                if user.id in self._index:
                    raise DuplicateError(f"user <{user.id}> exists already.")
            raise ValidationError(
                f"user <{user.id}> contains an ID generated on the client. This is not allowed."
            )
        # Contact lookups may be remote; they run without holding the lock.
        self._validate(user)

        with self._lock:
            user_id = str(uuid.uuid4())
            now = self._clock()
            stored = replace(
                user,
                id=user_id,
                auth_type=user.auth_type or self._default_auth_type,
                created_at=now,
                created_by=acting,
                modified_at=now,
                modified_by=acting,
            )
            self._index[user_id] = stored
            logger.info("create() -> %s", _describe(stored))
            self._persist()
            return replace(stored)

    def update(self, user_id: str, user: User, principal: Optional[str] = None) -> User:
        """Overwrite the mutable fields of an existing record."""

        acting = principal or self._default_principal

        self._check_immutable(self._require(user_id), user)
        self._validate(user)

        with self._lock:
            # The record may have been deleted while the contact was resolved.
            current = self._require(user_id)
            updated = replace(
                current,
                login_id=user.login_id,
                contact_id=user.contact_id,
                hashed_password=user.hashed_password,
                salt=user.salt,
                auth_type=user.auth_type or self._default_auth_type,
                modified_at=self._clock(),
                modified_by=acting,
            )
            self._index[user_id] = updated
            logger.info("update(%s)", _describe(updated))
            self._persist()
            return replace(updated)

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._require(user_id)
            del self._index[user_id]
            logger.info("delete(%s)", user_id)
            self._persist()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require(self, user_id: str) -> User:
        with self._lock:
            current = self._index.get(user_id)
            if current is None:
                raise NotFoundError(f"no user with ID <{user_id}> was found.")
            return current

    def _validate(self, user: User) -> None:
        for name in REQUIRED_FIELDS:
            value = getattr(user, name)
            if not value or not str(value).strip():
                raise ValidationError(f"user <{user.id}> must have a valid {FIELD_ALIASES[name]}.")
        try:
            self._resolve_contact(user.contact_id)
        except NotFoundError as exc:
            raise ValidationError(
                f"user <{user.id}> references contact <{user.contact_id}> which does not exist."
            ) from exc

    def _check_immutable(self, current: User, user: User) -> None:
        conflicts = []
        if user.id is not None and user.id != current.id:
            conflicts.append(("id", user.id))
        if user.created_at is not None and user.created_at != current.created_at:
            conflicts.append(("createdAt", user.created_at.isoformat()))
        if user.created_by is not None and (current.created_by or "").lower() != user.created_by.lower():
            conflicts.append(("createdBy", user.created_by))

        for name, value in conflicts:
            if self._override_policy == "reject":
                raise NotAllowedError(
                    f"user <{current.id}>: {name} is set by the server and must not be changed."
                )
            logger.warning(
                "user <%s>: ignoring %s value <%s> because it was set on the client.",
                current.id,
                name,
                value,
            )

    def _persist(self) -> None:
        if self._storage_path is None:
            return
        write_users_file(self._storage_path, sorted(self._index.values(), key=_sort_key))


__all__ = ["MAX_PAGE_SIZE", "UserStore", "read_users_file", "write_users_file"]
