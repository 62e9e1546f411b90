"""Domain models for the user record service."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class AuthType(str, Enum):
    """Authentication mechanism a user signs in with."""

    LOCAL = "local"
    LDAP = "ldap"
    OAUTH = "oauth"


DEFAULT_AUTH_TYPE = AuthType.LOCAL

# Attribute name -> JSON name used on disk and on the wire.
FIELD_ALIASES: Dict[str, str] = {
    "id": "id",
    "login_id": "loginId",
    "contact_id": "contactId",
    "hashed_password": "hashedPassword",
    "salt": "salt",
    "auth_type": "authType",
    "created_at": "createdAt",
    "created_by": "createdBy",
    "modified_at": "modifiedAt",
    "modified_by": "modifiedBy",
}

REQUIRED_FIELDS = ("login_id", "contact_id", "hashed_password", "salt")
TIMESTAMP_FIELDS = ("created_at", "modified_at")


def serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_auth_type(value: object) -> Optional[AuthType]:
    if value is None or value == "":
        return None
    if isinstance(value, AuthType):
        return value
    try:
        return AuthType(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in AuthType)
        raise ValueError(f"Unknown authType {value!r}; expected one of {allowed}") from exc


@dataclass
class User:
    """A user account: login identity, credentials, and audit provenance.

    Fields that the server owns (``id`` and the four audit fields) are
    ``None`` on records that have not been stored yet.
    """

    login_id: str = ""
    contact_id: str = ""
    hashed_password: str = ""
    salt: str = ""
    auth_type: Optional[AuthType] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    modified_at: Optional[datetime] = None
    modified_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the camelCase JSON representation of the record."""

        data: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, datetime):
                value = serialize_datetime(value)
            elif isinstance(value, AuthType):
                value = value.value
            data[FIELD_ALIASES[item.name]] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "User":
        """Build a record from its JSON representation.

        Both camelCase and attribute names are accepted; unknown keys are
        ignored.
        """

        values: Dict[str, Any] = {}
        for name, alias in FIELD_ALIASES.items():
            if alias in data:
                values[name] = data[alias]
            elif name in data:
                values[name] = data[name]

        for name in TIMESTAMP_FIELDS:
            raw = values.get(name)
            if isinstance(raw, str):
                values[name] = parse_datetime(raw) if raw else None
        if "auth_type" in values:
            values["auth_type"] = parse_auth_type(values["auth_type"])
        for name in ("login_id", "contact_id", "hashed_password", "salt"):
            if values.get(name) is None:
                values[name] = ""
        return cls(**values)


__all__ = [
    "AuthType",
    "DEFAULT_AUTH_TYPE",
    "FIELD_ALIASES",
    "REQUIRED_FIELDS",
    "TIMESTAMP_FIELDS",
    "User",
    "parse_auth_type",
    "parse_datetime",
    "serialize_datetime",
]
