"""Contact lookups used to validate the ``contactId`` of user records."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional
from urllib.parse import quote

import httpx
import yaml

from .errors import InternalError, NotFoundError

logger = logging.getLogger("usersvc.contacts")

ContactResolver = Callable[[str], "Contact"]


@dataclass(frozen=True)
class Contact:
    """The subset of a contact record the user service cares about."""

    id: str
    name: Optional[str] = None


class ContactDirectory:
    """In-memory contact lookup, typically loaded from a YAML file."""

    def __init__(self, contacts: Iterable[Contact] = ()) -> None:
        self._contacts: Dict[str, Contact] = {contact.id: contact for contact in contacts}

    def __call__(self, contact_id: str) -> Contact:
        try:
            return self._contacts[contact_id]
        except KeyError as exc:
            raise NotFoundError(f"no contact with ID <{contact_id}> was found.") from exc

    def __len__(self) -> int:
        return len(self._contacts)

    def add(self, contact: Contact) -> None:
        self._contacts[contact.id] = contact


def load_contact_directory(path: Path) -> ContactDirectory:
    """Load contacts from a YAML file with a top-level ``contacts`` list.

    Entries may be mappings with ``id`` and optional ``name`` keys, or bare
    identifier strings.
    """

    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    entries = raw.get("contacts") if isinstance(raw, dict) else None
    if entries is None:
        raise ValueError(f"Contact file {path} must define a 'contacts' list")

    contacts = []
    for entry in entries:
        if isinstance(entry, dict):
            if not entry.get("id"):
                raise ValueError(f"Contact entry without an id in {path}")
            name = entry.get("name")
            contacts.append(Contact(id=str(entry["id"]), name=str(name) if name is not None else None))
        else:
            contacts.append(Contact(id=str(entry)))

    logger.info("%d contacts loaded from %s", len(contacts), path)
    return ContactDirectory(contacts)


class HTTPContactResolver:
    """Resolve contacts against a remote address-book service."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def __call__(self, contact_id: str) -> Contact:
        # "." and ".." would be collapsed by path normalisation even when escaped.
        if not contact_id or contact_id in {".", ".."}:
            raise NotFoundError(f"no contact with ID <{contact_id}> was found.")
        url = f"{self._base_url}/contacts/{quote(contact_id, safe='')}"
        try:
            response = self._client.get(url)
        except httpx.HTTPError as exc:
            raise InternalError(f"Contact service unreachable at {self._base_url}: {exc}") from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(f"no contact with ID <{contact_id}> was found.")
        try:
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPStatusError, ValueError) as exc:
            raise InternalError(f"Contact service returned an invalid response for <{contact_id}>") from exc

        name = None
        if isinstance(payload, dict):
            name = payload.get("name") or " ".join(
                part for part in (payload.get("firstName"), payload.get("lastName")) if part
            ) or None
        return Contact(id=contact_id, name=name)

    def close(self) -> None:
        self._client.close()


def accept_any_contact(contact_id: str) -> Contact:
    """Resolver used when no contact source is configured."""

    return Contact(id=contact_id)


__all__ = [
    "Contact",
    "ContactDirectory",
    "ContactResolver",
    "HTTPContactResolver",
    "accept_any_contact",
    "load_contact_directory",
]
