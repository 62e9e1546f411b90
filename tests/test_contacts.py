from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from usersvc.contacts import (
    Contact,
    ContactDirectory,
    HTTPContactResolver,
    accept_any_contact,
    load_contact_directory,
)
from usersvc.errors import InternalError, NotFoundError, ValidationError
from usersvc.models import User
from usersvc.store import UserStore


def test_directory_lookup() -> None:
    directory = ContactDirectory([Contact(id="c1", name="Alice")])
    assert directory("c1").name == "Alice"
    with pytest.raises(NotFoundError):
        directory("c2")

    directory.add(Contact(id="c2"))
    assert len(directory) == 2


def test_load_directory_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "contacts.yaml"
    path.write_text("contacts:\n  - id: c1\n    name: Alice\n  - c2\n", encoding="utf-8")

    directory = load_contact_directory(path)

    assert directory("c1") == Contact(id="c1", name="Alice")
    assert directory("c2") == Contact(id="c2")


def test_load_directory_requires_contacts_key(tmp_path: Path) -> None:
    path = tmp_path / "contacts.yaml"
    path.write_text("people: []\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_contact_directory(path)


def _resolver(handler) -> HTTPContactResolver:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HTTPContactResolver("https://contacts.example.com/api/", client=client)


def test_http_resolver_returns_contact() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"id": "c1", "firstName": "Alice", "lastName": "Smith"})

    contact = _resolver(handler)("c1")

    assert contact == Contact(id="c1", name="Alice Smith")
    assert seen == ["https://contacts.example.com/api/contacts/c1"]


def test_http_resolver_maps_missing_contact() -> None:
    resolver = _resolver(lambda request: httpx.Response(404, json={"detail": "not found"}))
    with pytest.raises(NotFoundError):
        resolver("missing")


def test_http_resolver_reports_service_failures() -> None:
    failing = _resolver(lambda request: httpx.Response(503, text="unavailable"))
    with pytest.raises(InternalError):
        failing("c1")

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(InternalError):
        _resolver(unreachable)("c1")


def test_accept_any_contact() -> None:
    assert accept_any_contact("anything") == Contact(id="anything")


def _single_contact_service(requested: list):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.raw_path.decode("ascii")
        requested.append(path)
        if path == "/api/contacts/c1":
            return httpx.Response(200, json={"id": "c1", "name": "Alice"})
        return httpx.Response(404, json={"detail": "not found"})

    return handler


@pytest.mark.parametrize(
    "contact_id, path",
    [
        ("c1?evil=1", "/api/contacts/c1%3Fevil%3D1"),
        ("c1#frag", "/api/contacts/c1%23frag"),
        ("zzz/../c1", "/api/contacts/zzz%2F..%2Fc1"),
        ("team/c1", "/api/contacts/team%2Fc1"),
    ],
)
def test_http_resolver_escapes_contact_id(contact_id: str, path: str) -> None:
    requested: list = []
    resolver = _resolver(_single_contact_service(requested))

    with pytest.raises(NotFoundError):
        resolver(contact_id)

    assert requested == [path]


@pytest.mark.parametrize("contact_id", ["", ".", ".."])
def test_http_resolver_rejects_dot_segments_without_request(contact_id: str) -> None:
    requested: list = []
    resolver = _resolver(_single_contact_service(requested))

    with pytest.raises(NotFoundError):
        resolver(contact_id)

    assert requested == []


def test_store_rejects_contact_id_that_would_alias_another_contact() -> None:
    requested: list = []
    users = UserStore(None, resolve_contact=_resolver(_single_contact_service(requested)))
    users.initialize()

    with pytest.raises(ValidationError):
        users.create(User(login_id="mallory", contact_id="c1?evil=1", hashed_password="h", salt="s"))

    assert users.count() == 0
    assert users.create(User(login_id="alice", contact_id="c1", hashed_password="h", salt="s")).contact_id == "c1"


def test_http_resolver_close_releases_client() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    resolver = HTTPContactResolver("https://contacts.example.com/api", client=client)

    resolver.close()

    assert client.is_closed
