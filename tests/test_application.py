from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from usersvc import create_application
from usersvc.application import build_contact_resolver
from usersvc.config import Settings
from usersvc.contacts import ContactDirectory, HTTPContactResolver, accept_any_contact


def test_contact_resolver_selection(tmp_path: Path) -> None:
    contacts = tmp_path / "contacts.yaml"
    contacts.write_text("contacts:\n  - c1\n", encoding="utf-8")

    assert build_contact_resolver(Settings(data_dir=tmp_path)) is accept_any_contact
    assert isinstance(build_contact_resolver(Settings(data_dir=tmp_path, contacts_file=contacts)), ContactDirectory)
    assert isinstance(
        build_contact_resolver(Settings(data_dir=tmp_path, contacts_url="https://contacts.example.com")),
        HTTPContactResolver,
    )


def test_application_persists_under_prefix(tmp_path: Path) -> None:
    contacts = tmp_path / "contacts.yaml"
    contacts.write_text("contacts:\n  - id: c1\n", encoding="utf-8")
    settings = Settings(
        data_dir=tmp_path,
        prefix="staging",
        contacts_file=contacts,
        api_tokens={"token-1": "deployer"},
    )

    app = create_application(settings=settings)
    headers = {"Authorization": "Bearer token-1"}
    body = {"loginId": "alice", "contactId": "c1", "hashedPassword": "h", "salt": "s"}

    with TestClient(app) as client:
        created = client.post("/api/users", json=body, headers=headers)
        assert created.status_code == 201, created.text
        assert created.json()["modifiedBy"] == "deployer"

        rejected = client.post("/api/users", json={**body, "contactId": "c9"}, headers=headers)
        assert rejected.status_code == 400

    assert (tmp_path / "staging" / "users.json").exists()

    restarted = create_application(settings=settings)
    assert restarted.state.store.count() == 1


def test_non_persistent_settings_skip_the_file(tmp_path: Path) -> None:
    app = create_application(settings=Settings(data_dir=tmp_path, persistent=False))
    with TestClient(app) as client:
        body = {"loginId": "alice", "contactId": "any", "hashedPassword": "h", "salt": "s"}
        assert client.post("/api/users", json=body).status_code == 201
    assert not (tmp_path / "default").exists()


def test_shutdown_closes_contact_service_client(tmp_path: Path) -> None:
    settings = Settings(data_dir=tmp_path, persistent=False, contacts_url="https://contacts.example.com/api")
    app = create_application(settings=settings)
    resolver = app.state.store._resolve_contact
    assert isinstance(resolver, HTTPContactResolver)

    with TestClient(app) as client:
        assert client.get("/healthz").status_code == 200
        assert not resolver._client.is_closed

    assert resolver._client.is_closed


def test_shutdown_without_contact_service_is_quiet(tmp_path: Path) -> None:
    app = create_application(settings=Settings(data_dir=tmp_path, persistent=False))
    with TestClient(app) as client:
        assert client.get("/healthz").status_code == 200
