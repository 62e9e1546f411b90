"""Application factory that wires settings, contacts, and the user store."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from .api import create_app
from .config import Settings, load_settings
from .contacts import ContactResolver, HTTPContactResolver, accept_any_contact, load_contact_directory
from .security import PrincipalAuth
from .store import UserStore

logger = logging.getLogger("usersvc.application")


def build_contact_resolver(settings: Settings) -> ContactResolver:
    """Return the contact lookup configured for ``settings``."""

    if settings.contacts_url:
        logger.info("Resolving contacts against %s", settings.contacts_url)
        return HTTPContactResolver(settings.contacts_url, timeout=settings.contacts_timeout)
    if settings.contacts_file is not None:
        return load_contact_directory(settings.contacts_file)
    logger.warning("No contact source configured; every contactId will be accepted")
    return accept_any_contact


def build_store(settings: Settings, resolve_contact: Optional[ContactResolver] = None) -> UserStore:
    """Construct and initialise the single store instance for ``settings``."""

    store = UserStore(
        settings.storage_path if settings.persistent else None,
        resolve_contact=resolve_contact or build_contact_resolver(settings),
        override_policy=settings.override_policy,
        default_auth_type=settings.default_auth_type,
        default_principal=settings.default_principal,
        seed_path=settings.seed_file,
    )
    store.initialize()
    return store


def create_application(*, settings: Optional[Settings] = None) -> FastAPI:
    """Create the ASGI application for the configured deployment."""

    resolved = settings or load_settings()
    resolver = build_contact_resolver(resolved)
    store = build_store(resolved, resolver)
    auth = PrincipalAuth(resolved.api_tokens, default_principal=resolved.default_principal)
    on_shutdown = [resolver.close] if isinstance(resolver, HTTPContactResolver) else []
    app = create_app(store=store, auth=auth, on_shutdown=on_shutdown)
    app.state.settings = resolved
    return app


__all__ = ["build_contact_resolver", "build_store", "create_application"]
