"""
tests/conftest.py -- Shared test fixtures for the tenant auth service.

This module provides:
  - RecordingNotifier: an EmailNotifier whose transport records instead of
    calling Resend (templates still render), with a switch to simulate outages
  - store / notifier / service: isolated in-memory building blocks
  - client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
Every fixture instance gets its own DB name, so tests never share rows.

DEBUG and ALLOWED_HOSTS must be set before any core/auth/api import:
get_settings() is cached on first use and api.main reads it at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any project import so get_settings() auto-generates
# SECRET_KEY in dev mode and TrustedHostMiddleware accepts the TestClient host.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("APP_BASE_URL", "https://app.example.test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import SingletonThreadPool

from api.main import app
from auth.service import AuthService
from auth.store import CredentialStore
from core.config import get_settings
from notify.mailer import EmailDeliveryError, EmailNotifier

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingNotifier(EmailNotifier):
    """EmailNotifier that keeps every message in .sent instead of posting it.

    Set .fail = True to make every send raise EmailDeliveryError, the same
    way a provider outage surfaces from the real transport.
    """

    def __init__(self) -> None:
        super().__init__(api_key="re_test_key", from_address="noreply@example.test")
        self.sent: list[dict] = []
        self.fail = False

    def send_mail(self, to, subject, html, text=None, from_address=None) -> str:
        if self.fail:
            raise EmailDeliveryError("simulated provider outage")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return f"msg-{len(self.sent)}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _memory_db_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _make_test_store() -> CredentialStore:
    """Create a CredentialStore on a uniquely named shared-memory SQLite DB.

    SingletonThreadPool is passed explicitly: one open connection per thread
    keeps the shared-cache DB alive between requests.
    """
    return CredentialStore(_memory_db_url(), poolclass=SingletonThreadPool)


def _patch_lifespan(store: CredentialStore, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and recording notifier into app.state so routes see
    isolated test state rather than the configured database and Resend.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.credential_store = store
        app.state.notifier = notifier
        app.state.auth_service = AuthService(store, notifier, get_settings())
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = _make_test_store()
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(store: CredentialStore, notifier: RecordingNotifier) -> AuthService:
    return AuthService(store, notifier, get_settings())


@pytest.fixture
def client(store: CredentialStore, notifier: RecordingNotifier) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app, wired to this test's store and notifier.

    Function-scoped (unlike a read-only suite): most tests here register
    organizations and mutate credentials, so each one needs a clean DB.
    """
    app.router.lifespan_context = _patch_lifespan(store, notifier)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
