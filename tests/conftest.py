"""
Shared pytest fixtures for the App Submission Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - session: Per-test table creation/teardown with fresh gateways (autouse)
    - client: Flask test client (function-scoped)
    - identity / storage: the gateways the app is using for this test
    - admin: Pre-created administrator Profile
    - make_client: factory provisioning a client through the real service
    - auth_headers: X-Profile-Id header builder (auth is disabled in testing)
"""

import io

import pytest
from PIL import Image

from portal import create_app
from portal.integrations.supabase_gateway import LocalIdentityGateway, LocalStorageGateway
from portal.models import db as _db
from portal.models.app_form import REQUIRED_TEXT_FIELDS
from portal.models.client import Client
from portal.models.profile import Profile


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(autouse=True)
def session(app, tmp_path):
    """Per-test: open app context, create tables and fresh gateways, drop afterwards."""
    app.extensions["identity_gateway"] = LocalIdentityGateway()
    app.extensions["storage_gateway"] = LocalStorageGateway(str(tmp_path / "storage"))
    with app.app_context():
        _db.create_all()
        yield
        _db.session.rollback()
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def identity(app):
    return app.extensions["identity_gateway"]


@pytest.fixture()
def storage(app):
    return app.extensions["storage_gateway"]


# ── Convenience fixtures ─────────────────────────────────────────────────


def _make_admin(profile_id="admin-1", name="Ada Admin", email="ada@tilary.com"):
    profile = Profile(id=profile_id, name=name, email=email, role="admin")
    _db.session.add(profile)
    _db.session.commit()
    return profile


@pytest.fixture()
def admin():
    """One administrator profile."""
    return _make_admin()


@pytest.fixture()
def make_admin():
    return _make_admin


@pytest.fixture()
def make_client(admin, identity):
    """Factory: provision a client (profile + client + empty form) via the service."""
    from portal.services.client_service import create_client

    counter = {"n": 0}

    def _make(name=None, email=None):
        counter["n"] += 1
        name = name or f"Acme Rides {counter['n']}"
        email = email or f"owner{counter['n']}@acme.com"
        result = create_client(name, email, admin=admin, identity=identity)
        return _db.session.get(Client, result["client"]["id"])

    return _make


@pytest.fixture()
def auth_headers():
    """Build request headers that resolve to ``profile`` (Profile or id)."""
    def _headers(profile):
        profile_id = profile if isinstance(profile, str) else profile.id
        return {"X-Profile-Id": profile_id}
    return _headers


# ── Data helpers (importable) ────────────────────────────────────────────


def fill_text_fields(form, count=len(REQUIRED_TEXT_FIELDS)):
    """Set the first ``count`` required text fields to a non-empty value."""
    for name in REQUIRED_TEXT_FIELDS[:count]:
        setattr(form, name, "support@acme.com" if name == "support_email" else f"{name} value")


def png_bytes(width, height, fmt="PNG"):
    """A minimal in-memory image of the given size."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (20, 120, 200)).save(buf, format=fmt)
    return buf.getvalue()
