"""
Auth Context Middleware — resolves the calling profile, sets g.profile.

Identity is issued by the hosted auth service; this service only verifies
its bearer tokens (HS256, SUPABASE_JWT_SECRET, audience ``authenticated``)
and maps the ``sub`` claim onto a Profile row.

Priority order:
  1. Authorization: Bearer <token>   →  g.profile_id = token["sub"]
  2. X-Profile-Id header             →  only when API_AUTH_ENABLED is false
"""

import functools
import logging

import jwt as pyjwt
from flask import current_app, g, request

from portal.core.exceptions import NotFoundError
from portal.models import db
from portal.models.client import Client
from portal.models.profile import Profile
from portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Paths that never need a caller identity
SKIP_PREFIXES = (
    "/api/v1/health",
)


def _auth_enabled(app) -> bool:
    return str(app.config.get("API_AUTH_ENABLED", "true")).lower() == "true"


def decode_access_token(token: str) -> dict:
    """
    Verify a bearer token from the auth service and return its claims.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    return pyjwt.decode(
        token,
        current_app.config["SUPABASE_JWT_SECRET"],
        algorithms=[ALGORITHM],
        audience=current_app.config.get("SUPABASE_JWT_AUDIENCE", "authenticated"),
    )


def init_auth_context(app):
    """Register the caller-resolution hook."""

    @app.before_request
    def _resolve_profile():
        g.profile = None
        g.profile_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        profile_id = None
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            try:
                profile_id = decode_access_token(auth_header[7:]).get("sub")
            except pyjwt.ExpiredSignatureError:
                logger.info("Expired bearer token on %s", path)
            except pyjwt.InvalidTokenError as exc:
                logger.warning("Invalid bearer token on %s: %s", path, exc)
        elif not _auth_enabled(app):
            profile_id = request.headers.get("X-Profile-Id")

        if profile_id:
            g.profile_id = profile_id
            g.profile = db.session.get(Profile, profile_id)


def current_profile():
    return getattr(g, "profile", None)


def current_client() -> Client:
    """The Client row owned by the calling client profile."""
    profile = current_profile()
    client = Client.query.filter_by(user_id=profile.id).first() if profile else None
    if client is None:
        raise NotFoundError(resource="Client", resource_id=getattr(profile, "id", None))
    return client


def require_role(role: str):
    """
    Decorator: require the calling profile to hold ``role``.

    Usage:
        @admin_bp.route("/admin/clients")
        @require_role("admin")
        def list_clients(): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            profile = current_profile()
            if profile is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")
            if profile.role != role:
                logger.warning(
                    "Access denied: role '%s' tried to access '%s' endpoint %s",
                    profile.role, role, request.path,
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_login(f):
    """Decorator: any resolved profile (admin or client)."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_profile() is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return f(*args, **kwargs)
    return decorated
