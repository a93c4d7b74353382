"""
Hosted auth + object storage gateways.

All outbound HTTP calls to the hosted backend (auth admin API and storage
API) go through these classes. Services receive a gateway instance; they
never build URLs or call ``requests`` themselves.

Gateways:
  - SupabaseIdentityGateway: create / delete auth identities (service-role key)
  - SupabaseStorageGateway:  upload / remove / download / public URL
  - LocalIdentityGateway:    in-process identities for development and tests
  - LocalStorageGateway:     filesystem-backed storage for development and tests

Testability: pass a mock ``session`` to the Supabase gateways instead of
letting them create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from urllib.parse import quote

import requests
from flask import current_app

from portal.core.exceptions import GatewayError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30


class _SupabaseBase:
    def __init__(self, base_url: str, service_key: str,
                 session: requests.Session | None = None, timeout: int = _DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self, extra: dict | None = None) -> dict:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(self, operation: str, method: str, path: str, *,
                 ok_statuses: tuple[int, ...] = (), **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        start = time.monotonic()
        try:
            resp = self.session.request(
                method, url, headers=self._headers(kwargs.pop("headers", None)),
                timeout=self.timeout, **kwargs,
            )
        except requests.RequestException as exc:
            logger.error("%s: %s %s network error: %s", operation, method, path, exc)
            raise GatewayError(operation, detail=str(exc)) from exc

        duration_ms = int((time.monotonic() - start) * 1000)
        if resp.status_code >= 400 and resp.status_code not in ok_statuses:
            detail = _error_detail(resp)
            logger.warning("%s: %s %s → %d (%dms) %s",
                           operation, method, path, resp.status_code, duration_ms, detail)
            raise GatewayError(operation, status_code=resp.status_code, detail=detail)
        logger.debug("%s: %s %s → %d (%dms)", operation, method, path, resp.status_code, duration_ms)
        return resp


def _error_detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "")[:200]
    if isinstance(body, dict):
        return str(body.get("msg") or body.get("message") or body.get("error_description")
                   or body.get("error") or body)[:200]
    return str(body)[:200]


# ═══════════════════════════════════════════════════════════════════════════
#  Identity (auth admin API)
# ═══════════════════════════════════════════════════════════════════════════

class SupabaseIdentityGateway(_SupabaseBase):
    """Auth admin API: provisions and removes login identities."""

    def create_user(self, email: str, password: str, metadata: dict | None = None) -> dict:
        resp = self._request(
            "create_user", "POST", "/auth/v1/admin/users",
            json={
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": metadata or {},
            },
        )
        user = resp.json()
        if "user" in user and isinstance(user["user"], dict):
            user = user["user"]
        logger.info("Provisioned identity %s for %s", user.get("id"), email)
        return {"id": user["id"], "email": user.get("email", email)}

    def delete_user(self, user_id: str) -> None:
        # 404 means the identity is already gone.
        self._request("delete_user", "DELETE", f"/auth/v1/admin/users/{user_id}",
                      ok_statuses=(404,))
        logger.info("Deleted identity %s", user_id)


class LocalIdentityGateway:
    """In-process identity store used when no hosted auth service is configured."""

    def __init__(self) -> None:
        self.users: dict[str, dict] = {}

    def create_user(self, email: str, password: str, metadata: dict | None = None) -> dict:
        if any(u["email"] == email for u in self.users.values()):
            raise GatewayError("create_user", status_code=422,
                               detail="A user with this email address has already been registered")
        user_id = str(uuid.uuid4())
        self.users[user_id] = {"id": user_id, "email": email, "metadata": metadata or {}}
        return {"id": user_id, "email": email}

    def delete_user(self, user_id: str) -> None:
        self.users.pop(user_id, None)


# ═══════════════════════════════════════════════════════════════════════════
#  Object storage
# ═══════════════════════════════════════════════════════════════════════════

class SupabaseStorageGateway(_SupabaseBase):
    """Storage API bound to a single bucket."""

    def __init__(self, base_url: str, service_key: str, bucket: str, **kwargs) -> None:
        super().__init__(base_url, service_key, **kwargs)
        self.bucket = bucket

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        self._request(
            "storage_upload", "POST", f"/storage/v1/object/{self.bucket}/{quote(path)}",
            data=data,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        return path

    def remove(self, paths: list[str]) -> None:
        if not paths:
            return
        self._request("storage_remove", "DELETE", f"/storage/v1/object/{self.bucket}",
                      json={"prefixes": list(paths)})

    def download(self, path: str) -> bytes:
        resp = self._request("storage_download", "GET",
                             f"/storage/v1/object/{self.bucket}/{quote(path)}")
        return resp.content

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"


class LocalStorageGateway:
    """Filesystem-backed storage rooted at ``base_dir``."""

    def __init__(self, base_dir: str, base_url: str = "/files") -> None:
        self.base_dir = os.path.abspath(base_dir)
        self.base_url = base_url.rstrip("/")

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.base_dir, path))
        if not full.startswith(self.base_dir + os.sep):
            raise GatewayError("storage_path", detail=f"path escapes storage root: {path}")
        return full

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        full = self._full_path(path)
        if os.path.exists(full):
            raise GatewayError("storage_upload", status_code=409, detail="The resource already exists")
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as fh:
            fh.write(data)
        return path

    def remove(self, paths: list[str]) -> None:
        for path in paths:
            full = self._full_path(path)
            if os.path.exists(full):
                os.remove(full)

    def download(self, path: str) -> bytes:
        full = self._full_path(path)
        if not os.path.exists(full):
            raise GatewayError("storage_download", status_code=404, detail=f"Object not found: {path}")
        with open(full, "rb") as fh:
            return fh.read()

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{quote(path)}"


# ── Wiring ──────────────────────────────────────────────────────────────────

def init_gateways(app) -> None:
    """Build the gateways for this app and store them in ``app.extensions``."""
    url = app.config.get("SUPABASE_URL")
    key = app.config.get("SUPABASE_SERVICE_ROLE_KEY")
    if url and key:
        app.extensions["identity_gateway"] = SupabaseIdentityGateway(url, key)
        app.extensions["storage_gateway"] = SupabaseStorageGateway(
            url, key, app.config.get("STORAGE_BUCKET", "app-submissions"),
        )
        logger.info("Using hosted identity/storage at %s", url)
    else:
        app.extensions["identity_gateway"] = LocalIdentityGateway()
        app.extensions["storage_gateway"] = LocalStorageGateway(app.config["LOCAL_STORAGE_DIR"])
        if not app.config.get("TESTING"):
            logger.warning("SUPABASE_URL not configured; using local identity/storage gateways")


def get_identity_gateway():
    return current_app.extensions["identity_gateway"]


def get_storage_gateway():
    return current_app.extensions["storage_gateway"]
