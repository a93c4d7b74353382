"""
Tests for the hosted auth / storage gateways (mocked HTTP session) and
their local counterparts.
"""

from unittest.mock import MagicMock

import pytest
import requests

from portal.core.exceptions import GatewayError
from portal.integrations.supabase_gateway import (
    LocalIdentityGateway,
    LocalStorageGateway,
    SupabaseIdentityGateway,
    SupabaseStorageGateway,
)

BASE = "https://example.supabase.co"


def _response(status_code=200, body=None, content=b""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body if body is not None else {}
    resp.text = ""
    resp.content = content
    return resp


def _session(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return session


# ═══════════════════════════════════════════════════════════════════════════
#  Hosted identity
# ═══════════════════════════════════════════════════════════════════════════


class TestSupabaseIdentityGateway:
    def test_create_user(self):
        session = _session(_response(200, {"id": "u-1", "email": "a@acme.com"}))
        gw = SupabaseIdentityGateway(BASE + "/", "service-key", session=session)

        user = gw.create_user("a@acme.com", "temp_ABC", {"role": "client"})

        assert user == {"id": "u-1", "email": "a@acme.com"}
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("POST", f"{BASE}/auth/v1/admin/users")
        assert kwargs["headers"]["apikey"] == "service-key"
        assert kwargs["headers"]["Authorization"] == "Bearer service-key"
        assert kwargs["json"]["email_confirm"] is True
        assert kwargs["json"]["user_metadata"] == {"role": "client"}

    def test_create_user_wrapped_payload(self):
        session = _session(_response(200, {"user": {"id": "u-2", "email": "b@acme.com"}}))
        gw = SupabaseIdentityGateway(BASE, "k", session=session)
        assert gw.create_user("b@acme.com", "pw")["id"] == "u-2"

    def test_rejection_raises(self):
        session = _session(_response(422, {"msg": "User already registered"}))
        gw = SupabaseIdentityGateway(BASE, "k", session=session)
        with pytest.raises(GatewayError) as exc:
            gw.create_user("a@acme.com", "pw")
        assert exc.value.status_code == 422
        assert exc.value.detail == "User already registered"

    def test_delete_tolerates_missing_user(self):
        session = _session(_response(404, {"msg": "User not found"}))
        SupabaseIdentityGateway(BASE, "k", session=session).delete_user("u-1")
        assert session.request.call_args.args == ("DELETE", f"{BASE}/auth/v1/admin/users/u-1")

    def test_delete_server_error(self):
        session = _session(_response(500, {"message": "down"}))
        with pytest.raises(GatewayError):
            SupabaseIdentityGateway(BASE, "k", session=session).delete_user("u-1")

    def test_network_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("unreachable")
        with pytest.raises(GatewayError) as exc:
            SupabaseIdentityGateway(BASE, "k", session=session).delete_user("u-1")
        assert exc.value.status_code is None


# ═══════════════════════════════════════════════════════════════════════════
#  Hosted storage
# ═══════════════════════════════════════════════════════════════════════════


class TestSupabaseStorageGateway:
    def test_upload_and_public_url(self):
        session = _session(_response(200, {"Key": "x"}))
        gw = SupabaseStorageGateway(BASE, "k", "bucket", session=session)

        assert gw.upload("form-images/f1/logo 1.png", b"data", "image/png") == "form-images/f1/logo 1.png"
        method, url = session.request.call_args.args
        assert (method, url) == ("POST", f"{BASE}/storage/v1/object/bucket/form-images/f1/logo%201.png")
        assert session.request.call_args.kwargs["headers"]["Content-Type"] == "image/png"
        assert gw.public_url("a/b.png") == f"{BASE}/storage/v1/object/public/bucket/a/b.png"

    def test_remove_sends_prefixes(self):
        session = _session(_response(200, []))
        SupabaseStorageGateway(BASE, "k", "bucket", session=session).remove(["a.png", "b.png"])
        assert session.request.call_args.kwargs["json"] == {"prefixes": ["a.png", "b.png"]}

    def test_remove_nothing_makes_no_call(self):
        session = MagicMock()
        SupabaseStorageGateway(BASE, "k", "bucket", session=session).remove([])
        session.request.assert_not_called()

    def test_download(self):
        session = _session(_response(200, content=b"\x89PNG"))
        assert SupabaseStorageGateway(BASE, "k", "bucket", session=session).download("a.png") == b"\x89PNG"


# ═══════════════════════════════════════════════════════════════════════════
#  Local gateways
# ═══════════════════════════════════════════════════════════════════════════


class TestLocalGateways:
    def test_identity_rejects_duplicate_email(self):
        gw = LocalIdentityGateway()
        user = gw.create_user("a@acme.com", "pw")
        with pytest.raises(GatewayError):
            gw.create_user("a@acme.com", "pw")
        gw.delete_user(user["id"])
        gw.delete_user(user["id"])
        assert gw.users == {}

    def test_storage_round_trip(self, tmp_path):
        gw = LocalStorageGateway(str(tmp_path))
        gw.upload("forms/f1/a.png", b"abc", "image/png")
        assert gw.download("forms/f1/a.png") == b"abc"
        assert gw.public_url("forms/f1/a.png") == "/files/forms/f1/a.png"

        gw.remove(["forms/f1/a.png", "forms/f1/missing.png"])
        with pytest.raises(GatewayError) as exc:
            gw.download("forms/f1/a.png")
        assert exc.value.status_code == 404

    def test_storage_refuses_overwrite(self, tmp_path):
        gw = LocalStorageGateway(str(tmp_path))
        gw.upload("a.png", b"1", "image/png")
        with pytest.raises(GatewayError) as exc:
            gw.upload("a.png", b"2", "image/png")
        assert exc.value.status_code == 409

    def test_storage_refuses_path_escape(self, tmp_path):
        gw = LocalStorageGateway(str(tmp_path / "root"))
        with pytest.raises(GatewayError):
            gw.upload("../outside.png", b"x", "image/png")
