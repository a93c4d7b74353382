"""
Tests for client provisioning, administration and deletion.

Covers:
  - access code format and temporary password
  - create_client: profile + client + empty form, identity provisioned
  - duplicate / invalid input rejected before any identity is created
  - saga compensation: identity removed when the DB step fails
  - delete_client: rows + identity + stored images, storage failure tolerated
  - delete_client aborts (rows kept) when identity deletion fails
  - create_admin, status, notes, activity log
  - admin client endpoints
"""

import re

import pytest

from conftest import png_bytes
from portal.core.exceptions import ConflictError, GatewayError, NotFoundError, ValidationError
from portal.integrations.supabase_gateway import LocalIdentityGateway, LocalStorageGateway
from portal.models import db
from portal.models.app_form import AppForm, FormImage
from portal.models.audit import AdminActivityLog
from portal.models.client import Client
from portal.models.notification import Notification
from portal.models.profile import Profile
from portal.services import client_service
from portal.services.image_service import upload_image
from portal.services.notification import NotificationService
from portal.services.saga import SagaError


class _FailingDeleteIdentity(LocalIdentityGateway):
    def delete_user(self, user_id):
        raise GatewayError("delete_user", status_code=500, detail="auth service down")


class _FailingRemoveStorage(LocalStorageGateway):
    def remove(self, paths):
        raise GatewayError("storage_remove", status_code=503, detail="storage down")


# ═══════════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════════


class TestAccessCode:
    def test_format(self):
        for _ in range(20):
            assert re.fullmatch(r"[A-Z0-9]{3}-[A-Z0-9]{3}-[A-Z0-9]{3}", client_service.generate_access_code())

    def test_temporary_password(self):
        assert client_service.temporary_password("AB1-CD2-EF3") == "temp_AB1CD2EF3"


# ═══════════════════════════════════════════════════════════════════════════
#  Provisioning
# ═══════════════════════════════════════════════════════════════════════════


class TestCreateClient:
    def test_creates_profile_client_and_empty_form(self, admin, identity):
        result = client_service.create_client("Acme Rides", "Owner@Acme.com", admin=admin, identity=identity)

        client = db.session.get(Client, result["client"]["id"])
        assert client.email == "Owner@acme.com"
        assert client.status == "active"
        assert client.profile.role == "client"
        assert client.user_id in identity.users
        assert result["temporary_password"] == "temp_" + result["access_code"].replace("-", "")

        form = client.form
        assert (form.progress_percentage, form.status) == (0, "not_started")
        assert (form.image_source, form.images_uploaded) == ("custom", False)
        assert (form.review_status, form.project_status) == ("pending", "pending")

        log = AdminActivityLog.query.filter_by(action_type="client_created").one()
        assert log.target_id == client.id

    def test_duplicate_email_conflicts(self, admin, identity, make_client):
        make_client(email="dup@acme.com")
        with pytest.raises(ConflictError):
            client_service.create_client("Other", "DUP@acme.com", admin=admin, identity=identity)
        assert len(identity.users) == 1

    def test_invalid_input(self, admin, identity):
        with pytest.raises(ValidationError) as exc:
            client_service.create_client("", "nope", admin=admin, identity=identity)
        assert set(exc.value.details) == {"name", "email"}
        assert identity.users == {}

    def test_identity_failure_leaves_nothing(self, admin, identity):
        identity.create_user("taken@acme.com", "pw")
        with pytest.raises(SagaError) as exc:
            client_service.create_client("Taken", "taken@acme.com", admin=admin, identity=identity)
        assert exc.value.step == "provision_identity"
        assert Client.query.count() == 0

    def test_db_failure_removes_identity(self, admin, identity, monkeypatch):
        def _boom(*args, **kwargs):
            raise RuntimeError("insert failed")
        monkeypatch.setattr(client_service, "log_admin_action", _boom)

        with pytest.raises(SagaError) as exc:
            client_service.create_client("Acme", "acme@acme.com", admin=admin, identity=identity)

        assert exc.value.step == "insert_records"
        assert exc.value.compensated == ["provision_identity"]
        assert identity.users == {}
        assert Client.query.count() == 0
        assert Profile.query.filter_by(role="client").count() == 0


class TestCreateAdmin:
    def test_creates_admin_profile(self, admin, identity):
        profile = client_service.create_admin("Bob", "bob@tilary.com", "s3cretpass", admin=admin, identity=identity)
        assert profile["role"] == "admin"
        assert len(client_service.list_admins()) == 2

    def test_short_password(self, admin, identity):
        with pytest.raises(ValidationError):
            client_service.create_admin("Bob", "bob@tilary.com", "short", admin=admin, identity=identity)

    def test_duplicate_profile_email(self, admin, identity):
        with pytest.raises(ConflictError):
            client_service.create_admin("Ada 2", admin.email, "longenough", admin=admin, identity=identity)


# ═══════════════════════════════════════════════════════════════════════════
#  Deletion
# ═══════════════════════════════════════════════════════════════════════════


class TestDeleteClient:
    def _client_with_image(self, make_client, storage):
        c = make_client()
        upload_image(c.form, app_type="driver", store_type="playstore", image_type="logo_1024",
                     file_name="logo.png", data=png_bytes(1024, 1024), storage=storage)
        NotificationService.notify_client(c, type="form_updated", message="x")
        db.session.commit()
        return c

    def test_removes_everything(self, admin, identity, storage, make_client):
        c = self._client_with_image(make_client, storage)
        client_id, user_id, form_id = c.id, c.user_id, c.form.id
        path = c.form.images[0].storage_path

        result = client_service.delete_client(client_id, admin=admin, identity=identity, storage=storage)

        assert result == {"deleted": True, "id": client_id, "images_removed": 1, "storage_errors": 0}
        assert db.session.get(Client, client_id) is None
        assert db.session.get(Profile, user_id) is None
        assert db.session.get(AppForm, form_id) is None
        assert FormImage.query.count() == 0
        assert Notification.query.filter_by(client_id=client_id).count() == 0
        assert user_id not in identity.users
        with pytest.raises(GatewayError):
            storage.download(path)
        assert AdminActivityLog.query.filter_by(action_type="client_deleted", target_id=client_id).count() == 1

    def test_storage_failure_is_tolerated(self, admin, identity, storage, make_client):
        c = self._client_with_image(make_client, storage)
        failing = _FailingRemoveStorage(storage.base_dir)

        result = client_service.delete_client(c.id, admin=admin, identity=identity, storage=failing)

        assert result["deleted"] is True
        assert result["storage_errors"] == 1
        assert Client.query.count() == 0

    def test_identity_failure_keeps_rows(self, admin, storage, make_client):
        c = make_client()
        client_id = c.id
        failing = _FailingDeleteIdentity()

        with pytest.raises(SagaError) as exc:
            client_service.delete_client(client_id, admin=admin, identity=failing, storage=storage)

        assert exc.value.step == "delete_identity"
        assert db.session.get(Client, client_id) is not None
        assert AdminActivityLog.query.filter_by(action_type="client_deleted").count() == 0

    def test_unknown_client(self, admin, identity, storage):
        with pytest.raises(NotFoundError):
            client_service.delete_client("missing", admin=admin, identity=identity, storage=storage)


# ═══════════════════════════════════════════════════════════════════════════
#  Administration
# ═══════════════════════════════════════════════════════════════════════════


class TestAdministration:
    def test_status_and_notes(self, admin, make_client):
        c = make_client()
        assert client_service.set_client_status(c.id, "inactive", admin=admin)["status"] == "inactive"
        assert client_service.update_client_notes(c.id, "  call Monday ", admin=admin)["admin_notes"] == "call Monday"
        with pytest.raises(ValidationError):
            client_service.set_client_status(c.id, "archived", admin=admin)

    def test_list_clients_search_and_filter(self, admin, make_client):
        make_client(name="Blue Cabs", email="blue@cabs.com")
        yellow = make_client(name="Yellow Cabs", email="yellow@cabs.com")
        client_service.set_client_status(yellow.id, "inactive", admin=admin)

        assert [c["name"] for c in client_service.list_clients(search="blue")] == ["Blue Cabs"]
        assert [c["name"] for c in client_service.list_clients(status="inactive")] == ["Yellow Cabs"]
        assert client_service.list_clients()[0]["form"]["progress_percentage"] == 0

    def test_activity_paging(self, admin, make_client):
        make_client()
        make_client()
        items, total = client_service.list_activity(action_type="client_created", limit=1)
        assert total == 2
        assert len(items) == 1


# ═══════════════════════════════════════════════════════════════════════════
#  API
# ═══════════════════════════════════════════════════════════════════════════


class TestAdminClientApi:
    def test_create_and_get(self, client, admin, auth_headers):
        res = client.post("/api/v1/admin/clients", json={"name": "Acme", "email": "acme@acme.com"},
                          headers=auth_headers(admin))
        assert res.status_code == 201
        body = res.get_json()
        assert body["access_code"]
        client_id = body["client"]["id"]

        res = client.get(f"/api/v1/admin/clients/{client_id}", headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["form"]["images"] == []

    def test_create_duplicate_is_409(self, client, admin, auth_headers, make_client):
        make_client(email="dup@acme.com")
        res = client.post("/api/v1/admin/clients", json={"name": "Dup", "email": "dup@acme.com"},
                          headers=auth_headers(admin))
        assert res.status_code == 409

    def test_create_identity_failure_is_502(self, client, admin, auth_headers, identity):
        identity.create_user("taken@acme.com", "pw")
        res = client.post("/api/v1/admin/clients", json={"name": "Taken", "email": "taken@acme.com"},
                          headers=auth_headers(admin))
        assert res.status_code == 502
        assert res.get_json()["details"]["step"] == "provision_identity"

    def test_list_and_delete(self, client, admin, auth_headers, make_client):
        c = make_client()
        res = client.get("/api/v1/admin/clients", headers=auth_headers(admin))
        assert res.get_json()["total"] == 1

        res = client.delete(f"/api/v1/admin/clients/{c.id}", headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["deleted"] is True

    def test_status_notes_and_activity(self, client, admin, auth_headers, make_client):
        c = make_client()
        res = client.patch(f"/api/v1/admin/clients/{c.id}/status", json={"status": "inactive"},
                           headers=auth_headers(admin))
        assert res.get_json()["status"] == "inactive"
        res = client.put(f"/api/v1/admin/clients/{c.id}/notes", json={"notes": "VIP"},
                         headers=auth_headers(admin))
        assert res.get_json()["admin_notes"] == "VIP"

        res = client.get("/api/v1/admin/activity?limit=10", headers=auth_headers(admin))
        types = {item["action_type"] for item in res.get_json()["items"]}
        assert {"client_created", "client_status_changed", "client_notes_updated"} <= types

    def test_admins(self, client, admin, auth_headers):
        res = client.post("/api/v1/admin/admins",
                          json={"name": "Bob", "email": "bob@tilary.com", "password": "longenough"},
                          headers=auth_headers(admin))
        assert res.status_code == 201
        res = client.get("/api/v1/admin/admins", headers=auth_headers(admin))
        assert res.get_json()["total"] == 2
