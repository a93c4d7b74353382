"""
Tests for notification fan-out and the notification endpoints.

Covers:
  - notify_admins: one row per admin, empty when no admin exists
  - notify_client: addressed by client id
  - unknown type rejected
  - list / unread-count / mark-read / read-all for admins and clients
  - a caller cannot mark another recipient's notification
"""

import pytest

from portal.models import db
from portal.models.notification import Notification
from portal.services.notification import NotificationService


class TestFanOut:
    def test_one_row_per_admin(self, admin, make_admin, make_client):
        make_admin("admin-2", "Bob", "bob@tilary.com")
        c = make_client()

        sent = NotificationService.notify_admins(type="form_updated", message="hi", client_id=c.id)
        db.session.commit()

        assert sorted(n.recipient_id for n in sent) == ["admin-1", "admin-2"]
        assert all(n.recipient_type == "admin" and n.client_id == c.id for n in sent)

    def test_no_admins_creates_nothing(self):
        assert NotificationService.notify_admins(type="form_updated", message="hi") == []
        assert Notification.query.count() == 0

    def test_notify_client(self, make_client):
        c = make_client()
        notif = NotificationService.notify_client(c, type="form_completed", message="done")
        db.session.commit()
        assert (notif.recipient_type, notif.recipient_id, notif.client_id) == ("client", c.id, c.id)
        assert notif.read is False

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            NotificationService.notify_admins(type="marketing", message="buy")


class TestQueries:
    def test_list_newest_first_and_unread_filter(self, admin):
        for i in range(3):
            NotificationService.notify_admins(type="form_updated", message=f"m{i}")
        db.session.commit()
        first = Notification.query.order_by(Notification.id).first()
        NotificationService.mark_read(first.id, "admin", admin.id)

        items, total = NotificationService.list_for_recipient("admin", admin.id)
        assert total == 3
        assert [n.message for n in items] == ["m2", "m1", "m0"]

        unread, unread_total = NotificationService.list_for_recipient("admin", admin.id, unread_only=True)
        assert unread_total == 2
        assert NotificationService.unread_count("admin", admin.id) == 2

    def test_mark_read_refuses_other_recipient(self, admin, make_client):
        c = make_client()
        notif = NotificationService.notify_client(c, type="form_updated", message="x")
        db.session.commit()
        assert NotificationService.mark_read(notif.id, "admin", admin.id) is None
        assert notif.read is False

    def test_mark_all_read(self, admin):
        NotificationService.notify_admins(type="form_updated", message="a")
        NotificationService.notify_admins(type="form_completed", message="b")
        db.session.commit()
        assert NotificationService.mark_all_read("admin", admin.id) == 2
        assert NotificationService.unread_count("admin", admin.id) == 0


# ═══════════════════════════════════════════════════════════════════════════
#  API
# ═══════════════════════════════════════════════════════════════════════════


class TestNotificationApi:
    def test_admin_bell(self, client, admin, auth_headers):
        NotificationService.notify_admins(type="inactive_warning", message="quiet")
        db.session.commit()

        res = client.get("/api/v1/notifications", headers=auth_headers(admin))
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["unread_count"] == 1
        assert body["items"][0]["type"] == "inactive_warning"

    def test_client_bell_is_addressed_by_client_id(self, client, make_client, auth_headers):
        c = make_client()
        NotificationService.notify_client(c, type="form_completed", message="approved")
        db.session.commit()

        res = client.get("/api/v1/notifications/unread-count", headers=auth_headers(c.user_id))
        assert res.get_json() == {"unread_count": 1}

    def test_mark_read_and_read_all(self, client, admin, auth_headers):
        sent = NotificationService.notify_admins(type="form_updated", message="a")
        NotificationService.notify_admins(type="form_updated", message="b")
        db.session.commit()

        res = client.post(f"/api/v1/notifications/{sent[0].id}/read", headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["read"] is True

        res = client.post("/api/v1/notifications/read-all", headers=auth_headers(admin))
        assert res.get_json() == {"marked_read": 1}

    def test_mark_read_of_foreign_notification_is_404(self, client, admin, make_client, auth_headers):
        c = make_client()
        notif = NotificationService.notify_client(c, type="form_updated", message="x")
        db.session.commit()
        res = client.post(f"/api/v1/notifications/{notif.id}/read", headers=auth_headers(admin))
        assert res.status_code == 404

    def test_requires_login(self, client):
        assert client.get("/api/v1/notifications").status_code == 401

    def test_bad_paging(self, client, admin, auth_headers):
        res = client.get("/api/v1/notifications?limit=abc", headers=auth_headers(admin))
        assert res.status_code == 400
