"""
App Submission Portal
Notification Service.

Central service for creating, fanning out and querying notifications.
Every write only adds to the session; the workflow that triggered the
notice commits it together with its own changes.
"""

import logging
from datetime import datetime, timezone

from portal.models import db
from portal.models.notification import NOTIFICATION_TYPES, Notification
from portal.models.profile import Profile

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify_client(client, *, type, message):
        """
        Add one client-directed notification.

        Returns:
            The pending Notification instance.
        """
        _check_type(type)
        notif = Notification(
            recipient_id=client.id,
            recipient_type="client",
            client_id=client.id,
            type=type,
            message=message,
        )
        db.session.add(notif)
        return notif

    @staticmethod
    def notify_admins(*, type, message, client_id=None):
        """
        Add one notification per administrator profile.

        Returns:
            List of pending Notification instances (empty when no admin exists).
        """
        _check_type(type)
        admins = Profile.query.filter_by(role="admin").order_by(Profile.created_at).all()
        notifications = []
        for admin in admins:
            notif = Notification(
                recipient_id=admin.id,
                recipient_type="admin",
                client_id=client_id,
                type=type,
                message=message,
            )
            db.session.add(notif)
            notifications.append(notif)
        if not admins:
            logger.warning("No admin profiles to notify for %s (client=%s)", type, client_id)
        else:
            logger.info("Fan-out %s to %d admins (client=%s)", type, len(admins), client_id)
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_type, recipient_id, unread_only=False, limit=20, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_type=recipient_type, recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_type, recipient_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(
            recipient_type=recipient_type, recipient_id=recipient_id, read=False,
        ).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient_type, recipient_id):
        """Mark a single notification as read. None when it is not the caller's."""
        notif = db.session.get(Notification, notification_id)
        if not notif or notif.recipient_type != recipient_type or notif.recipient_id != recipient_id:
            return None
        if not notif.read:
            notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_type, recipient_id):
        """Mark all notifications for a recipient as read."""
        now = datetime.now(timezone.utc)
        count = Notification.query.filter_by(
            recipient_type=recipient_type, recipient_id=recipient_id, read=False,
        ).update({"read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count


def _check_type(type):
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {type}")
