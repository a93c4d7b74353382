"""
App Submission Portal
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from portal.models import _utcnow, db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {"form_completed", "form_updated", "inactive_warning", "corrections_completed"}
RECIPIENT_TYPES = {"admin", "client"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. ``recipient_id`` is an admin
    profile id when ``recipient_type == "admin"`` and a client id when
    ``recipient_type == "client"``; ``client_id`` always names the client
    the notice is about.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notification_recipient", "recipient_type", "recipient_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.String(36), nullable=False)
    recipient_type = db.Column(db.String(10), nullable=False, comment="admin | client")
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    type = db.Column(db.String(40), nullable=False,
                     comment="form_completed | form_updated | inactive_warning | corrections_completed")
    message = db.Column(db.Text, default="")

    # Read tracking
    read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    def mark_read(self):
        self.read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "recipient_type": self.recipient_type,
            "client_id": self.client_id,
            "type": self.type,
            "message": self.message,
            "read": self.read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.type} → {self.recipient_type}:{self.recipient_id}>"
