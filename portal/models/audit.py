"""
App Submission Portal
Admin activity log.

Models:
    - AdminActivityLog: append-only trail of administrator mutations.
"""

import json

from portal.models import _utcnow, db


ADMIN_ACTION_TYPES = {
    "client_created",
    "client_deleted",
    "client_status_changed",
    "client_notes_updated",
    "admin_created",
    "form_review_approved",
    "form_review_rejected",
    "project_status_changed",
    "meeting_scheduled",
    "meeting_cancelled",
    "progress_recalculated",
    "form_exported",
}


class AdminActivityLog(db.Model):
    """
    One row per administrator action. ``metadata_json`` carries free-form
    context (old/new values, counts).
    """

    __tablename__ = "admin_activity_logs"
    __table_args__ = (
        db.Index("idx_admin_activity_target", "target_type", "target_id"),
        db.Index("idx_admin_activity_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.String(36), nullable=True, index=True)
    admin_name = db.Column(db.String(200), default="")
    admin_email = db.Column(db.String(255), default="")
    action_type = db.Column(db.String(60), nullable=False, index=True)
    action_description = db.Column(db.Text, default="")
    target_type = db.Column(db.String(30), default="", comment="client | form | admin | system")
    target_id = db.Column(db.String(36), nullable=True)
    target_name = db.Column(db.String(200), default="")
    metadata_json = db.Column(db.Text, default="{}")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def meta(self) -> dict:
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "admin_id": self.admin_id,
            "admin_name": self.admin_name,
            "admin_email": self.admin_email,
            "action_type": self.action_type,
            "action_description": self.action_description,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "target_name": self.target_name,
            "metadata": self.meta,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AdminActivityLog {self.id}: {self.action_type} on {self.target_type}/{self.target_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def log_admin_action(
    *,
    admin,
    action_type: str,
    description: str,
    target_type: str = "",
    target_id: str | None = None,
    target_name: str = "",
    metadata: dict | None = None,
) -> AdminActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.

    ``admin`` is the acting Profile, or None for system-initiated work.
    """
    if action_type not in ADMIN_ACTION_TYPES:
        raise ValueError(f"Unknown admin action type: {action_type}")
    entry = AdminActivityLog(
        admin_id=admin.id if admin is not None else None,
        admin_name=(admin.name or "") if admin is not None else "system",
        admin_email=(admin.email or "") if admin is not None else "",
        action_type=action_type,
        action_description=description,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        target_name=target_name or "",
        metadata_json=json.dumps(metadata or {}, default=str),
    )
    db.session.add(entry)
    db.session.flush()
    return entry
