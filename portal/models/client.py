"""
App Submission Portal
Client model.

A client is a company that ordered a white-label driver/passenger app pair.
Each client owns exactly one AppForm (see ``portal.models.app_form``).
"""

from portal.models import _utcnow, _uuid, db

CLIENT_STATUSES = {"active", "inactive"}


class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False, index=True)
    access_code = db.Column(db.String(11), nullable=False, unique=True,
                            comment="XXX-XXX-XXX over [A-Z0-9]")
    status = db.Column(db.String(20), nullable=False, default="active",
                       comment="active | inactive")
    admin_notes = db.Column(db.Text, default="")
    created_by = db.Column(db.String(36), nullable=True, comment="Admin profile id")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    profile = db.relationship("Profile", lazy="joined")
    form = db.relationship("AppForm", back_populates="client", uselist=False, lazy="select")

    def to_dict(self, include_form=False):
        d = {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "access_code": self.access_code,
            "status": self.status,
            "admin_notes": self.admin_notes or "",
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_form:
            d["form"] = self.form.summary_dict() if self.form else None
        return d

    def __repr__(self):
        return f"<Client {self.name} [{self.status}]>"
