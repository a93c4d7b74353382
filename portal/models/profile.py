"""
App Submission Portal
Profile model.

One row per identity issued by the hosted auth service. ``id`` equals the
identity id so bearer-token subjects map straight onto a profile.
"""

from portal.models import _utcnow, db

PROFILE_ROLES = {"admin", "client"}


class Profile(db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True, comment="Identity id from the auth service")
    email = db.Column(db.String(255), nullable=False, index=True)
    name = db.Column(db.String(200), default="")
    role = db.Column(db.String(20), nullable=False, default="client", index=True,
                     comment="admin | client")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Profile {self.email} [{self.role}]>"
