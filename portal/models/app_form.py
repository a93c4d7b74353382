"""
App Submission Portal
Submission form domain model.

Models:
    - AppForm: one per client; store-listing copy, terms, image choice,
      derived progress, project timeline and review state.
    - FormImage: uploaded asset keyed by (app_type, store_type, image_type).

``progress_percentage`` and ``status`` are derived values; they are only
written through ``portal.services.progress``.
"""

from portal.models import _utcnow, _uuid, db


# ── Constants ────────────────────────────────────────────────────────────────

# The 11 weighted text fields, in display order.
REQUIRED_TEXT_FIELDS = (
    "driver_app_name",
    "passenger_app_name",
    "support_email",
    "playstore_driver_short_description",
    "playstore_driver_long_description",
    "playstore_passenger_short_description",
    "playstore_passenger_long_description",
    "appstore_driver_description",
    "appstore_passenger_description",
    "driver_terms",
    "passenger_terms",
)

OPTIONAL_TEXT_FIELDS = (
    "company_terms",
    "playstore_owner_name",
    "playstore_owner_email",
    "appstore_owner_name",
    "appstore_owner_email",
)

FIELD_MAX_LENGTHS = {
    "driver_app_name": 50,
    "passenger_app_name": 50,
    "support_email": 255,
    "playstore_driver_short_description": 80,
    "playstore_passenger_short_description": 80,
    "playstore_driver_long_description": 4000,
    "playstore_passenger_long_description": 4000,
    "appstore_driver_description": 4000,
    "appstore_passenger_description": 4000,
    "playstore_owner_name": 200,
    "playstore_owner_email": 255,
    "appstore_owner_name": 200,
    "appstore_owner_email": 255,
}

EMAIL_FIELDS = ("support_email", "playstore_owner_email", "appstore_owner_email")

IMAGE_SOURCES = {"tilary", "custom"}
STORE_OWNERS = {"tilary", "client"}
FORM_STATUSES = ("not_started", "in_progress", "completed")
REVIEW_STATUSES = ("pending", "approved", "rejected")

PROJECT_STATUS_STEPS = (
    ("pending", "Pending"),
    ("preparing_images", "Preparing images"),
    ("configuring_firebase", "Configuring Firebase"),
    ("admin_panel_delivered", "Admin panel delivered"),
    ("testing_app", "Testing app"),
    ("submitted_playstore", "Submitted to Play Store"),
    ("submitted_appstore", "Submitted to App Store"),
    ("completed", "Completed"),
)
PROJECT_STATUSES = tuple(key for key, _label in PROJECT_STATUS_STEPS)

APP_TYPES = ("driver", "passenger")
STORE_TYPES = ("playstore", "appstore")
IMAGE_TYPES = ("logo_1024", "logo_352", "feature", "banner_1024")


class AppForm(db.Model):
    __tablename__ = "app_forms"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )

    # Weighted text fields
    driver_app_name = db.Column(db.String(50), default="")
    passenger_app_name = db.Column(db.String(50), default="")
    support_email = db.Column(db.String(255), default="")
    playstore_driver_short_description = db.Column(db.String(80), default="")
    playstore_driver_long_description = db.Column(db.Text, default="")
    playstore_passenger_short_description = db.Column(db.String(80), default="")
    playstore_passenger_long_description = db.Column(db.Text, default="")
    appstore_driver_description = db.Column(db.Text, default="")
    appstore_passenger_description = db.Column(db.Text, default="")
    driver_terms = db.Column(db.Text, default="")
    passenger_terms = db.Column(db.Text, default="")

    # Optional content
    company_terms = db.Column(db.Text, default="")
    play_store_owner = db.Column(db.String(20), default="tilary", comment="tilary | client")
    app_store_owner = db.Column(db.String(20), default="tilary", comment="tilary | client")
    playstore_owner_name = db.Column(db.String(200), default="")
    playstore_owner_email = db.Column(db.String(255), default="")
    appstore_owner_name = db.Column(db.String(200), default="")
    appstore_owner_email = db.Column(db.String(255), default="")

    # Images
    image_source = db.Column(db.String(20), nullable=False, default="custom",
                             comment="tilary | custom")
    images_uploaded = db.Column(db.Boolean, nullable=False, default=False,
                                comment="Cached completeness of the required custom image catalog")

    # Derived progress
    progress_percentage = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="not_started",
                       comment="not_started | in_progress | completed")
    progress_milestone_notified = db.Column(db.Boolean, nullable=False, default=False,
                                            comment="25% crossing notice already sent")

    # Project tracking
    project_status = db.Column(db.String(40), nullable=False, default="pending")
    completion_date = db.Column(db.DateTime(timezone=True), nullable=True)
    meeting_scheduled = db.Column(db.Boolean, nullable=False, default=False)
    meeting_date = db.Column(db.Date, nullable=True)
    meeting_time = db.Column(db.Time, nullable=True)

    # Review cycle
    review_status = db.Column(db.String(20), nullable=False, default="pending",
                              comment="pending | approved | rejected")
    review_feedback = db.Column(db.Text, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.String(36), nullable=True, comment="Admin profile id")
    corrections_completed = db.Column(db.Boolean, nullable=False, default=False)
    corrections_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    admin_notified_of_changes = db.Column(db.Boolean, nullable=False, default=False)

    # Activity
    last_activity_date = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    last_client_update = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    client = db.relationship("Client", back_populates="form")
    images = db.relationship(
        "FormImage", back_populates="form", lazy="select",
        cascade="all, delete-orphan", order_by="FormImage.uploaded_at",
    )

    def text_fields(self) -> dict:
        return {f: getattr(self, f) or "" for f in REQUIRED_TEXT_FIELDS + OPTIONAL_TEXT_FIELDS}

    def summary_dict(self):
        return {
            "id": self.id,
            "progress_percentage": self.progress_percentage,
            "status": self.status,
            "review_status": self.review_status,
            "project_status": self.project_status,
            "corrections_completed": self.corrections_completed,
            "meeting_scheduled": self.meeting_scheduled,
            "last_activity_date": self.last_activity_date.isoformat() if self.last_activity_date else None,
        }

    def to_dict(self, include_images=False):
        d = {
            "id": self.id,
            "client_id": self.client_id,
            **self.text_fields(),
            "play_store_owner": self.play_store_owner,
            "app_store_owner": self.app_store_owner,
            "image_source": self.image_source,
            "images_uploaded": self.images_uploaded,
            "progress_percentage": self.progress_percentage,
            "status": self.status,
            "project_status": self.project_status,
            "completion_date": self.completion_date.isoformat() if self.completion_date else None,
            "meeting_scheduled": self.meeting_scheduled,
            "meeting_date": self.meeting_date.isoformat() if self.meeting_date else None,
            "meeting_time": self.meeting_time.strftime("%H:%M") if self.meeting_time else None,
            "review_status": self.review_status,
            "review_feedback": self.review_feedback,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewed_by": self.reviewed_by,
            "corrections_completed": self.corrections_completed,
            "corrections_completed_at": (
                self.corrections_completed_at.isoformat() if self.corrections_completed_at else None
            ),
            "admin_notified_of_changes": self.admin_notified_of_changes,
            "last_activity_date": self.last_activity_date.isoformat() if self.last_activity_date else None,
            "last_client_update": self.last_client_update.isoformat() if self.last_client_update else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_images:
            d["images"] = [img.to_dict() for img in self.images]
        return d

    def __repr__(self):
        return f"<AppForm {self.id} {self.progress_percentage}% [{self.review_status}]>"


class FormImage(db.Model):
    __tablename__ = "form_images"
    __table_args__ = (
        db.Index("idx_form_image_key", "form_id", "app_type", "store_type", "image_type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    form_id = db.Column(
        db.String(36), db.ForeignKey("app_forms.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    app_type = db.Column(db.String(20), nullable=False, comment="driver | passenger")
    store_type = db.Column(db.String(20), nullable=False, comment="playstore | appstore")
    image_type = db.Column(db.String(30), nullable=False,
                           comment="logo_1024 | logo_352 | feature | banner_1024")
    file_name = db.Column(db.String(255), nullable=False)
    storage_path = db.Column(db.String(500), nullable=False)
    file_url = db.Column(db.String(1000), nullable=False)
    dimensions = db.Column(db.String(20), default="", comment="WIDTHxHEIGHT")
    size_bytes = db.Column(db.Integer, default=0)
    uploaded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    form = db.relationship("AppForm", back_populates="images")

    @property
    def catalog_key(self) -> str:
        return f"{self.app_type}_{self.store_type}_{self.image_type}"

    def to_dict(self):
        return {
            "id": self.id,
            "form_id": self.form_id,
            "app_type": self.app_type,
            "store_type": self.store_type,
            "image_type": self.image_type,
            "file_name": self.file_name,
            "file_url": self.file_url,
            "dimensions": self.dimensions,
            "size_bytes": self.size_bytes,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self):
        return f"<FormImage {self.catalog_key} {self.file_name}>"
