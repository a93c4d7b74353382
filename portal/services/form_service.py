"""
App Submission Portal
Form Service — client edits and project tracking.

Client edits go through ``update_form``:
    validate → drop unchanged values → apply → stamp activity → recompute progress
    → progress-crossing notices → review-change hook → commit

Crossing notices (to every admin):
    progress goes from < 100 to 100            → form_completed
    progress first reaches 25 from below 25    → form_updated

Admin-side tracking: project status timeline and meeting scheduling.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.app_form import (
    EMAIL_FIELDS,
    FIELD_MAX_LENGTHS,
    IMAGE_SOURCES,
    OPTIONAL_TEXT_FIELDS,
    PROJECT_STATUS_STEPS,
    PROJECT_STATUSES,
    REQUIRED_TEXT_FIELDS,
    STORE_OWNERS,
    AppForm,
)
from portal.models.audit import log_admin_action
from portal.services.notification import NotificationService
from portal.services.progress import evaluate_form, recalculate_form
from portal.services.review_lifecycle import handle_client_edit
from portal.utils.helpers import parse_date, parse_time

logger = logging.getLogger(__name__)

MILESTONE_PERCENTAGE = 25

CLIENT_EDITABLE_FIELDS = frozenset(
    REQUIRED_TEXT_FIELDS + OPTIONAL_TEXT_FIELDS + ("play_store_owner", "app_store_owner", "image_source")
)


def get_form_for_client(client_id: str) -> AppForm:
    form = AppForm.query.filter_by(client_id=client_id).first()
    if form is None:
        raise NotFoundError(resource="AppForm", resource_id=client_id)
    return form


# ── Validation ───────────────────────────────────────────────────────────────

def validate_form_updates(updates: dict) -> dict:
    """
    Return the cleaned updates or raise ValidationError listing every bad field.

    Text is stripped; e-mail fields are normalised.
    """
    errors: dict[str, str] = {}
    cleaned: dict = {}

    for name, value in updates.items():
        if name not in CLIENT_EDITABLE_FIELDS:
            errors[name] = "field is not editable"
            continue

        if name == "image_source":
            if not isinstance(value, str) or value not in IMAGE_SOURCES:
                errors[name] = f"must be one of: {sorted(IMAGE_SOURCES)}"
            else:
                cleaned[name] = value
            continue

        if name in ("play_store_owner", "app_store_owner"):
            if not isinstance(value, str) or value not in STORE_OWNERS:
                errors[name] = f"must be one of: {sorted(STORE_OWNERS)}"
            else:
                cleaned[name] = value
            continue

        if value is None:
            value = ""
        if not isinstance(value, str):
            errors[name] = "must be a string"
            continue
        value = value.strip()

        limit = FIELD_MAX_LENGTHS.get(name)
        if limit is not None and len(value) > limit:
            errors[name] = f"must be at most {limit} characters"
            continue

        if name in EMAIL_FIELDS and value:
            try:
                value = validate_email(value, check_deliverability=False).normalized
            except EmailNotValidError as exc:
                errors[name] = str(exc)
                continue

        cleaned[name] = value

    if errors:
        raise ValidationError("Invalid form data", details=errors)
    return cleaned


# ── Client edits ─────────────────────────────────────────────────────────────

def update_form(form: AppForm, updates: dict) -> dict:
    """
    Apply a client edit and commit it with every notification it triggers.

    Values equal to what is stored are dropped; a save that changes nothing
    leaves activity, progress and the review cycle untouched.

    Returns:
        {"form": dict, "progress": dict, "notifications_created": int}
    """
    cleaned = validate_form_updates(updates)
    changed = {
        name: value for name, value in cleaned.items()
        if (getattr(form, name) or "") != value
    }
    if not changed:
        logger.debug("Form %s saved without changes", form.id, extra={"form_id": form.id})
        return {
            "form": form.to_dict(),
            "progress": evaluate_form(form).to_dict(),
            "notifications_created": 0,
        }

    previous_percentage = form.progress_percentage or 0

    for name, value in changed.items():
        if name == "image_source":
            _apply_image_source(form, value)
        else:
            setattr(form, name, value)

    now = datetime.now(timezone.utc)
    form.last_activity_date = now
    form.last_client_update = now

    progress = recalculate_form(form)
    created = apply_client_change_effects(form, previous_percentage)

    db.session.commit()
    logger.info(
        "Form %s updated by client: %d fields, progress %d → %d",
        form.id, len(changed), previous_percentage, form.progress_percentage,
        extra={"form_id": form.id},
    )
    return {
        "form": form.to_dict(),
        "progress": progress.to_dict(),
        "notifications_created": len(created),
    }


def set_image_source(form: AppForm, source: str) -> dict:
    return update_form(form, {"image_source": source})


def _apply_image_source(form: AppForm, source: str) -> None:
    if form.image_source == source:
        return
    form.image_source = source
    # tilary ships its own asset pack; custom is re-derived from uploads.
    form.images_uploaded = source == "tilary"


def apply_client_change_effects(form: AppForm, previous: int) -> list:
    """
    Notices owed after a client change has been recomputed: progress
    crossings first, then the review-change hook. Flushes only.
    """
    current = form.progress_percentage
    client = form.client
    created = []
    if previous < 100 <= current:
        created += NotificationService.notify_admins(
            type="form_completed",
            message=f"{client.name} has completed their form (100%)",
            client_id=client.id,
        )
    if previous < MILESTONE_PERCENTAGE <= current and not form.progress_milestone_notified:
        created += NotificationService.notify_admins(
            type="form_updated",
            message=f"{client.name} has reached {current}% of their form",
            client_id=client.id,
        )
        form.progress_milestone_notified = True
    created += handle_client_edit(form)
    return created


# ── Project tracking (admin) ─────────────────────────────────────────────────

def project_status_timeline(form: AppForm) -> list[dict]:
    """Each timeline step flagged completed / current / pending."""
    current_index = PROJECT_STATUSES.index(form.project_status) if form.project_status in PROJECT_STATUSES else 0
    timeline = []
    for index, (key, label) in enumerate(PROJECT_STATUS_STEPS):
        if form.project_status == "completed" or index < current_index:
            state = "completed"
        elif index == current_index:
            state = "current"
        else:
            state = "pending"
        timeline.append({"key": key, "label": label, "state": state})
    return timeline


def set_project_status(form: AppForm, project_status: str, admin) -> dict:
    if project_status not in PROJECT_STATUSES:
        raise ValidationError(
            "Invalid project status",
            details={"project_status": f"must be one of: {list(PROJECT_STATUSES)}"},
        )
    previous = form.project_status
    form.project_status = project_status
    if project_status == "completed":
        form.completion_date = form.completion_date or datetime.now(timezone.utc)
    else:
        form.completion_date = None

    log_admin_action(
        admin=admin,
        action_type="project_status_changed",
        description=f"Project status of {form.client.name}: {previous} → {project_status}",
        target_type="form",
        target_id=form.id,
        target_name=form.client.name,
        metadata={"previous": previous, "new": project_status},
    )
    db.session.commit()
    return {"form": form.to_dict(), "timeline": project_status_timeline(form)}


def schedule_meeting(form: AppForm, meeting_date, meeting_time, admin) -> dict:
    parsed_date = parse_date(meeting_date)
    parsed_time = parse_time(meeting_time)
    errors = {}
    if parsed_date is None:
        errors["meeting_date"] = "valid date required (YYYY-MM-DD)"
    if parsed_time is None:
        errors["meeting_time"] = "valid time required (HH:MM)"
    if errors:
        raise ValidationError("Invalid meeting data", details=errors)

    form.meeting_scheduled = True
    form.meeting_date = parsed_date
    form.meeting_time = parsed_time
    log_admin_action(
        admin=admin,
        action_type="meeting_scheduled",
        description=f"Meeting with {form.client.name} on {parsed_date.isoformat()} {parsed_time.strftime('%H:%M')}",
        target_type="form",
        target_id=form.id,
        target_name=form.client.name,
    )
    db.session.commit()
    return form.to_dict()


def cancel_meeting(form: AppForm, admin) -> dict:
    form.meeting_scheduled = False
    form.meeting_date = None
    form.meeting_time = None
    log_admin_action(
        admin=admin,
        action_type="meeting_cancelled",
        description=f"Meeting with {form.client.name} cancelled",
        target_type="form",
        target_id=form.id,
        target_name=form.client.name,
    )
    db.session.commit()
    return form.to_dict()
