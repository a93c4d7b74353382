"""
App Submission Portal
Review / Correction Lifecycle Service.

Manages the review cycle of an AppForm:
  - Transition validation (REVIEW_TRANSITIONS)
  - Role checks (admins review, clients acknowledge corrections)
  - Side effects: progress recompute, approval allowance, flag resets
  - Notification fan-out and admin activity trail

States:
    pending (initial) → approved | rejected
    approved / rejected may be re-reviewed at any time.

Client-driven events:
    client edit after review   → one form_updated notice per admin per cycle
    corrections complete       → corrections_completed notice per admin

Usage:
    from portal.services.review_lifecycle import review_form

    result = review_form(form_id, "reject", reviewer=profile, feedback="Logo is blurry")
"""

import logging
from datetime import datetime, timezone

from portal.core.exceptions import PermissionDenied, ValidationError
from portal.models import db
from portal.models.app_form import AppForm
from portal.models.audit import log_admin_action
from portal.services.notification import NotificationService
from portal.services.progress import recalculate_form
from portal.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)


REVIEW_TRANSITIONS = {
    "approve": {"from": {"pending", "approved", "rejected"}, "to": "approved", "actor": "admin"},
    "reject": {"from": {"pending", "approved", "rejected"}, "to": "rejected", "actor": "admin"},
    "complete_corrections": {"from": {"rejected"}, "to": "rejected", "actor": "client"},
}

APPROVED_MESSAGE = "Your form has been approved!"
REJECTED_MESSAGE = "Your form needs corrections. Check the Project Status section."


class TransitionError(Exception):
    """Raised when a review transition is invalid for the form's state."""

    def __init__(self, form_id: str, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' form {form_id} (review_status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.form_id = form_id
        self.action = action
        self.current_status = current
        self.reason = reason


def validate_transition(form: AppForm, action: str) -> dict:
    """
    Validate whether an action is valid for the current review state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = REVIEW_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": form.review_status, "to": None,
                "reason": f"Unknown action: {action}"}

    if form.review_status not in rule["from"]:
        return {"valid": False, "from": form.review_status, "to": rule["to"],
                "reason": f"Cannot '{action}' from review status '{form.review_status}'"}

    return {"valid": True, "from": form.review_status, "to": rule["to"], "reason": None}


def _require_admin(profile):
    if profile is None or not profile.is_admin:
        raise PermissionDenied(getattr(profile, "id", None), "admin")


def _result(form, action, previous, **extra):
    return {
        "form_id": form.id,
        "action": action,
        "previous_review_status": previous,
        "review_status": form.review_status,
        "progress_percentage": form.progress_percentage,
        "status": form.status,
        **extra,
    }


# ── Administrator decisions ──────────────────────────────────────────────────

def review_form(form_id: str, action: str, reviewer, feedback: str | None = None) -> dict:
    """Dispatch an administrator review decision ("approve" | "reject")."""
    form = get_or_raise(AppForm, form_id)
    if action == "approve":
        return approve_form(form, reviewer, feedback=feedback)
    if action == "reject":
        return reject_form(form, reviewer, feedback=feedback)
    raise TransitionError(form.id, action, form.review_status, f"Unknown action: {action}")


def approve_form(form: AppForm, reviewer, feedback: str | None = None) -> dict:
    """
    Approve a form.

    Recomputes progress first; a form at 95 % or more is then reported as
    100 % / completed. Notifies the client and commits.
    """
    _require_admin(reviewer)
    validation = validate_transition(form, "approve")
    if not validation["valid"]:
        raise TransitionError(form.id, "approve", form.review_status, validation["reason"])

    previous = form.review_status
    form.review_status = validation["to"]
    form.reviewed_at = datetime.now(timezone.utc)
    form.reviewed_by = reviewer.id
    form.review_feedback = (feedback or "").strip() or None
    form.corrections_completed = False
    form.admin_notified_of_changes = False
    progress = recalculate_form(form)

    client = form.client
    NotificationService.notify_client(client, type="form_completed", message=APPROVED_MESSAGE)
    log_admin_action(
        admin=reviewer,
        action_type="form_review_approved",
        description=f"Approved the form of {client.name}",
        target_type="form",
        target_id=form.id,
        target_name=client.name,
        metadata={"previous": previous, "progress": form.progress_percentage,
                  "approval_allowance": progress.approval_allowance},
    )
    db.session.commit()
    logger.info("Form %s approved by %s (progress=%d)", form.id, reviewer.id, form.progress_percentage)
    return _result(form, "approve", previous, approval_allowance=progress.approval_allowance)


def reject_form(form: AppForm, reviewer, feedback: str | None) -> dict:
    """
    Reject a form with feedback. Empty feedback raises ValidationError before
    anything is written.
    """
    _require_admin(reviewer)
    feedback = (feedback or "").strip()
    if not feedback:
        raise ValidationError("Feedback is required when rejecting a form",
                              details={"feedback": "required"})
    validation = validate_transition(form, "reject")
    if not validation["valid"]:
        raise TransitionError(form.id, "reject", form.review_status, validation["reason"])

    previous = form.review_status
    form.review_status = validation["to"]
    form.reviewed_at = datetime.now(timezone.utc)
    form.reviewed_by = reviewer.id
    form.review_feedback = feedback
    form.corrections_completed = False
    form.corrections_completed_at = None
    form.admin_notified_of_changes = False
    recalculate_form(form)

    client = form.client
    NotificationService.notify_client(client, type="form_updated", message=REJECTED_MESSAGE)
    log_admin_action(
        admin=reviewer,
        action_type="form_review_rejected",
        description=f"Requested corrections on the form of {client.name}",
        target_type="form",
        target_id=form.id,
        target_name=client.name,
        metadata={"previous": previous, "feedback": feedback},
    )
    db.session.commit()
    logger.info("Form %s rejected by %s", form.id, reviewer.id)
    return _result(form, "reject", previous)


# ── Client-driven events ─────────────────────────────────────────────────────

def mark_corrections_complete(form: AppForm) -> dict:
    """
    Client confirms the requested corrections are done.

    Only valid while rejected. A repeated call is a no-op that sends nothing.
    """
    validation = validate_transition(form, "complete_corrections")
    if not validation["valid"]:
        raise TransitionError(form.id, "complete_corrections", form.review_status,
                              "corrections can only be completed after a rejection")

    if form.corrections_completed:
        return _result(form, "complete_corrections", form.review_status, notified_admins=0)

    now = datetime.now(timezone.utc)
    form.corrections_completed = True
    form.corrections_completed_at = now
    form.last_activity_date = now
    client = form.client
    sent = NotificationService.notify_admins(
        type="corrections_completed",
        message=f"{client.name} has completed the requested corrections",
        client_id=client.id,
    )
    db.session.commit()
    logger.info("Form %s corrections completed; %d admins notified", form.id, len(sent))
    return _result(form, "complete_corrections", form.review_status, notified_admins=len(sent))


def handle_client_edit(form: AppForm) -> list:
    """
    Called after a client edit has been applied and progress recomputed.

    While the form is approved or rejected, the first edit of a review cycle
    notifies every administrator and re-opens the corrections flag. Later
    edits in the same cycle notify nobody. Flushes only.
    """
    if form.review_status not in ("approved", "rejected"):
        return []

    form.corrections_completed = False
    if form.admin_notified_of_changes:
        return []

    client = form.client
    sent = NotificationService.notify_admins(
        type="form_updated",
        message=(f"{client.name} updated their form after review "
                 f"({form.progress_percentage}% complete)"),
        client_id=client.id,
    )
    form.admin_notified_of_changes = True
    db.session.flush()
    return sent
