"""
App Submission Portal
Scheduled Jobs.

Concrete job implementations triggered by the external timer.

Jobs:
    - inactive_client_scan: warns admins about clients idle for INACTIVITY_DAYS
    - progress_recalculation: recomputes progress for every form
    - image_upload_sync: reconciles cached image completeness with uploads
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from portal.models import db
from portal.models.app_form import AppForm
from portal.models.client import Client
from portal.models.notification import Notification
from portal.services.change_detection import detect_image_changes
from portal.services.notification import NotificationService
from portal.services.progress import recalculate_all_forms
from portal.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Inactive Client Scan
# ═══════════════════════════════════════════════════════════════════════════

@register_job("inactive_client_scan")
def scan_inactive_clients(app, now: datetime | None = None) -> dict[str, Any]:
    """Warn admins about unfinished forms with no client activity inside the window.

    At most one warning per client per window: a client already warned since
    the cutoff is skipped.
    """
    days = int(app.config.get("INACTIVITY_DAYS", 2))
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=days)

    results = {"checked": 0, "clients_flagged": 0, "notifications_created": 0}

    forms = (
        AppForm.query.join(Client, AppForm.client_id == Client.id)
        .filter(
            AppForm.last_activity_date < cutoff,
            AppForm.progress_percentage < 100,
            Client.status == "active",
        )
        .all()
    )
    for form in forms:
        results["checked"] += 1
        client = form.client
        already_warned = Notification.query.filter(
            Notification.type == "inactive_warning",
            Notification.client_id == client.id,
            Notification.created_at >= cutoff,
        ).first()
        if already_warned:
            continue

        sent = NotificationService.notify_admins(
            type="inactive_warning",
            message=(f"{client.name} has been inactive for more than {days} days "
                     f"({form.progress_percentage}% complete)"),
            client_id=client.id,
        )
        if sent:
            results["clients_flagged"] += 1
            results["notifications_created"] += len(sent)

    db.session.commit()
    logger.info("Inactive client scan: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Progress Recalculation
# ═══════════════════════════════════════════════════════════════════════════

@register_job("progress_recalculation")
def recalculate_progress(app) -> dict[str, Any]:
    """Recompute progress and status for every form."""
    return recalculate_all_forms()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Image Upload Sync
# ═══════════════════════════════════════════════════════════════════════════

@register_job("image_upload_sync")
def sync_image_upload_state(app) -> dict[str, Any]:
    """Reconcile cached image completeness with the uploaded images."""
    result = detect_image_changes()
    return {"checked": result["checked"], "changed": len(result["changed"]), "form_ids": result["changed"]}
