"""
App Submission Portal
Admin Blueprint — client provisioning, review decisions and tracking.

Endpoints (all under /api/v1/admin, admin role required):
    Clients:
        GET    /clients                       — list (search, status filters)
        POST   /clients                       — provision client login + form
        GET    /clients/<id>                  — client with full form
        DELETE /clients/<id>                  — delete client, login and images
        PATCH  /clients/<id>/status           — active | inactive | completed
        PUT    /clients/<id>/notes            — internal notes
        GET    /clients/<id>/export           — ZIP of form text + images

    Administrators:
        GET    /admins
        POST   /admins

    Forms:
        POST   /forms/<id>/review             — approve | reject
        PUT    /forms/<id>/project-status
        PUT    /forms/<id>/meeting
        DELETE /forms/<id>/meeting
        POST   /forms/recalculate             — recompute every form

    Other:
        GET    /export/overview.xlsx
        GET    /activity
        GET    /jobs
        POST   /jobs/<name>/run
        PATCH  /jobs/<name>
"""

import logging

from flask import Blueprint, jsonify, request, send_file

from portal.core.exceptions import ValidationError
from portal.integrations.supabase_gateway import get_identity_gateway, get_storage_gateway
from portal.middleware.auth_context import current_profile, require_role
from portal.models import db
from portal.models.app_form import AppForm
from portal.models.audit import log_admin_action
from portal.models.client import Client
from portal.services import client_service, form_service
from portal.services.export_service import build_form_archive, export_clients_xlsx
from portal.services.progress import recalculate_all_forms
from portal.services.review_lifecycle import review_form
from portal.services.scheduler_service import SchedulerService
from portal.utils.errors import E, api_error, register_error_handlers
from portal.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_bp)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@admin_bp.before_request
@require_role("admin")
def _admin_only():
    return None


def _paging(default_limit=50, max_limit=200):
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
        offset = max(int(request.args.get("offset", 0)), 0)
    except ValueError:
        raise ValidationError("limit and offset must be integers")
    return max(limit, 1), offset


# ═══════════════════════════════════════════════════════════════════════════
#  CLIENTS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/clients", methods=["GET"])
def list_clients():
    clients = client_service.list_clients(
        search=request.args.get("search"),
        status=request.args.get("status"),
    )
    return jsonify({"items": clients, "total": len(clients)})


@admin_bp.route("/clients", methods=["POST"])
def create_client():
    """Provision a client. The access code and temporary password are only returned here."""
    data = request.get_json(silent=True) or {}
    result = client_service.create_client(
        data.get("name"),
        data.get("email"),
        admin=current_profile(),
        identity=get_identity_gateway(),
    )
    return jsonify(result), 201


@admin_bp.route("/clients/<client_id>", methods=["GET"])
def get_client(client_id):
    client = get_or_raise(Client, client_id)
    payload = client.to_dict()
    payload["form"] = client.form.to_dict(include_images=True) if client.form else None
    if client.form:
        payload["timeline"] = form_service.project_status_timeline(client.form)
    return jsonify(payload)


@admin_bp.route("/clients/<client_id>", methods=["DELETE"])
def delete_client(client_id):
    result = client_service.delete_client(
        client_id,
        admin=current_profile(),
        identity=get_identity_gateway(),
        storage=get_storage_gateway(),
    )
    return jsonify(result)


@admin_bp.route("/clients/<client_id>/status", methods=["PATCH"])
def set_client_status(client_id):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    return jsonify(client_service.set_client_status(client_id, data["status"], admin=current_profile()))


@admin_bp.route("/clients/<client_id>/notes", methods=["PUT"])
def update_client_notes(client_id):
    data = request.get_json(silent=True) or {}
    return jsonify(client_service.update_client_notes(client_id, data.get("notes", ""), admin=current_profile()))


@admin_bp.route("/clients/<client_id>/export", methods=["GET"])
def export_client(client_id):
    client = get_or_raise(Client, client_id)
    filename, archive, stats = build_form_archive(client, get_storage_gateway())
    log_admin_action(
        admin=current_profile(),
        action_type="form_exported",
        description=f"Exported form of {client.name}",
        target_type="client",
        target_id=client.id,
        target_name=client.name,
        metadata=stats,
    )
    db.session.commit()
    return send_file(archive, mimetype="application/zip", as_attachment=True, download_name=filename)


# ═══════════════════════════════════════════════════════════════════════════
#  ADMINISTRATORS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/admins", methods=["GET"])
def list_admins():
    admins = client_service.list_admins()
    return jsonify({"items": admins, "total": len(admins)})


@admin_bp.route("/admins", methods=["POST"])
def create_admin():
    data = request.get_json(silent=True) or {}
    profile = client_service.create_admin(
        data.get("name"),
        data.get("email"),
        data.get("password"),
        admin=current_profile(),
        identity=get_identity_gateway(),
    )
    return jsonify(profile), 201


# ═══════════════════════════════════════════════════════════════════════════
#  FORM REVIEW & TRACKING
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/forms/<form_id>/review", methods=["POST"])
def review(form_id):
    data = request.get_json(silent=True) or {}
    action = data.get("action")
    if action not in ("approve", "reject"):
        return api_error(E.VALIDATION_INVALID, "action must be 'approve' or 'reject'")
    result = review_form(form_id, action, current_profile(), feedback=data.get("feedback"))
    return jsonify(result)


@admin_bp.route("/forms/<form_id>/project-status", methods=["PUT"])
def set_project_status(form_id):
    data = request.get_json(silent=True) or {}
    if not data.get("project_status"):
        return api_error(E.VALIDATION_REQUIRED, "project_status is required")
    form = get_or_raise(AppForm, form_id)
    return jsonify(form_service.set_project_status(form, data["project_status"], current_profile()))


@admin_bp.route("/forms/<form_id>/meeting", methods=["PUT"])
def schedule_meeting(form_id):
    data = request.get_json(silent=True) or {}
    form = get_or_raise(AppForm, form_id)
    return jsonify(form_service.schedule_meeting(
        form, data.get("meeting_date"), data.get("meeting_time"), current_profile(),
    ))


@admin_bp.route("/forms/<form_id>/meeting", methods=["DELETE"])
def cancel_meeting(form_id):
    form = get_or_raise(AppForm, form_id)
    return jsonify(form_service.cancel_meeting(form, current_profile()))


@admin_bp.route("/forms/recalculate", methods=["POST"])
def recalculate_forms():
    """Recompute progress and status for every form."""
    result = recalculate_all_forms()
    log_admin_action(
        admin=current_profile(),
        action_type="progress_recalculated",
        description=f"Recalculated {result['checked']} forms ({result['updated']} changed)",
        target_type="form",
        metadata=result,
    )
    db.session.commit()
    return jsonify(result)


# ═══════════════════════════════════════════════════════════════════════════
#  OVERVIEW EXPORT & ACTIVITY
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/export/overview.xlsx", methods=["GET"])
def export_overview():
    clients = Client.query.order_by(Client.created_at.desc()).all()
    output = export_clients_xlsx(clients)
    return send_file(output, mimetype=XLSX_MIMETYPE, as_attachment=True,
                     download_name="clients_overview.xlsx")


@admin_bp.route("/activity", methods=["GET"])
def list_activity():
    limit, offset = _paging()
    items, total = client_service.list_activity(
        action_type=request.args.get("action_type"),
        target_id=request.args.get("target_id"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": items, "total": total, "limit": limit, "offset": offset})


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/jobs", methods=["GET"])
def list_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@admin_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    """Run a job now. ``?force=true`` runs a disabled job too."""
    force = request.args.get("force", "false").lower() == "true"
    result = SchedulerService.run_job(job_name, force=force)
    if result["status"] == "error":
        return api_error(E.NOT_FOUND, result["error"])
    return jsonify(result)


@admin_bp.route("/jobs/<job_name>", methods=["PATCH"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    if "is_enabled" not in data:
        return api_error(E.VALIDATION_REQUIRED, "is_enabled is required")
    job = SchedulerService.toggle_job(job_name, bool(data["is_enabled"]))
    if job is None:
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    return jsonify(job)
