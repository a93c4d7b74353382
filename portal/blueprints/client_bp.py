"""
App Submission Portal
Client Blueprint — the client's own form.

Endpoints (all under /api/v1/client, client role required):
    GET    /me                               — client, form, progress, timeline
    PATCH  /form                             — edit form fields
    PUT    /form/image-source                — custom | tilary
    POST   /form/corrections-complete        — after a rejection
    GET    /form/project-status              — timeline, review feedback, meeting
    GET    /form/images                      — uploaded images per slot
    POST   /form/images                      — multipart upload (file + slot fields)
    DELETE /form/images/<id>
"""

import logging

from flask import Blueprint, jsonify, request

from portal.integrations.supabase_gateway import get_storage_gateway
from portal.middleware.auth_context import current_client, require_role
from portal.services import form_service, image_service
from portal.services.progress import evaluate_form
from portal.services.review_lifecycle import mark_corrections_complete
from portal.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

client_bp = Blueprint("client_bp", __name__, url_prefix="/api/v1/client")
register_error_handlers(client_bp)


@client_bp.before_request
@require_role("client")
def _client_only():
    return None


def _own_form():
    return form_service.get_form_for_client(current_client().id)


# ═══════════════════════════════════════════════════════════════════════════
#  FORM
# ═══════════════════════════════════════════════════════════════════════════

@client_bp.route("/me", methods=["GET"])
def me():
    client = current_client()
    form = form_service.get_form_for_client(client.id)
    return jsonify({
        "client": client.to_dict(),
        "form": form.to_dict(include_images=True),
        "progress": evaluate_form(form).to_dict(),
        "timeline": form_service.project_status_timeline(form),
    })


@client_bp.route("/form", methods=["PATCH"])
def update_form():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return api_error(E.VALIDATION_REQUIRED, "JSON object with form fields is required")
    return jsonify(form_service.update_form(_own_form(), data))


@client_bp.route("/form/image-source", methods=["PUT"])
def set_image_source():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data.get("image_source"):
        return api_error(E.VALIDATION_REQUIRED, "image_source is required")
    return jsonify(form_service.set_image_source(_own_form(), data["image_source"]))


@client_bp.route("/form/corrections-complete", methods=["POST"])
def corrections_complete():
    return jsonify(mark_corrections_complete(_own_form()))


@client_bp.route("/form/project-status", methods=["GET"])
def project_status():
    form = _own_form()
    return jsonify({
        "project_status": form.project_status,
        "completion_date": form.completion_date.isoformat() if form.completion_date else None,
        "timeline": form_service.project_status_timeline(form),
        "review_status": form.review_status,
        "review_feedback": form.review_feedback,
        "corrections_completed": form.corrections_completed,
        "meeting": {
            "scheduled": form.meeting_scheduled,
            "date": form.meeting_date.isoformat() if form.meeting_date else None,
            "time": form.meeting_time.strftime("%H:%M") if form.meeting_time else None,
        },
    })


# ═══════════════════════════════════════════════════════════════════════════
#  IMAGES
# ═══════════════════════════════════════════════════════════════════════════

@client_bp.route("/form/images", methods=["GET"])
def list_images():
    return jsonify(image_service.list_images(_own_form()))


@client_bp.route("/form/images", methods=["POST"])
def upload_image():
    upload = request.files.get("file")
    if upload is None:
        return api_error(E.VALIDATION_REQUIRED, "file is required")
    missing = [f for f in ("app_type", "store_type", "image_type") if not request.form.get(f)]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing fields: {', '.join(missing)}")

    result = image_service.upload_image(
        _own_form(),
        app_type=request.form["app_type"],
        store_type=request.form["store_type"],
        image_type=request.form["image_type"],
        file_name=upload.filename or "",
        data=upload.read(),
        storage=get_storage_gateway(),
    )
    return jsonify(result), 201


@client_bp.route("/form/images/<image_id>", methods=["DELETE"])
def delete_image(image_id):
    return jsonify(image_service.delete_image(_own_form(), image_id, storage=get_storage_gateway()))
