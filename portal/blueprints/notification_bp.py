"""
App Submission Portal
Notification Blueprint — the bell for admins and clients.

An admin reads the rows addressed to its profile id; a client reads the
rows addressed to its client id.

Endpoints:
    GET  /api/v1/notifications                  — ?unread_only=true&limit=&offset=
    GET  /api/v1/notifications/unread-count
    POST /api/v1/notifications/<id>/read
    POST /api/v1/notifications/read-all
"""

import logging

from flask import Blueprint, jsonify, request

from portal.middleware.auth_context import current_client, current_profile, require_login
from portal.services.notification import NotificationService
from portal.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


def _recipient():
    """(recipient_type, recipient_id) for the calling profile."""
    profile = current_profile()
    if profile.is_admin:
        return "admin", profile.id
    return "client", current_client().id


@notification_bp.route("/notifications", methods=["GET"])
@require_login
def list_notifications():
    rtype, rid = _recipient()
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    try:
        limit = min(int(request.args.get("limit", 20)), 100)
        offset = max(int(request.args.get("offset", 0)), 0)
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "limit and offset must be integers")

    items, total = NotificationService.list_for_recipient(
        rtype, rid, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(rtype, rid),
        "limit": limit,
        "offset": offset,
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@require_login
def unread_count():
    rtype, rid = _recipient()
    return jsonify({"unread_count": NotificationService.unread_count(rtype, rid)})


@notification_bp.route("/notifications/<int:nid>/read", methods=["POST"])
@require_login
def mark_read(nid):
    rtype, rid = _recipient()
    notif = NotificationService.mark_read(nid, rtype, rid)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
@require_login
def mark_all_read():
    rtype, rid = _recipient()
    count = NotificationService.mark_all_read(rtype, rid)
    return jsonify({"marked_read": count})
