"""
Taskflow
Notification Blueprint.

Endpoints (all under /api/v1), scoped to the X-User-Id caller:
    GET  /notifications                  list (?is_read=true|false, ?type=..., limit, offset)
    GET  /notifications/unread-count     unread badge count
    POST /notifications/<id>/read        mark one as read
    POST /notifications/read-all         mark all as read
"""

import logging

from flask import Blueprint, jsonify, request

from taskflow.blueprints import current_user_id, pagination_args
from taskflow.core.exceptions import NotFoundError
from taskflow.models import db
from taskflow.models.notification import Notification
from taskflow.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    user_id = current_user_id()
    is_read = request.args.get("is_read")
    if is_read is not None:
        is_read = is_read.lower() == "true"
    limit, offset = pagination_args()
    items, total = NotificationService.list_for_user(
        user_id, is_read=is_read, type=request.args.get("type"), limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(user_id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_user_id())})


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    user_id = current_user_id()
    notif = db.session.get(Notification, notification_id)
    if notif is None or notif.recipient_user_id != user_id:
        raise NotFoundError("Notification", notification_id)
    notif = NotificationService.mark_read(notification_id)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    count = NotificationService.mark_all_read(current_user_id())
    return jsonify({"success": True, "marked_read": count})
