"""
IPO Application Workflow
Notification Blueprint.

Recipient-side view of the notifications the workflow fans out. Every
route works on the calling actor's own inbox.

Endpoints (all under /api/v1/ipo):
    GET    /notifications                 ?unread_only=true&limit=&offset=
    GET    /notifications/unread-count
    POST   /notifications/<id>/read
    POST   /notifications/read-all
"""

import logging

from flask import Blueprint, g, jsonify, request

from ipo_workflow.blueprints import load_actor, page_args, register_error_handlers
from ipo_workflow.services.notification import NotificationService

logger = logging.getLogger(__name__)

notification_bp = Blueprint("ipo_notification", __name__, url_prefix="/api/v1/ipo")
notification_bp.before_request(load_actor)
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    limit, offset = page_args()
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    items, total = NotificationService.list_for_recipient(
        g.actor.id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total}), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(g.actor.id)}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, g.actor)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    count = NotificationService.mark_all_read(g.actor)
    return jsonify({"marked_read": count}), 200
