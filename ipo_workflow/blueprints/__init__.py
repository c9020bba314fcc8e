"""
IPO Application Workflow
Blueprint helpers shared by every HTTP adapter.

Layer contract:
    - Blueprint: read the acting principal from headers, parse input, call
      a service, serialise the result.
    - NO db.session calls and NO role checks here; every guard lives in
      the service layer.
"""

import logging

from flask import g, jsonify, request

from ipo_workflow.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ipo_workflow.models.directory import ROLES
from ipo_workflow.services.access_control import Actor

logger = logging.getLogger(__name__)


def load_actor():
    """``before_request`` hook: build ``g.actor`` from identity headers or answer 401."""
    actor_id = (request.headers.get("X-User-Id") or "").strip()
    role = (request.headers.get("X-User-Role") or "").strip().upper()
    if not actor_id or role not in ROLES:
        return jsonify({"error": "Authentication required"}), 401
    g.actor = Actor(
        id=actor_id,
        role=role,
        company_id=(request.headers.get("X-Company-Id") or "").strip() or None,
    )
    return None


def register_error_handlers(bp):
    """Map the workflow's error kinds onto HTTP status codes for *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return jsonify({"error": str(error)}), 404

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        return jsonify({"error": str(error), "capability": error.capability}), 403

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return jsonify({"error": str(error), "details": error.details}), 422

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return jsonify({"error": str(error), "field": error.field, "value": error.value}), 409


def page_args(default_limit=50, max_limit=200):
    """Read ``limit``/``offset`` query params, clamped.

    Returns:
        (limit, offset)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset
