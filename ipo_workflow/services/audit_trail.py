"""
IPO Workflow — Audit Trail Service

Append-only sink invoked after every committed workflow mutation. Writes
never raise into the caller's success path: a failed write is logged at
ERROR with the traceback and returned as a DependencyFailure warning.

Usage:
    from ipo_workflow.services.audit_trail import record

    warnings = record(app.id, "application.approve", actor.id, {"status": {...}})
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from ipo_workflow.core.exceptions import DependencyFailure, NotFoundError
from ipo_workflow.models import db
from ipo_workflow.models.application import IpoApplication
from ipo_workflow.models.audit import AuditLog, write_audit
from ipo_workflow.services.access_control import check_capability

logger = logging.getLogger(__name__)


def record(application_id: str, action: str, actor_id: str | None, details: dict | None = None) -> list[dict]:
    """
    Append one audit row in its own savepoint and commit it.

    Returns:
        ``[]`` on success, else a one-element list with the audit warning.
    """
    try:
        with db.session.begin_nested():
            write_audit(
                application_id=application_id,
                action=action,
                actor_id=actor_id,
                details=details,
            )
    except SQLAlchemyError as exc:
        logger.error(
            "Audit write failed for %s", action,
            exc_info=True,
            extra={"application_id": application_id, "actor_id": actor_id, "dependency": "audit"},
        )
        failure = DependencyFailure(
            "audit",
            f"Audit entry '{action}' could not be written",
            details={"action": action, "error": str(exc)},
        )
        return [failure.to_warning()]
    db.session.commit()
    return []


def record_transition(application_id, action, actor_id, details, side_warnings):
    """
    Audit a committed transition together with its side-effect failures.

    Each warning from notification fan-out or listing creation gets its own
    ``dependency.failure`` row so operators can find it without reading the
    API response.

    Returns:
        *side_warnings* plus any warnings from the audit writes themselves.
    """
    warnings = list(side_warnings)
    warnings.extend(record(application_id, action, actor_id, details))
    for warning in side_warnings:
        warnings.extend(
            record(application_id, "dependency.failure", actor_id, {"source_action": action, **warning})
        )
    return warnings


def list_audit_entries(application_id: str, actor) -> list[AuditLog]:
    """
    Audit entries for an application, oldest first.

    Raises:
        NotFoundError: no such application.
        ForbiddenError: *actor* may not read its audit trail.
    """
    application = db.session.get(IpoApplication, application_id)
    if not application:
        raise NotFoundError(resource="Application", resource_id=application_id)
    check_capability(actor, application, "view_audit")
    return (
        AuditLog.query
        .filter_by(application_id=application_id)
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
        .all()
    )
