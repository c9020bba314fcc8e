"""
IPO Workflow — Feedback & Query Loop

The assigned IB advisor raises feedback items against an application (or
one of its sections); the issuer team works them through
PENDING → IN_PROGRESS → RESOLVED. Transitions are forward-only and never
skip a step.

Both creation and status changes are guarded in the database: creation
re-checks that the application is still non-terminal in the same
transaction as the insert, and a status change only applies if the stored
status is still the one the caller saw.

Usage:
    from ipo_workflow.services.feedback_service import create_feedback, update_feedback_status

    result = create_feedback(app_id, advisor, category="Financials", issue="Audit missing")
    update_feedback_status(result["feedback"].id, ceo, "IN_PROGRESS", response="On it")
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update

from ipo_workflow.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ipo_workflow.models import db
from ipo_workflow.models.application import TERMINAL_STATUSES, ApplicationSection, IpoApplication
from ipo_workflow.models.feedback import (
    FEEDBACK_PRIORITIES,
    FEEDBACK_STATUSES,
    FEEDBACK_TRANSITIONS,
    ApplicationFeedback,
    FeedbackComment,
)
from ipo_workflow.services.access_control import check_capability, relation_to
from ipo_workflow.services.audit_trail import record_transition
from ipo_workflow.services.notification import NotificationService, issuer_team_ids

logger = logging.getLogger(__name__)


def _load_application(application_id, actor, capability):
    application = db.session.get(IpoApplication, application_id)
    if not application:
        raise NotFoundError(resource="Application", resource_id=application_id)
    check_capability(actor, application, capability)
    return application


def _load_feedback(feedback_id):
    feedback = db.session.get(ApplicationFeedback, feedback_id)
    if not feedback:
        raise NotFoundError(resource="Feedback", resource_id=feedback_id)
    return feedback


def _validate_transition(feedback, new_status):
    if new_status not in FEEDBACK_STATUSES:
        raise ValidationError(
            f"Invalid feedback status: {new_status}",
            details={"status": new_status, "allowed": sorted(FEEDBACK_STATUSES)},
        )
    if FEEDBACK_TRANSITIONS.get(feedback.status) != new_status:
        raise ConflictError(
            "Feedback", "status", feedback.status,
            message=f"Feedback cannot move from {feedback.status} to {new_status}",
        )


# ── Creation ─────────────────────────────────────────────────────────────────

def create_feedback(application_id, actor, category, issue, priority=None, section_id=None):
    """
    Raise a feedback item as the application's assigned advisor.

    Returns:
        {"feedback", "warnings"}

    Raises:
        NotFoundError: no such application.
        ForbiddenError: actor is not the assigned advisor, or the application
            is terminal.
        ValidationError: empty issue, unknown priority, or a section that
            does not belong to the application.
    """
    application = _load_application(application_id, actor, "create_feedback")

    if not issue or not str(issue).strip():
        raise ValidationError("issue is required", details={"issue": "empty"})
    priority = (priority or "MEDIUM").upper()
    if priority not in FEEDBACK_PRIORITIES:
        raise ValidationError(
            f"Invalid priority: {priority}",
            details={"priority": priority, "allowed": sorted(FEEDBACK_PRIORITIES)},
        )
    if section_id:
        section = db.session.get(ApplicationSection, section_id)
        if not section or section.application_id != application.id:
            raise ValidationError(
                "section_id does not belong to this application",
                details={"section_id": section_id},
            )

    # Holds the application row until commit; loses to a concurrent
    # approval or rejection.
    claimed = db.session.execute(
        update(IpoApplication)
        .where(IpoApplication.id == application.id,
               IpoApplication.status.notin_(TERMINAL_STATUSES))
        .values(updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.session.rollback()
        raise ForbiddenError(actor.id, "create_feedback", application.id)

    feedback = ApplicationFeedback(
        application_id=application.id,
        section_id=section_id or None,
        category=category,
        issue=str(issue).strip(),
        priority=priority,
        status="PENDING",
        created_by=actor.id,
    )
    db.session.add(feedback)
    db.session.commit()

    logger.info(
        "Feedback created (%s)", priority,
        extra={"application_id": application.id, "feedback_id": feedback.id,
               "actor_id": actor.id, "event_type": "feedback.create"},
    )
    _, warnings = NotificationService.dispatch(
        event_type="QUERY_ISSUED",
        application_id=application.id,
        recipients=issuer_team_ids(application.company_id),
        title=f"New feedback from IB advisor: {category or 'General'}",
        message=feedback.issue,
        priority=priority,
    )
    warnings = record_transition(
        application.id, "feedback.create", actor.id,
        {"feedback_id": feedback.id, "category": category, "priority": priority,
         "section_id": feedback.section_id},
        warnings,
    )
    return {"feedback": feedback, "warnings": warnings}


# ── Reads ────────────────────────────────────────────────────────────────────

def list_feedback(application_id, actor, status=None):
    """Feedback for an application, newest first."""
    _load_application(application_id, actor, "view")
    q = ApplicationFeedback.query.filter_by(application_id=application_id)
    if status:
        q = q.filter_by(status=status)
    # id breaks timestamp ties so paging is stable
    return q.order_by(ApplicationFeedback.created_at.desc(), ApplicationFeedback.id.desc()).all()


def get_feedback(feedback_id, actor):
    feedback = _load_feedback(feedback_id)
    _load_application(feedback.application_id, actor, "view")
    return feedback


def list_feedback_comments(feedback_id, actor):
    """Comments on one feedback item, oldest first."""
    feedback = get_feedback(feedback_id, actor)
    return (
        FeedbackComment.query
        .filter_by(feedback_id=feedback.id)
        .order_by(FeedbackComment.created_at.asc(), FeedbackComment.id.asc())
        .all()
    )


# ── Resolution ───────────────────────────────────────────────────────────────

def update_feedback_status(feedback_id, actor, new_status=None, response=None):
    """
    Move a feedback item one step forward and/or record a response.

    Issuer-team members move the status and write ``issuer_response``; the
    assigned advisor may only write ``ib_response``.

    Returns:
        {"feedback", "previous_status", "new_status", "warnings"}

    Raises:
        NotFoundError, ForbiddenError,
        ValidationError: unknown status, or neither status nor response given,
        ConflictError: the change is not the single next forward step, or
            another caller changed the status first.
    """
    feedback = _load_feedback(feedback_id)
    capability = "resolve_feedback" if new_status is not None else "respond_feedback"
    application = _load_application(feedback.application_id, actor, capability)

    if new_status is None and not response:
        raise ValidationError("Provide a status or a response", details={"feedback_id": feedback_id})
    if new_status is not None:
        _validate_transition(feedback, new_status)

    from_advisor = relation_to(actor, application) == "assigned_advisor"
    previous_status = feedback.status
    values = {}
    if response:
        values["ib_response" if from_advisor else "issuer_response"] = response
    if new_status is not None:
        values["status"] = new_status
        if new_status == "RESOLVED":
            values["resolved_by"] = actor.id
            values["resolved_at"] = datetime.now(timezone.utc)

    result = db.session.execute(
        update(ApplicationFeedback)
        .where(ApplicationFeedback.id == feedback.id,
               ApplicationFeedback.status == previous_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        db.session.refresh(feedback)
        raise ConflictError(
            "Feedback", "status", feedback.status,
            message=f"Feedback {feedback.id} changed concurrently (now {feedback.status})",
        )
    db.session.commit()
    db.session.refresh(feedback)

    logger.info(
        "Feedback %s → %s", previous_status, feedback.status,
        extra={"application_id": application.id, "feedback_id": feedback.id,
               "actor_id": actor.id, "event_type": "feedback.update_status",
               "previous_status": previous_status, "new_status": feedback.status},
    )

    if from_advisor:
        recipients = issuer_team_ids(application.company_id)
    else:
        recipients = [application.assigned_ib_advisor] if application.assigned_ib_advisor else []
    _, warnings = NotificationService.dispatch(
        event_type="FEEDBACK_UPDATED",
        application_id=application.id,
        recipients=recipients,
        title=f"Feedback {feedback.status.replace('_', ' ').lower()}",
        message=response or f"Feedback status changed to {feedback.status}.",
        priority=feedback.priority,
    )
    warnings = record_transition(
        application.id, "feedback.update_status", actor.id,
        {"feedback_id": feedback.id,
         "status": {"old": previous_status, "new": feedback.status},
         "response": response},
        warnings,
    )
    return {
        "feedback": feedback,
        "previous_status": previous_status,
        "new_status": feedback.status,
        "warnings": warnings,
    }


def add_feedback_comment(feedback_id, actor, content):
    """
    Append a comment to a feedback thread and notify the other side and
    the assigned CMA officer.

    Returns:
        {"comment", "warnings"}
    """
    feedback = _load_feedback(feedback_id)
    application = _load_application(feedback.application_id, actor, "comment")
    if not content or not str(content).strip():
        raise ValidationError("content is required", details={"content": "empty"})

    comment = FeedbackComment(feedback_id=feedback.id, author_id=actor.id, content=str(content).strip())
    db.session.add(comment)
    db.session.commit()

    if actor.is_issuer:
        recipients = [application.assigned_ib_advisor] if application.assigned_ib_advisor else []
    else:
        recipients = issuer_team_ids(application.company_id, exclude=actor.id)
        if application.assigned_ib_advisor and application.assigned_ib_advisor != actor.id:
            recipients.append(application.assigned_ib_advisor)
    if application.assigned_cma_officer and application.assigned_cma_officer != actor.id:
        recipients.append(application.assigned_cma_officer)
    _, warnings = NotificationService.dispatch(
        event_type="COMMENT_ADDED",
        application_id=application.id,
        recipients=recipients,
        title="New comment on feedback",
        message=comment.content[:200],
        priority="LOW",
    )
    warnings = record_transition(
        application.id, "feedback.comment", actor.id,
        {"feedback_id": feedback.id, "comment_id": comment.id},
        warnings,
    )
    return {"comment": comment, "warnings": warnings}
