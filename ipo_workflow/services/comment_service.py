"""
IPO Workflow — Application Discussion

Free-form comments on an application, optionally pinned to one section and
optionally threaded under an earlier comment.

CMA roles may mark a comment internal. Internal comments are hidden from
the issuer team and the advisor and never notify anyone; every other
comment notifies the issuer team, the assigned advisor and the assigned
CMA officer, minus its author.

Usage:
    from ipo_workflow.services.comment_service import add_application_comment

    result = add_application_comment(app_id, regulator, "Check note 14", is_internal=True)
    result["comment"].id
"""

import logging

from ipo_workflow.core.exceptions import NotFoundError, ValidationError
from ipo_workflow.models import db
from ipo_workflow.models.application import ApplicationSection, IpoApplication
from ipo_workflow.models.comment import ApplicationComment
from ipo_workflow.services.access_control import check_capability, has_capability
from ipo_workflow.services.audit_trail import record_transition
from ipo_workflow.services.notification import NotificationService, issuer_team_ids

logger = logging.getLogger(__name__)


def _load_application(application_id, actor, capability):
    application = db.session.get(IpoApplication, application_id)
    if not application:
        raise NotFoundError(resource="Application", resource_id=application_id)
    check_capability(actor, application, capability)
    return application


def _recipients(application, author_id):
    recipients = issuer_team_ids(application.company_id, exclude=author_id)
    for party in (application.assigned_ib_advisor, application.assigned_cma_officer):
        if party and party != author_id:
            recipients.append(party)
    return recipients


def add_application_comment(application_id, actor, content, *, section_id=None,
                            parent_comment_id=None, is_internal=False):
    """
    Post a comment on an application.

    Returns:
        {"comment", "warnings"}

    Raises:
        NotFoundError: no such application.
        ForbiddenError: *actor* may not comment, or asked for an internal
            comment without a CMA role on the application.
        ValidationError: empty content, or a section / parent comment that
            does not belong to this application.
    """
    application = _load_application(application_id, actor, "comment")
    if is_internal:
        check_capability(actor, application, "internal_comment")
    if not content or not str(content).strip():
        raise ValidationError("content is required", details={"content": "empty"})

    if section_id:
        section = db.session.get(ApplicationSection, section_id)
        if not section or section.application_id != application.id:
            raise ValidationError("section_id does not belong to this application",
                                  details={"section_id": section_id})

    if parent_comment_id is not None:
        parent = db.session.get(ApplicationComment, parent_comment_id)
        if (
            parent is None
            or parent.application_id != application.id
            or (parent.is_internal and not has_capability(actor, application, "internal_comment"))
        ):
            raise ValidationError("parent_comment_id does not reference a comment on this application",
                                  details={"parent_comment_id": parent_comment_id})

    comment = ApplicationComment(
        application_id=application.id,
        section_id=section_id or None,
        parent_comment_id=parent_comment_id,
        author_id=actor.id,
        content=str(content).strip(),
        is_internal=bool(is_internal),
    )
    db.session.add(comment)
    db.session.commit()

    logger.info(
        "Comment %s added%s", comment.id, " (internal)" if comment.is_internal else "",
        extra={"application_id": application.id, "actor_id": actor.id, "event_type": "application.comment"},
    )

    warnings = []
    if not comment.is_internal:
        _, warnings = NotificationService.dispatch(
            event_type="COMMENT_ADDED",
            application_id=application.id,
            recipients=_recipients(application, actor.id),
            title="New comment on application",
            message=comment.content[:200],
            priority="LOW",
        )
    warnings = record_transition(
        application.id, "application.comment", actor.id,
        {"comment_id": comment.id, "section_id": comment.section_id,
         "parent_comment_id": comment.parent_comment_id, "is_internal": comment.is_internal},
        warnings,
    )
    return {"comment": comment, "warnings": warnings}


def list_application_comments(application_id, actor, *, section_id=None):
    """
    Comments on an application, oldest first. Internal comments are left
    out unless *actor* holds a CMA role on the application.
    """
    application = _load_application(application_id, actor, "view")
    q = ApplicationComment.query.filter_by(application_id=application.id)
    if section_id:
        q = q.filter_by(section_id=section_id)
    if not has_capability(actor, application, "internal_comment"):
        q = q.filter(ApplicationComment.is_internal.is_(False))
    return q.order_by(ApplicationComment.created_at.asc(), ApplicationComment.id.asc()).all()
