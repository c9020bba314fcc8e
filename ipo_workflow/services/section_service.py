"""
IPO Workflow — Section Store

Reads and writes of application sections. Every write recomputes the
owning application's completion in the same transaction, so the stored
aggregate always reflects the last committed section snapshot.

Sections can only change while the application is DRAFT, IB_REVIEW or
QUERY_ISSUED.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update

from ipo_workflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from ipo_workflow.models import db
from ipo_workflow.models.application import (
    EDITABLE_STATUSES,
    SECTION_STATUSES,
    ApplicationSection,
    IpoApplication,
)
from ipo_workflow.services.access_control import check_capability
from ipo_workflow.services.audit_trail import record
from ipo_workflow.services.completion import apply_completion

logger = logging.getLogger(__name__)


def _load_application(application_id, actor, capability):
    application = db.session.get(IpoApplication, application_id)
    if not application:
        raise NotFoundError(resource="Application", resource_id=application_id)
    check_capability(actor, application, capability)
    return application


def _load_section(application, section_id):
    section = db.session.get(ApplicationSection, section_id)
    if not section or section.application_id != application.id:
        raise NotFoundError(resource="Section", resource_id=section_id)
    return section


def _require_editable(application):
    if application.status not in EDITABLE_STATUSES:
        raise ConflictError(
            "Application", "status", application.status,
            message=f"Sections cannot be edited while the application is {application.status}",
        )


def _claim_editable(application):
    """
    Touch the application row iff its stored status is still editable.
    Runs in the same transaction as the section write that follows it.
    """
    result = db.session.execute(
        update(IpoApplication)
        .where(IpoApplication.id == application.id, IpoApplication.status.in_(EDITABLE_STATUSES))
        .values(updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.session.scalar(select(IpoApplication.status).where(IpoApplication.id == application.id))
        db.session.rollback()
        raise ConflictError(
            "Application", "status", current,
            message=f"Sections cannot be edited while the application is {current}",
        )


def list_sections(application_id, actor):
    """Sections of an application ordered by section number."""
    application = _load_application(application_id, actor, "view")
    return list(application.sections)


def get_section(application_id, section_id, actor):
    application = _load_application(application_id, actor, "view")
    return _load_section(application, section_id)


def update_section(application_id, section_id, actor, *, data=None, status=None,
                   completion_percentage=None):
    """
    Apply a partial update to one section and recompute the application's
    completion.

    ``completion_percentage`` is clamped to 0..100. ``completed_by`` and
    ``completed_at`` are recorded the first time the section reaches
    COMPLETED.

    Returns:
        {"section", "completion_percentage", "warnings"}

    Raises:
        NotFoundError, ForbiddenError,
        ConflictError: application not in an editable status, including one
            it left after being loaded,
        ValidationError: unknown section status or non-numeric percentage.
    """
    application = _load_application(application_id, actor, "edit_sections")
    section = _load_section(application, section_id)
    _require_editable(application)

    if status is not None and status not in SECTION_STATUSES:
        raise ValidationError(
            f"Invalid section status: {status}",
            details={"status": status, "allowed": sorted(SECTION_STATUSES)},
        )
    if completion_percentage is not None:
        try:
            completion_percentage = max(0, min(100, int(completion_percentage)))
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                "completion_percentage must be a number",
                details={"completion_percentage": completion_percentage},
            ) from exc

    _claim_editable(application)
    before = {"status": section.status, "completion_percentage": section.completion_percentage}
    if data is not None:
        section.data = data
    if completion_percentage is not None:
        section.completion_percentage = completion_percentage
    if status is not None:
        if status == "COMPLETED" and section.completed_at is None:
            section.completed_by = actor.id
            section.completed_at = datetime.now(timezone.utc)
        section.status = status

    db.session.flush()
    aggregate = apply_completion(application.id)
    db.session.commit()

    logger.info(
        "Section %s updated", section.section_number,
        extra={"application_id": application.id, "actor_id": actor.id, "event_type": "section.update"},
    )
    warnings = record(
        application.id, "section.update", actor.id,
        {"section_number": section.section_number,
         "status": {"old": before["status"], "new": section.status},
         "completion_percentage": {"old": before["completion_percentage"],
                                   "new": section.completion_percentage},
         "data_changed": data is not None},
    )
    return {"section": section, "completion_percentage": aggregate, "warnings": warnings}


def complete_section(application_id, section_id, actor, data=None):
    """
    Mark a section COMPLETED at 100%, optionally replacing its data.

    Refuses a section whose resulting data payload is empty.
    """
    application = _load_application(application_id, actor, "edit_sections")
    section = _load_section(application, section_id)
    _require_editable(application)
    payload = section.data if data is None else data
    if not payload:
        raise ValidationError(
            "Section data is required to complete a section",
            details={"section_id": section_id},
        )
    result = update_section(
        application_id, section_id, actor,
        data=data, status="COMPLETED", completion_percentage=100,
    )
    result["warnings"].extend(
        record(application_id, "section.complete", actor.id,
               {"section_number": result["section"].section_number})
    )
    return result
