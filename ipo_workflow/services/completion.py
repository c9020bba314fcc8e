"""
IPO Workflow — Completion Aggregator

An application's completion percentage is the round-half-up average of its
sections' stored percentages, and 0 when it has no sections. It is derived
only here; nothing else writes ``IpoApplication.completion_percentage``.

Recomputation reads the committed section snapshot at call time and writes
the result with a single UPDATE, so overlapping calls converge on the value
of whichever ran last.
"""

import logging

from sqlalchemy import update

from ipo_workflow.core.exceptions import NotFoundError
from ipo_workflow.models import db
from ipo_workflow.models.application import ApplicationSection, IpoApplication
from ipo_workflow.services.access_control import check_capability

logger = logging.getLogger(__name__)


def calculate_completion(percentages) -> int:
    """
    Round-half-up integer average of *percentages*.

    Integer arithmetic only, so 82.5 → 83 and 83.33 → 83 on every platform.
    """
    values = [int(p or 0) for p in percentages]
    if not values:
        return 0
    total, count = sum(values), len(values)
    return (2 * total + count) // (2 * count)


def apply_completion(application_id: str) -> int:
    """Recompute and write the percentage without committing. Returns it."""
    percentages = [
        row[0]
        for row in db.session.query(ApplicationSection.completion_percentage)
        .filter(ApplicationSection.application_id == application_id)
        .all()
    ]
    value = calculate_completion(percentages)
    db.session.execute(
        update(IpoApplication)
        .where(IpoApplication.id == application_id)
        .values(completion_percentage=value)
    )
    return value


def recompute_completion(application_id: str, actor) -> dict:
    """
    Recompute an application's completion from its sections and persist it.

    Idempotent: repeated calls over the same sections write the same value.

    Args:
        application_id: Application to recompute.
        actor: Acting principal; must be able to view the application.

    Returns:
        dict with ``application_id``, ``completion_percentage``,
        ``previous_percentage`` and ``section_count``.

    Raises:
        NotFoundError: no such application.
        ForbiddenError: *actor* may not view the application.
    """
    application = db.session.get(IpoApplication, application_id)
    if not application:
        raise NotFoundError(resource="Application", resource_id=application_id)
    check_capability(actor, application, "view")

    previous = application.completion_percentage
    value = apply_completion(application_id)
    db.session.commit()

    logger.info(
        "Completion recomputed %s → %s", previous, value,
        extra={"application_id": application_id, "actor_id": actor.id,
               "event_type": "completion.recompute"},
    )
    return {
        "application_id": application_id,
        "completion_percentage": value,
        "previous_percentage": previous,
        "section_count": len(application.sections),
    }
