"""
IPO Workflow — Application Lifecycle Service

Manages application status transitions with:
  - Transition validation (APPLICATION_TRANSITIONS)
  - Capability checks (services.access_control)
  - An atomic compare-and-set claim on the status row, so two concurrent
    callers can never both move the same application out of a status
  - A CmaReview row for every regulator action, committed with the claim
  - Side effects after commit: listing creation on approval, notification
    fan-out, audit trail. None of them can undo the transition; their
    failures come back as ``warnings`` on the result.

Seven transitions:
  assign_advisor, submit, submit_to_cma, start_review, issue_query,
  approve, reject

Every operation checks, in order: the application exists (NotFoundError),
the actor holds the capability (ForbiddenError), the current status allows
the action (ConflictError), then the action's own inputs (ValidationError).

Usage:
    from ipo_workflow.services.application_lifecycle import approve_application

    result = approve_application(app_id, actor, comments="All clear")
    result["new_status"]   # "CMA_APPROVED"
    result["warnings"]     # [] unless a side effect failed
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ipo_workflow.core.exceptions import (
    ConflictError,
    DependencyFailure,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from ipo_workflow.integrations.listing_gateway import listing_gateway as default_listing_gateway
from ipo_workflow.models import db
from ipo_workflow.models.application import (
    APPLICATION_TRANSITIONS,
    DEFAULT_SECTIONS,
    TERMINAL_STATUSES,
    ApplicationSection,
    IpoApplication,
    next_application_number,
)
from ipo_workflow.models.directory import Company, Profile
from ipo_workflow.models.review import RISK_RATINGS, CmaReview
from ipo_workflow.services.access_control import check_capability, has_capability
from ipo_workflow.services.audit_trail import record, record_transition
from ipo_workflow.services.notification import NotificationService, issuer_team_ids, regulator_ids

logger = logging.getLogger(__name__)


# Action → required capability
ACTION_CAPABILITY = {
    "assign_advisor": "assign_advisor",
    "submit": "submit",
    "submit_to_cma": "submit_to_cma",
    "start_review": "start_review",
    "issue_query": "issue_query",
    "approve": "review",
    "reject": "review",
}


# ── Helpers ──────────────────────────────────────────────────────────────────

def _now():
    return datetime.now(timezone.utc)


def _load(application_id: str, actor, capability: str) -> IpoApplication:
    application = db.session.get(IpoApplication, application_id)
    if not application:
        raise NotFoundError(resource="Application", resource_id=application_id)
    check_capability(actor, application, capability)
    return application


def validate_transition(application: IpoApplication, action: str) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = APPLICATION_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": application.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if application.status not in rule["from"]:
        return {"valid": False, "from": application.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{application.status}'"}

    return {"valid": True, "from": application.status, "to": rule["to"], "reason": None}


def _require_transition(application: IpoApplication, action: str) -> dict:
    validation = validate_transition(application, action)
    if not validation["valid"]:
        raise ConflictError("Application", "status", application.status, message=validation["reason"])
    return validation


def _claim_transition(application: IpoApplication, action: str, values: dict | None = None,
                      *criteria, on_miss=None) -> str:
    """
    Move *application* to the action's target status iff its stored status
    is still one of the allowed sources. Does not commit.

    The guard is evaluated by the database in the UPDATE itself, so of two
    racing callers exactly one sees ``rowcount == 1``; the other gets
    ConflictError and nothing is written.

    Args:
        criteria: Extra store-side conditions the claim must also satisfy.
        on_miss: Called with the stored status when the UPDATE matched no
            row; may return a more specific exception to raise instead of
            ConflictError.

    Returns:
        The status the application had before the claim.
    """
    rule = APPLICATION_TRANSITIONS[action]
    previous_status = application.status
    stmt = (
        update(IpoApplication)
        .where(IpoApplication.id == application.id, IpoApplication.status.in_(rule["from"]), *criteria)
        .values(status=rule["to"], **(values or {}))
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        current = db.session.scalar(select(IpoApplication.status).where(IpoApplication.id == application.id))
        error = on_miss(current) if on_miss else None
        db.session.rollback()
        if error is not None:
            raise error
        raise ConflictError(
            "Application", "status", current,
            message=f"Application {application.id} changed concurrently; "
                    f"cannot '{action}' from status '{current}'",
        )
    return previous_status


def _commit_claim(application: IpoApplication, action: str, actor, previous_status: str) -> None:
    db.session.commit()
    db.session.refresh(application)
    logger.info(
        "Application %s: %s → %s", action, previous_status, application.status,
        extra={
            "application_id": application.id,
            "actor_id": actor.id,
            "event_type": f"application.{action}",
            "previous_status": previous_status,
            "new_status": application.status,
        },
    )


def _stakeholders(application: IpoApplication) -> list[str]:
    """Issuer team plus the assigned advisor."""
    recipients = issuer_team_ids(application.company_id)
    if application.assigned_ib_advisor:
        recipients.append(application.assigned_ib_advisor)
    return recipients


def _label(application: IpoApplication) -> str:
    return application.application_number or application.id


def _review_assessment(compliance_score, risk_rating):
    """Validate the reviewer's optional assessment. Returns (score, rating)."""
    if compliance_score is not None:
        try:
            compliance_score = int(compliance_score)
        except (TypeError, ValueError) as exc:
            raise ValidationError("compliance_score must be a number",
                                  details={"compliance_score": compliance_score}) from exc
        if not 0 <= compliance_score <= 100:
            raise ValidationError("compliance_score must be between 0 and 100",
                                  details={"compliance_score": compliance_score})
    if risk_rating is not None:
        risk_rating = str(risk_rating).upper()
        if risk_rating not in RISK_RATINGS:
            raise ValidationError(f"Invalid risk rating: {risk_rating}",
                                  details={"risk_rating": risk_rating, "allowed": sorted(RISK_RATINGS)})
    return compliance_score, risk_rating


def _review_round(application: IpoApplication) -> str:
    """QUERY_RESPONSE once a query has been issued on the application, else INITIAL_REVIEW."""
    queried = db.session.scalar(
        select(CmaReview.id)
        .where(CmaReview.application_id == application.id, CmaReview.decision == "QUERY")
        .limit(1)
    )
    return "QUERY_RESPONSE" if queried is not None else "INITIAL_REVIEW"


def _add_review(application, action, actor, review_type, assessment, *, decision=None, reason=None):
    """Stage the review row for a regulator action; committed with the claim."""
    compliance_score, risk_rating = assessment
    review = CmaReview(
        application_id=application.id,
        reviewer_id=actor.id,
        review_type=review_type,
        status=APPLICATION_TRANSITIONS[action]["to"],
        decision=decision,
        decision_reason=reason,
        compliance_score=compliance_score,
        risk_rating=risk_rating,
        completed_at=_now() if decision else None,
    )
    db.session.add(review)
    return review


def _result(application, action, previous_status, warnings, **extra) -> dict:
    result = {
        "application_id": application.id,
        "application": application,
        "action": action,
        "previous_status": previous_status,
        "new_status": application.status,
        "warnings": warnings,
    }
    result.update(extra)
    return result


# ── Creation & reads ─────────────────────────────────────────────────────────

def create_application(company_id: str, actor, *, target_amount=None,
                       shares_offered=None, share_price=None) -> IpoApplication:
    """
    Open a DRAFT application for *company_id* with the ten fixed sections.

    Raises:
        NotFoundError: company does not exist.
        ForbiddenError: *actor* is neither a member of the company nor CMA_ADMIN.
        ConflictError: the company already has an open (non-terminal) application.
    """
    company = db.session.get(Company, company_id)
    if not company:
        raise NotFoundError(resource="Company", resource_id=company_id)
    if actor is None:
        raise ForbiddenError(None, "create_application")
    if not (
        actor.role == "CMA_ADMIN" or (actor.is_issuer and actor.company_id == company_id)
    ):
        raise ForbiddenError(actor.id, "create_application")

    open_app = (
        IpoApplication.query
        .filter(IpoApplication.company_id == company_id,
                IpoApplication.status.notin_(TERMINAL_STATUSES))
        .first()
    )
    if open_app:
        raise ConflictError(
            "Company", "open_application", open_app.id,
            message=f"Company {company_id} already has an open application",
        )

    application = IpoApplication(
        company_id=company_id,
        status="DRAFT",
        completion_percentage=0,
        target_amount=target_amount,
        shares_offered=shares_offered,
        share_price=share_price,
    )
    for number, title in DEFAULT_SECTIONS:
        application.sections.append(
            ApplicationSection(
                section_number=number,
                section_title=title,
                status="NOT_STARTED",
                completion_percentage=0,
            )
        )
    db.session.add(application)
    db.session.commit()

    logger.info(
        "Application created for company %s", company_id,
        extra={"application_id": application.id, "event_type": "application.create"},
    )
    record(application.id, "application.create", actor.id,
           {"company_id": company_id, "sections": len(DEFAULT_SECTIONS)})
    return application


def get_application(application_id: str, actor) -> IpoApplication:
    """
    Raises:
        NotFoundError: no such application.
        ForbiddenError: *actor* may not view it.
    """
    return _load(application_id, actor, "view")


def available_actions(application: IpoApplication, actor) -> list[str]:
    """Transition actions valid in the current status that *actor* may perform."""
    actions = []
    for action, rule in APPLICATION_TRANSITIONS.items():
        if application.status not in rule["from"]:
            continue
        if action == "assign_advisor" and application.assigned_ib_advisor:
            continue
        if has_capability(actor, application, ACTION_CAPABILITY[action]):
            actions.append(action)
    return actions


# ── Issuer-side transitions ──────────────────────────────────────────────────

def assign_advisor(application_id: str, actor, advisor_id: str) -> dict:
    """
    DRAFT → IB_REVIEW with *advisor_id* as the application's IB advisor.

    Raises:
        NotFoundError, ForbiddenError,
        ConflictError: wrong status or an advisor is already assigned,
        ValidationError: *advisor_id* is not an IB_ADVISOR profile.
    """
    application = _load(application_id, actor, "assign_advisor")
    _require_transition(application, "assign_advisor")
    if application.assigned_ib_advisor:
        raise ConflictError("Application", "assigned_ib_advisor", application.assigned_ib_advisor,
                            message="An IB advisor is already assigned")

    advisor = db.session.get(Profile, advisor_id) if advisor_id else None
    if advisor is None or advisor.role != "IB_ADVISOR":
        raise ValidationError("advisor_id must reference an IB_ADVISOR profile",
                              details={"advisor_id": advisor_id})

    previous_status = _claim_transition(
        application, "assign_advisor",
        {"assigned_ib_advisor": advisor.id},
        IpoApplication.assigned_ib_advisor.is_(None),
    )
    _commit_claim(application, "assign_advisor", actor, previous_status)

    _, warnings = NotificationService.dispatch(
        event_type="IB_ASSIGNED",
        application_id=application.id,
        recipients=[advisor.id],
        title="New IPO application assigned",
        message=f"You have been assigned as IB advisor for application {_label(application)}.",
        priority="HIGH",
    )
    warnings = record_transition(
        application.id, "application.assign_advisor", actor.id,
        {"status": {"old": previous_status, "new": application.status},
         "assigned_ib_advisor": {"old": None, "new": advisor.id}},
        warnings,
    )
    return _result(application, "assign_advisor", previous_status, warnings)


def submit_application(application_id: str, actor) -> dict:
    """
    DRAFT/IB_REVIEW → SUBMITTED once every section is COMPLETED.

    Assigns the application number (once) and the submission date, then
    notifies every regulator and the assigned advisor.

    Raises:
        NotFoundError, ForbiddenError, ConflictError,
        ValidationError: ``details["incomplete_sections"]`` lists the section
        numbers that are not COMPLETED.
    """
    application = _load(application_id, actor, "submit")
    _require_transition(application, "submit")

    sections = application.sections
    incomplete = [s.section_number for s in sections if s.status != "COMPLETED"]
    if not sections or incomplete:
        raise ValidationError(
            "All sections must be completed before submission",
            details={"incomplete_sections": incomplete},
        )

    def _sections_reopened(current_status):
        # The claim also failed when a section was reopened after the read above
        if current_status not in APPLICATION_TRANSITIONS["submit"]["from"]:
            return None
        reopened = db.session.scalars(
            select(ApplicationSection.section_number)
            .where(ApplicationSection.application_id == application.id,
                   ApplicationSection.status != "COMPLETED")
            .order_by(ApplicationSection.section_number)
        ).all()
        return ValidationError(
            "All sections must be completed before submission",
            details={"incomplete_sections": list(reopened)},
        )

    number = application.application_number or next_application_number(
        current_app.config.get("APPLICATION_NUMBER_PREFIX", "IPO"),
    )
    try:
        previous_status = _claim_transition(
            application, "submit",
            {"application_number": number, "submission_date": _now()},
            select(ApplicationSection.id)
            .where(ApplicationSection.application_id == application.id)
            .exists(),
            ~select(ApplicationSection.id)
            .where(ApplicationSection.application_id == application.id,
                   ApplicationSection.status != "COMPLETED")
            .exists(),
            on_miss=_sections_reopened,
        )
        _commit_claim(application, "submit", actor, previous_status)
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Application", "application_number", number,
                            message=f"Application number {number} was taken concurrently") from exc

    recipients = regulator_ids()
    if application.assigned_ib_advisor:
        recipients.append(application.assigned_ib_advisor)
    _, warnings = NotificationService.dispatch(
        event_type="APPLICATION_SUBMITTED",
        application_id=application.id,
        recipients=recipients,
        title="New IPO application submitted",
        message=f"Application {number} has been submitted for review.",
        priority="HIGH",
    )
    warnings = record_transition(
        application.id, "application.submit", actor.id,
        {"status": {"old": previous_status, "new": application.status},
         "application_number": {"old": None, "new": number}},
        warnings,
    )
    return _result(application, "submit", previous_status, warnings)


def submit_to_cma(application_id: str, actor, regulator_id: str, comments: str | None = None) -> dict:
    """
    IB_REVIEW → CMA_REVIEW: the assigned advisor forwards the application to
    a named regulator, who becomes its officer.

    Raises:
        NotFoundError, ForbiddenError, ConflictError,
        ValidationError: *regulator_id* is not a CMA_REGULATOR profile.
    """
    application = _load(application_id, actor, "submit_to_cma")
    _require_transition(application, "submit_to_cma")

    regulator = db.session.get(Profile, regulator_id) if regulator_id else None
    if regulator is None or regulator.role != "CMA_REGULATOR":
        raise ValidationError("regulator_id must reference a CMA_REGULATOR profile",
                              details={"regulator_id": regulator_id})

    previous_status = _claim_transition(
        application, "submit_to_cma",
        {"assigned_cma_officer": regulator.id, "submission_date": _now()},
    )
    _commit_claim(application, "submit_to_cma", actor, previous_status)

    message = f"Application {_label(application)} has been forwarded for CMA review."
    if comments:
        message += f" Advisor comments: {comments}"
    _, warnings = NotificationService.dispatch(
        event_type="SUBMITTED_TO_CMA",
        application_id=application.id,
        recipients=[regulator.id],
        title="IPO application submitted to CMA",
        message=message,
        priority="HIGH",
    )
    warnings = record_transition(
        application.id, "application.submit_to_cma", actor.id,
        {"status": {"old": previous_status, "new": application.status},
         "assigned_cma_officer": {"old": None, "new": regulator.id},
         "comments": comments},
        warnings,
    )
    return _result(application, "submit_to_cma", previous_status, warnings)


# ── Regulator-side transitions ───────────────────────────────────────────────
#
# Each one stages a CmaReview row between the claim and the commit, so the
# status change and its review record land together.

def start_review(application_id: str, actor, *, compliance_score=None, risk_rating=None) -> dict:
    """
    SUBMITTED/CMA_REVIEW/QUERY_ISSUED → UNDER_REVIEW. The acting regulator
    becomes the officer when none is assigned yet.

    Returns:
        The transition result plus ``review`` (CmaReview).
    """
    application = _load(application_id, actor, "start_review")
    _require_transition(application, "start_review")
    assessment = _review_assessment(compliance_score, risk_rating)

    values = {}
    if not application.assigned_cma_officer:
        values["assigned_cma_officer"] = actor.id
    previous_status = _claim_transition(application, "start_review", values)
    review = _add_review(application, "start_review", actor, _review_round(application), assessment)
    _commit_claim(application, "start_review", actor, previous_status)

    _, warnings = NotificationService.dispatch(
        event_type="REVIEW_STARTED",
        application_id=application.id,
        recipients=_stakeholders(application),
        title="CMA review started",
        message=f"The CMA has started reviewing application {_label(application)}.",
    )
    warnings = record_transition(
        application.id, "application.start_review", actor.id,
        {"status": {"old": previous_status, "new": application.status},
         "assigned_cma_officer": application.assigned_cma_officer,
         "review_id": review.id},
        warnings,
    )
    return _result(application, "start_review", previous_status, warnings, review=review)


def issue_query(application_id: str, actor, issue: str, *, category: str | None = None,
                priority: str = "MEDIUM", compliance_score=None, risk_rating=None) -> dict:
    """
    Any non-terminal status → QUERY_ISSUED. The query text is kept as the
    application's CMA comments and sent to the issuer team and the advisor.
    """
    application = _load(application_id, actor, "issue_query")
    _require_transition(application, "issue_query")
    if not issue or not issue.strip():
        raise ValidationError("issue is required", details={"issue": "empty"})
    assessment = _review_assessment(compliance_score, risk_rating)

    previous_status = _claim_transition(application, "issue_query", {"cma_comments": issue.strip()})
    review = _add_review(application, "issue_query", actor, _review_round(application), assessment,
                         decision="QUERY", reason=issue.strip())
    _commit_claim(application, "issue_query", actor, previous_status)

    _, warnings = NotificationService.dispatch(
        event_type="QUERY_ISSUED",
        application_id=application.id,
        recipients=_stakeholders(application),
        title="CMA query issued",
        message=issue.strip(),
        priority=priority,
    )
    warnings = record_transition(
        application.id, "application.issue_query", actor.id,
        {"status": {"old": previous_status, "new": application.status},
         "issue": issue.strip(), "category": category, "priority": priority,
         "review_id": review.id},
        warnings,
    )
    return _result(application, "issue_query", previous_status, warnings, review=review)


def approve_application(application_id: str, actor, comments: str | None = None,
                        *, listing_gateway=None, compliance_score=None, risk_rating=None) -> dict:
    """
    SUBMITTED/UNDER_REVIEW → CMA_APPROVED, then exactly one listing
    creation attempt.

    The approval is committed before the listing is attempted; a listing
    failure is returned in ``warnings`` and audited, never raised.

    Args:
        listing_gateway: Object with ``create_listing(application, approved_by)``.
            Defaults to the module-level ListingGateway.
        compliance_score: Optional 0..100 assessment kept on the review row.
        risk_rating: Optional LOW/MEDIUM/HIGH assessment kept on the review row.

    Returns:
        The transition result plus ``listing`` (Listing or None) and
        ``review`` (CmaReview).

    Raises:
        NotFoundError, ForbiddenError,
        ConflictError: already terminal, or another approver won the race,
        ValidationError: malformed assessment.
    """
    application = _load(application_id, actor, "review")
    _require_transition(application, "approve")
    assessment = _review_assessment(compliance_score, risk_rating)

    previous_status = _claim_transition(
        application, "approve",
        {"approved_at": _now(), "cma_comments": comments},
    )
    review = _add_review(application, "approve", actor, "FINAL_REVIEW", assessment,
                         decision="APPROVE", reason=comments)
    _commit_claim(application, "approve", actor, previous_status)

    warnings = []
    listing = None
    if current_app.config.get("LISTING_CREATION_ENABLED", True):
        gateway = listing_gateway or default_listing_gateway
        try:
            listing = gateway.create_listing(application, approved_by=actor.id)
        except DependencyFailure as failure:
            warnings.append(failure.to_warning())
    else:
        logger.info("Listing creation disabled; skipped",
                    extra={"application_id": application.id, "event_type": "listing.skip"})

    _, notify_warnings = NotificationService.dispatch(
        event_type="APPLICATION_APPROVED",
        application_id=application.id,
        recipients=_stakeholders(application),
        title="IPO application approved",
        message=f"Application {_label(application)} has been approved by the CMA.",
        priority="HIGH",
    )
    warnings.extend(notify_warnings)
    warnings = record_transition(
        application.id, "application.approve", actor.id,
        {"status": {"old": previous_status, "new": application.status},
         "comments": comments,
         "listing_id": listing.id if listing is not None else None,
         "review_id": review.id},
        warnings,
    )
    return _result(application, "approve", previous_status, warnings, listing=listing, review=review)


def reject_application(application_id: str, actor, reason: str, comments: str | None = None,
                       *, compliance_score=None, risk_rating=None) -> dict:
    """
    SUBMITTED/UNDER_REVIEW → CMA_REJECTED with a mandatory reason.

    Raises:
        NotFoundError, ForbiddenError,
        ConflictError: already terminal,
        ValidationError: *reason* is empty, or the assessment is malformed.
    """
    application = _load(application_id, actor, "review")
    _require_transition(application, "reject")
    if not reason or not reason.strip():
        raise ValidationError("Rejection reason is required", details={"reason": "empty"})
    assessment = _review_assessment(compliance_score, risk_rating)

    previous_status = _claim_transition(
        application, "reject",
        {"rejected_at": _now(), "rejection_reason": reason.strip(), "cma_comments": comments},
    )
    review = _add_review(application, "reject", actor, "FINAL_REVIEW", assessment,
                         decision="REJECT", reason=reason.strip())
    _commit_claim(application, "reject", actor, previous_status)

    _, warnings = NotificationService.dispatch(
        event_type="APPLICATION_REJECTED",
        application_id=application.id,
        recipients=_stakeholders(application),
        title="IPO application rejected",
        message=f"Application {_label(application)} was rejected: {reason.strip()}",
        priority="HIGH",
    )
    warnings = record_transition(
        application.id, "application.reject", actor.id,
        {"status": {"old": previous_status, "new": application.status},
         "rejection_reason": reason.strip(), "comments": comments,
         "review_id": review.id},
        warnings,
    )
    return _result(application, "reject", previous_status, warnings, review=review)


def list_reviews(application_id: str, actor) -> list[CmaReview]:
    """
    Review records for an application, oldest first.

    Raises:
        NotFoundError, ForbiddenError: *actor* is not a CMA reviewer of it.
    """
    _load(application_id, actor, "view_reviews")
    return (
        CmaReview.query
        .filter_by(application_id=application_id)
        .order_by(CmaReview.created_at.asc(), CmaReview.id.asc())
        .all()
    )
