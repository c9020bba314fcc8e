"""
Tests: advisor feedback loop (creation, resolution, comments).
"""

from datetime import datetime, timedelta, timezone

import pytest

from ipo_workflow.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ipo_workflow.models import db as _db
from ipo_workflow.models.audit import AuditLog
from ipo_workflow.models.feedback import ApplicationFeedback
from ipo_workflow.models.notification import Notification
from ipo_workflow.services.application_lifecycle import (
    approve_application,
    create_application,
    issue_query,
    submit_to_cma,
)
from ipo_workflow.services.feedback_service import (
    add_feedback_comment,
    create_feedback,
    get_feedback,
    list_feedback,
    list_feedback_comments,
    update_feedback_status,
)


class _NoListing:
    def create_listing(self, application, approved_by):
        return None


def _raise(application, advisor, issue="Audited accounts for FY2023 missing", **kwargs):
    return create_feedback(application.id, advisor, "Financials", issue, **kwargs)["feedback"]


def _recipients(event_type):
    return {n.recipient_id for n in Notification.query.filter_by(type=event_type)}


class TestCreate:
    def test_advisor_raises_pending_item(self, advised_application, advisor, ceo, cfo):
        result = create_feedback(advised_application.id, advisor, "Legal", "Board resolution unsigned",
                                 priority="high")

        feedback = result["feedback"]
        assert feedback.status == "PENDING"
        assert feedback.priority == "HIGH"
        assert feedback.created_by == advisor.id
        assert result["warnings"] == []
        assert _recipients("QUERY_ISSUED") == {ceo.id, cfo.id}

    def test_default_priority_medium(self, advised_application, advisor):
        assert _raise(advised_application, advisor).priority == "MEDIUM"

    def test_against_own_section(self, advised_application, advisor):
        section = advised_application.sections[2]
        feedback = _raise(advised_application, advisor, section_id=section.id)
        assert feedback.section_id == section.id

    def test_foreign_section_rejected(self, advised_application, advisor, other_company, admin):
        foreign = create_application(other_company.id, admin).sections[0]
        with pytest.raises(ValidationError):
            _raise(advised_application, advisor, section_id=foreign.id)

    def test_unknown_priority(self, advised_application, advisor):
        with pytest.raises(ValidationError):
            _raise(advised_application, advisor, priority="URGENT")

    def test_empty_issue(self, advised_application, advisor):
        with pytest.raises(ValidationError):
            _raise(advised_application, advisor, issue="   ")

    def test_unassigned_advisor_forbidden(self, advised_application, other_advisor):
        with pytest.raises(ForbiddenError):
            _raise(advised_application, other_advisor)

    def test_issuer_cannot_raise_feedback(self, advised_application, ceo):
        with pytest.raises(ForbiddenError):
            _raise(advised_application, ceo)

    def test_terminal_application_forbidden(self, submitted_application, advisor, regulator):
        approve_application(submitted_application.id, regulator, listing_gateway=_NoListing())
        with pytest.raises(ForbiddenError):
            _raise(submitted_application, advisor)
        assert ApplicationFeedback.query.count() == 0

    def test_unknown_application(self, advisor):
        with pytest.raises(NotFoundError):
            create_feedback("missing", advisor, "Legal", "x")

    def test_audited(self, advised_application, advisor):
        feedback = _raise(advised_application, advisor)
        entry = AuditLog.query.filter_by(action="feedback.create").one()
        assert entry.details["feedback_id"] == feedback.id


class TestRead:
    def test_list_newest_first(self, advised_application, advisor, cfo):
        older = _raise(advised_application, advisor, issue="first")
        newer = _raise(advised_application, advisor, issue="second")
        older.created_at = datetime.now(timezone.utc) - timedelta(hours=1)
        _db.session.commit()

        items = list_feedback(advised_application.id, cfo)
        assert [f.id for f in items] == [newer.id, older.id]

    def test_same_timestamp_order_is_stable(self, advised_application, advisor, ceo):
        first = _raise(advised_application, advisor, issue="first")
        second = _raise(advised_application, advisor, issue="second")
        stamp = datetime.now(timezone.utc)
        first.created_at = stamp
        second.created_at = stamp
        _db.session.commit()

        expected = sorted([first.id, second.id], reverse=True)
        for _ in range(3):
            assert [f.id for f in list_feedback(advised_application.id, ceo)] == expected

    def test_list_filtered_by_status(self, advised_application, advisor, ceo):
        first = _raise(advised_application, advisor, issue="first")
        _raise(advised_application, advisor, issue="second")
        update_feedback_status(first.id, ceo, "IN_PROGRESS")

        items = list_feedback(advised_application.id, ceo, status="IN_PROGRESS")
        assert [f.id for f in items] == [first.id]

    def test_get_requires_view(self, advised_application, advisor, other_advisor):
        feedback = _raise(advised_application, advisor)
        with pytest.raises(ForbiddenError):
            get_feedback(feedback.id, other_advisor)

    def test_get_unknown(self, ceo):
        with pytest.raises(NotFoundError):
            get_feedback("missing", ceo)


class TestStatus:
    def test_forward_to_resolved(self, advised_application, advisor, ceo, cfo):
        feedback = _raise(advised_application, advisor)

        step1 = update_feedback_status(feedback.id, cfo, "IN_PROGRESS", response="Collecting statements")
        assert step1["previous_status"] == "PENDING"
        assert step1["new_status"] == "IN_PROGRESS"
        assert step1["feedback"].issuer_response == "Collecting statements"

        step2 = update_feedback_status(feedback.id, ceo, "RESOLVED")
        assert step2["new_status"] == "RESOLVED"
        assert step2["feedback"].resolved_by == ceo.id
        assert step2["feedback"].resolved_at is not None

    def test_advisor_notified_of_issuer_update(self, advised_application, advisor, ceo):
        feedback = _raise(advised_application, advisor)
        update_feedback_status(feedback.id, ceo, "IN_PROGRESS")
        assert _recipients("FEEDBACK_UPDATED") == {advisor.id}

    def test_cannot_skip_a_step(self, advised_application, advisor, ceo):
        feedback = _raise(advised_application, advisor)
        with pytest.raises(ConflictError):
            update_feedback_status(feedback.id, ceo, "RESOLVED")
        assert _db.session.get(ApplicationFeedback, feedback.id).status == "PENDING"

    def test_resolved_is_final(self, advised_application, advisor, ceo):
        feedback = _raise(advised_application, advisor)
        update_feedback_status(feedback.id, ceo, "IN_PROGRESS")
        update_feedback_status(feedback.id, ceo, "RESOLVED")

        with pytest.raises(ConflictError) as exc:
            update_feedback_status(feedback.id, ceo, "PENDING")
        assert exc.value.value == "RESOLVED"

    def test_unknown_status(self, advised_application, advisor, ceo):
        feedback = _raise(advised_application, advisor)
        with pytest.raises(ValidationError):
            update_feedback_status(feedback.id, ceo, "CLOSED")

    def test_nothing_to_update(self, advised_application, advisor, ceo):
        feedback = _raise(advised_application, advisor)
        with pytest.raises(ValidationError):
            update_feedback_status(feedback.id, ceo)

    def test_advisor_may_only_respond(self, advised_application, advisor, ceo, cfo):
        feedback = _raise(advised_application, advisor)

        with pytest.raises(ForbiddenError):
            update_feedback_status(feedback.id, advisor, "IN_PROGRESS")

        result = update_feedback_status(feedback.id, advisor, response="See the updated checklist")
        assert result["feedback"].ib_response == "See the updated checklist"
        assert result["feedback"].issuer_response is None
        assert result["new_status"] == "PENDING"
        assert _recipients("FEEDBACK_UPDATED") == {ceo.id, cfo.id}

    def test_regulator_cannot_resolve(self, submitted_application, advisor, ceo, regulator):
        issue_query(submitted_application.id, regulator, "Clarify use of proceeds")
        feedback = _raise(submitted_application, advisor)
        with pytest.raises(ForbiddenError):
            update_feedback_status(feedback.id, regulator, "IN_PROGRESS")


class TestComments:
    def test_thread_oldest_first(self, advised_application, advisor, ceo):
        feedback = _raise(advised_application, advisor)
        first = add_feedback_comment(feedback.id, ceo, "Which year?")["comment"]
        second = add_feedback_comment(feedback.id, advisor, "FY2023")["comment"]
        first.created_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        _db.session.commit()

        thread = list_feedback_comments(feedback.id, ceo)
        assert [c.id for c in thread] == [first.id, second.id]

    def test_issuer_comment_notifies_advisor(self, advised_application, advisor, ceo):
        feedback = _raise(advised_application, advisor)
        add_feedback_comment(feedback.id, ceo, "Uploaded")
        assert _recipients("COMMENT_ADDED") == {advisor.id}

    def test_advisor_comment_notifies_issuer_team(self, advised_application, advisor, ceo, cfo):
        feedback = _raise(advised_application, advisor)
        add_feedback_comment(feedback.id, advisor, "Still missing page 4")
        assert _recipients("COMMENT_ADDED") == {ceo.id, cfo.id}

    def test_cma_officer_follows_the_thread(self, advised_application, advisor, ceo, regulator):
        feedback = _raise(advised_application, advisor)
        submit_to_cma(advised_application.id, advisor, regulator.id)

        add_feedback_comment(feedback.id, ceo, "Answered in section 3")

        assert _recipients("COMMENT_ADDED") == {advisor.id, regulator.id}

    def test_empty_comment(self, advised_application, advisor, ceo):
        feedback = _raise(advised_application, advisor)
        with pytest.raises(ValidationError):
            add_feedback_comment(feedback.id, ceo, "")

    def test_outsider_cannot_comment(self, advised_application, advisor, other_advisor):
        feedback = _raise(advised_application, advisor)
        with pytest.raises(ForbiddenError):
            add_feedback_comment(feedback.id, other_advisor, "Hello")
