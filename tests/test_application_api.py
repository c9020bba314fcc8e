"""
Tests: HTTP adapter (status codes, identity headers, serialisation).

Service behaviour is covered in the service tests; these check that every
error kind reaches the client with the right status code and that the
happy path end-to-end works through the API.
"""

BASE = "/api/v1/ipo"


def _h(actor):
    headers = {"X-User-Id": actor.id, "X-User-Role": actor.role}
    if actor.company_id:
        headers["X-Company-Id"] = actor.company_id
    return headers


def _complete_all(client, application, actor):
    for section in application.sections:
        res = client.post(
            f"{BASE}/applications/{application.id}/sections/{section.id}/complete",
            json={"data": {"filled": True}},
            headers=_h(actor),
        )
        assert res.status_code == 200


# ═════════════════════════════════════════════════════════════════════════════
# Identity
# ═════════════════════════════════════════════════════════════════════════════


class TestIdentity:
    def test_missing_headers_401(self, client, application):
        res = client.get(f"{BASE}/applications/{application.id}")
        assert res.status_code == 401

    def test_unknown_role_401(self, client, application, ceo):
        res = client.get(
            f"{BASE}/applications/{application.id}",
            headers={"X-User-Id": ceo.id, "X-User-Role": "SUPERUSER"},
        )
        assert res.status_code == 401

    def test_notifications_require_identity(self, client):
        assert client.get(f"{BASE}/notifications").status_code == 401

    def test_request_id_echoed(self, client, ceo):
        res = client.get(f"{BASE}/notifications", headers={**_h(ceo), "X-Request-ID": "req-42"})
        assert res.headers["X-Request-ID"] == "req-42"
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0


# ═════════════════════════════════════════════════════════════════════════════
# Applications
# ═════════════════════════════════════════════════════════════════════════════


class TestApplications:
    def test_create_defaults_to_actor_company(self, client, company, ceo):
        res = client.post(f"{BASE}/applications", json={"target_amount": 1_000_000}, headers=_h(ceo))
        assert res.status_code == 201
        body = res.get_json()
        assert body["company_id"] == company.id
        assert body["status"] == "DRAFT"
        assert len(body["sections"]) == 10

    def test_create_twice_conflicts(self, client, application, ceo):
        res = client.post(f"{BASE}/applications", json={}, headers=_h(ceo))
        assert res.status_code == 409

    def test_create_without_company_400(self, client, advisor):
        res = client.post(f"{BASE}/applications", json={}, headers=_h(advisor))
        assert res.status_code == 400

    def test_get_with_available_actions(self, client, application, ceo):
        res = client.get(f"{BASE}/applications/{application.id}", headers=_h(ceo))
        assert res.status_code == 200
        body = res.get_json()
        assert body["id"] == application.id
        assert set(body["available_actions"]) == {"assign_advisor", "submit"}

    def test_get_unknown_404(self, client, ceo):
        res = client.get(f"{BASE}/applications/nope", headers=_h(ceo))
        assert res.status_code == 404

    def test_get_forbidden_403(self, client, application, other_advisor):
        res = client.get(f"{BASE}/applications/{application.id}", headers=_h(other_advisor))
        assert res.status_code == 403
        assert res.get_json()["capability"] == "view"

    def test_submit_incomplete_422(self, client, application, ceo):
        res = client.post(f"{BASE}/applications/{application.id}/submit", headers=_h(ceo))
        assert res.status_code == 422
        assert res.get_json()["details"]["incomplete_sections"] == list(range(1, 11))

    def test_recalculate_completion(self, client, application, ceo):
        res = client.post(f"{BASE}/applications/{application.id}/recalculate-completion", headers=_h(ceo))
        assert res.status_code == 200
        assert res.get_json()["completion_percentage"] == 0

    def test_audit_trail(self, client, application, ceo):
        res = client.get(f"{BASE}/applications/{application.id}/audit", headers=_h(ceo))
        assert res.status_code == 200
        assert [e["action"] for e in res.get_json()["items"]] == ["application.create"]


class TestLifecycleOverHttp:
    def test_submit_review_approve(self, client, application, ceo, advisor, regulator):
        res = client.post(
            f"{BASE}/applications/{application.id}/assign-advisor",
            json={"advisor_id": advisor.id}, headers=_h(ceo),
        )
        assert res.status_code == 200
        assert res.get_json()["new_status"] == "IB_REVIEW"

        _complete_all(client, application, advisor)

        res = client.post(f"{BASE}/applications/{application.id}/submit", headers=_h(ceo))
        assert res.status_code == 200
        body = res.get_json()
        assert body["previous_status"] == "IB_REVIEW"
        assert body["application"]["application_number"].startswith("IPO-")

        res = client.post(f"{BASE}/applications/{application.id}/start-review", headers=_h(regulator))
        assert res.status_code == 200

        res = client.post(
            f"{BASE}/applications/{application.id}/approve",
            json={"comments": "Prospectus in order"}, headers=_h(regulator),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["new_status"] == "CMA_APPROVED"
        assert body["listing"]["ticker_symbol"] == "KCH"
        assert body["warnings"] == []

        res = client.post(
            f"{BASE}/applications/{application.id}/reject",
            json={"reason": "late"}, headers=_h(regulator),
        )
        assert res.status_code == 409

    def test_reject_needs_reason(self, client, submitted_application, regulator):
        res = client.post(
            f"{BASE}/applications/{submitted_application.id}/reject",
            json={}, headers=_h(regulator),
        )
        assert res.status_code == 422

    def test_query_and_resubmit_edit(self, client, submitted_application, regulator, ceo):
        res = client.post(
            f"{BASE}/applications/{submitted_application.id}/queries",
            json={"issue": "Provide updated valuation", "priority": "high"}, headers=_h(regulator),
        )
        assert res.status_code == 200
        assert res.get_json()["new_status"] == "QUERY_ISSUED"

        section = submitted_application.sections[0]
        res = client.patch(
            f"{BASE}/applications/{submitted_application.id}/sections/{section.id}",
            json={"data": {"valuation": "updated"}}, headers=_h(ceo),
        )
        assert res.status_code == 200

    def test_section_edit_locked_409(self, client, submitted_application, ceo):
        section = submitted_application.sections[0]
        res = client.patch(
            f"{BASE}/applications/{submitted_application.id}/sections/{section.id}",
            json={"completion_percentage": 10}, headers=_h(ceo),
        )
        assert res.status_code == 409

    def test_sections_list(self, client, application, cfo):
        res = client.get(f"{BASE}/applications/{application.id}/sections", headers=_h(cfo))
        assert res.status_code == 200
        assert res.get_json()["total"] == 10


# ═════════════════════════════════════════════════════════════════════════════
# Feedback
# ═════════════════════════════════════════════════════════════════════════════


class TestFeedbackApi:
    def test_feedback_round(self, client, advised_application, advisor, ceo):
        res = client.post(
            f"{BASE}/applications/{advised_application.id}/feedback",
            json={"category": "Financials", "issue": "Missing audit letter", "priority": "HIGH"},
            headers=_h(advisor),
        )
        assert res.status_code == 201
        feedback_id = res.get_json()["feedback"]["id"]

        res = client.patch(f"{BASE}/feedback/{feedback_id}", json={"status": "RESOLVED"}, headers=_h(ceo))
        assert res.status_code == 409

        res = client.patch(f"{BASE}/feedback/{feedback_id}", json={"status": "IN_PROGRESS"}, headers=_h(ceo))
        assert res.status_code == 200
        assert res.get_json()["new_status"] == "IN_PROGRESS"

        res = client.post(
            f"{BASE}/feedback/{feedback_id}/comments", json={"content": "Uploaded"}, headers=_h(ceo),
        )
        assert res.status_code == 201

        res = client.get(f"{BASE}/feedback/{feedback_id}/comments", headers=_h(advisor))
        assert res.get_json()["total"] == 1

        res = client.get(f"{BASE}/applications/{advised_application.id}/feedback", headers=_h(ceo))
        assert res.get_json()["total"] == 1

    def test_other_advisor_403(self, client, advised_application, other_advisor):
        res = client.post(
            f"{BASE}/applications/{advised_application.id}/feedback",
            json={"issue": "x"}, headers=_h(other_advisor),
        )
        assert res.status_code == 403

    def test_unknown_feedback_404(self, client, ceo):
        assert client.get(f"{BASE}/feedback/nope", headers=_h(ceo)).status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Notifications
# ═════════════════════════════════════════════════════════════════════════════


class TestNotificationsApi:
    def test_inbox_flow(self, client, advised_application, advisor):
        res = client.get(f"{BASE}/notifications/unread-count", headers=_h(advisor))
        assert res.get_json()["unread_count"] == 1

        res = client.get(f"{BASE}/notifications?unread_only=true", headers=_h(advisor))
        items = res.get_json()["items"]
        assert [n["type"] for n in items] == ["IB_ASSIGNED"]

        res = client.post(f"{BASE}/notifications/{items[0]['id']}/read", headers=_h(advisor))
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True

        res = client.post(f"{BASE}/notifications/read-all", headers=_h(advisor))
        assert res.get_json()["marked_read"] == 0

    def test_read_someone_elses_403(self, client, advised_application, advisor, ceo):
        res = client.get(f"{BASE}/notifications", headers=_h(advisor))
        notification_id = res.get_json()["items"][0]["id"]

        res = client.post(f"{BASE}/notifications/{notification_id}/read", headers=_h(ceo))
        assert res.status_code == 403

    def test_read_unknown_404(self, client, ceo):
        assert client.post(f"{BASE}/notifications/424242/read", headers=_h(ceo)).status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Reviews & discussion
# ═════════════════════════════════════════════════════════════════════════════


class TestReviewsApi:
    def test_decision_returns_review(self, client, submitted_application, regulator):
        res = client.post(
            f"{BASE}/applications/{submitted_application.id}/reject",
            json={"reason": "Thin disclosures", "compliance_score": 42, "risk_rating": "high"},
            headers=_h(regulator),
        )
        assert res.status_code == 200
        review = res.get_json()["review"]
        assert review["decision"] == "REJECT"
        assert review["compliance_score"] == 42
        assert review["risk_rating"] == "HIGH"

        res = client.get(f"{BASE}/applications/{submitted_application.id}/reviews", headers=_h(regulator))
        assert res.get_json()["total"] == 1

    def test_bad_assessment_422(self, client, submitted_application, regulator):
        res = client.post(
            f"{BASE}/applications/{submitted_application.id}/start-review",
            json={"compliance_score": 101}, headers=_h(regulator),
        )
        assert res.status_code == 422

    def test_issuer_cannot_read_reviews(self, client, submitted_application, ceo):
        res = client.get(f"{BASE}/applications/{submitted_application.id}/reviews", headers=_h(ceo))
        assert res.status_code == 403


class TestCommentsApi:
    def test_internal_note_hidden_from_issuer(self, client, submitted_application, regulator, ceo):
        res = client.post(
            f"{BASE}/applications/{submitted_application.id}/comments",
            json={"content": "Check note 14", "is_internal": True}, headers=_h(regulator),
        )
        assert res.status_code == 201
        assert res.get_json()["comment"]["is_internal"] is True

        res = client.post(
            f"{BASE}/applications/{submitted_application.id}/comments",
            json={"content": "Prospectus v2 uploaded"}, headers=_h(ceo),
        )
        assert res.status_code == 201

        res = client.get(f"{BASE}/applications/{submitted_application.id}/comments", headers=_h(ceo))
        assert [c["content"] for c in res.get_json()["items"]] == ["Prospectus v2 uploaded"]

        res = client.get(f"{BASE}/applications/{submitted_application.id}/comments", headers=_h(regulator))
        assert res.get_json()["total"] == 2

    def test_issuer_internal_note_403(self, client, application, ceo):
        res = client.post(
            f"{BASE}/applications/{application.id}/comments",
            json={"content": "secret", "is_internal": True}, headers=_h(ceo),
        )
        assert res.status_code == 403
