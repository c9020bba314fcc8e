"""
IPO Application Blueprint.

HTTP adapter over the workflow services. The acting principal comes from
the ``X-User-Id`` / ``X-User-Role`` / ``X-Company-Id`` headers set by the
identity gateway in front of this service.

Endpoints (all under /api/v1/ipo):
    POST   /applications                                  create (201)
    GET    /applications/<id>                             read + sections + actions
    POST   /applications/<id>/assign-advisor              { "advisor_id" }
    POST   /applications/<id>/submit
    POST   /applications/<id>/submit-to-cma               { "regulator_id", "comments" }
    POST   /applications/<id>/start-review                { "compliance_score", "risk_rating" }
    POST   /applications/<id>/queries                     { "issue", "category", "priority", ... }
    POST   /applications/<id>/approve                     { "comments", ... }
    POST   /applications/<id>/reject                      { "reason", "comments", ... }
    GET    /applications/<id>/reviews
    POST   /applications/<id>/recalculate-completion
    GET    /applications/<id>/sections
    GET    /applications/<id>/sections/<sid>
    PATCH  /applications/<id>/sections/<sid>              { "data", "status", "completion_percentage" }
    POST   /applications/<id>/sections/<sid>/complete     { "data" }
    GET    /applications/<id>/feedback
    POST   /applications/<id>/feedback                    { "category", "issue", "priority", "section_id" }
    GET    /feedback/<fid>
    PATCH  /feedback/<fid>                                { "status", "response" }
    GET    /feedback/<fid>/comments
    POST   /feedback/<fid>/comments                       { "content" }
    GET    /applications/<id>/comments                    ?section_id=
    POST   /applications/<id>/comments                    { "content", "section_id", "parent_comment_id", "is_internal" }
    GET    /applications/<id>/audit

Regulator transitions also accept "compliance_score" and "risk_rating" and
answer with the "review" record they wrote.

Transition responses carry ``warnings`` for side effects (listing,
notifications, audit) that failed after the transition was committed.
"""

import logging

from flask import Blueprint, g, jsonify, request

from ipo_workflow.blueprints import load_actor, register_error_handlers
from ipo_workflow.services import application_lifecycle as lifecycle
from ipo_workflow.services import comment_service, feedback_service, section_service
from ipo_workflow.services.audit_trail import list_audit_entries
from ipo_workflow.services.completion import recompute_completion

logger = logging.getLogger(__name__)

application_bp = Blueprint("ipo_application", __name__, url_prefix="/api/v1/ipo")
application_bp.before_request(load_actor)
register_error_handlers(application_bp)


def _assessment(data):
    return {"compliance_score": data.get("compliance_score"), "risk_rating": data.get("risk_rating")}


def _transition_response(result, status_code=200):
    body = {
        "application": result["application"].to_dict(),
        "action": result["action"],
        "previous_status": result["previous_status"],
        "new_status": result["new_status"],
        "warnings": result["warnings"],
    }
    if "listing" in result:
        body["listing"] = result["listing"].to_dict() if result["listing"] is not None else None
    if "review" in result:
        body["review"] = result["review"].to_dict()
    return jsonify(body), status_code


# ── Applications ─────────────────────────────────────────────────────────────


@application_bp.route("/applications", methods=["POST"])
def create_application():
    data = request.get_json(silent=True) or {}
    company_id = data.get("company_id") or g.actor.company_id
    if not company_id:
        return jsonify({"error": "company_id is required"}), 400
    application = lifecycle.create_application(
        company_id, g.actor,
        target_amount=data.get("target_amount"),
        shares_offered=data.get("shares_offered"),
        share_price=data.get("share_price"),
    )
    return jsonify(application.to_dict(include_sections=True)), 201


@application_bp.route("/applications/<application_id>", methods=["GET"])
def get_application(application_id):
    application = lifecycle.get_application(application_id, g.actor)
    body = application.to_dict(include_sections=True)
    body["available_actions"] = lifecycle.available_actions(application, g.actor)
    return jsonify(body), 200


@application_bp.route("/applications/<application_id>/assign-advisor", methods=["POST"])
def assign_advisor(application_id):
    data = request.get_json(silent=True) or {}
    result = lifecycle.assign_advisor(application_id, g.actor, data.get("advisor_id"))
    return _transition_response(result)


@application_bp.route("/applications/<application_id>/submit", methods=["POST"])
def submit_application(application_id):
    result = lifecycle.submit_application(application_id, g.actor)
    return _transition_response(result)


@application_bp.route("/applications/<application_id>/submit-to-cma", methods=["POST"])
def submit_to_cma(application_id):
    data = request.get_json(silent=True) or {}
    result = lifecycle.submit_to_cma(
        application_id, g.actor, data.get("regulator_id"), comments=data.get("comments"),
    )
    return _transition_response(result)


@application_bp.route("/applications/<application_id>/start-review", methods=["POST"])
def start_review(application_id):
    data = request.get_json(silent=True) or {}
    result = lifecycle.start_review(application_id, g.actor, **_assessment(data))
    return _transition_response(result)


@application_bp.route("/applications/<application_id>/queries", methods=["POST"])
def issue_query(application_id):
    data = request.get_json(silent=True) or {}
    result = lifecycle.issue_query(
        application_id, g.actor, data.get("issue", ""),
        category=data.get("category"),
        priority=(data.get("priority") or "MEDIUM").upper(),
        **_assessment(data),
    )
    return _transition_response(result)


@application_bp.route("/applications/<application_id>/approve", methods=["POST"])
def approve_application(application_id):
    data = request.get_json(silent=True) or {}
    result = lifecycle.approve_application(
        application_id, g.actor, comments=data.get("comments"), **_assessment(data),
    )
    return _transition_response(result)


@application_bp.route("/applications/<application_id>/reject", methods=["POST"])
def reject_application(application_id):
    data = request.get_json(silent=True) or {}
    result = lifecycle.reject_application(
        application_id, g.actor, data.get("reason", ""), comments=data.get("comments"),
        **_assessment(data),
    )
    return _transition_response(result)


@application_bp.route("/applications/<application_id>/recalculate-completion", methods=["POST"])
def recalculate_completion(application_id):
    return jsonify(recompute_completion(application_id, g.actor)), 200


# ── Sections ─────────────────────────────────────────────────────────────────


@application_bp.route("/applications/<application_id>/sections", methods=["GET"])
def list_sections(application_id):
    sections = section_service.list_sections(application_id, g.actor)
    return jsonify({"items": [s.to_dict() for s in sections], "total": len(sections)}), 200


@application_bp.route("/applications/<application_id>/sections/<section_id>", methods=["GET"])
def get_section(application_id, section_id):
    section = section_service.get_section(application_id, section_id, g.actor)
    return jsonify(section.to_dict()), 200


@application_bp.route("/applications/<application_id>/sections/<section_id>", methods=["PATCH"])
def update_section(application_id, section_id):
    data = request.get_json(silent=True) or {}
    result = section_service.update_section(
        application_id, section_id, g.actor,
        data=data.get("data"),
        status=data.get("status"),
        completion_percentage=data.get("completion_percentage"),
    )
    return jsonify({
        "section": result["section"].to_dict(),
        "application_completion": result["completion_percentage"],
        "warnings": result["warnings"],
    }), 200


@application_bp.route("/applications/<application_id>/sections/<section_id>/complete", methods=["POST"])
def complete_section(application_id, section_id):
    data = request.get_json(silent=True) or {}
    result = section_service.complete_section(application_id, section_id, g.actor, data=data.get("data"))
    return jsonify({
        "section": result["section"].to_dict(),
        "application_completion": result["completion_percentage"],
        "warnings": result["warnings"],
    }), 200


# ── Feedback ─────────────────────────────────────────────────────────────────


@application_bp.route("/applications/<application_id>/feedback", methods=["GET"])
def list_feedback(application_id):
    items = feedback_service.list_feedback(application_id, g.actor, status=request.args.get("status"))
    return jsonify({"items": [f.to_dict() for f in items], "total": len(items)}), 200


@application_bp.route("/applications/<application_id>/feedback", methods=["POST"])
def create_feedback(application_id):
    data = request.get_json(silent=True) or {}
    result = feedback_service.create_feedback(
        application_id, g.actor,
        category=data.get("category"),
        issue=data.get("issue", ""),
        priority=data.get("priority"),
        section_id=data.get("section_id"),
    )
    return jsonify({"feedback": result["feedback"].to_dict(), "warnings": result["warnings"]}), 201


@application_bp.route("/feedback/<feedback_id>", methods=["GET"])
def get_feedback(feedback_id):
    return jsonify(feedback_service.get_feedback(feedback_id, g.actor).to_dict()), 200


@application_bp.route("/feedback/<feedback_id>", methods=["PATCH"])
def update_feedback(feedback_id):
    data = request.get_json(silent=True) or {}
    result = feedback_service.update_feedback_status(
        feedback_id, g.actor, new_status=data.get("status"), response=data.get("response"),
    )
    return jsonify({
        "feedback": result["feedback"].to_dict(),
        "previous_status": result["previous_status"],
        "new_status": result["new_status"],
        "warnings": result["warnings"],
    }), 200


@application_bp.route("/feedback/<feedback_id>/comments", methods=["GET"])
def list_feedback_comments(feedback_id):
    comments = feedback_service.list_feedback_comments(feedback_id, g.actor)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)}), 200


@application_bp.route("/feedback/<feedback_id>/comments", methods=["POST"])
def add_feedback_comment(feedback_id):
    data = request.get_json(silent=True) or {}
    result = feedback_service.add_feedback_comment(feedback_id, g.actor, data.get("content", ""))
    return jsonify({"comment": result["comment"].to_dict(), "warnings": result["warnings"]}), 201


# ── Audit ────────────────────────────────────────────────────────────────────


@application_bp.route("/applications/<application_id>/audit", methods=["GET"])
def list_audit(application_id):
    entries = list_audit_entries(application_id, g.actor)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)}), 200


# ── Reviews & discussion ─────────────────────────────────────────────────────


@application_bp.route("/applications/<application_id>/reviews", methods=["GET"])
def list_reviews(application_id):
    reviews = lifecycle.list_reviews(application_id, g.actor)
    return jsonify({"items": [r.to_dict() for r in reviews], "total": len(reviews)}), 200


@application_bp.route("/applications/<application_id>/comments", methods=["GET"])
def list_application_comments(application_id):
    comments = comment_service.list_application_comments(
        application_id, g.actor, section_id=request.args.get("section_id"),
    )
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)}), 200


@application_bp.route("/applications/<application_id>/comments", methods=["POST"])
def add_application_comment(application_id):
    data = request.get_json(silent=True) or {}
    result = comment_service.add_application_comment(
        application_id, g.actor, data.get("content", ""),
        section_id=data.get("section_id"),
        parent_comment_id=data.get("parent_comment_id"),
        is_internal=bool(data.get("is_internal")),
    )
    return jsonify({"comment": result["comment"].to_dict(), "warnings": result["warnings"]}), 201
