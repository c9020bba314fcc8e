"""
IPO Application Workflow
CMA review record model.

Models:
    - CmaReview: one row per regulator action on an application, with the
      reviewer's decision and assessment.
"""

from datetime import datetime, timezone

from ipo_workflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REVIEW_TYPES = {"INITIAL_REVIEW", "QUERY_RESPONSE", "FINAL_REVIEW"}
REVIEW_DECISIONS = {"QUERY", "APPROVE", "REJECT"}
RISK_RATINGS = {"LOW", "MEDIUM", "HIGH"}


class CmaReview(db.Model):
    """
    Written in the same transaction as the status change it records, so a
    committed regulator transition always has its review row.

    ``decision`` is empty for start_review; ``completed_at`` is set whenever
    a decision is.
    """

    __tablename__ = "cma_reviews"
    __table_args__ = (
        db.Index("idx_review_app", "application_id"),
        db.Index("idx_review_reviewer", "reviewer_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("ipo_applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    reviewer_id = db.Column(db.String(36), nullable=False)
    review_type = db.Column(
        db.String(20), nullable=False,
        comment="INITIAL_REVIEW | QUERY_RESPONSE | FINAL_REVIEW",
    )
    status = db.Column(db.String(20), nullable=False, comment="Application status after the action")
    decision = db.Column(db.String(10), nullable=True, comment="QUERY | APPROVE | REJECT")
    decision_reason = db.Column(db.Text, nullable=True)
    compliance_score = db.Column(db.Integer, nullable=True)
    risk_rating = db.Column(db.String(10), nullable=True, comment="LOW | MEDIUM | HIGH")

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "reviewer_id": self.reviewer_id,
            "review_type": self.review_type,
            "status": self.status,
            "decision": self.decision,
            "decision_reason": self.decision_reason,
            "compliance_score": self.compliance_score,
            "risk_rating": self.risk_rating,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<CmaReview {self.id}: {self.review_type}/{self.decision}>"
