"""
IPO Application Workflow
Feedback domain models.

Models:
    - ApplicationFeedback: an issue the advisor raises against an application
      or one of its sections, tracked to resolution.
    - FeedbackComment: threaded conversation on one feedback item.
"""

import uuid
from datetime import datetime, timezone

from ipo_workflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

FEEDBACK_STATUSES = {"PENDING", "IN_PROGRESS", "RESOLVED"}
FEEDBACK_PRIORITIES = {"LOW", "MEDIUM", "HIGH"}

# Forward-only: no skipping, no reopening.
FEEDBACK_TRANSITIONS = {
    "PENDING": "IN_PROGRESS",
    "IN_PROGRESS": "RESOLVED",
}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class ApplicationFeedback(db.Model):
    """Advisor-raised query. ``created_by`` is always the assigned advisor."""

    __tablename__ = "application_feedback"
    __table_args__ = (
        db.Index("idx_feedback_app", "application_id"),
        db.Index("idx_feedback_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    application_id = db.Column(
        db.String(36), db.ForeignKey("ipo_applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    section_id = db.Column(
        db.String(36), db.ForeignKey("application_sections.id", ondelete="SET NULL"),
        nullable=True,
    )

    category = db.Column(db.String(60), nullable=True)
    issue = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM", comment="LOW | MEDIUM | HIGH")
    status = db.Column(
        db.String(20), nullable=False, default="PENDING",
        comment="PENDING | IN_PROGRESS | RESOLVED",
    )

    issuer_response = db.Column(db.Text, nullable=True)
    ib_response = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(36), nullable=False)
    resolved_by = db.Column(db.String(36), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    comments = db.relationship(
        "FeedbackComment",
        back_populates="feedback",
        order_by="FeedbackComment.created_at",
        cascade="all, delete-orphan",
        lazy="select",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "section_id": self.section_id,
            "category": self.category,
            "issue": self.issue,
            "priority": self.priority,
            "status": self.status,
            "issuer_response": self.issuer_response,
            "ib_response": self.ib_response,
            "created_by": self.created_by,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApplicationFeedback {self.id}: {self.status}>"


class FeedbackComment(db.Model):
    __tablename__ = "feedback_comments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    feedback_id = db.Column(
        db.String(36), db.ForeignKey("application_feedback.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    author_id = db.Column(db.String(36), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    feedback = db.relationship("ApplicationFeedback", back_populates="comments")

    def to_dict(self):
        return {
            "id": self.id,
            "feedback_id": self.feedback_id,
            "author_id": self.author_id,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<FeedbackComment {self.id}>"
