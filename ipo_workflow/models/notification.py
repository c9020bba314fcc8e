"""
IPO Application Workflow
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from ipo_workflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "IB_ASSIGNED",
    "APPLICATION_SUBMITTED",
    "SUBMITTED_TO_CMA",
    "REVIEW_STARTED",
    "QUERY_ISSUED",
    "FEEDBACK_UPDATED",
    "COMMENT_ADDED",
    "APPLICATION_APPROVED",
    "APPLICATION_REJECTED",
}
NOTIFICATION_PRIORITIES = {"LOW", "MEDIUM", "HIGH"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. Only the recipient ever mutates it,
    and only to mark it read.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notification_recipient", "recipient_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.String(36), nullable=False)
    application_id = db.Column(
        db.String(36), db.ForeignKey("ipo_applications.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(40), nullable=False, comment="APPLICATION_SUBMITTED | QUERY_ISSUED | …")
    priority = db.Column(db.String(10), default="MEDIUM")

    # Read tracking
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "application_id": self.application_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "priority": self.priority,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
