"""
IPO Application Workflow
Application discussion model.

Models:
    - ApplicationComment: a remark on an application, optionally pinned to
      one section and optionally replying to another comment.
"""

from datetime import datetime, timezone

from ipo_workflow.models import db


class ApplicationComment(db.Model):
    """
    One entry in an application's discussion thread.

    ``is_internal`` comments are CMA working notes: only CMA roles write
    or read them, and they never produce notifications.
    """

    __tablename__ = "application_comments"
    __table_args__ = (
        db.Index("idx_app_comment_app", "application_id", "created_at"),
        db.Index("idx_app_comment_section", "section_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("ipo_applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    section_id = db.Column(
        db.String(36), db.ForeignKey("application_sections.id", ondelete="SET NULL"),
        nullable=True,
    )
    parent_comment_id = db.Column(
        db.Integer, db.ForeignKey("application_comments.id", ondelete="CASCADE"),
        nullable=True,
    )

    author_id = db.Column(db.String(36), nullable=False)
    content = db.Column(db.Text, nullable=False)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    replies = db.relationship(
        "ApplicationComment",
        backref=db.backref("parent", remote_side="ApplicationComment.id"),
        order_by="ApplicationComment.id",
        lazy="select",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "section_id": self.section_id,
            "parent_comment_id": self.parent_comment_id,
            "author_id": self.author_id,
            "content": self.content,
            "is_internal": self.is_internal,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApplicationComment {self.id} on {self.application_id}>"
