"""
IPO Application Workflow
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for workflow events.
"""

import json
from datetime import datetime, timezone

from ipo_workflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    # Application lifecycle
    "application.create",
    "application.assign_advisor",
    "application.submit",
    "application.submit_to_cma",
    "application.start_review",
    "application.issue_query",
    "application.approve",
    "application.reject",
    # Sections
    "section.update",
    "section.complete",
    # Feedback loop
    "feedback.create",
    "feedback.update_status",
    "feedback.comment",
    # Application discussion
    "application.comment",
    # Best-effort side effects that failed after commit
    "dependency.failure",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every state-changing workflow action.

    One row per action. ``details_json`` carries the before/after summary
    or the rationale (comments, rejection reason, failed dependency).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_application", "application_id"),
        db.Index("idx_audit_actor", "actor_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(db.String(36), nullable=False)
    actor_id = db.Column(db.String(36), nullable=False, default="system")
    action = db.Column(
        db.String(60), nullable=False,
        comment="application.approve | feedback.create | dependency.failure | …",
    )
    details_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details(self) -> dict:
        """Deserialise *details_json* to a Python dict."""
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "application_id": self.application_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.application_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    application_id: str,
    action: str,
    actor_id: str | None = None,
    details: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.

    Raises:
        ValueError: *action* is not one of AUDIT_ACTIONS.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    log = AuditLog(
        application_id=str(application_id),
        action=action,
        actor_id=actor_id or "system",
        details_json=json.dumps(details or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
