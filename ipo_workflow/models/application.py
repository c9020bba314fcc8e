"""
IPO Application Workflow
Application domain models.

Models:
    - IpoApplication: one company's listing application and its lifecycle status.
    - ApplicationSection: one fixed chapter of the application form.

``current_phase`` is never stored; it is projected from ``status`` through
PHASE_BY_STATUS so the two cannot drift apart.
"""

import json
import uuid
from datetime import datetime, timezone

from ipo_workflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

APPLICATION_STATUSES = {
    "DRAFT",
    "IB_REVIEW",
    "SUBMITTED",
    "UNDER_REVIEW",
    "CMA_REVIEW",
    "QUERY_ISSUED",
    "CMA_APPROVED",
    "CMA_REJECTED",
}

TERMINAL_STATUSES = frozenset({"CMA_APPROVED", "CMA_REJECTED"})

# Statuses in which any regulator (not only the assigned officer) may read
# the application and raise queries on it.
REGULATOR_VISIBLE_STATUSES = frozenset({"SUBMITTED", "UNDER_REVIEW", "CMA_REVIEW", "QUERY_ISSUED"})

# Section content may only change while the issuer still owns the file.
EDITABLE_STATUSES = frozenset({"DRAFT", "IB_REVIEW", "QUERY_ISSUED"})

PHASE_BY_STATUS = {
    "DRAFT": "DATA_COLLECTION",
    "IB_REVIEW": "IB_REVIEW",
    "SUBMITTED": "CMA_SUBMISSION",
    "UNDER_REVIEW": "CMA_REVIEW",
    "CMA_REVIEW": "CMA_REVIEW",
    "QUERY_ISSUED": "CMA_REVIEW",
    "CMA_APPROVED": "COMPLETED",
    "CMA_REJECTED": "COMPLETED",
}

APPLICATION_TRANSITIONS = {
    "assign_advisor": {"from": ["DRAFT"], "to": "IB_REVIEW"},
    "submit": {"from": ["DRAFT", "IB_REVIEW"], "to": "SUBMITTED"},
    "submit_to_cma": {"from": ["IB_REVIEW"], "to": "CMA_REVIEW"},
    "start_review": {"from": ["SUBMITTED", "CMA_REVIEW", "QUERY_ISSUED"], "to": "UNDER_REVIEW"},
    "issue_query": {
        "from": ["DRAFT", "IB_REVIEW", "SUBMITTED", "UNDER_REVIEW", "CMA_REVIEW", "QUERY_ISSUED"],
        "to": "QUERY_ISSUED",
    },
    # CMA_REVIEW is the advisor-forwarded spelling of UNDER_REVIEW
    "approve": {"from": ["SUBMITTED", "UNDER_REVIEW", "CMA_REVIEW"], "to": "CMA_APPROVED"},
    "reject": {"from": ["SUBMITTED", "UNDER_REVIEW", "CMA_REVIEW"], "to": "CMA_REJECTED"},
}

SECTION_STATUSES = {"NOT_STARTED", "IN_PROGRESS", "COMPLETED"}

DEFAULT_SECTIONS = [
    (1, "Company Identity & Legal Form"),
    (2, "Capitalization & Financial Strength"),
    (3, "Share Ownership & Distribution"),
    (4, "Governance & Management"),
    (5, "Legal & Regulatory Compliance"),
    (6, "Offer Details (IPO Information)"),
    (7, "Prospectus & Disclosure Checklist"),
    (8, "Publication & Advertisement"),
    (9, "Post-Approval Undertakings"),
    (10, "Declarations & Contacts"),
]


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class IpoApplication(db.Model):
    """
    Listing application owned by exactly one issuer company.

    Status moves only through services.application_lifecycle; the
    completion percentage only through services.completion.
    """

    __tablename__ = "ipo_applications"
    __table_args__ = (
        db.Index("idx_ipo_app_company", "company_id"),
        db.Index("idx_ipo_app_status", "status"),
        db.Index("idx_ipo_app_advisor", "assigned_ib_advisor"),
        db.Index("idx_ipo_app_officer", "assigned_cma_officer"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    company_id = db.Column(
        db.String(36), db.ForeignKey("companies.id", ondelete="RESTRICT"),
        nullable=False,
    )

    status = db.Column(
        db.String(20), nullable=False, default="DRAFT",
        comment="DRAFT | IB_REVIEW | SUBMITTED | UNDER_REVIEW | CMA_REVIEW | QUERY_ISSUED | CMA_APPROVED | CMA_REJECTED",
    )
    application_number = db.Column(
        db.String(30), nullable=True, unique=True,
        comment="Assigned once at submission: IPO-<year>-<seq>",
    )
    completion_percentage = db.Column(db.Integer, nullable=False, default=0)

    assigned_ib_advisor = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    assigned_cma_officer = db.Column(
        db.String(36), db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )

    # Offer details
    target_amount = db.Column(db.Float, nullable=True)
    shares_offered = db.Column(db.BigInteger, nullable=True)
    share_price = db.Column(db.Float, nullable=True)

    # Decision
    submission_date = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    cma_comments = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    sections = db.relationship(
        "ApplicationSection",
        back_populates="application",
        order_by="ApplicationSection.section_number",
        cascade="all, delete-orphan",
        lazy="select",
    )

    @property
    def current_phase(self) -> str:
        return PHASE_BY_STATUS.get(self.status, "DATA_COLLECTION")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_sections=False):
        d = {
            "id": self.id,
            "company_id": self.company_id,
            "status": self.status,
            "current_phase": self.current_phase,
            "application_number": self.application_number,
            "completion_percentage": self.completion_percentage,
            "assigned_ib_advisor": self.assigned_ib_advisor,
            "assigned_cma_officer": self.assigned_cma_officer,
            "target_amount": self.target_amount,
            "shares_offered": self.shares_offered,
            "share_price": self.share_price,
            "submission_date": _iso(self.submission_date),
            "approved_at": _iso(self.approved_at),
            "rejected_at": _iso(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "cma_comments": self.cma_comments,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_sections:
            d["sections"] = [s.to_dict() for s in self.sections]
        return d

    def __repr__(self):
        return f"<IpoApplication {self.id}: {self.status}>"


class ApplicationSection(db.Model):
    """
    One chapter of the application form.

    ``data`` is an opaque JSON payload owned by the issuer-side form logic.
    The stored ``completion_percentage`` is trusted as-is by the aggregator,
    even when it disagrees with ``status``.
    """

    __tablename__ = "application_sections"
    __table_args__ = (
        db.UniqueConstraint("application_id", "section_number", name="uq_section_app_number"),
        db.Index("idx_section_app", "application_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    application_id = db.Column(
        db.String(36), db.ForeignKey("ipo_applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    section_number = db.Column(db.Integer, nullable=False)
    section_title = db.Column(db.String(120), nullable=False)

    status = db.Column(
        db.String(20), nullable=False, default="NOT_STARTED",
        comment="NOT_STARTED | IN_PROGRESS | COMPLETED",
    )
    completion_percentage = db.Column(db.Integer, nullable=False, default=0)
    data_json = db.Column(db.Text, default="{}")

    completed_by = db.Column(db.String(36), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    application = db.relationship("IpoApplication", back_populates="sections")

    @property
    def data(self) -> dict:
        try:
            return json.loads(self.data_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    @data.setter
    def data(self, value):
        self.data_json = json.dumps(value or {}, default=str)

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "section_number": self.section_number,
            "section_title": self.section_title,
            "status": self.status,
            "completion_percentage": self.completion_percentage,
            "data": self.data,
            "completed_by": self.completed_by,
            "completed_at": _iso(self.completed_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ApplicationSection {self.section_number}: {self.status}>"


# ── Application numbers ──────────────────────────────────────────────────────

def next_application_number(prefix: str = "IPO", year: int | None = None) -> str:
    """
    Generate the next sequential application number for *year*.
    E.g. IPO-2026-0001, IPO-2026-0002, ...

    Race-safe where the backend supports SELECT ... FOR UPDATE; the unique
    constraint on ``application_number`` is the final guard.
    """
    year = year or _utcnow().year
    full_prefix = f"{prefix}-{year}-"
    last = (
        IpoApplication.query
        .filter(IpoApplication.application_number.like(f"{full_prefix}%"))
        # Longest first, so IPO-2026-10000 ranks above IPO-2026-9999
        .order_by(db.func.length(IpoApplication.application_number).desc(),
                  IpoApplication.application_number.desc())
        .with_for_update(skip_locked=True)
        .first()
    )
    num = 1
    if last:
        try:
            num = int(last.application_number.rsplit("-", 1)[1]) + 1
        except (IndexError, ValueError):
            num = 1
    return f"{full_prefix}{num:04d}"
