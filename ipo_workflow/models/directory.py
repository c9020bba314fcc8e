"""
IPO Application Workflow
Directory models — companies and actor profiles.

The workflow engine never mutates these rows; they back the identity
provider and are read to validate advisor assignments and to resolve
notification recipients.

Models:
    - Company: the issuer raising capital.
    - Profile: one actor with a role and optional company membership.
"""

import uuid
from datetime import datetime, timezone

from ipo_workflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ISSUER_ROLES = frozenset({"ISSUER_CEO", "ISSUER_CFO", "ISSUER_SECRETARY", "ISSUER_LEGAL"})
REGULATOR_ROLES = frozenset({"CMA_REGULATOR", "CMA_ADMIN"})
ROLES = ISSUER_ROLES | REGULATOR_ROLES | {"IB_ADVISOR"}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Company(db.Model):
    """Issuer company. Owns exactly one application per listing attempt."""

    __tablename__ = "companies"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    legal_name = db.Column(db.String(255), nullable=False)
    trading_name = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "legal_name": self.legal_name,
            "trading_name": self.trading_name,
        }

    def __repr__(self):
        return f"<Company {self.id}: {self.legal_name[:40]}>"


class Profile(db.Model):
    """
    Actor profile as published by the identity provider.

    ``company_id`` is set for issuer team members only.
    """

    __tablename__ = "profiles"
    __table_args__ = (
        db.Index("idx_profile_role", "role"),
        db.Index("idx_profile_company", "company_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    full_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(
        db.String(30), nullable=False,
        comment="ISSUER_CEO | ISSUER_CFO | ISSUER_SECRETARY | ISSUER_LEGAL | IB_ADVISOR | CMA_REGULATOR | CMA_ADMIN",
    )
    company_id = db.Column(
        db.String(36), db.ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "company_id": self.company_id,
        }

    def __repr__(self):
        return f"<Profile {self.id}: {self.role}>"
