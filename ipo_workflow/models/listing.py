"""
IPO Application Workflow
Listing domain model.

Models:
    - Listing: the exchange entry created once an application is approved.
"""

import uuid
from datetime import datetime, timezone

from ipo_workflow.models import db


LISTING_STATUSES = {"PENDING_LISTING", "LISTED", "SUSPENDED"}


class Listing(db.Model):
    """At most one listing per application (``application_id`` is unique)."""

    __tablename__ = "listings"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    application_id = db.Column(
        db.String(36), db.ForeignKey("ipo_applications.id", ondelete="RESTRICT"),
        nullable=False, unique=True,
    )
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False)
    ticker_symbol = db.Column(db.String(12), nullable=False)
    company_name = db.Column(db.String(255), nullable=False)
    listing_status = db.Column(db.String(20), nullable=False, default="PENDING_LISTING")

    shares_offered = db.Column(db.BigInteger, nullable=True)
    offer_price = db.Column(db.Float, nullable=True)
    total_value = db.Column(db.Float, nullable=True)

    approved_by = db.Column(db.String(36), nullable=False)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "company_id": self.company_id,
            "ticker_symbol": self.ticker_symbol,
            "company_name": self.company_name,
            "listing_status": self.listing_status,
            "shares_offered": self.shares_offered,
            "offer_price": self.offer_price,
            "total_value": self.total_value,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
        }

    def __repr__(self):
        return f"<Listing {self.ticker_symbol}: {self.listing_status}>"
