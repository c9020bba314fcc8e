"""
Exchange Listing Gateway.

Creates the downstream listing record once an application is approved.
Called exactly once per successful approval, after the approval itself is
committed. A failure here never reverses the approval: the gateway raises
DependencyFailure and the lifecycle service reports it as a warning so the
listing can be fixed out-of-band.

Testability: pass a fake object with a ``create_listing(application,
approved_by)`` method to ``approve_application(..., listing_gateway=...)``
instead of patching this module.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from ipo_workflow.core.exceptions import DependencyFailure
from ipo_workflow.models import db
from ipo_workflow.models.directory import Company
from ipo_workflow.models.listing import Listing

logger = logging.getLogger(__name__)

_TICKER_MAX = 12


def ticker_for(company: Company) -> str:
    """Trading name when the issuer has one, else the first five letters of the legal name."""
    if company.trading_name:
        return re.sub(r"[^A-Z0-9]", "", company.trading_name.upper())[:_TICKER_MAX]
    return re.sub(r"[^A-Z0-9]", "", company.legal_name.upper())[:5]


class ListingGateway:
    """Writes Listing rows for approved applications.

    Usage:
        from ipo_workflow.integrations.listing_gateway import listing_gateway
        listing = listing_gateway.create_listing(application, approved_by=actor.id)
    """

    def create_listing(self, application, approved_by: str) -> Listing:
        """Persist and commit the listing for *application*.

        Raises:
            DependencyFailure: the company is missing or the write failed.
        """
        company = db.session.get(Company, application.company_id)
        if company is None:
            raise DependencyFailure(
                "listing",
                "Cannot create listing: issuer company not found",
                details={"application_id": application.id, "company_id": application.company_id},
            )

        total_value = application.target_amount
        if total_value is None and application.shares_offered and application.share_price:
            total_value = application.shares_offered * application.share_price

        try:
            with db.session.begin_nested():
                listing = Listing(
                    application_id=application.id,
                    company_id=company.id,
                    ticker_symbol=ticker_for(company) or "UNLISTED",
                    company_name=company.legal_name,
                    listing_status="PENDING_LISTING",
                    shares_offered=application.shares_offered,
                    offer_price=application.share_price,
                    total_value=total_value,
                    approved_by=approved_by,
                    approved_at=application.approved_at or datetime.now(timezone.utc),
                )
                db.session.add(listing)
        except SQLAlchemyError as exc:
            logger.warning(
                "Listing creation failed: %s", exc,
                extra={"application_id": application.id, "dependency": "listing"},
            )
            raise DependencyFailure(
                "listing",
                "Listing creation failed",
                details={"application_id": application.id, "error": str(exc)},
            ) from exc

        db.session.commit()
        logger.info(
            "Listing %s created", listing.ticker_symbol,
            extra={"application_id": application.id, "event_type": "listing.create"},
        )
        return listing


# Module-level singleton
listing_gateway = ListingGateway()
