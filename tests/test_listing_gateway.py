"""
Tests: exchange listing gateway.
"""

from types import SimpleNamespace

import pytest

from ipo_workflow.core.exceptions import DependencyFailure
from ipo_workflow.integrations.listing_gateway import ListingGateway, ticker_for
from ipo_workflow.models.directory import Company
from ipo_workflow.models.listing import Listing


@pytest.mark.parametrize("trading,legal,expected", [
    ("KCH", "Kigali Coffee Holdings Ltd", "KCH"),
    ("b.k. group", "Bank of Kigali Group Plc", "BKGROUP"),
    (None, "Lake Kivu Energy Plc", "LAKEK"),
    ("", "MTN Rwandacell", "MTNRW"),
])
def test_ticker_for(trading, legal, expected):
    assert ticker_for(Company(trading_name=trading, legal_name=legal)) == expected


def test_creates_pending_listing(submitted_application, regulator):
    listing = ListingGateway().create_listing(submitted_application, approved_by=regulator.id)

    assert listing.listing_status == "PENDING_LISTING"
    assert listing.ticker_symbol == "KCH"
    assert listing.company_name == "Kigali Coffee Holdings Ltd"
    assert listing.total_value == 5_000_000.0
    assert listing.shares_offered == 1_000_000
    assert listing.offer_price == 5.0
    assert Listing.query.count() == 1


def test_total_value_falls_back_to_shares_times_price(submitted_application, regulator):
    submitted_application.target_amount = None
    listing = ListingGateway().create_listing(submitted_application, approved_by=regulator.id)
    assert listing.total_value == 5_000_000.0


def test_missing_company(regulator):
    orphan = SimpleNamespace(id="app-x", company_id="no-such-company")
    with pytest.raises(DependencyFailure) as exc:
        ListingGateway().create_listing(orphan, approved_by=regulator.id)
    assert exc.value.dependency == "listing"


def test_second_listing_for_same_application_fails(submitted_application, regulator):
    gateway = ListingGateway()
    gateway.create_listing(submitted_application, approved_by=regulator.id)

    with pytest.raises(DependencyFailure):
        gateway.create_listing(submitted_application, approved_by=regulator.id)
    assert Listing.query.count() == 1
