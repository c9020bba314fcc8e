"""
Shared pytest fixtures for the IPO workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - company / other_company: issuer companies
    - ceo, cfo, advisor, other_advisor, regulator, other_regulator, admin:
      Actor for each role, backed by a Profile row
    - application: DRAFT application of ``company`` with its ten sections
    - submitted_application: same application, every section COMPLETED and
      status SUBMITTED
"""

import pytest

from ipo_workflow import create_app
from ipo_workflow.models import db as _db
from ipo_workflow.models.directory import Company, Profile
from ipo_workflow.services.access_control import Actor


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Directory helpers ────────────────────────────────────────────────────


def make_profile(role, company_id=None, full_name=None):
    """Persist a Profile and return the matching Actor."""
    profile = Profile(role=role, company_id=company_id, full_name=full_name or role.title())
    _db.session.add(profile)
    _db.session.commit()
    return Actor.from_profile(profile)


def complete_all_sections(application):
    """Mark every section COMPLETED/100 directly in the store."""
    for section in application.sections:
        section.status = "COMPLETED"
        section.completion_percentage = 100
        section.data = {"filled": True}
    _db.session.commit()


@pytest.fixture()
def company():
    c = Company(legal_name="Kigali Coffee Holdings Ltd", trading_name="KCH")
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def other_company():
    c = Company(legal_name="Lake Kivu Energy Plc")
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def ceo(company):
    return make_profile("ISSUER_CEO", company.id, "Issuer CEO")


@pytest.fixture()
def cfo(company):
    return make_profile("ISSUER_CFO", company.id, "Issuer CFO")


@pytest.fixture()
def advisor():
    return make_profile("IB_ADVISOR", full_name="Assigned Advisor")


@pytest.fixture()
def other_advisor():
    return make_profile("IB_ADVISOR", full_name="Other Advisor")


@pytest.fixture()
def regulator():
    return make_profile("CMA_REGULATOR", full_name="CMA Officer")


@pytest.fixture()
def other_regulator():
    return make_profile("CMA_REGULATOR", full_name="Second CMA Officer")


@pytest.fixture()
def admin():
    return make_profile("CMA_ADMIN", full_name="CMA Admin")


# ── Application fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def application(company, ceo):
    """DRAFT application with the ten fixed sections."""
    from ipo_workflow.services.application_lifecycle import create_application

    return create_application(
        company.id, ceo, target_amount=5_000_000.0, shares_offered=1_000_000, share_price=5.0,
    )


@pytest.fixture()
def advised_application(application, ceo, advisor):
    """Application in IB_REVIEW with ``advisor`` assigned."""
    from ipo_workflow.services.application_lifecycle import assign_advisor

    assign_advisor(application.id, ceo, advisor.id)
    return application


@pytest.fixture()
def submitted_application(advised_application, ceo, regulator, admin):
    """Every section COMPLETED, submitted by the CEO."""
    from ipo_workflow.services.application_lifecycle import submit_application

    complete_all_sections(advised_application)
    submit_application(advised_application.id, ceo)
    return advised_application
