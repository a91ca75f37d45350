"""Shared test fixtures for the donation backend test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake Stripe keys)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: admin, donor #42, active campaign #7, soft-deleted campaign #8
- auth_headers: bearer-token headers for a seeded user
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from givsociety import create_app
from givsociety.extensions import db as _db
from givsociety.models.campaign import Campaign
from givsociety.models.user import User
from givsociety.services.token_service import generate_access_token


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed an admin, a donor, an active campaign and a deleted campaign.

    Returns plain IDs so tests can use them after the session expires
    objects on commit.
    """
    admin = User(
        id=1,
        email="admin@givsociety.local",
        full_name="Admin User",
        role="admin",
    )
    donor = User(
        id=42,
        email="donor42@example.com",
        full_name="Dana Donor",
        role="donor",
    )
    other_donor = User(
        id=43,
        email="donor43@example.com",
        full_name="Other Donor",
        role="donor",
    )
    _db.session.add_all([admin, donor, other_donor])
    _db.session.flush()

    campaign = Campaign(
        id=7,
        title="Clean Water for All",
        slug="clean-water-for-all",
        goal_amount=Decimal("20000.00"),
        current_amount=Decimal("0.00"),
        donor_count=0,
        is_active=True,
        created_by=admin.id,
    )
    deleted_campaign = Campaign(
        id=8,
        title="Retired Campaign",
        slug="retired-campaign",
        goal_amount=Decimal("5000.00"),
        current_amount=Decimal("0.00"),
        donor_count=0,
        is_active=False,
        deleted_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        created_by=admin.id,
    )
    _db.session.add_all([campaign, deleted_campaign])
    _db.session.commit()

    return {
        "admin_id": 1,
        "donor_id": 42,
        "other_donor_id": 43,
        "campaign_id": 7,
        "deleted_campaign_id": 8,
    }


@pytest.fixture
def auth_headers(app, db_session):
    """Return a function building Authorization headers for a user id."""

    def _headers(user_id):
        user = _db.session.get(User, user_id)
        return {"Authorization": f"Bearer {generate_access_token(user)}"}

    return _headers
