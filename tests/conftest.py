"""Shared test fixtures for the BusyBiz backend test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake secrets)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: a signed-in account already mapped to a Stripe customer
- login_as: authenticate requests as a Supabase user without the network
- send_event: POST a webhook event carrying a real Stripe-Signature header
"""

import hashlib
import hmac
import json
import time
import uuid
from unittest.mock import patch

import pytest

from app import create_app
from app.extensions import db as _db
from app.models.billing import BillingCustomer

WEBHOOK_SECRET = "whsec_test_fake"


def _sign(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header the way Stripe does (HMAC-SHA256)."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def sign_payload():
    """The Stripe-Signature builder, for tests that post raw bodies."""
    return _sign


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
    """Seed one account that has checked out before (has a Stripe customer).

    Returns plain values so tests can use them across app contexts.
    """
    with app.app_context():
        customer = BillingCustomer(
            account_id="user-anna",
            stripe_customer_id="cus_known",
            email="anna@example.dk",
        )
        _db.session.add(customer)
        _db.session.commit()

        return {
            "account_id": "user-anna",
            "email": "anna@example.dk",
            "stripe_customer_id": "cus_known",
            "token": "token-anna",
        }


@pytest.fixture
def login_as():
    """Make bearer tokens resolve to the given Supabase user.

    Usage:
        login_as("user-anna", "anna@example.dk")
        client.get(..., headers={"Authorization": "Bearer anything"})
    """
    patchers = []

    def _login(account_id, email=None):
        patcher = patch(
            "app.auth.fetch_supabase_user",
            return_value={"id": account_id, "email": email},
        )
        patchers.append(patcher)
        return patcher.start()

    yield _login

    for patcher in patchers:
        patcher.stop()


@pytest.fixture
def send_event(client):
    """POST a signed Stripe event to /stripe/webhook.

    Returns the response.
    """

    def _send(event_type, obj, event_id=None, secret=WEBHOOK_SECRET):
        payload = json.dumps({
            "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        })
        return client.post(
            "/stripe/webhook",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": _sign(payload, secret=secret)},
        )

    return _send
