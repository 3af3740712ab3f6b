"""Tests for the webhooks blueprint and Stripe event handling.

Covers:
- Webhook signature verification (missing, invalid, not configured)
- checkout.session.completed -> order row (idempotent on session id)
- customer.subscription.created / updated -> upsert, last write wins
- customer.subscription.deleted -> soft delete
- Unknown customers and unknown event types (acknowledged, no writes)
- Database failures -> 500 so Stripe redelivers
"""

import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import stripe
from sqlalchemy.exc import OperationalError

from app.models.billing import Subscription
from app.models.order import Order


def _checkout_session(session_id="cs_test_001", customer="cus_known", **overrides):
    session = {
        "id": session_id,
        "object": "checkout.session",
        "customer": customer,
        "payment_intent": "pi_test_001",
        "amount_subtotal": 399900,
        "amount_total": 399900,
        "currency": "dkk",
        "payment_status": "paid",
        "mode": "payment",
    }
    session.update(overrides)
    return session


def _naive(value):
    """SQLite drops tzinfo; stored values are UTC either way."""
    return value.replace(tzinfo=None)


def _subscription(sub_id="sub_001", customer="cus_known", **overrides):
    sub = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": "active",
        "current_period_start": 1793491200,
        "current_period_end": 1796083200,
        "cancel_at_period_end": False,
        "cancel_at": None,
        "default_payment_method": None,
        "items": {
            "data": [{"price": {"id": "price_monthly"}}]
        },
    }
    sub.update(overrides)
    return sub


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client, seed_data):
        """POST /stripe/webhook without signature -> 400."""
        resp = client.post(
            "/stripe/webhook",
            data="{}",
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert b"Missing signature" in resp.data

    def test_invalid_signature_returns_400_and_writes_nothing(self, send_event, seed_data, app):
        """Signed with the wrong secret -> 400, no order recorded."""
        resp = send_event(
            "checkout.session.completed",
            _checkout_session(),
            secret="whsec_someone_else",
        )
        assert resp.status_code == 400
        assert resp.data.startswith(b"Webhook Error:")
        assert resp.content_type.startswith("text/plain")

        with app.app_context():
            assert Order.query.count() == 0

    def test_tampered_body_returns_400(self, client, seed_data, app, sign_payload):
        """Signature for one body, different body sent -> 400."""
        original = json.dumps({"id": "evt_1", "type": "checkout.session.completed",
                               "data": {"object": _checkout_session()}})
        tampered = original.replace("399900", "1")

        resp = client.post(
            "/stripe/webhook",
            data=tampered,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(original)},
        )
        assert resp.status_code == 400

        with app.app_context():
            assert Order.query.count() == 0

    def test_garbage_signature_header_returns_400(self, client, seed_data):
        resp = client.post(
            "/stripe/webhook",
            data="{}",
            content_type="application/json",
            headers={"Stripe-Signature": "bad_sig"},
        )
        assert resp.status_code == 400
        assert b"Webhook Error" in resp.data

    def test_missing_webhook_secret_returns_500(self, send_event, app, monkeypatch):
        """No STRIPE_WEBHOOK_SECRET -> fail closed with 500."""
        monkeypatch.setattr(app.extensions["providers"], "webhook_secret", None)

        resp = send_event("checkout.session.completed", _checkout_session())
        assert resp.status_code == 500
        assert "not configured" in resp.get_json()["error"]

    @pytest.mark.parametrize("body", [
        '["x"]',
        '"checkout.session.completed"',
        '{"id": "evt_1", "type": "checkout.session.completed"}',
    ])
    @patch("app.blueprints.webhooks.handle_webhook_event")
    def test_signed_non_event_body_returns_400(self, mock_handle, body, client, sign_payload):
        """Valid signature over JSON that is not an event object -> 400."""
        resp = client.post(
            "/stripe/webhook",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(body)},
        )
        assert resp.status_code == 400
        assert resp.data == b"Webhook Error: Invalid payload"
        mock_handle.assert_not_called()

    def test_signed_non_json_body_returns_400(self, client, sign_payload):
        body = "not json"
        resp = client.post(
            "/stripe/webhook",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(body)},
        )
        assert resp.status_code == 400
        assert resp.data == b"Webhook Error: Invalid payload"

    @patch("app.blueprints.webhooks.handle_webhook_event")
    def test_handler_not_called_on_bad_signature(self, mock_handle, send_event, seed_data):
        send_event("checkout.session.completed", _checkout_session(), secret="whsec_wrong")
        mock_handle.assert_not_called()


class TestCheckoutCompleted:
    """Tests for checkout.session.completed webhook."""

    def test_creates_order_for_known_customer(self, send_event, seed_data, app):
        """Valid signature + known customer -> exactly one completed order."""
        resp = send_event("checkout.session.completed", _checkout_session())
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

        with app.app_context():
            orders = Order.query.all()
            assert len(orders) == 1
            order = orders[0]
            assert order.checkout_session_id == "cs_test_001"
            assert order.status == "completed"
            assert order.payment_intent_id == "pi_test_001"
            assert order.stripe_customer_id == "cus_known"
            assert order.amount_total == 399900
            assert order.currency == "dkk"
            assert order.payment_status == "paid"

    def test_duplicate_delivery_yields_one_order(self, send_event, seed_data, app):
        """Stripe redelivering the same session must not duplicate the order."""
        first = send_event("checkout.session.completed", _checkout_session(), event_id="evt_dup")
        second = send_event("checkout.session.completed", _checkout_session(), event_id="evt_dup")

        assert first.status_code == 200
        assert second.status_code == 200

        with app.app_context():
            assert Order.query.filter_by(checkout_session_id="cs_test_001").count() == 1

    def test_unknown_customer_is_acknowledged_and_skipped(self, send_event, seed_data, app):
        """No customer mapping -> 200, order dropped (logged only)."""
        resp = send_event(
            "checkout.session.completed",
            _checkout_session(customer="cus_guest_never_seen"),
        )
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

        with app.app_context():
            assert Order.query.count() == 0

    def test_session_without_customer_is_skipped(self, send_event, seed_data, app):
        resp = send_event("checkout.session.completed", _checkout_session(customer=None))
        assert resp.status_code == 200

        with app.app_context():
            assert Order.query.count() == 0

    @patch("app.services.stripe_service.record_order")
    def test_database_error_returns_500(self, mock_record, send_event, seed_data, app):
        """A failed write -> 500 so Stripe retries the delivery."""
        mock_record.side_effect = OperationalError("INSERT", {}, Exception("db down"))

        resp = send_event("checkout.session.completed", _checkout_session())
        assert resp.status_code == 500
        assert "error" in resp.get_json()


class TestSubscriptionChanged:
    """Tests for customer.subscription.created / updated webhooks."""

    def test_created_inserts_subscription(self, send_event, seed_data, app):
        resp = send_event("customer.subscription.created", _subscription())
        assert resp.status_code == 200

        with app.app_context():
            sub = Subscription.query.filter_by(stripe_subscription_id="sub_001").first()
            assert sub is not None
            assert sub.status == "active"
            assert sub.price_id == "price_monthly"
            assert sub.stripe_customer_id == "cus_known"
            assert sub.current_period_start is not None
            assert sub.current_period_end is not None
            assert sub.cancel_at_period_end is False
            assert sub.deleted_at is None

    def test_last_write_wins_on_period_end(self, send_event, seed_data, app):
        """Two updates with different period ends -> row reflects the later delivery."""
        send_event("customer.subscription.updated", _subscription(current_period_end=1796083200))
        send_event("customer.subscription.updated", _subscription(current_period_end=1798761600))

        with app.app_context():
            subs = Subscription.query.filter_by(stripe_subscription_id="sub_001").all()
            assert len(subs) == 1
            assert _naive(subs[0].current_period_end) == datetime(2027, 1, 1)

    def test_last_write_wins_in_either_order(self, send_event, seed_data, app):
        send_event("customer.subscription.updated", _subscription(current_period_end=1798761600))
        send_event("customer.subscription.updated", _subscription(current_period_end=1796083200))

        with app.app_context():
            sub = Subscription.query.filter_by(stripe_subscription_id="sub_001").one()
            assert _naive(sub.current_period_end) == datetime(2026, 12, 1)

    def test_updates_status_and_cancel_flag(self, send_event, seed_data, app):
        send_event("customer.subscription.created", _subscription())
        send_event(
            "customer.subscription.updated",
            _subscription(status="past_due", cancel_at_period_end=True),
        )

        with app.app_context():
            sub = Subscription.query.filter_by(stripe_subscription_id="sub_001").one()
            assert sub.status == "past_due"
            assert sub.cancel_at_period_end is True

    def test_cancel_at_counts_as_cancelling(self, send_event, seed_data, app):
        send_event("customer.subscription.updated", _subscription(cancel_at=1798761600))

        with app.app_context():
            sub = Subscription.query.filter_by(stripe_subscription_id="sub_001").one()
            assert sub.cancel_at_period_end is True

    def test_period_read_from_items_on_newer_api(self, send_event, seed_data, app):
        """Newer API versions only carry the period on items.data[0]."""
        data = _subscription()
        del data["current_period_start"]
        del data["current_period_end"]
        data["items"] = {"data": [{
            "price": {"id": "price_monthly"},
            "current_period_start": 1793491200,
            "current_period_end": 1796083200,
        }]}

        send_event("customer.subscription.created", data)

        with app.app_context():
            sub = Subscription.query.filter_by(stripe_subscription_id="sub_001").one()
            assert _naive(sub.current_period_end) == datetime(2026, 12, 1)

    @patch("app.providers.stripe.PaymentMethod.retrieve")
    def test_fetches_card_details(self, mock_retrieve, send_event, seed_data, app):
        mock_retrieve.return_value = MagicMock(card=MagicMock(brand="visa", last4="4242"))

        send_event("customer.subscription.created", _subscription(default_payment_method="pm_123"))

        mock_retrieve.assert_called_once()
        assert mock_retrieve.call_args.args[0] == "pm_123"
        assert mock_retrieve.call_args.kwargs["api_key"] == "sk_test_fake"

        with app.app_context():
            sub = Subscription.query.filter_by(stripe_subscription_id="sub_001").one()
            assert sub.payment_method_brand == "visa"
            assert sub.payment_method_last4 == "4242"

    @patch("app.providers.stripe.PaymentMethod.retrieve")
    def test_card_lookup_failure_is_not_fatal(self, mock_retrieve, send_event, seed_data, app):
        mock_retrieve.side_effect = stripe.InvalidRequestError("No such PaymentMethod", "id")

        resp = send_event(
            "customer.subscription.created",
            _subscription(default_payment_method="pm_gone"),
        )
        assert resp.status_code == 200

        with app.app_context():
            sub = Subscription.query.filter_by(stripe_subscription_id="sub_001").one()
            assert sub.payment_method_brand is None
            assert sub.status == "active"

    def test_unknown_customer_is_skipped(self, send_event, seed_data, app):
        resp = send_event("customer.subscription.updated", _subscription(customer="cus_unknown"))
        assert resp.status_code == 200

        with app.app_context():
            assert Subscription.query.count() == 0


class TestSubscriptionDeleted:
    """Tests for customer.subscription.deleted webhook."""

    def test_marks_subscription_canceled(self, send_event, seed_data, app):
        """subscription.deleted -> status=canceled + deleted_at, row kept."""
        send_event("customer.subscription.created", _subscription(sub_id="sub_del"))

        resp = send_event("customer.subscription.deleted", {"id": "sub_del", "customer": "cus_known"})
        assert resp.status_code == 200

        with app.app_context():
            sub = Subscription.query.filter_by(stripe_subscription_id="sub_del").one()
            assert sub.status == "canceled"
            assert sub.deleted_at is not None

    def test_unknown_subscription_is_acknowledged(self, send_event, seed_data, app):
        resp = send_event("customer.subscription.deleted", {"id": "sub_nope", "customer": "cus_known"})
        assert resp.status_code == 200

        with app.app_context():
            assert Subscription.query.count() == 0


class TestUnknownEvent:
    """Tests for unhandled event types."""

    def test_unknown_event_accepted(self, send_event, seed_data, app):
        """Unknown event type -> 200, nothing written."""
        resp = send_event("invoice.finalized", {"id": "in_001", "customer": "cus_known"})
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

        with app.app_context():
            assert Order.query.count() == 0
            assert Subscription.query.count() == 0
