"""Stripe service — checkout sessions and webhook reconciliation.

Responsible for:
- Creating Stripe Checkout Sessions (guest or signed-in)
- Verifying webhook signatures
- Dispatching verified events to handlers by event kind
- Translating Stripe payloads into order / subscription rows
"""

import enum
import json
import logging
from datetime import datetime, timezone

import stripe
from flask import current_app

from app.errors import ApiError, ValidationError
from app.extensions import db, providers
from app.services.billing_service import (
    get_account_id_from_stripe_customer,
    mark_subscription_canceled,
    record_order,
    resolve_or_create_stripe_customer,
    upsert_subscription,
)

logger = logging.getLogger(__name__)

CHECKOUT_MODES = ("payment", "subscription")
SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def with_session_id_placeholder(success_url):
    """Make sure Stripe can append its session id to the success URL."""
    if SESSION_ID_PLACEHOLDER in success_url:
        return success_url
    separator = "&" if "?" in success_url else "?"
    return f"{success_url}{separator}session_id={SESSION_ID_PLACEHOLDER}"


def validate_price_id(price_id):
    """Reject a missing price, or one outside the configured catalog.

    With no STRIPE_PRICE_IDS configured, Stripe itself is the catalog and
    rejects unknown prices with an InvalidRequestError.
    """
    if not price_id or not isinstance(price_id, str):
        raise ValidationError("priceId is required")

    known = current_app.config.get("STRIPE_PRICE_IDS") or []
    if known and price_id not in known:
        raise ValidationError(f"Unknown price: {price_id}")


def create_checkout_session(price_id, success_url, cancel_url,
                            account=None, mode="payment"):
    """Create a Stripe Checkout Session for a single price.

    Args:
        account:  The signed-in Account, or None for guest checkout. A
                  signed-in caller is attached to their Stripe customer
                  (created on first use); guests get a fresh customer
                  created by Stripe at checkout time.
        mode:     "payment" (one-off) or "subscription".

    Returns the hosted checkout URL.
    Raises ValidationError on bad input, NotConfiguredError without a
    Stripe key, stripe.StripeError on API failures.
    """
    validate_price_id(price_id)
    if mode not in CHECKOUT_MODES:
        raise ValidationError(f"mode must be one of: {', '.join(CHECKOUT_MODES)}")

    gateway = providers.stripe

    params = {
        "mode": mode,
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": with_session_id_placeholder(success_url),
        "cancel_url": cancel_url,
    }

    if account is not None:
        if not current_app.config.get("STRIPE_PRICE_IDS"):
            # No local catalog: let Stripe reject an unknown price before
            # a customer is created for this account.
            gateway.retrieve_price(price_id)
        params["customer"] = resolve_or_create_stripe_customer(
            account.id, account.email
        )
        params["metadata"] = {"user_id": str(account.id)}
    elif mode == "payment":
        # Subscription mode always creates a customer on its own.
        params["customer_creation"] = "always"

    session = gateway.create_checkout_session(**params)
    logger.info(
        f"Checkout session {session.id} created for price {price_id} "
        f"({'account ' + str(account.id) if account else 'guest'})"
    )
    return session.url


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

class EventKind(enum.Enum):
    """Stripe event types this service reacts to."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    UNHANDLED = "*"

    @classmethod
    def from_event_type(cls, event_type):
        try:
            kind = cls(event_type)
        except ValueError:
            return cls.UNHANDLED
        return kind


def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe-Signature header and decode the event.

    Returns the event as a plain dict.
    Raises NotConfiguredError without a webhook secret,
    stripe.SignatureVerificationError on a bad signature and
    ValueError on a body that is not a JSON event object.
    """
    secret = providers.webhook_secret
    stripe.WebhookSignature.verify_header(payload, sig_header, secret)
    event = json.loads(payload)
    if not isinstance(event, dict) or not isinstance(event.get("data"), dict):
        raise ValueError("Event payload is not a Stripe event object")
    return event


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    One commit per event; any failure rolls the event back so Stripe's
    redelivery can re-run it.

    Returns (success: bool, message: str).
    """
    event_type = event.get("type")
    kind = EventKind.from_event_type(event_type)
    handler = _HANDLERS[kind]

    try:
        handler(event)
        db.session.commit()
    except Exception as e:
        logger.error(f"Error handling {event_type} ({event.get('id')}): {e}", exc_info=True)
        db.session.rollback()
        return False, str(e)

    return True, "processed"


def _extract_period(sub_data, field):
    """Extract current_period_start / current_period_end from a subscription.

    In newer Stripe API versions the period bounds moved from the
    subscription top level to items.data[0]. Checks both locations.

    Returns a timezone-aware datetime or None.
    """
    ts = sub_data.get(field)

    if not ts:
        items = sub_data.get("items")
        if items and items.get("data"):
            ts = items["data"][0].get(field)

    if ts:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return None


def _extract_price_id(sub_data):
    items = sub_data.get("items")
    if items and items.get("data"):
        return (items["data"][0].get("price") or {}).get("id")
    return None


def _card_details(payment_method):
    """Return (brand, last4) for a payment method id or expanded object."""
    if not payment_method:
        return None, None

    if isinstance(payment_method, dict):
        card = payment_method.get("card") or {}
        return card.get("brand"), card.get("last4")

    try:
        pm = providers.stripe.retrieve_payment_method(payment_method)
    except (stripe.StripeError, ApiError) as e:
        logger.warning(f"Could not retrieve payment method {payment_method}: {e}")
        return None, None

    card = getattr(pm, "card", None)
    if card is None:
        return None, None
    return getattr(card, "brand", None), getattr(card, "last4", None)


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed — record the order."""
    session = event["data"]["object"]
    stripe_customer_id = session.get("customer")

    account_id = get_account_id_from_stripe_customer(stripe_customer_id)
    if not account_id:
        logger.warning(
            f"checkout.session.completed: no customer mapping for "
            f"customer={stripe_customer_id}, session={session.get('id')} — order not recorded"
        )
        return

    order, created = record_order(
        checkout_session_id=session["id"],
        stripe_customer_id=stripe_customer_id,
        payment_intent_id=session.get("payment_intent"),
        amount_subtotal=session.get("amount_subtotal"),
        amount_total=session.get("amount_total"),
        currency=session.get("currency"),
        payment_status=session.get("payment_status"),
    )
    if created:
        logger.info(f"Order recorded for session {session['id']} (account {account_id})")
    else:
        logger.info(f"Duplicate checkout.session.completed for {session['id']}, skipping")


def _handle_subscription_changed(event):
    """Handle customer.subscription.created / updated — upsert the row."""
    sub_data = event["data"]["object"]
    stripe_subscription_id = sub_data.get("id")
    stripe_customer_id = sub_data.get("customer")

    if not get_account_id_from_stripe_customer(stripe_customer_id):
        logger.warning(
            f"{event.get('type')}: no customer mapping for customer={stripe_customer_id}, "
            f"sub={stripe_subscription_id}"
        )
        return

    brand, last4 = _card_details(sub_data.get("default_payment_method"))

    # Stripe uses cancel_at_period_end OR cancel_at (a future timestamp)
    # to indicate the subscription is set to cancel. Treat either as cancelling.
    is_cancelling = (
        sub_data.get("cancel_at_period_end", False)
        or sub_data.get("cancel_at") is not None
    )

    upsert_subscription(
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=stripe_subscription_id,
        status=sub_data.get("status", "active"),
        price_id=_extract_price_id(sub_data),
        current_period_start=_extract_period(sub_data, "current_period_start"),
        current_period_end=_extract_period(sub_data, "current_period_end"),
        cancel_at_period_end=is_cancelling,
        payment_method_brand=brand,
        payment_method_last4=last4,
    )


def _handle_subscription_deleted(event):
    """Handle customer.subscription.deleted — soft-delete the row."""
    stripe_subscription_id = event["data"]["object"].get("id")

    if mark_subscription_canceled(stripe_subscription_id) is None:
        logger.warning(
            f"subscription.deleted: no local record for sub={stripe_subscription_id}"
        )


def _handle_unhandled(event):
    logger.info(f"Unhandled event type: {event.get('type')}")


_HANDLERS = {
    EventKind.CHECKOUT_COMPLETED: _handle_checkout_completed,
    EventKind.SUBSCRIPTION_CREATED: _handle_subscription_changed,
    EventKind.SUBSCRIPTION_UPDATED: _handle_subscription_changed,
    EventKind.SUBSCRIPTION_DELETED: _handle_subscription_deleted,
    EventKind.UNHANDLED: _handle_unhandled,
}
