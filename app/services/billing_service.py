"""Billing service — Customer Directory and DB sync helpers.

Responsible for:
- Mapping internal accounts to Stripe customers (resolve or create)
- Looking up the account behind a Stripe customer ID
- Recording orders from completed checkout sessions (idempotent)
- Upserting / soft-deleting subscription rows from webhook data

Write helpers flush but do NOT commit — the webhook handler commits once
per event so a failure rolls back the whole event.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from app.extensions import db, providers
from app.models.billing import BillingCustomer, Subscription
from app.models.order import Order

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Customer Directory
# ──────────────────────────────────────────────

def get_billing_customer(account_id):
    """Return the BillingCustomer for an internal account, or None."""
    return BillingCustomer.query.filter_by(account_id=account_id).first()


def get_account_id_from_stripe_customer(stripe_customer_id):
    """Look up the internal account id behind a Stripe customer ID.

    Returns the account id string or None.
    """
    if not stripe_customer_id:
        return None
    customer = BillingCustomer.query.filter_by(
        stripe_customer_id=stripe_customer_id
    ).first()
    if customer:
        return customer.account_id
    return None


def resolve_or_create_stripe_customer(account_id, email=None):
    """Return the Stripe customer ID for an account, creating it on first use.

    Creates the Stripe customer first, then persists the mapping. If the
    commit fails after Stripe succeeded, the Stripe customer is orphaned:
    its ID is logged for manual cleanup and the error propagates.

    Raises stripe.StripeError on API failures.
    """
    existing = get_billing_customer(account_id)
    if existing:
        return existing.stripe_customer_id

    customer = providers.stripe.create_customer(
        email=email,
        metadata={"user_id": str(account_id)},
    )

    mapping = BillingCustomer(
        account_id=account_id,
        stripe_customer_id=customer.id,
        email=email,
    )
    db.session.add(mapping)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request mapped this account first; use its customer.
        db.session.rollback()
        winner = get_billing_customer(account_id)
        if winner is None:
            logger.error(
                f"Orphaned Stripe customer {customer.id} for account {account_id}"
            )
            raise
        logger.warning(
            f"Concurrent customer creation for account {account_id}; "
            f"orphaned Stripe customer {customer.id}, using {winner.stripe_customer_id}"
        )
        return winner.stripe_customer_id
    except Exception:
        db.session.rollback()
        logger.error(
            f"Orphaned Stripe customer {customer.id} for account {account_id}",
            exc_info=True,
        )
        raise

    logger.info(f"Created Stripe customer {customer.id} for account {account_id}")
    return customer.id


# ──────────────────────────────────────────────
# Orders
# ──────────────────────────────────────────────

def record_order(checkout_session_id, stripe_customer_id, payment_intent_id=None,
                 amount_subtotal=None, amount_total=None, currency=None,
                 payment_status=None):
    """Insert an Order for a completed checkout session.

    Idempotent on checkout_session_id: an existing row is returned as-is,
    and a unique-constraint violation from a concurrent insert is treated
    as the same no-op.

    Returns (order, created: bool).
    """
    existing = Order.query.filter_by(
        checkout_session_id=checkout_session_id
    ).first()
    if existing:
        return existing, False

    order = Order(
        checkout_session_id=checkout_session_id,
        payment_intent_id=payment_intent_id,
        stripe_customer_id=stripe_customer_id,
        amount_subtotal=amount_subtotal,
        amount_total=amount_total,
        currency=currency,
        payment_status=payment_status,
        status="completed",
    )

    db.session.add(order)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Order for session {checkout_session_id} inserted concurrently")
        existing = Order.query.filter_by(
            checkout_session_id=checkout_session_id
        ).first()
        return existing, False

    return order, True


def get_order_by_session(checkout_session_id):
    return Order.query.filter_by(checkout_session_id=checkout_session_id).first()


# ──────────────────────────────────────────────
# Subscriptions
# ──────────────────────────────────────────────

def upsert_subscription(stripe_customer_id, stripe_subscription_id, status,
                        price_id=None, current_period_start=None,
                        current_period_end=None, cancel_at_period_end=False,
                        payment_method_brand=None, payment_method_last4=None):
    """Create or update a Subscription from Stripe data.

    Keyed by stripe_subscription_id. Last write wins: whatever delivery
    arrives last overwrites the row.
    Returns the Subscription instance.
    """
    sub = Subscription.query.filter_by(
        stripe_subscription_id=stripe_subscription_id
    ).first()

    if sub is None:
        sub = Subscription(stripe_subscription_id=stripe_subscription_id)
        db.session.add(sub)

    sub.stripe_customer_id = stripe_customer_id
    sub.status = status
    sub.price_id = price_id
    sub.current_period_start = current_period_start
    sub.current_period_end = current_period_end
    sub.cancel_at_period_end = bool(cancel_at_period_end)
    sub.payment_method_brand = payment_method_brand
    sub.payment_method_last4 = payment_method_last4

    db.session.flush()
    return sub


def mark_subscription_canceled(stripe_subscription_id):
    """Soft-delete a subscription: status=canceled plus a deleted_at stamp.

    Returns the Subscription, or None if there is no local row.
    """
    sub = Subscription.query.filter_by(
        stripe_subscription_id=stripe_subscription_id
    ).first()
    if sub is None:
        return None

    sub.status = "canceled"
    sub.deleted_at = datetime.now(timezone.utc)
    db.session.flush()
    return sub


def get_latest_subscription(stripe_customer_id):
    return (
        Subscription.query
        .filter_by(stripe_customer_id=stripe_customer_id)
        .order_by(Subscription.created_at.desc())
        .first()
    )
