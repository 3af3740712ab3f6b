"""Billing models.

- BillingCustomer: links an internal account (Supabase user id) to a
  Stripe customer ID. Created lazily on the first authenticated checkout.
- Subscription: tracks subscription state synced from Stripe webhooks.
  Soft-deleted — a canceled subscription keeps its row with status
  "canceled" and a deleted_at stamp.
"""

import uuid

from app.extensions import db


class BillingCustomer(db.Model):
    __tablename__ = "billing_customers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    account_id = db.Column(
        db.String(36), unique=True, nullable=False, index=True
    )  # Supabase auth user id
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    email = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<BillingCustomer stripe={self.stripe_customer_id}>"


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_customer_id = db.Column(
        db.String(255), nullable=False, index=True
    )
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    price_id = db.Column(db.String(255), nullable=True)
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    payment_method_brand = db.Column(db.String(50), nullable=True)  # e.g. "visa"
    payment_method_last4 = db.Column(db.String(4), nullable=True)
    status = db.Column(db.String(50), nullable=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "subscription_id": self.stripe_subscription_id,
            "status": self.status,
            "price_id": self.price_id,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "cancel_at_period_end": bool(self.cancel_at_period_end),
            "payment_method_brand": self.payment_method_brand,
            "payment_method_last4": self.payment_method_last4,
        }

    def __repr__(self):
        return f"<Subscription {self.stripe_subscription_id} ({self.status})>"


def _iso(value):
    return value.isoformat() if value else None
