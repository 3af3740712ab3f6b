"""Order model.

One row per completed Stripe Checkout Session, written by the
checkout.session.completed webhook. Append-only: the checkout session id
is the natural key and carries a unique constraint, so a redelivered
event cannot produce a second row.
"""

import uuid

from app.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    checkout_session_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cs_test_a1B2..."
    payment_intent_id = db.Column(db.String(255), nullable=True)
    stripe_customer_id = db.Column(
        db.String(255), nullable=False, index=True
    )
    amount_subtotal = db.Column(db.Integer, nullable=True)  # minor units (øre)
    amount_total = db.Column(db.Integer, nullable=True)
    currency = db.Column(db.String(3), nullable=True)
    payment_status = db.Column(db.String(50), nullable=True)  # paid | unpaid | no_payment_required
    status = db.Column(db.String(50), nullable=False, default="completed")
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {
            "checkout_session_id": self.checkout_session_id,
            "payment_intent_id": self.payment_intent_id,
            "amount_subtotal": self.amount_subtotal,
            "amount_total": self.amount_total,
            "currency": self.currency,
            "payment_status": self.payment_status,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Order {self.checkout_session_id} ({self.status})>"
