"""Account blueprint — /api/account/*

Read-only billing views for the signed-in visitor (bearer token).

Routes:
- GET /api/account/subscription  — latest subscription, or null
- GET /api/account/orders        — completed orders, newest first
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from app.models.order import Order
from app.services.billing_service import get_billing_customer, get_latest_subscription

account_bp = Blueprint("account", __name__, url_prefix="/api/account")


@account_bp.route("/subscription")
@login_required
def subscription():
    customer = get_billing_customer(current_user.id)
    if customer is None:
        return jsonify(subscription=None), 200

    sub = get_latest_subscription(customer.stripe_customer_id)
    return jsonify(subscription=sub.to_dict() if sub else None), 200


@account_bp.route("/orders")
@login_required
def orders():
    customer = get_billing_customer(current_user.id)
    if customer is None:
        return jsonify(orders=[]), 200

    rows = (
        Order.query
        .filter_by(stripe_customer_id=customer.stripe_customer_id)
        .order_by(Order.created_at.desc())
        .all()
    )
    return jsonify(orders=[o.to_dict() for o in rows]), 200
