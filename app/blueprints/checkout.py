"""Checkout blueprint — /api/checkout, /api/orders/*

Called by the pricing section of the marketing site.

Routes:
- POST /api/checkout                        — create Checkout Session, return its URL
- GET  /api/orders/<checkout_session_id>    — order lookup for the success page
"""

import logging
from urllib.parse import urlparse

import stripe
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from app.errors import ApiError, AuthenticationError, UpstreamError, ValidationError
from app.extensions import limiter
from app.services.billing_service import get_order_by_session
from app.services.stripe_service import create_checkout_session

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


def _is_http_url(value):
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _site_origin():
    """Origin of the calling page, falling back to SITE_URL."""
    origin = request.headers.get("Origin")
    if origin and _is_http_url(origin):
        return origin.rstrip("/")
    return current_app.config["SITE_URL"].rstrip("/")


def _stripe_message(e):
    return getattr(e, "user_message", None) or str(e)


# ──────────────────────────────────────────────
# POST /api/checkout
# ──────────────────────────────────────────────

@checkout_bp.route("/checkout", methods=["POST"])
@limiter.limit("20 per minute")
def checkout():
    """Create a Stripe Checkout Session.

    Expects: { priceId, successUrl?, cancelUrl?, mode? }
    Returns: { url } or { error }

    A bearer token attaches the checkout to the caller's Stripe customer.
    With CHECKOUT_REQUIRE_AUTH the token is mandatory (401 without it).
    """
    if current_user.is_authenticated:
        account = current_user._get_current_object()
    elif current_app.config.get("CHECKOUT_REQUIRE_AUTH"):
        raise AuthenticationError("Unauthenticated")
    else:
        account = None

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid request")

    price_id = data.get("priceId") or data.get("price_id")
    mode = data.get("mode") or "payment"

    origin = _site_origin()
    success_url = data.get("successUrl") or data.get("success_url") or f"{origin}/success"
    cancel_url = data.get("cancelUrl") or data.get("cancel_url") or f"{origin}/#pricing"

    for label, url in (("successUrl", success_url), ("cancelUrl", cancel_url)):
        if not isinstance(url, str) or not _is_http_url(url):
            raise ValidationError(f"{label} must be an absolute http(s) URL")

    try:
        checkout_url = create_checkout_session(
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            account=account,
            mode=mode,
        )
    except stripe.InvalidRequestError as e:
        logger.warning(f"Checkout rejected by Stripe: {e}")
        raise ValidationError(_stripe_message(e))
    except stripe.StripeError as e:
        logger.error(f"Checkout error: {e}", exc_info=True)
        raise UpstreamError(_stripe_message(e))

    return jsonify(url=checkout_url), 200


# ──────────────────────────────────────────────
# GET /api/orders/<checkout_session_id>
# ──────────────────────────────────────────────

@checkout_bp.route("/orders/<checkout_session_id>")
def order_status(checkout_session_id):
    """Order summary for the post-checkout success page.

    The webhook may not have arrived yet; the page polls until it has.
    Session ids are unguessable, so only display fields are returned.
    """
    order = get_order_by_session(checkout_session_id)
    if order is None:
        raise ApiError("Order not found", status_code=404)

    return jsonify(
        checkout_session_id=order.checkout_session_id,
        status=order.status,
        payment_status=order.payment_status,
        amount_total=order.amount_total,
        currency=order.currency,
    ), 200
