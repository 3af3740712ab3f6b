"""Webhooks blueprint — /stripe/webhook

Receives Stripe webhook events. Publicly reachable and otherwise
unauthenticated: the signature check is the only gate.
Raw body is required for signature verification.
"""

import logging

import stripe
from flask import Blueprint, request, jsonify

from app.services.stripe_service import verify_webhook_signature, handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


def _webhook_error(reason):
    return f"Webhook Error: {reason}", 400, {"Content-Type": "text/plain; charset=utf-8"}


@webhooks_bp.route("/webhook", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET — 400, no DB access, on failure
    3. Dispatch to the handler for the event kind
    4. Return 200 to acknowledge receipt, or 500 so Stripe redelivers
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return _webhook_error("Missing signature")

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return _webhook_error(str(e))
    except ValueError as e:
        logger.warning(f"Webhook payload is not valid JSON: {e}")
        return _webhook_error("Invalid payload")

    # --- Process event ---
    success, message = handle_webhook_event(event)

    if success:
        return jsonify(received=True), 200
    else:
        logger.error(f"Webhook processing failed: {message}")
        return jsonify(error=message), 500
