"""Provider clients — Stripe and Resend.

Built once per app in init_app() from the app config, the same way the
other deferred extensions are bound. Handlers reach them through the
``providers`` instance in app.extensions:

    from app.extensions import providers

    providers.stripe.create_checkout_session(...)
    providers.email.send(...)

A client whose secret is missing is stored as None; accessing it raises
NotConfiguredError so only the endpoint that needs it fails.
"""

import logging

import requests
import stripe
from flask import current_app

from app.errors import NotConfiguredError, UpstreamError

logger = logging.getLogger(__name__)


class StripeGateway:
    """Thin wrapper that passes the secret key on every call.

    Avoids the process-wide ``stripe.api_key`` so each app instance
    (and each test app) carries its own credentials.
    """

    def __init__(self, api_key):
        self.api_key = api_key

    @property
    def livemode(self):
        return self.api_key.startswith("sk_live_")

    def create_customer(self, email=None, metadata=None):
        params = {"metadata": metadata or {}}
        if email:
            params["email"] = email
        return stripe.Customer.create(api_key=self.api_key, **params)

    def create_checkout_session(self, **params):
        return stripe.checkout.Session.create(api_key=self.api_key, **params)

    def retrieve_payment_method(self, payment_method_id):
        return stripe.PaymentMethod.retrieve(payment_method_id, api_key=self.api_key)

    def retrieve_price(self, price_id):
        return stripe.Price.retrieve(price_id, api_key=self.api_key, expand=["product"])


class ResendClient:
    """Resend transactional email API over plain HTTPS."""

    def __init__(self, api_key, api_url, timeout=15):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout

    def send(self, sender, to, subject, html, text=None, reply_to=None):
        """Send one email. Returns the Resend message id.

        Raises UpstreamError (500) if the request fails or Resend rejects it.
        """
        payload = {
            "from": sender,
            "to": [to] if isinstance(to, str) else list(to),
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        if reply_to:
            payload["reply_to"] = reply_to

        try:
            resp = requests.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Resend request failed: {e}")
            raise UpstreamError("Failed to send email", status_code=500, details=str(e))

        if not resp.ok:
            logger.error(f"Resend API error ({resp.status_code}): {resp.text}")
            raise UpstreamError(
                "Failed to send email", status_code=500, details=resp.text
            )

        return resp.json().get("id")


class ProviderState:
    def __init__(self, stripe_gateway=None, email_client=None, webhook_secret=None):
        self.stripe = stripe_gateway
        self.email = email_client
        self.webhook_secret = webhook_secret


class Providers:
    """Deferred extension holding per-app provider clients."""

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        config = app.config

        stripe_key = config.get("STRIPE_SECRET_KEY")
        resend_key = config.get("RESEND_API_KEY")

        state = ProviderState(
            stripe_gateway=StripeGateway(stripe_key) if stripe_key else None,
            email_client=(
                ResendClient(resend_key, config.get("RESEND_API_URL"))
                if resend_key else None
            ),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET") or None,
        )
        app.extensions["providers"] = state

    @property
    def state(self):
        return current_app.extensions["providers"]

    @property
    def stripe(self):
        gateway = self.state.stripe
        if gateway is None:
            raise NotConfiguredError("Stripe secret key is not configured")
        return gateway

    @property
    def email(self):
        client = self.state.email
        if client is None:
            raise NotConfiguredError("Email service not configured")
        return client

    @property
    def webhook_secret(self):
        secret = self.state.webhook_secret
        if not secret:
            raise NotConfiguredError("Stripe webhook secret is not configured")
        return secret
