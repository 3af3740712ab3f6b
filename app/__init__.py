import os
import logging
import sys

import click
from flask import Flask, jsonify, request

from app.config import Config, config_by_name
from app.errors import ApiError
from app.extensions import db, migrate, login_manager, limiter, providers


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    # --- Validate required env vars (skip in testing) ---
    # Missing secrets don't stop the process: each endpoint that needs
    # one answers 500 "not configured" instead.
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)
    providers.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from app import models  # noqa: F401

    # --- Bearer-token loader ---
    from app import auth  # noqa: F401

    # --- Register blueprints ---
    from app.blueprints.checkout import checkout_bp
    from app.blueprints.account import account_bp
    from app.blueprints.webhooks import webhooks_bp
    from app.blueprints.contact import contact_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(account_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(contact_bp)

    # --- Error handlers ---
    @app.errorhandler(ApiError)
    def api_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="Not found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(error="Method not allowed"), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(error="Too many requests. Please try again later."), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(error="Internal server error"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- CORS (marketing site is served from another origin) ---
    @app.after_request
    def add_cors_headers(response):
        """Allow the static front end to call /api/* cross-origin."""
        if request.path.startswith("/api/"):
            response.headers["Access-Control-Allow-Origin"] = app.config["CORS_ALLOWED_ORIGIN"]
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = (
                "Content-Type, Authorization, X-Client-Info, Apikey"
            )
        return response

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Permissions Policy (restrict browser features)
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=()"
        )
        # JSON-only API: nothing here should ever be rendered or framed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("check-config")
    def check_config():
        """List required settings that are empty in this app's config.

        Exits non-zero when anything is missing, so deploy scripts can
        gate on it:
            flask check-config
        """
        missing = Config.missing_settings(app.config)
        if not missing:
            click.echo("All required settings are present.")
            return

        click.echo("Missing required settings:")
        for name in missing:
            click.echo(f"  {name}")
        sys.exit(1)

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Verify configured Stripe price IDs exist and are usable (same mode as key).

        Uses STRIPE_SECRET_KEY and STRIPE_PRICE_IDS from env.
        Run with prod env vars to confirm Live prices; run with test vars for Test mode.
        """
        import stripe as _stripe

        api_key = app.config.get("STRIPE_SECRET_KEY")
        price_ids = app.config.get("STRIPE_PRICE_IDS") or []

        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        if not price_ids:
            click.echo("STRIPE_PRICE_IDS is empty — Stripe will be the only price check.")
            return

        with app.app_context():
            gateway = providers.stripe
        key_mode = "Live" if gateway.livemode else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        for price_id in price_ids:
            try:
                price = gateway.retrieve_price(price_id)
            except _stripe.InvalidRequestError as e:
                click.echo(f"  {price_id}")
                click.echo(f"    ERROR: {e}")
                click.echo("")
                continue

            product = getattr(price, "product", None)
            product_name = getattr(product, "name", "?")
            product_active = getattr(product, "active", "?")
            livemode = getattr(price, "livemode", "?")
            amount = getattr(price, "unit_amount", None)
            currency = (getattr(price, "currency", "") or "").upper()

            click.echo(f"  {price_id}: {product_name}")
            if amount is not None:
                click.echo(f"    amount={amount / 100:.2f} {currency}")
            click.echo(f"    livemode={livemode}, product_active={product_active}")
            if livemode is True and key_mode != "Live":
                click.echo("    WARNING: This price is Live but your key is Test.")
            elif livemode is False and key_mode == "Live":
                click.echo("    WARNING: This price is Test but your key is Live.")
            click.echo("")
