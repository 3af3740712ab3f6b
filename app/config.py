import os


def _flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


def _csv(name):
    return [v.strip() for v in os.environ.get(name, "").split(",") if v.strip()]


class Config:
    """Base configuration. Shared across all environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: Supabase and most PaaS providers hand out
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    # Known catalog prices. Empty = let Stripe reject unknown prices.
    STRIPE_PRICE_IDS = _csv("STRIPE_PRICE_IDS")

    # --- Checkout ---
    SITE_URL = os.environ.get("SITE_URL", "http://localhost:5173")
    # False: anonymous checkout allowed, Stripe collects payer identity.
    # True:  a valid bearer token is required to start checkout.
    CHECKOUT_REQUIRE_AUTH = _flag("CHECKOUT_REQUIRE_AUTH")

    # --- Supabase Auth (bearer token verification) ---
    SUPABASE_URL = os.environ.get("SUPABASE_URL")            # e.g. https://xyz.supabase.co
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY")

    # --- Email (Resend) ---
    RESEND_API_KEY = os.environ.get("RESEND_API_KEY")
    RESEND_API_URL = os.environ.get("RESEND_API_URL", "https://api.resend.com/emails")
    CONTACT_TO_EMAIL = os.environ.get("CONTACT_TO_EMAIL")   # business inbox
    CONTACT_FROM_EMAIL = os.environ.get(
        "CONTACT_FROM_EMAIL", "BusyBiz Kontaktformular <onboarding@resend.dev>"
    )

    # --- CORS (static front end lives on another origin) ---
    CORS_ALLOWED_ORIGIN = os.environ.get("CORS_ALLOWED_ORIGIN", "*")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # Settings each endpoint family needs, by config key. Missing ones
    # make that endpoint answer 500 "not configured" instead of crashing
    # the app.
    REQUIRED_SETTINGS = {
        "database": ["SQLALCHEMY_DATABASE_URI"],
        "checkout": ["STRIPE_SECRET_KEY"],
        "webhooks": ["STRIPE_WEBHOOK_SECRET"],
        "auth": ["SUPABASE_URL", "SUPABASE_ANON_KEY"],
        "contact": ["RESEND_API_KEY", "CONTACT_TO_EMAIL"],
    }

    # Config keys whose environment variable has a different name.
    ENV_NAMES = {"SQLALCHEMY_DATABASE_URI": "DATABASE_URL"}

    @classmethod
    def missing_settings(cls, settings=None):
        """Return the env var names of required settings that are empty.

        Reads ``settings`` (e.g. a live ``app.config``) when given,
        otherwise this config class, so defaults and hardcoded test
        values count as set.
        """
        missing = []
        for keys in cls.REQUIRED_SETTINGS.values():
            for key in keys:
                if settings is not None:
                    value = settings.get(key)
                else:
                    value = getattr(cls, key, None)
                name = cls.ENV_NAMES.get(key, key)
                if not value and name not in missing:
                    missing.append(name)
        return missing

    @classmethod
    def validate(cls):
        """Fail fast if required env vars are missing."""
        missing = cls.missing_settings()
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = Config.SQLALCHEMY_DATABASE_URI or "sqlite:///busybiz-dev.db"


class TestConfig(Config):
    """Testing — in-memory SQLite, fake provider secrets."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_PRICE_IDS = ["price_known", "price_monthly"]
    SITE_URL = "https://busybiz.example.dk"
    CHECKOUT_REQUIRE_AUTH = False  # override per-test as needed
    SUPABASE_URL = "https://project.supabase.test"
    SUPABASE_ANON_KEY = "anon_test_fake"
    RESEND_API_KEY = "re_test_fake"
    CONTACT_TO_EMAIL = "owner@busybiz.example.dk"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @classmethod
    def validate(cls):
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
