"""Bearer-token authentication for the JSON API.

The front end signs visitors in with Supabase Auth and sends the access
token as ``Authorization: Bearer <token>``. Flask-Login's request_loader
verifies it against Supabase on each request — there is no server-side
session.
"""

import logging

import requests
from flask import current_app, jsonify
from flask_login import UserMixin

from app.extensions import login_manager

logger = logging.getLogger(__name__)


class Account(UserMixin):
    """An authenticated site visitor (a Supabase auth user)."""

    def __init__(self, id, email=None):
        self.id = id
        self.email = email

    def __repr__(self):
        return f"<Account {self.id}>"


def _bearer_token(request):
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def fetch_supabase_user(token):
    """Resolve an access token to a Supabase user dict, or None if invalid."""
    base_url = current_app.config.get("SUPABASE_URL")
    anon_key = current_app.config.get("SUPABASE_ANON_KEY")
    if not base_url or not anon_key:
        logger.warning("Bearer token received but Supabase Auth is not configured")
        return None

    try:
        resp = requests.get(
            f"{base_url.rstrip('/')}/auth/v1/user",
            headers={
                "apikey": anon_key,
                "Authorization": f"Bearer {token}",
            },
            timeout=10,
        )
    except requests.exceptions.RequestException as e:
        logger.warning(f"Supabase Auth lookup failed: {e}")
        return None

    if resp.status_code != 200:
        return None

    data = resp.json()
    if not data.get("id"):
        return None
    return data


@login_manager.request_loader
def load_account_from_request(request):
    token = _bearer_token(request)
    if not token:
        return None

    user = fetch_supabase_user(token)
    if user is None:
        logger.info("Rejected bearer token")
        return None
    return Account(id=user["id"], email=user.get("email"))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify(error="Unauthenticated"), 401
