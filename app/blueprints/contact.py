"""
Contact form blueprint.

Relays the marketing site's contact form to the business inbox.
"""

from flask import Blueprint, jsonify, request

from app.extensions import limiter
from app.services.contact_service import send_contact_message, validate_contact

contact_bp = Blueprint("contact", __name__, url_prefix="/api")


@contact_bp.route("/contact", methods=["POST"])
@limiter.limit("5 per hour")
def send_contact():
    """
    Accept a JSON contact form submission.

    Expects: { name, email, subject (optional), message }
    Returns: { success: true, id } or { error, details? }
    """
    form = validate_contact(request.get_json(silent=True))
    message_id = send_contact_message(form)

    return jsonify(success=True, message="Email sent successfully", id=message_id), 200
