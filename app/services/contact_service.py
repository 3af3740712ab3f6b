"""Contact relay — validates the site's contact form and emails it on.

The message goes to the business inbox via Resend with the visitor as
reply-to, so answering the email answers the visitor. No retry and no
queue: a failed send is reported to the caller, who keeps the form filled
in for a manual resubmit.
"""

import html
import logging
import re
from datetime import datetime
from zoneinfo import ZoneInfo

import bleach
from flask import current_app, render_template

from app.errors import NotConfiguredError, ValidationError
from app.extensions import providers

logger = logging.getLogger(__name__)

# Simple email regex, a sanity check only
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_NAME_LENGTH = 200
MAX_SUBJECT_LENGTH = 200
MAX_MESSAGE_LENGTH = 5000

LOCAL_TZ = ZoneInfo("Europe/Copenhagen")


def _sanitize(text):
    """Strip all HTML tags from visitor input.

    bleach escapes what it keeps; unescape so the templates escape once.
    """
    if not isinstance(text, str):
        return ""
    return html.unescape(bleach.clean(text, tags=[], strip=True)).strip()


def validate_contact(data):
    """Validate a contact form payload.

    Returns a dict with cleaned name, email, subject (may be ""), message.
    Raises ValidationError on missing fields, a malformed email or
    oversized input.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid request")

    name = _sanitize(data.get("name"))
    email = data.get("email")
    email = email.strip() if isinstance(email, str) else ""
    subject = _sanitize(data.get("subject"))
    message = _sanitize(data.get("message"))

    if not name or not email or not message:
        raise ValidationError("Missing required fields")

    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")

    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError("Name is too long")
    if len(subject) > MAX_SUBJECT_LENGTH:
        raise ValidationError("Subject is too long")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError("Message is too long")

    return {"name": name, "email": email, "subject": subject, "message": message}


def send_contact_message(form):
    """Render and send a validated contact form. Returns the Resend message id.

    Raises NotConfiguredError without RESEND_API_KEY or CONTACT_TO_EMAIL,
    and UpstreamError if Resend rejects the message.
    """
    client = providers.email
    recipient = current_app.config.get("CONTACT_TO_EMAIL")
    if not recipient:
        raise NotConfiguredError("Contact recipient not configured")

    received_at = datetime.now(LOCAL_TZ).strftime("%d-%m-%Y %H:%M")
    context = dict(form, received_at=received_at)

    html_body = render_template("emails/contact_message.html", **context)
    text_body = render_template("emails/contact_message.txt", **context)

    message_id = client.send(
        sender=current_app.config["CONTACT_FROM_EMAIL"],
        to=recipient,
        subject=f"Ny besked fra {form['name']} - {form['subject'] or 'Kontaktformular'}",
        html=html_body,
        text=text_body,
        reply_to=form["email"],
    )

    logger.info(f"Contact form submitted by {form['name']} <{form['email']}> (id={message_id})")
    return message_id
