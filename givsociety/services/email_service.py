"""
Email service for GIV Society.

Sends transactional emails (donation receipts) over SMTP.

Usage:
    from givsociety.services.email_service import send_email

    send_email(
        to="donor@example.com",
        subject="Thank you for your donation",
        template="emails/donation_receipt.html",
        context={"donor_name": "Jane"},
    )
"""

import logging
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def _send_smtp(app, msg):
    """Send an email via SMTP in a background thread (non-blocking)."""
    with app.app_context():
        host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
        port = app.config.get("MAIL_SMTP_PORT", 587)
        username = app.config.get("MAIL_USERNAME")
        password = app.config.get("MAIL_PASSWORD")

        if not username or not password:
            logger.warning("Email not sent — MAIL_USERNAME or MAIL_PASSWORD not configured.")
            return

        try:
            with smtplib.SMTP(host, port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(username, password)
                server.send_message(msg)
            logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")
        except Exception as e:
            logger.error(f"Failed to send email to {msg['To']}: {e}")


def send_email(to, subject, template, context=None, text_template=None, reply_to=None):
    """
    Send a templated HTML email in a background thread.

    Args:
        to:            Recipient email address.
        subject:       Email subject line.
        template:      Path to Jinja2 HTML template (relative to templates/).
        context:       Dict of variables to pass to the templates.
        text_template: Optional plain-text template, sent as the first
                       alternative for clients that don't render HTML.
        reply_to:      Reply-To address. Defaults to MAIL_REPLY_TO.
    """
    app = current_app._get_current_object()
    context = context or {}

    from_name = app.config.get("MAIL_FROM_NAME", "GIV Society")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME") or ""
    reply_to = reply_to or app.config.get("MAIL_REPLY_TO")

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to
    if reply_to:
        msg["Reply-To"] = reply_to
    if text_template:
        msg.attach(MIMEText(render_template(text_template, **context), "plain"))
    msg.attach(MIMEText(render_template(template, **context), "html"))

    thread = threading.Thread(target=_send_smtp, args=(app, msg))
    thread.daemon = True
    thread.start()
