"""Webhooks blueprint — /payments/stripe/webhook

Receives Stripe webhook events. Raw body is required for signature
verification, so the payload is read before any JSON parsing.
"""

import logging

from flask import Blueprint, jsonify, request

from givsociety.services.stripe_service import verify_webhook_signature
from givsociety.services.webhook_service import handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/payments/stripe")

PLAIN_TEXT = {"Content-Type": "text/plain; charset=utf-8"}


@webhooks_bp.route("/webhook", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET -> 400 on failure
    3. Route to handle_webhook_event (recording is idempotent)
    4. Return 200 to acknowledge, 500 so Stripe retries on handler failure
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return "Webhook Error: Missing Stripe-Signature header", 400, PLAIN_TEXT

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except Exception as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return f"Webhook Error: {e}", 400, PLAIN_TEXT

    logger.info(f"Webhook verified: {event.get('id')} ({event['type']})")

    # --- Process event ---
    success, message = handle_webhook_event(event)

    if not success:
        logger.error(f"Webhook processing failed: {message}")
        return "Webhook handler error", 500, PLAIN_TEXT

    return jsonify({"received": True}), 200
