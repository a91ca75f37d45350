"""Stripe service — all Stripe API calls.

Responsible for:
- Creating Stripe Checkout Sessions (one-time payments and subscriptions)
- Retrieving a Checkout Session by ID
- Finding the Checkout Session that started a subscription
- Verifying webhook signatures

Everything returned to callers is a plain dict so the rest of the app
reads Stripe payloads the same way regardless of SDK version.
"""

import logging

import stripe
from flask import current_app

logger = logging.getLogger(__name__)


def _configure():
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]


def as_dict(obj):
    """Convert a StripeObject (or None / an existing dict) into a plain dict."""
    if obj is None or isinstance(obj, dict):
        return obj
    return obj.to_dict()


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def create_checkout_session(session_params):
    """Create a Stripe Checkout Session.

    Returns the session as a dict (``url`` is the hosted checkout page).
    Raises stripe.StripeError on API failures.
    """
    _configure()
    session = stripe.checkout.Session.create(**session_params)
    logger.info(f"Created checkout session {session['id']} (mode={session_params.get('mode')})")
    return as_dict(session)


def retrieve_session(session_id):
    """Retrieve a Checkout Session by ID.

    Raises stripe.InvalidRequestError if the session does not exist.
    """
    _configure()
    return as_dict(stripe.checkout.Session.retrieve(session_id))


def find_session_for_subscription(subscription_id):
    """Return the most recent Checkout Session that created a subscription.

    Returns None when Stripe has no session for it (e.g. subscriptions
    created from the dashboard or the API).
    """
    _configure()
    sessions = stripe.checkout.Session.list(subscription=subscription_id, limit=1)
    data = sessions["data"]
    if not data:
        return None
    return as_dict(data[0])


# ──────────────────────────────────────────────
# Webhooks
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    Returns the verified event as a dict.
    Raises stripe.SignatureVerificationError on invalid signature and
    ValueError on an unparseable payload.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    return as_dict(event)
