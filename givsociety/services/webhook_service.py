"""Webhook service — routes verified Stripe events to the donation recorder.

Handled events:
- checkout.session.completed               one-time and first subscription charge
- checkout.session.async_payment_succeeded delayed payment methods
- invoice.paid                             subsequent subscription charges

Every other event type is acknowledged and ignored. Redelivery is safe:
the recorder is idempotent on the charge's transaction reference.
"""

import logging

from givsociety.extensions import db
from givsociety.services import stripe_service
from givsociety.services.donation_service import record_stripe_donation

logger = logging.getLogger(__name__)


def _parse_metadata(metadata):
    """Read donation context back out of string-typed Stripe metadata."""
    metadata = metadata or {}
    return {
        "campaign_id": metadata.get("campaign_id"),
        "donor_id": metadata.get("donor_id"),
        "is_anonymous": metadata.get("is_anonymous") == "true",
        "donation_type": metadata.get("donation_type"),
    }


def _invoice_subscription_id(invoice):
    """Subscription id of an invoice.

    Newer Stripe API versions moved it under parent.subscription_details.
    """
    subscription_id = invoice.get("subscription")
    if not subscription_id:
        parent = invoice.get("parent") or {}
        details = parent.get("subscription_details") or {}
        subscription_id = details.get("subscription")
    if isinstance(subscription_id, dict):
        subscription_id = subscription_id.get("id")
    return subscription_id


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Returns (success: bool, message: str). On failure the session is
    rolled back and the caller answers 500 so Stripe redelivers.
    """
    event_type = event["type"]

    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "checkout.session.async_payment_succeeded": _handle_async_payment_succeeded,
        "invoice.paid": _handle_invoice_paid,
    }

    handler = handlers.get(event_type)
    if handler is None:
        logger.info(f"Unhandled webhook event type: {event_type}")
        return True, "ignored"

    try:
        handler(event)
    except Exception as e:
        logger.error(f"Error handling {event_type}: {e}", exc_info=True)
        db.session.rollback()
        return False, str(e)

    return True, "processed"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _record_from_session(session, event_type):
    context = _parse_metadata(session.get("metadata"))
    if not context["campaign_id"]:
        logger.warning(f"{event_type}: session {session.get('id')} has no campaign_id metadata, skipping")
        return

    record_stripe_donation(session_data=session, **context)


def _handle_checkout_completed(event):
    """Handle checkout.session.completed.

    The legacy donations backend recorded a completed donation on every
    checkout.session.completed. Here sessions with payment_status "unpaid"
    are skipped: delayed payment methods complete the session before the
    money arrives, and those are recorded on
    checkout.session.async_payment_succeeded instead.
    """
    session = event["data"]["object"]
    if session.get("payment_status") == "unpaid":
        logger.info(
            f"checkout.session.completed: session {session.get('id')} awaiting "
            f"async payment, not recording yet"
        )
        return
    _record_from_session(session, "checkout.session.completed")


def _handle_async_payment_succeeded(event):
    """Handle checkout.session.async_payment_succeeded."""
    _record_from_session(event["data"]["object"], "checkout.session.async_payment_succeeded")


def _handle_invoice_paid(event):
    """Handle invoice.paid for recurring donations.

    The invoice carries no donation metadata, so it is recovered from the
    checkout session that created the subscription. When that session
    can't be found the charge is logged and dropped.
    """
    invoice = event["data"]["object"]
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.warning(f"invoice.paid: invoice {invoice.get('id')} has no subscription, skipping")
        return

    session = stripe_service.find_session_for_subscription(subscription_id)
    if not session or not session.get("metadata"):
        logger.warning(
            f"invoice.paid: no checkout session metadata for subscription "
            f"{subscription_id}; recurring donation not recorded"
        )
        return

    context = _parse_metadata(session["metadata"])
    context["donation_type"] = context["donation_type"] or "recurring"
    if not context["campaign_id"]:
        logger.warning(f"invoice.paid: session for {subscription_id} has no campaign_id, skipping")
        return

    session_data = dict(session)
    session_data.update({
        "invoice": invoice.get("id"),
        "amount_total": invoice.get("amount_paid"),
        "currency": invoice.get("currency"),
        "payment_intent": invoice.get("payment_intent"),
        "receipt_url": invoice.get("hosted_invoice_url"),
        "created": invoice.get("created"),
        "customer_email": invoice.get("customer_email") or session.get("customer_email"),
    })

    record_stripe_donation(session_data=session_data, **context)
