"""Checkout service — turns a donation request into a Stripe Checkout URL.

Validates the request (amount XOR tier, campaign, tier, minimum amount),
builds the session parameters and metadata, and delegates creation to
stripe_service. Client errors are raised as CheckoutError before any
Stripe call is made.

Session metadata is the only way the webhook learns which campaign and
donor a payment belongs to, and Stripe metadata values are strings.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from givsociety.services import stripe_service
from givsociety.services.campaign_service import get_campaign
from givsociety.services.donation_service import ANONYMOUS_DONOR_ID, parse_amount
from givsociety.services.stripe_tiers import get_tier_amount, get_tier_price_id

logger = logging.getLogger(__name__)

MINIMUM_DONATION = Decimal("1")
CURRENCY = "usd"


class CheckoutError(Exception):
    """A donation request the client must fix (400 / 404)."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _is_present(value):
    return value is not None and value != ""


def to_minor_units(amount):
    """Dollars -> cents, rounding half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_metadata(campaign_id, user, recurring):
    """Session metadata, every value stringified for Stripe."""
    return {
        "campaign_id": str(campaign_id),
        "donor_id": str(user.id) if user is not None else ANONYMOUS_DONOR_ID,
        "is_anonymous": "true" if user is None else "false",
        "donation_type": "recurring" if recurring else "one_time",
    }


def create_donation_checkout(data, user=None):
    """Validate a donation request and create its Stripe Checkout Session.

    Args:
        data: Request body dict with amount?, tier?, recurring?, campaign_id.
        user: Authenticated User, or None for an anonymous donation.

    Returns the hosted checkout URL.
    Raises CheckoutError for invalid requests and stripe.StripeError when
    Stripe rejects the session.
    """
    if not isinstance(data, dict):
        raise CheckoutError("Request body must be a JSON object.")

    amount = data.get("amount")
    tier = data.get("tier")
    recurring = data.get("recurring") in (True, "true", "1")
    campaign_id = data.get("campaign_id")

    # --- Validate input ---
    if _is_present(amount) == _is_present(tier):
        raise CheckoutError("Provide either amount or tier, not both.")
    if not _is_present(campaign_id):
        raise CheckoutError("campaign_id is required.")

    campaign = get_campaign(campaign_id)
    if campaign is None:
        raise CheckoutError("Campaign not found.", status_code=404)

    price_id = None
    if _is_present(tier):
        donation_amount = get_tier_amount(tier)
        price_id = get_tier_price_id(tier, recurring, current_app.config)
        if donation_amount is None or price_id is None:
            raise CheckoutError("Invalid tier.")
    else:
        donation_amount = parse_amount(amount)
        if donation_amount is None:
            raise CheckoutError("Amount must be a number.")

    if donation_amount < MINIMUM_DONATION:
        raise CheckoutError("Minimum donation is $1.")

    # --- Build session ---
    metadata = build_metadata(campaign.id, user, recurring)
    frontend_url = current_app.config["FRONTEND_URL"].rstrip("/")

    session_params = {
        "payment_method_types": ["card"],
        "mode": "subscription" if recurring else "payment",
        "success_url": f"{frontend_url}/donation-success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{frontend_url}/donation-cancelled",
        "metadata": metadata,
    }

    if price_id is not None:
        session_params["line_items"] = [{"price": price_id, "quantity": 1}]
    else:
        price_data = {
            "currency": CURRENCY,
            "product_data": {"name": f"Donation to {campaign.title or 'Campaign'}"},
            "unit_amount": to_minor_units(donation_amount),
        }
        if recurring:
            # Custom recurring amounts bill monthly, like the tier prices.
            price_data["recurring"] = {"interval": "month"}
        session_params["line_items"] = [{"price_data": price_data, "quantity": 1}]

    if user is not None and user.email:
        session_params["customer_email"] = user.email

    session = stripe_service.create_checkout_session(session_params)

    logger.info(
        f"Checkout session {session.get('id')} for campaign {campaign.id}: "
        f"{donation_amount} ({metadata['donation_type']}, anonymous={metadata['is_anonymous']})"
    )
    return session["url"]
