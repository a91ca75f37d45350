"""Payments blueprint — /payments/stripe/*

Routes:
- POST    /payments/stripe/session              — create Checkout Session, return its URL
- OPTIONS /payments/stripe/session              — CORS preflight
- GET     /payments/stripe/session/<session_id> — session details for the success page

Authentication is optional: a valid bearer token makes the donation
attributable, otherwise it is anonymous.
"""

import logging

import stripe
from flask import Blueprint, current_app, jsonify, make_response, request
from flask_login import current_user

from givsociety.extensions import limiter
from givsociety.services import stripe_service
from givsociety.services.checkout_service import CheckoutError, create_donation_checkout
from givsociety.services.donation_service import get_donation_by_transaction_id

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/payments/stripe")


def _cors_response(response):
    """Allow the donation frontend to call the checkout API cross-origin."""
    response.headers["Access-Control-Allow-Origin"] = current_app.config["FRONTEND_URL"]
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    response.headers["Vary"] = "Origin"
    return response


def _checkout_rate_limit():
    return current_app.config["CHECKOUT_RATE_LIMIT"]


# ──────────────────────────────────────────────
# POST /payments/stripe/session
# ──────────────────────────────────────────────

@payments_bp.route("/session", methods=["OPTIONS"])
def session_preflight():
    """Handle CORS preflight requests."""
    return _cors_response(make_response("", 204))


@payments_bp.route("/session", methods=["POST"])
@limiter.limit(_checkout_rate_limit)
def create_session():
    """Create a Stripe Checkout Session for a donation.

    Body: { amount? | tier?, recurring?, campaign_id }
    Returns: { url } or { error } with 400 / 404 / 500.
    """
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return _cors_response(jsonify({"error": "Request body must be a JSON object."})), 400

    user = current_user if current_user.is_authenticated else None

    logger.info(
        f"Checkout requested (authenticated={user is not None}, "
        f"campaign_id={data.get('campaign_id')})"
    )

    try:
        url = create_donation_checkout(data, user)
    except CheckoutError as e:
        return _cors_response(jsonify({"error": e.message})), e.status_code
    except Exception as e:
        logger.error(f"Stripe session error: {e}", exc_info=True)
        return _cors_response(jsonify({"error": str(e)})), 500

    return _cors_response(jsonify({"url": url})), 200


# ──────────────────────────────────────────────
# GET /payments/stripe/session/<session_id>
# ──────────────────────────────────────────────

@payments_bp.route("/session/<session_id>", methods=["GET"])
def get_session(session_id):
    """Session details for the donation-success page.

    Includes the recorded donation id once the webhook has landed.
    """
    try:
        session = stripe_service.retrieve_session(session_id)
    except stripe.InvalidRequestError as e:
        logger.info(f"Session lookup failed for {session_id}: {e}")
        return _cors_response(jsonify({"success": False, "message": "Session not found"})), 404
    except Exception as e:
        logger.error(f"Error retrieving Stripe session {session_id}: {e}", exc_info=True)
        payload = {"success": False, "message": "Failed to retrieve session details"}
        if current_app.debug:
            payload["error"] = str(e)
        return _cors_response(jsonify(payload)), 500

    if not session:
        return _cors_response(jsonify({"success": False, "message": "Session not found"})), 404

    metadata = session.get("metadata") or {}
    transaction_id = session.get("invoice") or session.get("payment_intent")
    donation = get_donation_by_transaction_id(transaction_id)
    amount_total = session.get("amount_total")

    data = {
        "session_id": session.get("id"),
        "donation_id": donation.id if donation else None,
        "campaign_id": metadata.get("campaign_id", ""),
        "amount": f"{amount_total / 100:.2f}" if amount_total else "0.00",
        "currency": (session.get("currency") or "usd").upper(),
        "payment_status": session.get("payment_status") or "completed",
        "receipt_url": donation.receipt_url if donation else None,
        "customer_email": (
            session.get("customer_email")
            or (session.get("customer_details") or {}).get("email")
        ),
        "payment_intent_id": session.get("payment_intent"),
    }

    return _cors_response(jsonify({"success": True, "data": data})), 200
