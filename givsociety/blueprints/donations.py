"""Donations blueprint — /donations/*

API over recorded donations. Card payments are recorded by the Stripe
webhook; this blueprint records donations that never pass through Stripe.

Routes:
- GET /donations          — filtered, paginated list (non-admins see their own)
- GET /donations/stats    — totals for the filtered set (admin)
- GET /donations/<id>     — single donation
- POST /donations         — record a manual (in-kind, offline) donation
- PATCH /donations/<id>/status — change payment status (admin)
"""

import math
from datetime import date, datetime, time, timezone
from decimal import Decimal

from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user, login_required

from givsociety.decorators import admin_required
from givsociety.extensions import limiter
from givsociety.models.donation import Donation
from givsociety.models.user import User
from givsociety.services import donation_service
from givsociety.services.campaign_service import get_campaign

donations_bp = Blueprint("donations", __name__, url_prefix="/donations")

SORTABLE_FIELDS = ("created_at", "donated_at", "amount")
MAX_PAGE_SIZE = 100
MAX_AMOUNT = Decimal("9999999999999.99")  # Numeric(15, 2)


def _parse_int(args, name, errors, minimum=None):
    raw = args.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer.")
        return None
    if minimum is not None and value < minimum:
        errors.append(f"{name} must be at least {minimum}.")
        return None
    return value


def _to_datetime(raw, end_of_day=False):
    """Parse an ISO 8601 date or datetime as an aware UTC datetime.

    A bare date means the start of that day, or its last instant when
    end_of_day is set. Naive datetimes are taken as UTC.
    """
    if len(raw) == 10:
        day = date.fromisoformat(raw)
        return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
    value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_date(args, name, errors, end_of_day=False):
    raw = args.get(name)
    if not raw:
        return None
    try:
        return _to_datetime(raw, end_of_day=end_of_day)
    except ValueError:
        errors.append(f"{name} must be an ISO 8601 date.")
        return None


def _parse_filters(args):
    """Validate query-string filters. Returns (filters, errors)."""
    errors = []
    filters = {
        "donor_id": _parse_int(args, "donor_id", errors),
        "campaign_id": _parse_int(args, "campaign_id", errors),
        "start_date": _parse_date(args, "start_date", errors),
        "end_date": _parse_date(args, "end_date", errors, end_of_day=True),
    }

    payment_status = args.get("payment_status")
    if payment_status and payment_status not in Donation.PAYMENT_STATUSES:
        errors.append(f"payment_status must be one of {', '.join(Donation.PAYMENT_STATUSES)}.")
    filters["payment_status"] = payment_status or None

    donation_type = args.get("donation_type")
    if donation_type and donation_type not in Donation.DONATION_TYPES:
        errors.append(f"donation_type must be one of {', '.join(Donation.DONATION_TYPES)}.")
    filters["donation_type"] = donation_type or None

    is_anonymous = args.get("is_anonymous")
    if is_anonymous in ("true", "false"):
        filters["is_anonymous"] = is_anonymous == "true"
    elif is_anonymous:
        errors.append("is_anonymous must be true or false.")

    for name in ("min_amount", "max_amount"):
        raw = args.get(name)
        if raw:
            value = donation_service.parse_amount(raw)
            if value is None:
                errors.append(f"{name} must be a number.")
            filters[name] = value

    return filters, errors


# ──────────────────────────────────────────────
# GET /donations
# ──────────────────────────────────────────────

@donations_bp.route("", methods=["GET"])
@login_required
def list_donations():
    """List donations with filters and pagination."""
    filters, errors = _parse_filters(request.args)

    page = _parse_int(request.args, "page", errors, minimum=1) or 1
    limit = _parse_int(request.args, "limit", errors, minimum=1) or 10
    limit = min(limit, MAX_PAGE_SIZE)

    sort_by = request.args.get("sortBy", "created_at")
    if sort_by not in SORTABLE_FIELDS:
        errors.append(f"sortBy must be one of {', '.join(SORTABLE_FIELDS)}.")
    sort_order = request.args.get("sortOrder", "desc")
    if sort_order not in ("asc", "desc"):
        errors.append("sortOrder must be asc or desc.")

    if errors:
        return jsonify({"success": False, "errors": errors, "code": "VALIDATION_ERROR"}), 400

    # Donors can only see their own donations
    if not current_user.is_admin:
        filters["donor_id"] = current_user.id

    pagination = donation_service.list_donations(
        filters, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
    )
    total_pages = math.ceil(pagination.total / limit) if pagination.total else 0

    return jsonify({
        "success": True,
        "data": [d.to_dict() for d in pagination.items],
        "pagination": {
            "page": page,
            "limit": limit,
            "totalCount": pagination.total,
            "totalPages": total_pages,
            "hasNextPage": page < total_pages,
            "hasPrevPage": page > 1,
        },
    }), 200


# ──────────────────────────────────────────────
# GET /donations/stats
# ──────────────────────────────────────────────

@donations_bp.route("/stats", methods=["GET"])
@admin_required
def donation_stats():
    """Donation count and totals (admin only)."""
    filters, errors = _parse_filters(request.args)
    if errors:
        return jsonify({"success": False, "errors": errors, "code": "VALIDATION_ERROR"}), 400

    return jsonify({"success": True, "data": donation_service.donation_stats(filters)}), 200


# ──────────────────────────────────────────────
# GET /donations/<id>
# ──────────────────────────────────────────────

@donations_bp.route("/<donation_id>", methods=["GET"])
@login_required
def get_donation(donation_id):
    """Single donation. Non-admins may only read their own."""
    donation = donation_service.get_donation(donation_id)
    if donation is None:
        abort(404)

    if not current_user.is_admin and donation.donor_id != current_user.id:
        abort(403)

    return jsonify({"success": True, "data": donation.to_dict()}), 200


# ──────────────────────────────────────────────
# POST /donations
# ──────────────────────────────────────────────

def _validate_create(data):
    """Validate a manual donation body. Returns (values, errors)."""
    errors = []
    values = {}

    campaign_id = data.get("campaign_id")
    if campaign_id is None or campaign_id == "":
        errors.append("Campaign ID is required")
    elif isinstance(campaign_id, bool) or not str(campaign_id).isdigit() or int(campaign_id) < 1:
        errors.append("Campaign ID must be a number")
    else:
        values["campaign_id"] = int(campaign_id)

    amount = donation_service.parse_amount(data.get("amount"))
    if data.get("amount") is None:
        errors.append("Amount is required")
    elif amount is None:
        errors.append("Amount must be a number")
    elif amount <= 0:
        errors.append("Amount must be positive")
    elif amount > MAX_AMOUNT:
        errors.append(f"Amount must be at most {MAX_AMOUNT}")
    elif amount != amount.quantize(Decimal("0.01")):
        errors.append("Amount must have at most 2 decimal places")
    else:
        values["amount"] = amount

    currency = data.get("currency") or "USD"
    if not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha():
        errors.append("Currency must be a 3-letter code")
    else:
        values["currency"] = currency.upper()

    donation_type = data.get("donation_type")
    if donation_type not in Donation.DONATION_TYPES:
        errors.append(f"Donation type must be one of: {', '.join(Donation.DONATION_TYPES)}")
    values["donation_type"] = donation_type

    payment_status = data.get("payment_status") or "pending"
    if payment_status not in Donation.PAYMENT_STATUSES:
        errors.append(f"Payment status must be one of: {', '.join(Donation.PAYMENT_STATUSES)}")
    values["payment_status"] = payment_status

    for name, max_length in (("payment_method", 50), ("transaction_id", 255), ("receipt_url", 512)):
        value = data.get(name)
        if value is None or value == "":
            continue
        if not isinstance(value, str) or len(value) > max_length:
            errors.append(f"{name} must be a string of at most {max_length} characters")
        else:
            values[name] = value

    receipt_url = values.get("receipt_url")
    if receipt_url and not receipt_url.startswith(("http://", "https://")):
        errors.append("receipt_url must be a valid URI")

    is_anonymous = data.get("is_anonymous", False)
    if not isinstance(is_anonymous, bool):
        errors.append("is_anonymous must be a boolean")
    values["is_anonymous"] = is_anonymous is True

    donated_at = data.get("donated_at")
    if donated_at:
        try:
            values["donated_at"] = _to_datetime(str(donated_at))
        except ValueError:
            errors.append("donated_at must be an ISO 8601 date")

    donor_id = data.get("donor_id")
    if donor_id not in (None, "", 0, "0"):
        if isinstance(donor_id, bool) or not str(donor_id).isdigit():
            errors.append("donor_id must be a number")
        else:
            values["donor_id"] = int(donor_id)

    return values, errors


def _manual_donor(values):
    """Pick the registered donor for a manual donation.

    Admins may record on behalf of any user via donor_id; everyone else
    donates as themselves. Anonymous requests and unauthenticated callers
    have no donor.
    """
    if values["is_anonymous"] or not current_user.is_authenticated:
        return None
    if current_user.is_admin and values.get("donor_id"):
        return User.query.filter_by(id=values["donor_id"], deleted_at=None).first()
    return current_user._get_current_object()


def _donation_rate_limit():
    return current_app.config["CHECKOUT_RATE_LIMIT"]


@donations_bp.route("", methods=["POST"])
@limiter.limit(_donation_rate_limit)
def create_donation():
    """Record a manual donation (in-kind gifts, cash, cheques).

    Authentication is optional. Only admins may record a donation as
    completed or failed; other callers create pending pledges.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({
            "success": False,
            "errors": ["Request body must be a JSON object"],
            "code": "VALIDATION_ERROR",
        }), 400

    values, errors = _validate_create(data)
    if errors:
        return jsonify({"success": False, "errors": errors, "code": "VALIDATION_ERROR"}), 400

    is_admin = current_user.is_authenticated and current_user.is_admin
    if values["payment_status"] != "pending" and not is_admin:
        return jsonify({
            "success": False,
            "error": "Only admins can record completed or failed donations",
            "code": "ADMIN_REQUIRED",
        }), 403

    if get_campaign(values["campaign_id"]) is None:
        return jsonify({"success": False, "error": "Campaign not found", "code": "CAMPAIGN_NOT_FOUND"}), 404

    donor = _manual_donor(values)
    if is_admin and values.get("donor_id") and not values["is_anonymous"] and donor is None:
        return jsonify({"success": False, "error": "Donor not found", "code": "DONOR_NOT_FOUND"}), 404

    try:
        donation = donation_service.create_manual_donation(values, donor=donor)
    except donation_service.DonationStateError as e:
        return jsonify({"success": False, "error": str(e), "code": "DUPLICATE_TRANSACTION"}), 409

    return jsonify({
        "success": True,
        "data": donation.to_dict(),
        "message": "Donation created successfully",
    }), 201


# ──────────────────────────────────────────────
# PATCH /donations/<id>/status
# ──────────────────────────────────────────────

@donations_bp.route("/<donation_id>/status", methods=["PATCH"])
@admin_required
def update_donation_status(donation_id):
    """Change a donation's payment status (admin only)."""
    data = request.get_json(silent=True)
    payment_status = data.get("payment_status") if isinstance(data, dict) else None
    if payment_status not in Donation.PAYMENT_STATUSES:
        return jsonify({
            "success": False,
            "errors": [f"Payment status must be one of: {', '.join(Donation.PAYMENT_STATUSES)}"],
            "code": "VALIDATION_ERROR",
        }), 400

    try:
        donation = donation_service.update_donation_status(donation_id, payment_status)
    except donation_service.DonationStateError as e:
        return jsonify({"success": False, "error": str(e), "code": "DONATION_UPDATE_CONFLICT"}), 409

    if donation is None:
        abort(404)

    return jsonify({
        "success": True,
        "data": donation.to_dict(),
        "message": "Donation status updated",
    }), 200
