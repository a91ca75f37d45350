"""Donation service — recording confirmed payments and donation queries.

Responsible for:
- Recording a donation from a confirmed Stripe payment (webhook path)
- Recording manual (in-kind, offline) donations and status changes
- Keeping campaign and donor-profile totals in step with completed rows
- Listing / filtering / aggregating donations for the read API

Recording is safe under at-least-once webhook delivery: the donation row
is written with an insert-or-ignore keyed on the UNIQUE transaction_id,
and totals are only incremented when that insert actually created a row.
All totals are updated with SQL-side increments in the same transaction.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, insert as sa_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from givsociety.extensions import db
from givsociety.models.campaign import Campaign
from givsociety.models.donation import Donation
from givsociety.models.donor_profile import DonorProfile
from givsociety.models.user import User

logger = logging.getLogger(__name__)

# Stripe metadata carries the donor as a string; "0" means "no donor".
ANONYMOUS_DONOR_ID = "0"

_UPSERT_DIALECTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


# ──────────────────────────────────────────────
# Recording
# ──────────────────────────────────────────────

def _insert_ignoring_conflict(session, model, values, conflict_column):
    """INSERT a row unless one already holds the same unique value.

    Returns True if a row was inserted, False if it already existed.
    Uses ON CONFLICT DO NOTHING where the dialect supports it, otherwise
    a SAVEPOINT-guarded insert whose uniqueness violation is the signal.
    """
    dialect = session.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)

    if insert is not None:
        stmt = (
            insert(model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[conflict_column])
        )
        return session.execute(stmt).rowcount == 1

    try:
        with session.begin_nested():
            session.execute(sa_insert(model).values(**values))
        return True
    except IntegrityError:
        if values.get(conflict_column) is None:
            raise
        column = getattr(model, conflict_column)
        exists = session.query(column).filter(
            column == values[conflict_column]
        ).first()
        if exists is None:
            raise
        return False


def _transaction_id_for(session_data):
    """Pick the provider reference that identifies this charge.

    Subscription charges are keyed by invoice so the initial charge
    (seen as checkout.session.completed) and its invoice.paid event
    collapse into one donation. One-time charges use the PaymentIntent.
    """
    return (
        session_data.get("invoice")
        or session_data.get("payment_intent")
        or session_data.get("id")
    )


def _resolve_donor(session, donor_id, is_anonymous):
    """Return the registered User behind metadata donor_id, or None."""
    if is_anonymous or donor_id in (None, "", ANONYMOUS_DONOR_ID):
        return None
    try:
        user_id = int(donor_id)
    except (TypeError, ValueError):
        logger.warning(f"Unparseable donor_id in metadata: {donor_id!r}; recording as anonymous")
        return None

    user = session.get(User, user_id)
    if user is None or user.deleted_at is not None:
        logger.warning(f"Donor {user_id} not found; recording donation as anonymous")
        return None
    return user


def _update_donor_profile(session, user, amount, donation_type, now):
    """Create the donor profile on first donation and add to its totals."""
    _insert_ignoring_conflict(
        session,
        DonorProfile,
        {
            "user_id": user.id,
            "is_recurring_donor": False,
            "total_donated": Decimal("0.00"),
        },
        "user_id",
    )

    values = {
        DonorProfile.total_donated: DonorProfile.total_donated + amount,
        DonorProfile.last_donation_date: now,
    }
    if donation_type == "recurring":
        values[DonorProfile.is_recurring_donor] = True
    session.query(DonorProfile).filter(
        DonorProfile.user_id == user.id
    ).update(values, synchronize_session=False)

    if not user.is_donor:
        user.is_donor = True


def _adjust_campaign_totals(session, campaign_id, amount, donors):
    session.query(Campaign).filter(Campaign.id == campaign_id).update(
        {
            Campaign.current_amount: Campaign.current_amount + amount,
            Campaign.donor_count: Campaign.donor_count + donors,
        },
        synchronize_session=False,
    )


def _credit_totals(session, campaign_id, amount, donor, donation_type, now):
    """Add a completed donation to its campaign and donor totals."""
    _adjust_campaign_totals(session, campaign_id, amount, 1)
    if donor is not None:
        _update_donor_profile(session, donor, amount, donation_type, now)


def _debit_totals(session, campaign_id, amount, donor):
    """Take a no-longer-completed donation back out of the totals."""
    _adjust_campaign_totals(session, campaign_id, -amount, -1)
    if donor is not None:
        session.query(DonorProfile).filter(
            DonorProfile.user_id == donor.id
        ).update(
            {DonorProfile.total_donated: DonorProfile.total_donated - amount},
            synchronize_session=False,
        )


def record_stripe_donation(session_data, campaign_id, donor_id, is_anonymous,
                           donation_type, session=None):
    """Record a completed Stripe payment as a donation.

    Args:
        session_data:  Checkout Session dict (or an invoice-derived dict with
                       the same shape): amount_total in minor units, currency,
                       invoice / payment_intent, receipt_url, created.
        campaign_id:   Campaign id from session metadata (string).
        donor_id:      Donor id from session metadata (string, "0" = none).
        is_anonymous:  Parsed anonymity flag.
        donation_type: "one_time" or "recurring".

    Returns (donation, created). created is False when this transaction
    was already recorded; totals are left untouched in that case.
    Raises ValueError for payloads that can never be recorded and
    lets database errors propagate so the webhook is redelivered.
    """
    session = session or db.session

    transaction_id = _transaction_id_for(session_data)
    if not transaction_id:
        raise ValueError("Stripe payload has no transaction reference")

    try:
        campaign_pk = int(campaign_id)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid campaign_id in metadata: {campaign_id!r}")

    # The payment is already captured, so a campaign soft-deleted after
    # checkout still receives the donation.
    campaign = session.get(Campaign, campaign_pk)
    if campaign is None:
        raise ValueError(f"Campaign {campaign_pk} does not exist")

    amount = (Decimal(session_data.get("amount_total") or 0) / 100).quantize(Decimal("0.01"))
    currency = (session_data.get("currency") or "usd").upper()
    if donation_type not in Donation.DONATION_TYPES:
        donation_type = "one_time"

    donor = _resolve_donor(session, donor_id, is_anonymous)
    anonymous = donor is None

    created_ts = session_data.get("created")
    donated_at = (
        datetime.fromtimestamp(created_ts, tz=timezone.utc)
        if created_ts else datetime.now(timezone.utc)
    )
    now = datetime.now(timezone.utc)

    created = _insert_ignoring_conflict(
        session,
        Donation,
        {
            "donor_id": donor.id if donor else None,
            "campaign_id": campaign_pk,
            "amount": amount,
            "currency": currency,
            "donation_type": donation_type,
            "payment_method": "stripe",
            "payment_status": "completed",
            "transaction_id": transaction_id,
            "receipt_url": session_data.get("receipt_url"),
            "is_anonymous": anonymous,
            "donated_at": donated_at,
        },
        "transaction_id",
    )

    if not created:
        session.rollback()
        logger.info(f"Donation for transaction {transaction_id} already recorded, skipping")
        return get_donation_by_transaction_id(transaction_id, session=session), False

    _credit_totals(session, campaign_pk, amount, donor, donation_type, now)
    session.commit()

    donation = get_donation_by_transaction_id(transaction_id, session=session)
    logger.info(
        f"Recorded {donation_type} donation {donation.id}: {amount} {currency} "
        f"to campaign {campaign_pk} (anonymous={anonymous})"
    )

    if donor is not None and donor.email:
        _send_receipt(donor, campaign, donation)

    return donation, True


def _send_receipt(donor, campaign, donation):
    """Email a donation receipt. Never lets email failure break recording."""
    try:
        from givsociety.services.email_service import send_email

        send_email(
            to=donor.email,
            subject=f"Thank you for supporting {campaign.title}",
            template="emails/donation_receipt.html",
            text_template="emails/donation_receipt.txt",
            context={
                "donor_name": donor.full_name or "",
                "campaign_title": campaign.title,
                "amount": f"{donation.amount:.2f}",
                "currency": donation.currency,
                "donation_type": donation.donation_type,
                "transaction_id": donation.transaction_id,
                "receipt_url": donation.receipt_url,
                "donated_at": donation.donated_at.strftime("%B %d, %Y") if donation.donated_at else "",
            },
        )
    except Exception as e:
        logger.error(f"Failed to send donation receipt for {donation.id}: {e}")


# ──────────────────────────────────────────────
# Manual donations and status changes
# ──────────────────────────────────────────────

class DonationStateError(Exception):
    """A write that conflicts with what is already stored (409)."""


def create_manual_donation(values, donor=None, session=None):
    """Record a donation entered outside Stripe (in-kind gifts, cash, cheques).

    Args:
        values: Validated fields: campaign_id, amount (Decimal), currency,
                donation_type, payment_status and optionally payment_method,
                transaction_id, receipt_url, donated_at.
        donor:  Registered User to attribute the donation to, or None.

    Totals are credited only when the donation is recorded as completed.
    A pending one is credited later by update_donation_status.
    Raises DonationStateError when transaction_id is already recorded.
    """
    session = session or db.session
    now = datetime.now(timezone.utc)
    donation_id = str(uuid.uuid4())

    row = {
        "id": donation_id,
        "donor_id": donor.id if donor else None,
        "campaign_id": values["campaign_id"],
        "amount": values["amount"],
        "currency": values["currency"],
        "donation_type": values["donation_type"],
        "payment_method": values.get("payment_method"),
        "payment_status": values["payment_status"],
        "transaction_id": values.get("transaction_id"),
        "receipt_url": values.get("receipt_url"),
        "is_anonymous": donor is None,
        "donated_at": values.get("donated_at") or now,
    }

    if not _insert_ignoring_conflict(session, Donation, row, "transaction_id"):
        session.rollback()
        raise DonationStateError(
            f"Transaction {row['transaction_id']} is already recorded"
        )

    completed = row["payment_status"] == "completed"
    if completed:
        _credit_totals(
            session, row["campaign_id"], row["amount"], donor, row["donation_type"], now
        )
    session.commit()

    donation = session.get(Donation, donation_id)
    logger.info(
        f"Recorded manual {donation.donation_type} donation {donation.id}: "
        f"{donation.amount} {donation.currency} to campaign {donation.campaign_id} "
        f"(status={donation.payment_status}, anonymous={donation.is_anonymous})"
    )

    if completed and donor is not None and donor.email:
        _send_receipt(donor, session.get(Campaign, donation.campaign_id), donation)

    return donation


def update_donation_status(donation_id, payment_status, session=None):
    """Move a donation to another payment status.

    Entering "completed" credits the campaign and donor totals and leaving
    it debits them. The change only applies if the stored status is still
    the one read here, so concurrent updates cannot credit twice.

    Returns the Donation, or None if it does not exist.
    Raises DonationStateError when the status changed concurrently.
    """
    session = session or db.session
    donation = get_donation(donation_id, session=session)
    if donation is None:
        return None

    previous = donation.payment_status
    if previous == payment_status:
        return donation

    changed = session.query(Donation).filter(
        Donation.id == donation.id,
        Donation.payment_status == previous,
    ).update({Donation.payment_status: payment_status}, synchronize_session=False)
    if changed != 1:
        session.rollback()
        raise DonationStateError(f"Donation {donation.id} was updated concurrently")

    donor = session.get(User, donation.donor_id) if donation.donor_id else None
    if payment_status == "completed":
        _credit_totals(
            session, donation.campaign_id, donation.amount, donor,
            donation.donation_type, datetime.now(timezone.utc),
        )
    elif previous == "completed":
        _debit_totals(session, donation.campaign_id, donation.amount, donor)

    session.commit()
    session.refresh(donation)
    logger.info(f"Donation {donation.id} status {previous} -> {payment_status}")
    return donation


# ──────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────

def get_donation_by_transaction_id(transaction_id, session=None):
    """Return the Donation recorded for a provider reference, or None."""
    session = session or db.session
    if not transaction_id:
        return None
    return (
        session.query(Donation)
        .filter(Donation.transaction_id == transaction_id)
        .first()
    )


def get_donation(donation_id, session=None):
    session = session or db.session
    return session.get(Donation, str(donation_id))


def _apply_filters(query, filters):
    if filters.get("donor_id") is not None:
        query = query.filter(Donation.donor_id == filters["donor_id"])
    if filters.get("campaign_id") is not None:
        query = query.filter(Donation.campaign_id == filters["campaign_id"])
    if filters.get("payment_status"):
        query = query.filter(Donation.payment_status == filters["payment_status"])
    if filters.get("donation_type"):
        query = query.filter(Donation.donation_type == filters["donation_type"])
    if filters.get("is_anonymous") is not None:
        query = query.filter(Donation.is_anonymous == filters["is_anonymous"])
    if filters.get("min_amount") is not None:
        query = query.filter(Donation.amount >= filters["min_amount"])
    if filters.get("max_amount") is not None:
        query = query.filter(Donation.amount <= filters["max_amount"])
    if filters.get("start_date") is not None:
        query = query.filter(Donation.donated_at >= filters["start_date"])
    if filters.get("end_date") is not None:
        query = query.filter(Donation.donated_at <= filters["end_date"])
    return query


def list_donations(filters, page=1, limit=10, sort_by="created_at", sort_order="desc"):
    """Return a Flask-SQLAlchemy Pagination of donations matching filters."""
    sort_column = getattr(Donation, sort_by)
    order = sort_column.asc() if sort_order == "asc" else sort_column.desc()

    query = _apply_filters(Donation.query, filters).order_by(order, Donation.id)
    return query.paginate(page=page, per_page=limit, error_out=False)


def donation_stats(filters):
    """Count and sum donations matching filters.

    completed_amount only counts donations whose payment completed.
    """
    base = _apply_filters(db.session.query(Donation), filters)

    total_donations = base.count()
    total_amount = base.with_entities(func.sum(Donation.amount)).scalar()
    completed_amount = (
        base.filter(Donation.payment_status == "completed")
        .with_entities(func.sum(Donation.amount))
        .scalar()
    )

    return {
        "total_donations": total_donations,
        "total_amount": f"{Decimal(total_amount or 0):.2f}",
        "completed_amount": f"{Decimal(completed_amount or 0):.2f}",
    }


def parse_amount(value):
    """Parse a user-supplied money amount into a Decimal, or None."""
    if isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount
