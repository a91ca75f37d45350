"""Donation model.

One row per completed provider transaction. transaction_id is UNIQUE and
is the idempotency key for webhook redelivery: the recorder inserts with
ON CONFLICT DO NOTHING and treats an ignored insert as "already recorded".
Rows are never deleted.
"""

import uuid

from givsociety.extensions import db


class Donation(db.Model):
    __tablename__ = "donations"

    DONATION_TYPES = ["one_time", "recurring", "in_kind"]
    PAYMENT_STATUSES = ["pending", "completed", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    donor_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=True
    )  # NULL for anonymous donations
    campaign_id = db.Column(
        db.Integer, db.ForeignKey("campaigns.id"), nullable=False
    )
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    donation_type = db.Column(
        db.String(20), nullable=False
    )  # one_time | recurring | in_kind
    payment_method = db.Column(db.String(50), nullable=True)
    payment_status = db.Column(
        db.String(20), nullable=False, default="pending"
    )  # pending | completed | failed
    transaction_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "in_1Abc..." or "pi_1Abc..."
    receipt_url = db.Column(db.String(512), nullable=True)
    is_anonymous = db.Column(db.Boolean, nullable=False, default=False)
    donated_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index("idx_donations_donated_at", "donated_at"),
        db.Index("idx_donations_payment_status", "payment_status"),
    )

    # --- Relationships ---
    donor = db.relationship("User", back_populates="donations")
    campaign = db.relationship("Campaign", back_populates="donations")

    def to_dict(self):
        return {
            "id": self.id,
            "donor_id": None if self.is_anonymous else self.donor_id,
            "campaign_id": self.campaign_id,
            "amount": f"{self.amount:.2f}",
            "currency": self.currency,
            "donation_type": self.donation_type,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "transaction_id": self.transaction_id,
            "receipt_url": self.receipt_url,
            "is_anonymous": self.is_anonymous,
            "donated_at": self.donated_at.isoformat() if self.donated_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Donation {self.amount} {self.currency} ({self.payment_status})>"
