"""Donor profile model.

Created the first time a registered user donates. total_donated is a
running total updated with SQL-side increments.
"""

from decimal import Decimal

from givsociety.extensions import db


class DonorProfile(db.Model):
    __tablename__ = "donor_profiles"

    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), primary_key=True
    )
    is_recurring_donor = db.Column(db.Boolean, default=False)
    total_donated = db.Column(
        db.Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    last_donation_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="donor_profile")

    def __repr__(self):
        return f"<DonorProfile user={self.user_id} total={self.total_donated}>"
