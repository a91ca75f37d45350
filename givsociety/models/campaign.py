"""Campaign model.

current_amount and donor_count are running totals maintained by the
donation recorder with SQL-side increments only. Campaigns are soft
deleted via deleted_at and must be filtered out of every lookup.
"""

from decimal import Decimal

from givsociety.extensions import db


class Campaign(db.Model):
    __tablename__ = "campaigns"
    __table_args__ = (
        db.CheckConstraint(
            "current_amount >= 0", name="ck_campaigns_current_amount_non_negative"
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    title = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=False)
    description = db.Column(db.Text)
    goal_amount = db.Column(db.Numeric(15, 2), nullable=False)
    current_amount = db.Column(
        db.Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    donor_count = db.Column(db.Integer, nullable=False, default=0)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, default=True)
    is_featured = db.Column(db.Boolean, default=False)
    category = db.Column(db.String(50))
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Relationships ---
    donations = db.relationship(
        "Donation", back_populates="campaign", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Campaign {self.slug} ({self.current_amount}/{self.goal_amount})>"
