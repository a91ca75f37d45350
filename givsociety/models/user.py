"""User model.

Accounts are managed by the auth service; this app only reads them to
resolve the donor behind a bearer token, and flips ``is_donor`` on the
first recorded donation. Flask-Login integration via UserMixin.
"""

from flask_login import UserMixin

from givsociety.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    ROLES = ["admin", "volunteer", "donor", "editor"]

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    full_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default="donor")
    is_donor = db.Column(db.Boolean, default=False)
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
    donor_profile = db.relationship(
        "DonorProfile", back_populates="user", uselist=False
    )
    donations = db.relationship(
        "Donation", back_populates="donor", lazy="dynamic"
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    @property
    def is_active(self):
        return self.deleted_at is None

    def __repr__(self):
        return f"<User {self.email}>"
