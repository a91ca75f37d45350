import os
import logging

import click
from flask import Flask, jsonify

from givsociety.config import config_by_name
from givsociety.extensions import db, migrate, login_manager, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from givsociety import models  # noqa: F401

    # --- Register blueprints ---
    from givsociety.blueprints.payments import payments_bp
    from givsociety.blueprints.webhooks import webhooks_bp
    from givsociety.blueprints.donations import donations_bp

    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(donations_bp)

    # --- Error handlers (JSON API) ---
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"success": False, "error": "Bad request"}), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({"success": False, "error": "Access token is required"}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"success": False, "error": "Access denied"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({
            "success": False,
            "error": "Too many requests from this IP, please try again later.",
            "code": "RATE_LIMIT_EXCEEDED",
        }), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"success": False, "error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


SAMPLE_CAMPAIGNS = [
    {
        "title": "Clean Water for All",
        "slug": "clean-water-for-all",
        "description": "Providing access to clean and safe drinking water in rural communities.",
        "goal_amount": "20000.00",
        "category": "Water",
        "is_featured": True,
    },
    {
        "title": "Back to School Supplies",
        "slug": "back-to-school-supplies",
        "description": "Supplying essential school materials to children in need.",
        "goal_amount": "10000.00",
        "category": "Education",
        "is_featured": False,
    },
    {
        "title": "Healthcare for Mothers",
        "slug": "healthcare-for-mothers",
        "description": "Supporting maternal health and safe childbirth.",
        "goal_amount": "30000.00",
        "category": "Health",
        "is_featured": True,
    },
]


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-campaigns")
    @click.option("--admin-email", default="admin@givsociety.local", help="Admin email")
    def seed_campaigns(admin_email):
        """Create an admin user and the sample donation campaigns.

        Existing campaigns (matched by slug) are left untouched.

        Usage:
            flask seed-campaigns
            flask seed-campaigns --admin-email admin@example.com
        """
        from decimal import Decimal

        from givsociety.models.campaign import Campaign
        from givsociety.models.user import User

        admin = User.query.filter_by(email=admin_email).first()
        if admin:
            click.echo(f"Admin user already exists: {admin_email}")
        else:
            admin = User(email=admin_email, full_name="Admin", role="admin")
            db.session.add(admin)
            db.session.flush()
            click.echo(f"Created admin user: {admin_email}")

        created = 0
        for data in SAMPLE_CAMPAIGNS:
            if Campaign.query.filter_by(slug=data["slug"]).first():
                click.echo(f"  exists:  {data['slug']}")
                continue
            db.session.add(Campaign(
                title=data["title"],
                slug=data["slug"],
                description=data["description"],
                goal_amount=Decimal(data["goal_amount"]),
                current_amount=Decimal("0.00"),
                donor_count=0,
                category=data["category"],
                is_active=True,
                is_featured=data["is_featured"],
                created_by=admin.id,
            ))
            created += 1
            click.echo(f"  created: {data['slug']}")

        db.session.commit()
        click.echo(f"Seeded {created} campaign(s).")

    @app.cli.command("issue-token")
    @click.option("--email", required=True, help="Email of an existing user")
    def issue_token(email):
        """Print a bearer access token for an existing user (development)."""
        from givsociety.models.user import User
        from givsociety.services.token_service import generate_access_token

        user = User.query.filter_by(email=email, deleted_at=None).first()
        if not user:
            click.echo(f"ERROR: no user with email {email}")
            return
        click.echo(generate_access_token(user))

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Verify each tier's recurring price ID exists and matches the key's mode.

        Uses STRIPE_SECRET_KEY and STRIPE_{BRONZE,SILVER,GOLD}_PRICE_ID.
        """
        import stripe as _stripe

        from givsociety.services.stripe_tiers import TIER_AMOUNTS, TIER_PRICE_CONFIG_KEYS

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        _stripe.api_key = api_key

        for tier, config_key in TIER_PRICE_CONFIG_KEYS.items():
            price_id = app.config.get(config_key)
            click.echo(f"{config_key} ({tier}, ${TIER_AMOUNTS[tier]}/month):")
            if not price_id:
                click.echo("  (not set)")
                click.echo("")
                continue
            try:
                price = _stripe.Price.retrieve(price_id)
                livemode = price["livemode"]
                recurring = price["recurring"]
                unit_amount = price["unit_amount"]
                click.echo(f"  {price_id}")
                click.echo(
                    f"    exists=True, livemode={livemode}, "
                    f"recurring={bool(recurring)}, unit_amount={unit_amount}"
                )
                if livemode is True and key_mode != "Live":
                    click.echo("    WARNING: This price is Live but your key is Test.")
                elif livemode is False and key_mode == "Live":
                    click.echo("    WARNING: This price is Test but your key is Live.")
                if not recurring:
                    click.echo("    WARNING: This price is not recurring.")
                if unit_amount is not None and unit_amount != int(TIER_AMOUNTS[tier] * 100):
                    click.echo("    WARNING: Price amount does not match the tier amount.")
            except _stripe.InvalidRequestError as e:
                click.echo(f"  {price_id}")
                click.echo(f"    ERROR: {e}")
            click.echo("")
