"""Tests for the custom flask CLI commands."""

from unittest.mock import patch

from givsociety.models.campaign import Campaign
from givsociety.models.user import User
from givsociety.services.token_service import decode_access_token


class TestSeedCampaigns:

    def test_creates_admin_and_campaigns(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-campaigns", "--admin-email", "root@example.com"])

        assert result.exit_code == 0
        assert "Created admin user: root@example.com" in result.output
        assert "Seeded 3 campaign(s)." in result.output

        admin = User.query.filter_by(email="root@example.com").one()
        assert admin.role == "admin"
        assert Campaign.query.count() == 3

    def test_rerun_skips_existing(self, app):
        runner = app.test_cli_runner()
        runner.invoke(args=["seed-campaigns"])
        result = runner.invoke(args=["seed-campaigns"])

        assert "Admin user already exists" in result.output
        assert "Seeded 0 campaign(s)." in result.output
        assert Campaign.query.count() == 3


class TestIssueToken:

    def test_prints_token_for_user(self, app, seed_data):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["issue-token", "--email", "donor42@example.com"])

        assert result.exit_code == 0
        payload = decode_access_token(result.output.strip())
        assert payload["userId"] == 42
        assert payload["role"] == "donor"

    def test_unknown_email(self, app, seed_data):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["issue-token", "--email", "nobody@example.com"])

        assert "ERROR: no user with email nobody@example.com" in result.output


class TestVerifyStripePrices:

    @patch("stripe.Price.retrieve")
    def test_reports_each_tier(self, mock_retrieve, app):
        mock_retrieve.return_value = {
            "livemode": False,
            "recurring": {"interval": "month"},
            "unit_amount": 1000,
        }
        runner = app.test_cli_runner()
        result = runner.invoke(args=["verify-stripe-prices"])

        assert result.exit_code == 0
        assert "Stripe key mode: Test" in result.output
        assert mock_retrieve.call_count == 3
        assert "price_gold_test" in result.output
        # bronze matches $10; silver and gold don't
        assert result.output.count("Price amount does not match") == 2
