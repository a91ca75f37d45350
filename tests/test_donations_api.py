"""Tests for the donations read API.

Covers:
- Bearer authentication (missing / invalid / expired token)
- Donors only see their own donations; admins see all
- Pagination, sorting and filter validation
- Single donation access control
- Stats restricted to admins
- Date filters (date-only end_date covers the whole day)
- Manual donations and admin status changes
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from givsociety.extensions import db
from givsociety.models.campaign import Campaign
from givsociety.models.donation import Donation
from givsociety.models.user import User
from givsociety.services.token_service import generate_access_token

SEND_EMAIL = "givsociety.services.email_service.send_email"


def _add_donation(transaction_id, amount, donor_id=None, campaign_id=7,
                  donation_type="one_time", payment_status="completed"):
    donation = Donation(
        donor_id=donor_id,
        campaign_id=campaign_id,
        amount=Decimal(amount),
        currency="USD",
        donation_type=donation_type,
        payment_method="stripe",
        payment_status=payment_status,
        transaction_id=transaction_id,
        is_anonymous=donor_id is None,
    )
    db.session.add(donation)
    db.session.commit()
    return donation.id


def _seed_donations():
    return {
        "d42_a": _add_donation("pi_42_a", "10.00", donor_id=42),
        "d42_b": _add_donation("pi_42_b", "50.00", donor_id=42, donation_type="recurring"),
        "d43": _add_donation("pi_43", "25.00", donor_id=43),
        "anon": _add_donation("pi_anon", "5.00", payment_status="pending"),
    }


class TestAuthentication:

    def test_no_token_returns_401(self, client, seed_data):
        resp = client.get("/donations")
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "error": "Access token is required"}

    def test_invalid_token_returns_401(self, client, seed_data):
        resp = client.get("/donations", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401

    def test_expired_token_returns_401(self, client, seed_data):
        user = db.session.get(User, 42)
        token = generate_access_token(user, lifetime=timedelta(seconds=-10))
        resp = client.get("/donations", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


class TestListDonations:

    def test_donor_sees_only_own(self, client, seed_data, auth_headers):
        _seed_donations()

        resp = client.get("/donations", headers=auth_headers(42))
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert {d["transaction_id"] for d in body["data"]} == {"pi_42_a", "pi_42_b"}

    def test_donor_cannot_widen_donor_filter(self, client, seed_data, auth_headers):
        _seed_donations()

        resp = client.get("/donations?donor_id=43", headers=auth_headers(42))
        assert resp.status_code == 200
        assert {d["donor_id"] for d in resp.get_json()["data"]} == {42}

    def test_admin_sees_all(self, client, seed_data, auth_headers):
        _seed_donations()

        resp = client.get("/donations", headers=auth_headers(1))
        assert resp.status_code == 200
        assert resp.get_json()["pagination"]["totalCount"] == 4

    def test_admin_filters(self, client, seed_data, auth_headers):
        _seed_donations()

        resp = client.get(
            "/donations?donation_type=recurring&min_amount=20", headers=auth_headers(1)
        )
        data = resp.get_json()["data"]
        assert [d["transaction_id"] for d in data] == ["pi_42_b"]

        resp = client.get("/donations?is_anonymous=true", headers=auth_headers(1))
        data = resp.get_json()["data"]
        assert [d["transaction_id"] for d in data] == ["pi_anon"]
        assert data[0]["donor_id"] is None

    def test_pagination_and_sorting(self, client, seed_data, auth_headers):
        _seed_donations()

        resp = client.get(
            "/donations?page=2&limit=3&sortBy=amount&sortOrder=asc",
            headers=auth_headers(1),
        )
        body = resp.get_json()
        assert [d["amount"] for d in body["data"]] == ["50.00"]
        assert body["pagination"] == {
            "page": 2,
            "limit": 3,
            "totalCount": 4,
            "totalPages": 2,
            "hasNextPage": False,
            "hasPrevPage": True,
        }

    def test_limit_capped(self, client, seed_data, auth_headers):
        resp = client.get("/donations?limit=500", headers=auth_headers(1))
        assert resp.get_json()["pagination"]["limit"] == 100

    def test_invalid_filters_return_400(self, client, seed_data, auth_headers):
        resp = client.get(
            "/donations?payment_status=refunded&min_amount=abc&sortBy=donor",
            headers=auth_headers(1),
        )
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["code"] == "VALIDATION_ERROR"
        assert len(body["errors"]) == 3


class TestGetDonation:

    def test_owner_can_read(self, client, seed_data, auth_headers):
        ids = _seed_donations()

        resp = client.get(f"/donations/{ids['d42_a']}", headers=auth_headers(42))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["amount"] == "10.00"

    def test_other_donor_forbidden(self, client, seed_data, auth_headers):
        ids = _seed_donations()

        resp = client.get(f"/donations/{ids['d43']}", headers=auth_headers(42))
        assert resp.status_code == 403

    def test_admin_can_read_any(self, client, seed_data, auth_headers):
        ids = _seed_donations()

        resp = client.get(f"/donations/{ids['d43']}", headers=auth_headers(1))
        assert resp.status_code == 200

    def test_missing_returns_404(self, client, seed_data, auth_headers):
        resp = client.get("/donations/does-not-exist", headers=auth_headers(1))
        assert resp.status_code == 404


class TestStats:

    def test_admin_stats(self, client, seed_data, auth_headers):
        _seed_donations()

        resp = client.get("/donations/stats", headers=auth_headers(1))
        assert resp.status_code == 200
        assert resp.get_json()["data"] == {
            "total_donations": 4,
            "total_amount": "90.00",
            "completed_amount": "85.00",
        }

    def test_stats_filtered_by_campaign(self, client, seed_data, auth_headers):
        _seed_donations()

        resp = client.get("/donations/stats?campaign_id=8", headers=auth_headers(1))
        assert resp.get_json()["data"]["total_donations"] == 0

    def test_donor_forbidden(self, client, seed_data, auth_headers):
        resp = client.get("/donations/stats", headers=auth_headers(42))
        assert resp.status_code == 403


class TestDateFilters:

    def _dated(self, transaction_id, donated_at):
        donation_id = _add_donation(transaction_id, "10.00", donor_id=42)
        donation = db.session.get(Donation, donation_id)
        donation.donated_at = donated_at
        db.session.commit()

    def test_date_only_end_date_includes_whole_day(self, client, seed_data, auth_headers):
        self._dated("pi_jan31", datetime(2025, 1, 31, 15, 30, tzinfo=timezone.utc))
        self._dated("pi_feb01", datetime(2025, 2, 1, 0, 5, tzinfo=timezone.utc))

        resp = client.get("/donations?end_date=2025-01-31", headers=auth_headers(1))
        assert [d["transaction_id"] for d in resp.get_json()["data"]] == ["pi_jan31"]

        resp = client.get("/donations?start_date=2025-02-01", headers=auth_headers(1))
        assert [d["transaction_id"] for d in resp.get_json()["data"]] == ["pi_feb01"]

    def test_datetime_with_zulu_suffix(self, client, seed_data, auth_headers):
        self._dated("pi_jan31", datetime(2025, 1, 31, 15, 30, tzinfo=timezone.utc))

        resp = client.get("/donations?end_date=2025-01-31T12:00:00Z", headers=auth_headers(1))
        assert resp.status_code == 200
        assert resp.get_json()["data"] == []

    def test_invalid_date(self, client, seed_data, auth_headers):
        resp = client.get("/donations?start_date=yesterday", headers=auth_headers(1))
        assert resp.status_code == 400


def _post_donation(client, body, headers=None):
    return client.post(
        "/donations",
        data=json.dumps(body),
        content_type="application/json",
        headers=headers or {},
    )


class TestCreateDonation:

    def test_anonymous_pledge(self, client, seed_data):
        resp = _post_donation(client, {
            "campaign_id": 7, "amount": 20, "donation_type": "one_time",
        })
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["payment_status"] == "pending"
        assert data["is_anonymous"] is True
        assert data["donor_id"] is None

        db.session.expire_all()
        assert db.session.get(Campaign, 7).current_amount == Decimal("0.00")

    def test_authenticated_donor_attributed(self, client, seed_data, auth_headers):
        resp = _post_donation(
            client,
            {"campaign_id": 7, "amount": "15.50", "donation_type": "one_time", "donor_id": 43},
            headers=auth_headers(42),
        )
        assert resp.status_code == 201
        assert resp.get_json()["data"]["donor_id"] == 42

    def test_non_admin_cannot_record_completed(self, client, seed_data, auth_headers):
        resp = _post_donation(
            client,
            {"campaign_id": 7, "amount": 20, "donation_type": "one_time",
             "payment_status": "completed"},
            headers=auth_headers(42),
        )
        assert resp.status_code == 403
        assert Donation.query.count() == 0

    @patch(SEND_EMAIL)
    def test_admin_in_kind_completed_credits_campaign(self, mock_send, client, seed_data,
                                                      auth_headers):
        resp = _post_donation(
            client,
            {"campaign_id": 7, "amount": 300, "donation_type": "in_kind",
             "payment_status": "completed", "payment_method": "goods", "donor_id": 43},
            headers=auth_headers(1),
        )
        assert resp.status_code == 201
        assert resp.get_json()["data"]["donor_id"] == 43

        db.session.expire_all()
        campaign = db.session.get(Campaign, 7)
        assert campaign.current_amount == Decimal("300.00")
        assert campaign.donor_count == 1

    def test_admin_unknown_donor(self, client, seed_data, auth_headers):
        resp = _post_donation(
            client,
            {"campaign_id": 7, "amount": 10, "donation_type": "in_kind", "donor_id": 999},
            headers=auth_headers(1),
        )
        assert resp.status_code == 404

    def test_validation_errors(self, client, seed_data):
        resp = _post_donation(client, {
            "amount": -5, "donation_type": "barter", "currency": "DOLLARS",
        })
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["code"] == "VALIDATION_ERROR"
        assert "Campaign ID is required" in body["errors"]
        assert "Amount must be positive" in body["errors"]
        assert "Currency must be a 3-letter code" in body["errors"]
        assert len(body["errors"]) == 4

    def test_amount_too_large(self, client, seed_data):
        resp = _post_donation(client, {
            "campaign_id": 7, "amount": "1e40", "donation_type": "one_time",
        })
        assert resp.status_code == 400
        assert resp.get_json()["errors"] == ["Amount must be at most 9999999999999.99"]

    def test_non_object_body(self, client, seed_data):
        resp = _post_donation(client, [1])
        assert resp.status_code == 400

    def test_unknown_campaign(self, client, seed_data):
        resp = _post_donation(client, {
            "campaign_id": 8, "amount": 10, "donation_type": "one_time",
        })
        assert resp.status_code == 404

    def test_duplicate_transaction_id(self, client, seed_data, auth_headers):
        body = {"campaign_id": 7, "amount": 10, "donation_type": "one_time",
                "transaction_id": "cheque-77"}
        assert _post_donation(client, body, auth_headers(1)).status_code == 201
        resp = _post_donation(client, body, auth_headers(1))
        assert resp.status_code == 409


class TestUpdateStatus:

    def _patch(self, client, donation_id, body, headers):
        return client.patch(
            f"/donations/{donation_id}/status",
            data=json.dumps(body),
            content_type="application/json",
            headers=headers,
        )

    def test_admin_completes_pending(self, client, seed_data, auth_headers):
        donation_id = _add_donation("cheque-1", "75.00", payment_status="pending")

        resp = self._patch(client, donation_id, {"payment_status": "completed"}, auth_headers(1))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["payment_status"] == "completed"

        db.session.expire_all()
        campaign = db.session.get(Campaign, 7)
        assert campaign.current_amount == Decimal("75.00")
        assert campaign.donor_count == 1

    def test_donor_forbidden(self, client, seed_data, auth_headers):
        donation_id = _add_donation("cheque-2", "75.00", donor_id=42, payment_status="pending")

        resp = self._patch(client, donation_id, {"payment_status": "completed"}, auth_headers(42))
        assert resp.status_code == 403

    def test_invalid_status(self, client, seed_data, auth_headers):
        donation_id = _add_donation("cheque-3", "75.00", payment_status="pending")

        resp = self._patch(client, donation_id, {"payment_status": "refunded"}, auth_headers(1))
        assert resp.status_code == 400

    def test_missing_donation(self, client, seed_data, auth_headers):
        resp = self._patch(client, "nope", {"payment_status": "failed"}, auth_headers(1))
        assert resp.status_code == 404
