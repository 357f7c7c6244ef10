"""
API Tests for the Rewards Ledger

Exercises the HTTP routes end to end with FastAPI's TestClient, including
error-kind to status-code mapping and the admin header.
"""

import importlib.util
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ledger.api import create_app
from ledger.models import PostStatus
from ledger.settings import Settings


@pytest.fixture
def client(storage, clock):
    app = create_app(storage=storage, settings=Settings(_env_file=None), clock=clock)
    return TestClient(app)


@pytest.fixture
def admin(make_user):
    user = make_user(is_admin=True, username="Site Admin", email="admin@anp.com")
    return {"X-Admin-Id": str(user.id)}


class TestSystemRoutes:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "reader-rewards-ledger"}

    def test_reward_rules_listed(self, client):
        response = client.get("/rewards/rules")

        types = {rule["reward_type"] for rule in response.json()}
        assert types == {"DAILY", "READ", "COMMENT", "POST_APPROVED"}


class TestServerlessEntry:
    def test_handler_wraps_the_configured_app(self):
        """Test the Vercel handler serves the same app as uvicorn."""
        import ledger.api

        path = Path(__file__).resolve().parents[2] / "api" / "index.py"
        spec = importlib.util.spec_from_file_location("vercel_index", path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        assert module.handler.app is ledger.api.app


class TestRewardRoutes:
    def test_grant_and_repeat(self, client, make_user, make_post):
        """Test a duplicate claim maps to 409 with the error kind."""
        user = make_user()
        body = {"user_id": str(user.id), "reward_type": "READ", "reference_id": str(make_post().id)}

        first = client.post("/rewards", json=body)
        second = client.post("/rewards", json=body)

        assert first.status_code == 201
        assert Decimal(first.json()["amount"]) == Decimal("0.20")
        assert first.json()["message"] == "Earned K0.20"
        assert second.status_code == 409
        assert second.json()["detail"] == {"error": "ALREADY_CLAIMED", "message": "Already rewarded for this article"}

    def test_invented_article(self, client, make_user):
        """Test reading an article that does not exist maps to 404."""
        user = make_user()

        response = client.post("/rewards", json={
            "user_id": str(user.id), "reward_type": "READ", "reference_id": "A1",
        })

        assert response.status_code == 404
        assert response.json()["detail"] == {"error": "NOT_FOUND", "message": "Article not found"}

    @pytest.mark.parametrize("reward_type", ["COMMENT", "POST_APPROVED"])
    def test_action_rewards_not_self_service(self, client, make_user, make_post, storage, reward_type):
        """Test comment and approval rewards cannot be claimed directly."""
        user = make_user()
        post = make_post(author=user, status=PostStatus.PENDING)

        response = client.post("/rewards", json={
            "user_id": str(user.id), "reward_type": reward_type, "reference_id": str(post.id),
        })

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "VALIDATION_FAILURE"
        assert storage.load_user(user.id).activity_points == Decimal("0.00")
        assert storage.load_post(post.id).status == PostStatus.PENDING

    def test_unknown_user(self, client):
        response = client.post("/rewards", json={
            "user_id": "00000000-0000-0000-0000-000000000000", "reward_type": "DAILY",
        })

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NOT_FOUND"

    def test_balance_and_ledger(self, client, make_user):
        user = make_user()
        client.post("/rewards", json={"user_id": str(user.id), "reward_type": "DAILY"})

        balance = client.get(f"/users/{user.id}/balance").json()
        ledger = client.get(f"/users/{user.id}/ledger").json()

        assert Decimal(balance["activity_points"]) == Decimal("5.00")
        assert balance["reconciled"] is True
        assert ledger["total_count"] == 1
        assert ledger["entries"][0]["entry_type"] == "EARN"


class TestAdminRoutes:
    def test_adjustment_requires_admin(self, client, make_user):
        user = make_user()

        response = client.post(f"/users/{user.id}/adjustments", json={"amount": "100"})

        assert response.status_code == 403

    def test_non_admin_header_rejected(self, client, make_user):
        user = make_user()

        response = client.post(
            f"/users/{user.id}/adjustments", json={"amount": "100"}, headers={"X-Admin-Id": str(user.id)},
        )

        assert response.status_code == 403

    def test_adjustment_records_admin(self, client, make_user, admin, storage):
        user = make_user()

        response = client.post(
            f"/users/{user.id}/adjustments", json={"amount": "-2.50", "reason": "Correction"}, headers=admin,
        )

        assert response.status_code == 200
        entry = response.json()["ledger_entry"]
        assert entry["entry_type"] == "ADJUSTMENT"
        assert entry["metadata"] == {"performed_by": "admin@anp.com"}
        assert storage.load_user(user.id).activity_points == Decimal("-2.50")

    def test_list_users(self, client, make_user, admin):
        make_user()

        response = client.get("/users", headers=admin)

        assert response.status_code == 200
        assert len(response.json()) == 2
        assert all("password_hash" not in user for user in response.json())

    def test_promote_user(self, client, make_user, admin, storage):
        """Test an administrator can grant admin rights explicitly."""
        user = make_user()

        denied = client.post(f"/users/{user.id}/admin", json={"is_admin": True})
        granted = client.post(f"/users/{user.id}/admin", json={"is_admin": True}, headers=admin)

        assert denied.status_code == 403
        assert granted.status_code == 200
        assert storage.load_user(user.id).is_admin

    def test_transaction_feed(self, client, make_user, admin, ledger, clock):
        """Test the platform feed lists every user's entries newest first."""
        first, second = make_user(), make_user()
        ledger.adjust_funds(first.id, 10, "older")
        clock.advance(minutes=5)
        ledger.adjust_funds(second.id, 20, "newer")

        denied = client.get("/transactions")
        feed = client.get("/transactions", headers=admin).json()
        filtered = client.get("/transactions", params={"entry_type": "EARN"}, headers=admin).json()

        assert denied.status_code == 403
        assert feed["total_count"] == 2
        assert [e["description"] for e in feed["entries"]] == ["newer", "older"]
        assert filtered == {"entries": [], "total_count": 0}

    def test_invite_codes(self, client, admin):
        """Test creating, repeating and listing E-Pins."""
        created = client.post("/invite-codes", json={"code": "launch26"}, headers=admin)
        duplicate = client.post("/invite-codes", json={"code": "LAUNCH26"}, headers=admin)
        generated = client.post("/invite-codes", json={}, headers=admin)
        unused = client.get("/invite-codes", params={"used": False}, headers=admin)

        assert created.status_code == 201
        assert created.json()["invite_code"]["code"] == "LAUNCH26"
        assert created.json()["invite_code"]["created_by"] == "admin@anp.com"
        assert duplicate.status_code == 400
        assert len(generated.json()["invite_code"]["code"]) == 8
        assert len(unused.json()) == 2
        assert client.post("/invite-codes", json={}).status_code == 403


class TestWithdrawalRoutes:
    def test_submit_and_reject(self, client, make_user, admin, storage):
        """Test the refund path over HTTP, then a repeat resolution."""
        user = make_user(activity_points=Decimal("1200.00"))

        submitted = client.post("/withdrawals", json={
            "user_id": str(user.id), "amount": "1000", "source": "ACTIVITY",
            "payout": {"method": "Mobile", "mobile_strategy": "Registered", "provider": "Zamtel"},
        })
        assert submitted.status_code == 201
        withdrawal_id = submitted.json()["withdrawal"]["id"]
        assert storage.load_user(user.id).activity_points == Decimal("200.00")

        rejected = client.post(f"/withdrawals/{withdrawal_id}/resolve", json={"decision": "Rejected"}, headers=admin)
        repeat = client.post(f"/withdrawals/{withdrawal_id}/resolve", json={"decision": "Paid"}, headers=admin)

        assert rejected.status_code == 200
        assert rejected.json()["withdrawal"]["resolved_by"] == "admin@anp.com"
        assert storage.load_user(user.id).activity_points == Decimal("1200.00")
        assert repeat.status_code == 409
        assert repeat.json()["detail"]["error"] == "ALREADY_RESOLVED"

    def test_below_minimum(self, client, make_user):
        user = make_user(activity_points=Decimal("1200.00"))

        response = client.post("/withdrawals", json={
            "user_id": str(user.id), "amount": "500", "payout": {"method": "Mobile"},
        })

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "VALIDATION_FAILURE"

    def test_insufficient_funds(self, client, make_user):
        user = make_user()

        response = client.post("/withdrawals", json={
            "user_id": str(user.id), "amount": "1000", "payout": {"method": "Mobile"},
        })

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INSUFFICIENT_FUNDS"

    def test_stats_after_payment(self, client, make_user, admin):
        user = make_user(activity_points=Decimal("1000.00"))
        submitted = client.post("/withdrawals", json={
            "user_id": str(user.id), "amount": "1000", "payout": {"method": "Bank", "bank_details": "FNB 001"},
        })
        client.post(f"/withdrawals/{submitted.json()['withdrawal']['id']}/resolve", json={"decision": "Paid"}, headers=admin)

        stats = client.get("/stats").json()

        assert Decimal(stats["total_paid"]) == Decimal("1000.00")
        assert stats["pending_withdrawals"] == 0


class TestAccountRoutes:
    def test_register_with_referral_and_login(self, client, make_user, new_invite, storage):
        referrer = make_user(referral_code="ZAMBIA22")

        registered = client.post("/users", json={
            "username": "chola", "email": "chola@example.com", "phone_number": "0955555555",
            "password": "secret123", "referral_code": "ZAMBIA22", "invite_code": new_invite(),
        })
        login = client.post("/auth/login", json={"identifier": "0955555555", "password": "secret123"})
        bad_login = client.post("/auth/login", json={"identifier": "0955555555", "password": "nope-nope"})

        assert registered.status_code == 201
        assert registered.json()["referral_bonus_awarded"] is True
        assert storage.load_user(referrer.id).referral_earnings == Decimal("50.00")
        assert login.status_code == 200
        assert login.json()["user"]["username"] == "chola"
        assert bad_login.status_code == 401

    def test_register_without_epin(self, client, storage):
        response = client.post("/users", json={
            "username": "chola", "email": "chola@example.com", "phone_number": "0955555555",
            "password": "secret123",
        })

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "VALIDATION_FAILURE"
        assert storage.users == {}

    def test_admin_email_sign_up_refused(self, client, new_invite, storage):
        """Test signing up with the admin address grants nothing."""
        response = client.post("/users", json={
            "username": "imposter", "email": "admin@anp.com", "phone_number": "0955555555",
            "password": "secret123", "invite_code": new_invite(),
        })

        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "This email address is reserved."
        assert storage.users == {}


class TestCommentRoutes:
    def test_comment_pays_once(self, client, make_user, make_post, storage):
        """Test the first comment earns the comment reward and later ones are kept."""
        user = make_user()
        post = make_post()

        first = client.post(f"/posts/{post.id}/comments", json={"user_id": str(user.id), "text": "Great read"})
        second = client.post(f"/posts/{post.id}/comments", json={"user_id": str(user.id), "text": "Agreed"})
        listed = client.get(f"/posts/{post.id}/comments").json()

        assert first.status_code == 201
        assert first.json()["message"] == "Comment posted! You earned K0.20."
        assert second.status_code == 201
        assert second.json()["message"] == "Comment posted!"
        assert [c["text"] for c in listed] == ["Great read", "Agreed"]
        assert storage.load_user(user.id).activity_points == Decimal("0.20")

    def test_comment_on_pending_post(self, client, make_user, make_post):
        user = make_user()
        post = make_post(status=PostStatus.PENDING)

        response = client.post(f"/posts/{post.id}/comments", json={"user_id": str(user.id), "text": "Hi"})

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NOT_FOUND"


class TestPostRoutes:
    def test_submit_and_approve(self, client, make_user, admin, storage):
        author = make_user()

        submitted = client.post("/posts", json={
            "author_id": str(author.id), "title": "Derby day", "category": "Sports", "content": "Full report.",
        })
        post_id = submitted.json()["post"]["id"]
        approved = client.post(f"/posts/{post_id}/approve", headers=admin)
        again = client.post(f"/posts/{post_id}/approve", headers=admin)

        assert submitted.status_code == 201
        assert approved.status_code == 200
        assert approved.json()["post"]["status"] == "Approved"
        assert again.status_code == 409
        assert storage.load_user(author.id).activity_points == Decimal("10.00")

    def test_bulk_pending_decision(self, client, admin):
        response = client.post("/posts/moderate", json={"post_ids": [], "decision": "Pending"}, headers=admin)

        assert response.status_code == 400


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
