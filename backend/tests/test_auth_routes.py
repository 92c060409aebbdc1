"""
Authentication routes:
- signup (first user is admin, free plan when email verification is off)
- password and magic-link login
- forgot/reset password and email verification
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from auth import decode_access_token, hash_password, verify_password
from conftest import build_app
from services.service_status import ServiceConfigStatus


@pytest.fixture
def email():
    fake = MagicMock()
    fake.is_email_enabled.return_value = False
    fake.check_configuration = AsyncMock(
        return_value=ServiceConfigStatus(name="Email", configured=True, connected=True)
    )
    fake.send_template = AsyncMock()
    return fake


@pytest.fixture
def auth_client(monkeypatch, fake_repos, email):
    import settings
    from routes import auth as auth_routes

    monkeypatch.setattr(settings, "ENABLE_EMAIL_INTEGRATION", False)
    monkeypatch.setattr(settings, "BASE_URL", "https://app.example.com")
    ensure = AsyncMock()
    with patch("routes.auth.repos", fake_repos), patch("routes.auth.email_service", email), patch(
        "routes.auth.ensure_subscription", ensure
    ):
        client = TestClient(build_app(auth_routes.router))
        client.ensure_subscription = ensure
        yield client


def test_signup_requires_all_fields(auth_client):
    response = auth_client.post("/api/auth/signup", json={"email": "ann@example.com"})
    assert (response.status_code, response.json()["error"]) == (400, "Missing required fields")


def test_first_signup_is_admin_and_gets_free_plan(auth_client, fake_repos):
    fake_repos.user.count.return_value = 0
    fake_repos.user.find_by_email.return_value = None
    fake_repos.user.create.side_effect = lambda doc: {**doc, "user_id": "user-1"}

    response = auth_client.post(
        "/api/auth/signup", json={"name": "Ann", "email": "ann@example.com", "password": "s3cret"}
    )

    assert response.json() == {"ok": True, "message": "Account created. You can now log in."}
    created = fake_repos.user.create.call_args[0][0]
    assert created["role"] == "ADMIN"
    assert created["email_verified"] is True
    assert verify_password("s3cret", created["password_hash"])
    auth_client.ensure_subscription.assert_awaited_once()


def test_signup_with_email_sends_verification(auth_client, fake_repos, email):
    email.is_email_enabled.return_value = True
    fake_repos.user.count.return_value = 3
    fake_repos.user.find_by_email.return_value = None
    fake_repos.user.create.side_effect = lambda doc: {**doc, "user_id": "user-4"}

    response = auth_client.post(
        "/api/auth/signup", json={"name": "Bo", "email": "bo@example.com", "password": "pw"}
    )

    assert response.json()["message"] == "Verification email sent."
    created = fake_repos.user.create.call_args[0][0]
    assert created["role"] == "USER"
    assert created["email_verified"] is False
    template = email.send_template.await_args[0][1]
    assert f"verify-email?token={created['verification_token']}" in template["text"]
    auth_client.ensure_subscription.assert_not_awaited()


def test_duplicate_signup_conflicts(auth_client, fake_repos):
    fake_repos.user.count.return_value = 1
    fake_repos.user.find_by_email.return_value = {"user_id": "user-1"}
    response = auth_client.post("/api/auth/signup", json={"name": "A", "email": "a@b.co", "password": "x"})
    assert (response.status_code, response.json()["error"]) == (409, "User already exists")


def test_password_login_issues_token(auth_client, fake_repos):
    fake_repos.user.find_by_email.return_value = {
        "user_id": "user-1", "email": "ann@example.com", "name": "Ann", "role": "ADMIN",
        "password_hash": hash_password("s3cret"), "verification_token": None,
    }

    response = auth_client.post("/api/auth/login", json={"email": "ann@example.com", "password": "s3cret"})

    body = response.json()
    assert body["token_type"] == "bearer"
    assert "password_hash" not in body["user"]
    assert decode_access_token(body["access_token"])["role"] == "ADMIN"


def test_login_failures_are_401(auth_client, fake_repos):
    assert auth_client.post("/api/auth/login", json={"email": "a@b.co"}).status_code == 400

    fake_repos.user.find_by_email.return_value = None
    response = auth_client.post("/api/auth/login", json={"email": "a@b.co", "password": "x"})
    assert (response.status_code, response.json()["error"]) == (401, "Invalid credentials")

    fake_repos.user.find_by_email.return_value = {"user_id": "u", "email": "a@b.co", "password_hash": hash_password("y")}
    assert auth_client.post("/api/auth/login", json={"email": "a@b.co", "password": "x"}).status_code == 401


def test_unverified_email_cannot_log_in_with_password(auth_client, fake_repos, monkeypatch):
    import settings

    monkeypatch.setattr(settings, "ENABLE_EMAIL_INTEGRATION", True)
    fake_repos.user.find_by_email.return_value = {
        "user_id": "u", "email": "a@b.co", "password_hash": hash_password("x"), "email_verified": False,
    }
    response = auth_client.post("/api/auth/login", json={"email": "a@b.co", "password": "x"})
    assert response.json()["error"] == "Email not verified"


def test_magic_link_login_consumes_token(auth_client, fake_repos):
    fake_repos.user.find_by_email.return_value = {"user_id": "u", "email": "a@b.co", "role": "USER"}
    fake_repos.verification_token.find_valid.return_value = {"identifier": "a@b.co", "token": "t1"}

    response = auth_client.post("/api/auth/login", json={"email": "a@b.co", "magic_link_token": "t1"})

    assert response.status_code == 200
    fake_repos.verification_token.delete_token.assert_awaited_once_with("a@b.co", "t1")


def test_expired_magic_link_is_rejected(auth_client, fake_repos):
    fake_repos.user.find_by_email.return_value = {"user_id": "u", "email": "a@b.co"}
    fake_repos.verification_token.find_valid.return_value = None
    response = auth_client.post("/api/auth/login", json={"email": "a@b.co", "magic_link_token": "t1"})
    assert response.json()["error"] == "Invalid or expired magic link"


def test_magic_link_needs_email_enabled(auth_client):
    response = auth_client.post("/api/auth/magic-link", json={"email": "a@b.co"})
    assert (response.status_code, response.json()["error"]) == (500, "Email feature is disabled")


def test_magic_link_stores_token_and_emails_link(auth_client, fake_repos, email):
    email.is_email_enabled.return_value = True
    fake_repos.user.find_by_email.return_value = {"user_id": "u", "email": "a@b.co"}

    response = auth_client.post("/api/auth/magic-link", json={"email": "a@b.co"})

    assert response.json() == {"ok": True}
    identifier, token, _expires = fake_repos.verification_token.create_token.await_args[0]
    assert identifier == "a@b.co"
    assert f"magic-link?token={token}&email=a%40b.co" in email.send_template.await_args[0][1]["text"]


def test_forgot_password_does_not_reveal_unknown_accounts(auth_client, fake_repos, email):
    email.is_email_enabled.return_value = True
    fake_repos.user.find_by_email.return_value = None
    response = auth_client.post("/api/forgot-password", json={"email": "ghost@example.com"})
    assert response.json() == {"success": True}
    email.send_template.assert_not_awaited()


def test_reset_password(auth_client, fake_repos):
    fake_repos.verification_token.find_valid.return_value = None
    response = auth_client.post("/api/reset-password", json={"token": "t1", "password": "new"})
    assert response.json()["error"] == "Invalid or expired token"

    fake_repos.verification_token.find_valid.return_value = {"identifier": "a@b.co", "token": "t1"}
    response = auth_client.post("/api/reset-password", json={"token": "t1", "password": "new"})

    assert response.json() == {"success": True}
    email_arg, updates = fake_repos.user.update_by_email.await_args[0]
    assert email_arg == "a@b.co"
    assert verify_password("new", updates["password_hash"])
    fake_repos.verification_token.delete_token.assert_awaited_once_with("a@b.co", "t1")


def test_verify_email_marks_user_and_attaches_plan(auth_client, fake_repos):
    assert auth_client.get("/api/verify-email").status_code == 400

    fake_repos.user.find_one.return_value = {"user_id": "user-1", "email": "a@b.co"}
    response = auth_client.get("/api/verify-email?token=abc")

    assert response.json() == {"success": True}
    fake_repos.user.update.assert_awaited_once_with("user-1", {"email_verified": True, "verification_token": None})
    auth_client.ensure_subscription.assert_awaited_once()


def test_verify_email_subscription_failure_is_500(auth_client, fake_repos):
    fake_repos.user.find_one.return_value = {"user_id": "user-1", "email": "a@b.co"}
    auth_client.ensure_subscription.side_effect = RuntimeError("stripe down")
    response = auth_client.get("/api/verify-email?token=abc")
    assert (response.status_code, response.json()["error"]) == (500, "Error creating subscription")
