"""
Account management:
- admin user listing/edits and the cross-company admin view
- profile (name, avatar) and password change
- AI note drafting
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from auth import hash_password, verify_password
from conftest import auth_headers, build_app
from models import BillingPlan

ADMIN = auth_headers(user_id="admin-1", role="ADMIN")


# ----------------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------------

@pytest.fixture
def users_client(fake_repos):
    from routes import admin, users

    ensure = AsyncMock()
    with patch("routes.users.repos", fake_repos), patch("routes.admin.repos", fake_repos), patch(
        "routes.users.ensure_subscription", ensure
    ):
        client = TestClient(build_app(users.router, admin.router))
        client.ensure_subscription = ensure
        yield client


def test_user_listing_is_admin_only(users_client):
    assert users_client.get("/api/users").status_code == 401
    assert users_client.get("/api/users", headers=auth_headers()).status_code == 403


def test_user_listing_passes_filters(users_client, fake_repos):
    fake_repos.user.find_all.return_value = ([{"user_id": "user-1"}], 1)

    response = users_client.get(
        "/api/users?page=0&page_size=5&search_name=ann&filter_plan=PRO&filter_status=ACTIVE", headers=ADMIN
    )

    assert response.json() == {"users": [{"user_id": "user-1"}], "total": 1}
    fake_repos.user.find_all.assert_awaited_once_with(
        page=1, page_size=5, search_name="ann", filter_plan="PRO", filter_status="ACTIVE"
    )


def test_edit_user_requires_a_field(users_client):
    response = users_client.patch("/api/users/user-1", json={"email": "x@y.co"}, headers=ADMIN)
    assert (response.status_code, response.json()["error"]) == (400, "No valid fields to update")


def test_edit_unknown_user_is_404(users_client, fake_repos):
    fake_repos.user.update.return_value = None
    response = users_client.patch("/api/users/ghost", json={"name": "X"}, headers=ADMIN)
    assert response.status_code == 404


def test_admin_gift_moves_user_to_pro(users_client, fake_repos):
    fake_repos.user.find_by_id.return_value = {"user_id": "user-1", "email": "a@b.co", "password_hash": "h"}

    response = users_client.patch(
        "/api/users/user-1", json={"subscription": {"plan": "PRO"}}, headers=ADMIN
    )

    assert response.json() == {"user": {"user_id": "user-1", "email": "a@b.co"}}
    users_client.ensure_subscription.assert_awaited_once_with(
        {"user_id": "user-1", "email": "a@b.co", "password_hash": "h"},
        BillingPlan.GIFT, strict=True, create_customer=False,
    )
    fake_repos.subscription.update_by_user_id.assert_awaited_once_with("user-1", {"plan": "PRO"})



def test_admin_subscription_edit_only_accepts_local_plans(users_client, fake_repos):
    response = users_client.patch("/api/users/user-1", json={"subscription": {"plan": "GIFT"}}, headers=ADMIN)

    assert response.status_code == 422
    fake_repos.subscription.update_by_user_id.assert_not_awaited()


def test_admin_status_change_skips_billing(users_client, fake_repos):
    fake_repos.user.find_by_id.return_value = {"user_id": "user-1", "email": "a@b.co"}

    users_client.patch("/api/users/user-1", json={"subscription": {"status": "CANCELED", "note": "x"}}, headers=ADMIN)

    users_client.ensure_subscription.assert_not_awaited()
    fake_repos.subscription.update_by_user_id.assert_awaited_once_with("user-1", {"status": "CANCELED"})

def test_admin_plan_change_failure_is_500(users_client, fake_repos):
    fake_repos.user.update.return_value = {"user_id": "user-1", "role": "ADMIN"}
    users_client.ensure_subscription.side_effect = ValueError("No existing subscription found for user")

    response = users_client.patch(
        "/api/users/user-1", json={"role": "ADMIN", "subscription": {"plan": "FREE"}}, headers=ADMIN
    )

    assert (response.status_code, response.json()["error"]) == (500, "No existing subscription found for user")
    fake_repos.user.update.assert_awaited_once_with("user-1", {"role": "ADMIN"})


def test_admin_company_overview(users_client, fake_repos):
    fake_repos.company.find_all.return_value = [
        {"company_id": "c1", "user_id": "user-1", "legal_name": "Acme LLC", "state": "DE"},
        {"company_id": "c2", "user_id": "user-1", "legal_name": "Beta LLC", "display_name": "Beta"},
    ]
    fake_repos.user.find_by_id.return_value = {"user_id": "user-1", "name": "Ann", "email": "ann@example.com"}
    fake_repos.company_finance.find_by_company_id.side_effect = lambda cid: (
        {"stripe_account_id": "acct_1", "charges_enabled": True} if cid == "c1" else None
    )
    fake_repos.contract.count_by_company_id.return_value = 2

    response = users_client.get("/api/admin/companies", headers=ADMIN)

    first, second = response.json()["companies"]
    assert first["name"] == "Acme LLC"
    assert first["charges_enabled"] is True
    assert second["name"] == "Beta"
    assert second["stripe_account_id"] is None
    assert second["owner_email"] == "ann@example.com"
    fake_repos.user.find_by_id.assert_awaited_once_with("user-1")


# ----------------------------------------------------------------------------
# Profile and password
# ----------------------------------------------------------------------------

@pytest.fixture
def profile_client(fake_repos):
    from routes import password, profile

    with patch("routes.profile.repos", fake_repos), patch("routes.password.repos", fake_repos):
        yield TestClient(build_app(profile.router, password.router))


def test_profile_hides_credentials(profile_client, fake_repos):
    fake_repos.user.find_by_id.return_value = {"user_id": "user-1", "name": "Ann", "password_hash": "h"}
    response = profile_client.get("/api/profile", headers=auth_headers())
    assert response.json() == {"user": {"user_id": "user-1", "name": "Ann"}}


def test_profile_rejects_blank_name_and_bad_images(profile_client, fake_repos):
    response = profile_client.patch("/api/profile", data={"name": "  "}, headers=auth_headers())
    assert (response.status_code, response.json()["error"]) == (400, "Name invalid")

    fake_repos.user.find_by_id.return_value = {"user_id": "user-1"}
    response = profile_client.patch(
        "/api/profile", files={"file": ("a.gif", b"GIF89a", "image/gif")}, headers=auth_headers()
    )
    assert response.json()["error"] == "Only JPG or PNG files are allowed"


def test_profile_avatar_replaces_previous_image(profile_client, fake_repos):
    fake_repos.user.find_by_id.return_value = {"user_id": "user-1", "image": "https://cdn.example/user-1/old.png"}
    fake_repos.user.update.side_effect = lambda user_id, updates: {"user_id": user_id, **updates}
    storage = MagicMock()
    storage.upload_file = AsyncMock(return_value="new.png")
    storage.get_file_url = AsyncMock(return_value="https://cdn.example/user-1/new.png?X-Amz-Signature=abc")
    storage.delete_file = AsyncMock()

    with patch("routes.profile.storage_service", storage):
        response = profile_client.patch(
            "/api/profile",
            data={"name": "Ann"},
            files={"file": ("me.png", b"\x89PNG", "image/png")},
            headers=auth_headers(),
        )

    assert response.json() == {"name": "Ann", "image": "https://cdn.example/user-1/new.png"}
    folder, key, content, content_type = storage.upload_file.await_args[0]
    assert (folder, content, content_type) == ("user-1", b"\x89PNG", "image/png")
    assert key.endswith(".png")
    assert storage.upload_file.await_args.kwargs["acl"] == "public-read"
    storage.delete_file.assert_awaited_once_with("user-1", "old.png")


def test_password_change_validation(profile_client):
    form = {"current_password": "a", "new_password": "b", "confirm_new_password": "c"}
    response = profile_client.put("/api/password", data=form, headers=auth_headers())
    assert response.json()["error"] == "New passwords do not match"

    response = profile_client.put("/api/password", data={}, headers=auth_headers())
    assert response.json()["error"] == "Current password cannot be empty"


def test_password_change(profile_client, fake_repos, monkeypatch):
    import settings

    monkeypatch.setattr(settings, "ENABLE_EMAIL_INTEGRATION", False)
    fake_repos.user.find_by_id.return_value = {"user_id": "user-1", "name": "Ann", "password_hash": hash_password("old")}
    form = {"current_password": "wrong", "new_password": "new", "confirm_new_password": "new"}

    response = profile_client.put("/api/password", data=form, headers=auth_headers())
    assert (response.status_code, response.json()["error"]) == (401, "Current password is incorrect")

    form["current_password"] = "old"
    response = profile_client.put("/api/password", data=form, headers=auth_headers())
    assert response.json() == {"name": "Ann", "image": None}
    user_id, updates = fake_repos.user.update.await_args[0]
    assert user_id == "user-1"
    assert verify_password("new", updates["password_hash"])


# ----------------------------------------------------------------------------
# AI drafting
# ----------------------------------------------------------------------------

def test_generate_content_requires_configuration(monkeypatch):
    import settings
    from routes import ai

    monkeypatch.setattr(settings, "DO_INFERENCE_API_KEY", None)
    client = TestClient(build_app(ai.router))
    response = client.post("/api/ai/generate-content", headers=auth_headers())
    assert (response.status_code, response.json()["error"]) == (500, "AI content generation is not configured")


def test_generate_content(monkeypatch):
    import settings
    from routes import ai

    monkeypatch.setattr(settings, "DO_INFERENCE_API_KEY", "key")
    service = MagicMock()
    service.generate_content = AsyncMock(return_value="Agenda: review the Q3 contracts.")
    client = TestClient(build_app(ai.router))

    with patch("routes.ai.inference_service", service):
        assert client.post("/api/ai/generate-content").status_code == 401
        response = client.post("/api/ai/generate-content", headers=auth_headers())

    assert response.json() == {"content": "Agenda: review the Q3 contracts."}
