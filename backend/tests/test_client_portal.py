"""
Client portal:
- emailed magic links for relevant parties
- token scoping to party, contract and company
- contract payment checkout and file downloads
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import unquote

from fastapi.testclient import TestClient

from auth import create_client_portal_token
from conftest import build_app
from services.service_status import ServiceConfigStatus

PARTY = {"party_id": "p1", "contract_id": "k1", "email": "Client@Example.com", "full_name": "Cal Client"}
CONTRACT = {"contract_id": "k1", "company_id": "c1", "title": "Retainer"}
BASE = "/api/c1/client-portal/contracts/k1"


def _token(email="client@example.com", party_ids=("p1",)):
    return create_client_portal_token(email, list(party_ids))


@pytest.fixture
def portal_client(fake_repos):
    from routes import client_portal

    with patch("routes.client_portal.repos", fake_repos):
        yield TestClient(build_app(client_portal.router))


@pytest.fixture
def authorized(fake_repos):
    fake_repos.relevant_party.find_by_ids.return_value = [PARTY]
    fake_repos.contract.find_by_id.return_value = dict(CONTRACT)
    return fake_repos


def test_normalize_email():
    from routes.client_portal import normalize_email

    assert normalize_email("  Ann@Example.COM ") == "ann@example.com"
    assert normalize_email("   ") is None
    assert normalize_email(None) is None


def test_token_is_required_and_verified(portal_client):
    response = portal_client.get(BASE)
    assert (response.status_code, response.json()["error"]) == (400, "Token is required")

    response = portal_client.get(BASE, params={"token": "not-a-jwt"})
    assert (response.status_code, response.json()["error"]) == (401, "Invalid or expired token")


def test_token_without_parties_is_forbidden(portal_client, fake_repos):
    fake_repos.relevant_party.find_by_ids.return_value = []
    response = portal_client.get(BASE, params={"token": _token()})
    assert response.status_code == 403


def test_token_for_other_contract_is_forbidden(portal_client, fake_repos):
    fake_repos.relevant_party.find_by_ids.return_value = [{**PARTY, "contract_id": "k2"}]
    response = portal_client.get(BASE, params={"token": _token()})
    assert (response.status_code, response.json()["error"]) == (403, "Token does not grant access to this contract")


def test_contract_of_other_company_is_not_found(portal_client, authorized):
    authorized.contract.find_by_id.return_value = {**CONTRACT, "company_id": "c2"}
    response = portal_client.get(BASE, params={"token": _token()})
    assert (response.status_code, response.json()["error"]) == (404, "Contract not found")


def test_contract_detail_only_exposes_public_fields(portal_client, authorized):
    authorized.company.find_by_id.return_value = {"company_id": "c1", "legal_name": "Acme LLC", "user_id": "owner"}
    authorized.relevant_party.find_by_contract_id.return_value = [PARTY]
    authorized.work_item.find_by_contract_id.return_value = []
    authorized.file.find_by_contract_id.return_value = [
        {"file_id": "f1", "name": "sow.pdf", "storage_key": "k1/x.pdf", "contract_id": "k1"}
    ]

    response = portal_client.get(BASE, params={"token": _token()})

    contract = response.json()["contract"]
    assert contract["title"] == "Retainer"
    assert "user_id" not in contract["company"]
    assert contract["relevant_parties"][0]["full_name"] == "Cal Client"
    assert "storage_key" not in contract["files"][0]


# ----------------------------------------------------------------------------
# Magic links
# ----------------------------------------------------------------------------

def _email(configured=True, connected=True):
    email = MagicMock()
    email.is_email_enabled.return_value = True
    email.check_configuration = AsyncMock(
        return_value=ServiceConfigStatus(name="Email", configured=configured, connected=connected, error=None)
    )
    email.send_template = AsyncMock()
    return email


def test_send_link_requires_email(portal_client):
    response = portal_client.post("/api/client-portal/send-link", json={"email": "  "})
    assert (response.status_code, response.json()["error"]) == (400, "A valid email is required")


def test_send_link_unknown_email_is_not_found(portal_client, fake_repos):
    fake_repos.relevant_party.find_by_email.return_value = []
    response = portal_client.post("/api/client-portal/send-link", json={"email": "nobody@example.com"})
    assert response.status_code == 404


def test_send_link_emails_portal_url(portal_client, fake_repos, monkeypatch):
    import settings
    from auth import verify_client_portal_token

    monkeypatch.setattr(settings, "BASE_URL", "https://app.example.com")
    fake_repos.relevant_party.find_by_email.return_value = [PARTY, {**PARTY, "party_id": "p2", "contract_id": "k2"}]
    email = _email()

    with patch("routes.client_portal.email_service", email):
        response = portal_client.post("/api/client-portal/send-link", json={"email": " Client@Example.com "})

    assert response.json() == {"ok": True}
    fake_repos.relevant_party.find_by_email.assert_awaited_once_with("client@example.com")
    recipient, template = email.send_template.await_args[0]
    assert recipient == "client@example.com"
    assert "https://app.example.com/client-portal?token=" in template["html"]

    token = template["text"].split("token=")[1].split()[0]
    assert verify_client_portal_token(unquote(token)) == {"email": "client@example.com", "party_ids": ["p1", "p2"]}


def test_send_link_unconfigured_email_is_500(portal_client, fake_repos):
    fake_repos.relevant_party.find_by_email.return_value = [PARTY]
    email = _email(configured=False)
    with patch("routes.client_portal.email_service", email):
        response = portal_client.post("/api/client-portal/send-link", json={"email": "client@example.com"})
    assert response.status_code == 500
    assert response.json()["error"] == "Email service is not configured. Please contact an administrator."
    email.send_template.assert_not_awaited()


def test_list_contracts_for_token_email(portal_client, fake_repos):
    fake_repos.relevant_party.find_by_ids.return_value = [PARTY]
    fake_repos.relevant_party.find_by_email.return_value = [PARTY]
    fake_repos.contract.find_by_ids.return_value = [dict(CONTRACT)]
    fake_repos.company.find_by_id.return_value = {"company_id": "c1", "legal_name": "Acme LLC"}

    response = portal_client.get("/api/client-portal/contracts", params={"token": _token()})

    contracts = response.json()["contracts"]
    assert len(contracts) == 1
    assert contracts[0]["company"]["legal_name"] == "Acme LLC"
    assert contracts[0]["relevant_party"]["party_id"] == "p1"
    fake_repos.contract.find_by_ids.assert_awaited_once_with(["k1"])


# ----------------------------------------------------------------------------
# Checkout and files
# ----------------------------------------------------------------------------

def test_checkout_requires_billing_enabled_contract(portal_client, authorized):
    response = portal_client.post(BASE + "/checkout", params={"token": _token()})
    assert (response.status_code, response.json()["error"]) == (400, "This contract is not configured for payments")


def test_checkout_requires_connected_account(portal_client, authorized):
    authorized.contract.find_by_id.return_value = {**CONTRACT, "is_billing_enabled": True, "billing_amount": 5000}
    authorized.company_finance.find_by_company_id.return_value = None
    response = portal_client.post(BASE + "/checkout", params={"token": _token()})
    assert response.json()["error"] == "Stripe account not connected for this company"


def test_checkout_returns_session_url(portal_client, authorized, monkeypatch):
    import settings

    monkeypatch.setattr(settings, "BASE_URL", "https://app.example.com")
    authorized.contract.find_by_id.return_value = {**CONTRACT, "is_billing_enabled": True, "stripe_price_id": "price_1"}
    authorized.company_finance.find_by_company_id.return_value = {"stripe_account_id": "acct_1"}
    connect = MagicMock()
    connect.create_contract_checkout.return_value = "https://checkout.stripe.com/c/pay"

    with patch("routes.client_portal.connect_service", connect):
        response = portal_client.post(BASE + "/checkout", params={"token": _token()})

    assert response.json() == {"checkout_url": "https://checkout.stripe.com/c/pay"}
    args, kwargs = connect.create_contract_checkout.call_args
    assert args[0] == "acct_1"
    assert args[2] == "Client@Example.com"
    assert kwargs["success_url"].startswith("https://app.example.com/c1/client-portal/k1?payment=success&token=")


def test_file_download_redirects_to_signed_url(portal_client, authorized):
    authorized.file.find_by_id.return_value = {"file_id": "f1", "contract_id": "k1", "storage_key": "k1/x.pdf"}
    storage = MagicMock()
    storage.get_file_url = AsyncMock(return_value="https://signed.example/x.pdf")

    with patch("routes.client_portal.storage_service", storage):
        response = portal_client.get(BASE + "/files/f1", params={"token": _token()}, follow_redirects=False)

    assert response.status_code == 307
    assert response.headers["location"] == "https://signed.example/x.pdf"
    storage.get_file_url.assert_awaited_once_with("contracts", "k1/x.pdf", expires_in=900)


def test_file_of_other_contract_is_not_found(portal_client, authorized):
    authorized.file.find_by_id.return_value = {"file_id": "f1", "contract_id": "k2", "storage_key": "k2/x.pdf"}
    response = portal_client.get(BASE + "/files/f1", params={"token": _token()})
    assert response.status_code == 404
    assert response.json()["error"] == "File not found or not associated with this contract"
