"""Client Portal Routes - token access for contract counterparties.

Relevant parties never get an account. They request a link by email, and the
signed token in that link (email + party ids) authorizes every call below.
"""
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse
from typing import Any, Dict, List, Optional
from urllib.parse import quote
import logging

import settings
from auth import create_client_portal_token, verify_client_portal_token
from models import ClientPortalLinkRequest
from repositories import repos
from services.connect_service import connect_service, validate_stripe_account_id
from services.email_service import email_service
from services.email_templates import build_action_button_email
from services.storage_service import storage_service
from routes.contracts import CONTRACT_FOLDER, DOWNLOAD_URL_TTL
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(tags=["client-portal"])

PORTAL_PREFIX = "/api/{company_id}/client-portal/contracts/{contract_id}"

CONTRACT_SUMMARY_FIELDS = (
    "contract_id", "title", "status", "counterparty_name", "counterparty_email",
    "contract_value", "currency", "start_date", "end_date", "signed_date",
    "description", "payment_terms", "renewal_terms", "created_at", "updated_at",
)
COMPANY_ADDRESS_FIELDS = (
    "company_id", "legal_name", "display_name", "address_line1", "address_line2",
    "city", "state", "postal_code", "country",
)
PARTY_FIELDS = ("party_id", "full_name", "email", "role", "phone")
WORK_ITEM_FIELDS = ("work_item_id", "title", "description", "status", "due_date", "completed_at", "position")
FILE_FIELDS = ("file_id", "name", "description", "content_type", "size", "created_at")
BILLING_FIELDS = ("is_billing_enabled", "stripe_price_id", "billing_amount", "billing_currency")


def _pick(doc: Optional[Dict[str, Any]], fields) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    return {field: doc.get(field) for field in fields}


def normalize_email(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip().lower() or None


def _token_payload(token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Token is required")
    try:
        return verify_client_portal_token(token)
    except ValueError:
        raise HTTPException(status_code=HTTP_STATUS.UNAUTHORIZED, detail="Invalid or expired token")


async def _token_parties(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    parties = await repos.relevant_party.find_by_ids(payload["party_ids"])
    if not parties:
        raise HTTPException(
            status_code=HTTP_STATUS.FORBIDDEN, detail="No matching relevant parties found for this token"
        )
    return parties


async def authorize_contract(token: Optional[str], company_id: str, contract_id: str) -> Dict[str, Any]:
    """
    Resolve the contract a portal token may see.

    The token must name a party with the token's email on this contract, and
    the contract must belong to `company_id`.
    """
    payload = _token_payload(token)
    parties = await _token_parties(payload)

    email = normalize_email(payload["email"])
    party = next(
        (p for p in parties if normalize_email(p.get("email")) == email and p.get("contract_id") == contract_id),
        None,
    )
    if not party:
        raise HTTPException(
            status_code=HTTP_STATUS.FORBIDDEN, detail="Token does not grant access to this contract"
        )

    contract = await repos.contract.find_by_id(contract_id)
    if not contract or contract.get("company_id") != company_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Contract not found")

    return {"payload": payload, "party": party, "contract": contract}


@router.post("/api/client-portal/send-link")
async def send_link(body: ClientPortalLinkRequest):
    email = normalize_email(body.email)
    if not email:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="A valid email is required")

    try:
        parties = await repos.relevant_party.find_by_email(email)
        if not parties:
            raise HTTPException(
                status_code=HTTP_STATUS.NOT_FOUND, detail="No matching relevant parties found for this email"
            )

        token = create_client_portal_token(email, [p["party_id"] for p in parties])
        portal_url = f"{settings.BASE_URL}/client-portal?token={quote(token, safe='')}"

        if not email_service.is_email_enabled():
            logger.warning("Client portal link requested while email integration toggle is off; attempting send.")

        email_status = await email_service.check_configuration()
        if not email_status.configured:
            raise HTTPException(
                status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
                detail="Email service is not configured. Please contact an administrator.",
            )
        if email_status.connected is False:
            raise HTTPException(
                status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
                detail=email_status.error or "Unable to connect to email provider.",
            )

        title = f"Access your {settings.APP_NAME} contracts"
        await email_service.send_template(
            email,
            build_action_button_email(
                title=title,
                button_url=portal_url,
                button_text="Open Client Portal",
                greeting_text="Here's your secure link to review the contracts you're involved in.",
                fallback_text="If the button above does not work, copy and paste this link into your browser:",
            ),
        )
        return {"ok": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to send client portal link: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e) or "Internal server error")


@router.get("/api/client-portal/contracts")
async def list_portal_contracts(request: Request):
    """Every contract the token's email is a party to, newest first."""
    payload = _token_payload(request.query_params.get("token"))
    parties = await _token_parties(payload)

    email = normalize_email(payload["email"])
    if not any(normalize_email(p.get("email")) == email for p in parties):
        raise HTTPException(status_code=HTTP_STATUS.FORBIDDEN, detail="Token does not match any relevant party")

    try:
        all_parties = await repos.relevant_party.find_by_email(email)
        if not all_parties:
            raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="No contracts found for this email")

        party_by_contract = {}
        for party in all_parties:
            party_by_contract.setdefault(party["contract_id"], party)

        contracts = await repos.contract.find_by_ids(list(party_by_contract))
        companies: Dict[str, Optional[Dict[str, Any]]] = {}
        response = []
        for contract in contracts:
            company_id = contract.get("company_id")
            if company_id not in companies:
                companies[company_id] = await repos.company.find_by_id(company_id)
            response.append({
                **_pick(contract, CONTRACT_SUMMARY_FIELDS),
                "company": _pick(companies[company_id], ("company_id", "legal_name", "display_name")),
                "relevant_party": _pick(party_by_contract.get(contract["contract_id"]), PARTY_FIELDS),
            })
        return {"contracts": response}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to load client portal contracts: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e) or "Internal server error")


@router.get(PORTAL_PREFIX)
async def get_portal_contract(company_id: str, contract_id: str, request: Request):
    access = await authorize_contract(request.query_params.get("token"), company_id, contract_id)
    contract = access["contract"]

    try:
        company = await repos.company.find_by_id(company_id)
        parties = sorted(
            await repos.relevant_party.find_by_contract_id(contract_id),
            key=lambda p: p.get("created_at") or 0,
        )
        work_items = await repos.work_item.find_by_contract_id(contract_id)
        files = sorted(
            await repos.file.find_by_contract_id(contract_id),
            key=lambda f: f.get("created_at") or 0,
        )
        return {
            "contract": {
                **_pick(contract, CONTRACT_SUMMARY_FIELDS),
                **_pick(contract, BILLING_FIELDS),
                "company": _pick(company, COMPANY_ADDRESS_FIELDS),
                "relevant_parties": [_pick(p, PARTY_FIELDS) for p in parties],
                "work_items": [_pick(w, WORK_ITEM_FIELDS) for w in work_items],
                "files": [_pick(f, FILE_FIELDS) for f in files],
            }
        }
    except Exception as e:
        logger.error(f"Failed to load contract details for client portal: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e) or "Internal server error")


@router.post(PORTAL_PREFIX + "/checkout")
async def portal_checkout(company_id: str, contract_id: str, request: Request):
    """Pay a billing-enabled contract through the company's connected Stripe account."""
    token = request.query_params.get("token")
    access = await authorize_contract(token, company_id, contract_id)
    contract = access["contract"]

    if not contract.get("is_billing_enabled") or not (
        contract.get("stripe_price_id") or contract.get("billing_amount")
    ):
        raise HTTPException(
            status_code=HTTP_STATUS.BAD_REQUEST, detail="This contract is not configured for payments"
        )

    finance = await repos.company_finance.find_by_company_id(company_id) or {}
    account_id = finance.get("stripe_account_id")
    if not validate_stripe_account_id(account_id):
        raise HTTPException(
            status_code=HTTP_STATUS.BAD_REQUEST, detail="Stripe account not connected for this company"
        )

    return_url = f"{settings.BASE_URL}/{company_id}/client-portal/{contract_id}"
    quoted = quote(token, safe="")
    try:
        url = connect_service.create_contract_checkout(
            account_id,
            contract,
            access["party"]["email"],
            success_url=f"{return_url}?payment=success&token={quoted}",
            cancel_url=f"{return_url}?payment=cancel&token={quoted}",
        )
    except Exception as e:
        logger.error(f"Client portal checkout failed for {contract_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e) or "Internal server error")

    if not url:
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Could not create a checkout session"
        )
    return {"checkout_url": url}


@router.get(PORTAL_PREFIX + "/files/{file_id}")
async def download_portal_file(company_id: str, contract_id: str, file_id: str, request: Request):
    """Redirect to a short-lived signed URL for one of the contract's files."""
    await authorize_contract(request.query_params.get("token"), company_id, contract_id)

    record = await repos.file.find_by_id(file_id)
    if not record or record.get("contract_id") != contract_id:
        raise HTTPException(
            status_code=HTTP_STATUS.NOT_FOUND, detail="File not found or not associated with this contract"
        )
    if not record.get("storage_key"):
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="File has no content")

    try:
        url = await storage_service.get_file_url(CONTRACT_FOLDER, record["storage_key"], expires_in=DOWNLOAD_URL_TTL)
    except Exception as e:
        logger.error(f"Failed to sign client portal download for {file_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e) or "Internal server error")
    return RedirectResponse(url, status_code=HTTP_STATUS.TEMPORARY_REDIRECT)
