"""Company Routes - companies owned by the caller and everything hanging off them.

- /api/companies                         company CRUD
- /api/companies/{id}/contacts           company contacts
- /api/companies/{id}/notes              internal company notes
- /api/companies/{id}/finance            Stripe Connect finance record
- /api/companies/{id}/finance/line-items manual inflow/outflow ledger

Every route resolves the company through `get_company_for_user`, which answers
404 "Company not found" for companies owned by someone else.
"""
from fastapi import APIRouter, HTTPException, Request, Response
from typing import Any, Dict, List, Optional
import logging

from middleware import require_auth
from models import CompanyRequest, ContactRequest, CompanyNoteRequest, LineItemType
from repositories import repos
from utils.http import HTTP_STATUS, nullable_string, parse_optional_date, parse_iso_datetime, parse_optional_number

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/companies", tags=["companies"])

COMPANY_STRING_FIELDS = (
    "display_name", "industry", "ein", "website", "phone", "email",
    "address_line1", "address_line2", "city", "state", "postal_code",
    "country", "description",
)


async def get_company_for_user(company_id: str, user_id: str) -> dict:
    company = await repos.company.find_by_id(company_id)
    if not company or company.get("user_id") != user_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Company not found")
    return company


async def read_json_object(request: Request) -> Dict[str, Any]:
    """Request body as a dict; malformed or non-object bodies become {}."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


# ============================================================================
# COMPANIES
# ============================================================================

@router.post("", status_code=201)
async def create_company(body: CompanyRequest, request: Request):
    user = await require_auth(request)

    legal_name = (body.legal_name or "").strip()
    if not legal_name:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="legalName is required")

    try:
        data = {field: nullable_string(getattr(body, field)) for field in COMPANY_STRING_FIELDS}
        company = await repos.company.create({
            "user_id": user["user_id"],
            "legal_name": legal_name,
            **data,
            "formation_date": parse_optional_date(body.formation_date),
        })
        logger.info(f"Company created: {company['company_id']} by {user['user_id']}")
        return {"company": company}
    except Exception as e:
        logger.error(f"Error creating company: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to create company")


@router.get("")
async def list_companies(request: Request):
    user = await require_auth(request)
    try:
        return {"companies": await repos.company.find_by_user_id(user["user_id"])}
    except Exception as e:
        logger.error(f"Error fetching companies: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to fetch companies")


@router.get("/{company_id}")
async def get_company(company_id: str, request: Request):
    user = await require_auth(request)
    return {"company": await get_company_for_user(company_id, user["user_id"])}


@router.put("/{company_id}")
async def update_company(company_id: str, body: CompanyRequest, request: Request):
    """Partial update: only keys present in the payload are touched."""
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])

    sent = body.model_fields_set
    updates: Dict[str, Any] = {}

    if "legal_name" in sent:
        legal_name = (body.legal_name or "").strip()
        if not legal_name:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="legalName cannot be empty")
        updates["legal_name"] = legal_name

    for field in COMPANY_STRING_FIELDS:
        if field in sent:
            updates[field] = nullable_string(getattr(body, field))

    if "formation_date" in sent:
        updates["formation_date"] = parse_optional_date(body.formation_date)

    if not updates:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="No valid fields provided for update")

    try:
        return {"company": await repos.company.update(company_id, updates)}
    except Exception as e:
        logger.error(f"Error updating company {company_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to update company")


@router.delete("/{company_id}", status_code=204)
async def delete_company(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    try:
        await repos.company.delete(company_id)
        logger.info(f"Company deleted: {company_id}")
        return Response(status_code=HTTP_STATUS.NO_CONTENT)
    except Exception as e:
        logger.error(f"Error deleting company {company_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to delete company")


# ============================================================================
# CONTACTS
# ============================================================================

@router.get("/{company_id}/contacts")
async def list_contacts(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    return {"contacts": await repos.company_contact.find_by_company_id(company_id)}


@router.post("/{company_id}/contacts", status_code=201)
async def create_contact(company_id: str, body: ContactRequest, request: Request):
    user = await require_auth(request)

    full_name = (body.full_name or "").strip()
    if not full_name:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="fullName is required")

    await get_company_for_user(company_id, user["user_id"])
    contact = await repos.company_contact.create({
        "company_id": company_id,
        "full_name": full_name,
        "title": nullable_string(body.title),
        "email": nullable_string(body.email),
        "phone": nullable_string(body.phone),
        "is_primary": bool(body.is_primary),
    })
    return {"contact": contact}


@router.put("/{company_id}/contacts/{contact_id}")
async def update_contact(company_id: str, contact_id: str, body: ContactRequest, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])

    sent = body.model_fields_set
    updates: Dict[str, Any] = {}
    if "full_name" in sent:
        full_name = (body.full_name or "").strip()
        if not full_name:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="fullName cannot be empty")
        updates["full_name"] = full_name
    for field in ("title", "email", "phone"):
        if field in sent:
            updates[field] = nullable_string(getattr(body, field))
    if "is_primary" in sent:
        updates["is_primary"] = bool(body.is_primary)

    if not updates:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="No valid fields provided for update")

    contact = await repos.company_contact.find_by_id(contact_id)
    if not contact or contact["company_id"] != company_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Contact not found")

    return {"contact": await repos.company_contact.update(contact_id, updates)}


@router.delete("/{company_id}/contacts/{contact_id}", status_code=204)
async def delete_contact(company_id: str, contact_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])

    contact = await repos.company_contact.find_by_id(contact_id)
    if not contact or contact["company_id"] != company_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Contact not found")

    await repos.company_contact.delete(contact_id)
    return Response(status_code=HTTP_STATUS.NO_CONTENT)


# ============================================================================
# COMPANY NOTES
# ============================================================================

@router.get("/{company_id}/notes")
async def list_company_notes(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    return {"notes": await repos.company_note.find_by_company_id(company_id)}


@router.post("/{company_id}/notes", status_code=201)
async def create_company_note(company_id: str, body: CompanyNoteRequest, request: Request):
    user = await require_auth(request)

    content = (body.content or "").strip()
    if not content:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="content is required")

    await get_company_for_user(company_id, user["user_id"])
    note = await repos.company_note.create({
        "company_id": company_id,
        "content": content,
        "author_name": nullable_string(body.author_name) or user.get("name"),
    })
    return {"note": note}


@router.delete("/{company_id}/notes/{note_id}", status_code=204)
async def delete_company_note(company_id: str, note_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])

    note = await repos.company_note.find_by_id(note_id)
    if not note or note["company_id"] != company_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Note not found")

    await repos.company_note.delete(note_id)
    return Response(status_code=HTTP_STATUS.NO_CONTENT)


# ============================================================================
# FINANCE
# ============================================================================

def _nullable_string_field(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("must be a string or null")
    return value.strip() or None


def _bool_field(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError("must be a boolean")
    return value


def _string_list_field(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError("must be an array of strings")
    return [item.strip() for item in value if item.strip()]


def _date_field(value: Any):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("must be an ISO date string or null")
    if not value.strip():
        return None
    return parse_iso_datetime(value)


# payload key -> (parser, error message)
FINANCE_FIELDS = {
    "stripe_account_id": (_nullable_string_field, "stripeAccountId must be a string or null"),
    "account_onboarding_url": (_nullable_string_field, "accountOnboardingUrl must be a string or null"),
    "account_onboarding_expires_at": (
        _date_field, "accountOnboardingExpiresAt must be a valid ISO date string or null"
    ),
    "account_login_link_url": (_nullable_string_field, "accountLoginLinkUrl must be a string or null"),
    "details_submitted": (_bool_field, "detailsSubmitted must be a boolean"),
    "charges_enabled": (_bool_field, "chargesEnabled must be a boolean"),
    "payouts_enabled": (_bool_field, "payoutsEnabled must be a boolean"),
    "requirements_due": (_string_list_field, "requirementsDue must be an array of strings"),
    "requirements_due_soon": (_string_list_field, "requirementsDueSoon must be an array of strings"),
}


def parse_finance_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate the finance keys present in `payload`. Raises ValueError with the field's message."""
    data: Dict[str, Any] = {}
    for key, (parser, message) in FINANCE_FIELDS.items():
        if key in payload:
            try:
                data[key] = parser(payload[key])
            except ValueError:
                raise ValueError(message)
    return data


@router.get("/{company_id}/finance")
async def get_finance(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    return {"finance": await repos.company_finance.find_by_company_id(company_id)}


@router.post("/{company_id}/finance", status_code=201)
async def create_finance(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])

    if await repos.company_finance.find_by_company_id(company_id):
        raise HTTPException(status_code=HTTP_STATUS.CONFLICT, detail="Finance record already exists for company")

    try:
        data = parse_finance_payload(await read_json_object(request))
    except ValueError as e:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail=str(e))

    finance = await repos.company_finance.create({"company_id": company_id, **data})
    return {"finance": finance}


@router.put("/{company_id}/finance")
async def update_finance(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])

    try:
        data = parse_finance_payload(await read_json_object(request))
    except ValueError as e:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail=str(e))

    if not await repos.company_finance.find_by_company_id(company_id):
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Finance record not found")

    return {"finance": await repos.company_finance.update_by_company_id(company_id, data)}


# ============================================================================
# FINANCE LINE ITEMS
# ============================================================================

def parse_line_item_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validated line item with the amount converted to integer cents."""
    if payload.get("type") not in {t.value for t in LineItemType}:
        raise ValueError('type must be either "INFLOW" or "OUTFLOW".')

    amount = parse_optional_number(payload.get("amount"))
    if amount is None or amount <= 0 or amount == float("inf"):
        raise ValueError("amount must be a positive number.")

    currency = payload.get("currency")
    currency = currency.strip().lower() if isinstance(currency, str) else ""
    if not currency:
        raise ValueError('currency is required (e.g., "usd").')

    occurred_at_raw = payload.get("occurred_at")
    try:
        occurred_at = parse_iso_datetime(occurred_at_raw) if isinstance(occurred_at_raw, str) else None
    except ValueError:
        occurred_at = None
    if occurred_at is None:
        raise ValueError("occurredAt must be an ISO8601 timestamp.")

    return {
        "type": payload["type"],
        "amount_cents": round(amount * 100),
        "currency": currency,
        "occurred_at": occurred_at,
        "description": nullable_string(payload.get("description")),
        "category": nullable_string(payload.get("category")),
        "notes": nullable_string(payload.get("notes")),
    }


def serialize_line_item(item: Dict[str, Any]) -> Dict[str, Any]:
    data = {k: v for k, v in item.items() if k != "amount_cents"}
    data["amount"] = item.get("amount_cents", 0) / 100
    return data


async def _line_item_for_company(company_id: str, line_item_id: str) -> dict:
    item = await repos.finance_line_item.find_by_id(line_item_id)
    if not item or item["company_id"] != company_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Line item not found")
    return item


@router.get("/{company_id}/finance/line-items")
async def list_line_items(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    items = await repos.finance_line_item.find_by_company_id(company_id)
    return {"items": [serialize_line_item(i) for i in items]}


@router.post("/{company_id}/finance/line-items", status_code=201)
async def create_line_item(company_id: str, request: Request):
    user = await require_auth(request)
    try:
        data = parse_line_item_payload(await read_json_object(request))
    except ValueError as e:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail=str(e))

    await get_company_for_user(company_id, user["user_id"])
    item = await repos.finance_line_item.create({"company_id": company_id, **data})
    return {"item": serialize_line_item(item)}


@router.put("/{company_id}/finance/line-items/{line_item_id}")
async def update_line_item(company_id: str, line_item_id: str, request: Request):
    user = await require_auth(request)
    try:
        data = parse_line_item_payload(await read_json_object(request))
    except ValueError as e:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail=str(e))

    await get_company_for_user(company_id, user["user_id"])
    await _line_item_for_company(company_id, line_item_id)
    item = await repos.finance_line_item.update(line_item_id, data)
    return {"item": serialize_line_item(item)}


@router.delete("/{company_id}/finance/line-items/{line_item_id}")
async def delete_line_item(company_id: str, line_item_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    await _line_item_for_company(company_id, line_item_id)
    await repos.finance_line_item.delete(line_item_id)
    return {"success": True}
