"""Contract Routes - contracts of caller-owned companies plus their files, work items and parties.

Ownership is always checked through the contract's company: a contract whose
company belongs to someone else is reported as 404 "Contract not found".
"""
from fastapi import APIRouter, HTTPException, Request, Response, UploadFile, File, Form
from pymongo.errors import DuplicateKeyError
from typing import Any, Dict, Optional
import logging
import math
import os
import uuid

from middleware import require_auth
from models import ContractRequest, ContractStatus, WorkItemRequest, WorkItemStatus, RelevantPartyRequest, utc_now
from repositories import repos
from services.storage_service import storage_service, StorageNotConfiguredError
from utils.http import HTTP_STATUS, nullable_string, parse_optional_date, parse_optional_number
from routes.companies import get_company_for_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/contracts", tags=["contracts"])

CONTRACT_FOLDER = "contracts"
MAX_CONTRACT_FILE_BYTES = 20 * 1024 * 1024
DOWNLOAD_URL_TTL = 15 * 60

CONTRACT_STRING_FIELDS = ("counterparty_email", "payment_terms", "renewal_terms", "description")
CONTRACT_DATE_FIELDS = ("start_date", "end_date", "signed_date")
CONTRACT_STATUSES = {s.value for s in ContractStatus}
WORK_ITEM_STATUSES = {s.value for s in WorkItemStatus}


async def get_contract_for_user(contract_id: str, user_id: str) -> dict:
    contract = await repos.contract.find_by_id(contract_id)
    if not contract:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Contract not found")
    company = await repos.company.find_by_id(contract["company_id"])
    if not company or company.get("user_id") != user_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Contract not found")
    return contract


def _finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


async def signed_download_url(storage_key: Optional[str]) -> Optional[str]:
    """Short-lived download URL, or None when the object cannot be signed."""
    if not storage_key:
        return None
    try:
        return await storage_service.get_file_url(CONTRACT_FOLDER, storage_key, expires_in=DOWNLOAD_URL_TTL)
    except Exception as e:
        logger.warning(f"Could not sign download URL for {storage_key}: {e}")
        return None


# ============================================================================
# CONTRACTS
# ============================================================================

@router.post("", status_code=201)
async def create_contract(body: ContractRequest, request: Request):
    user = await require_auth(request)

    company_id = nullable_string(body.company_id)
    if not company_id:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="companyId is required")
    title = nullable_string(body.title)
    if not title:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="title is required")
    counterparty_name = nullable_string(body.counterparty_name)
    if not counterparty_name:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="counterpartyName is required")

    await get_company_for_user(company_id, user["user_id"])

    status = ContractStatus.DRAFT.value
    if body.status is not None:
        if body.status not in CONTRACT_STATUSES:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Invalid contract status")
        status = body.status

    try:
        contract = await repos.contract.create({
            "company_id": company_id,
            "title": title,
            "counterparty_name": counterparty_name,
            **{field: nullable_string(getattr(body, field)) for field in CONTRACT_STRING_FIELDS},
            **{field: parse_optional_date(getattr(body, field)) for field in CONTRACT_DATE_FIELDS},
            "contract_value": parse_optional_number(body.contract_value),
            "currency": nullable_string(body.currency) or "USD",
            "status": status,
            "is_billing_enabled": bool(body.is_billing_enabled),
            "stripe_price_id": nullable_string(body.stripe_price_id),
            "billing_amount": parse_optional_number(body.billing_amount),
            "billing_currency": nullable_string(body.billing_currency),
        })
        logger.info(f"Contract created: {contract['contract_id']} for company {company_id}")
        return {"contract": contract}
    except Exception as e:
        logger.error(f"Error creating contract: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to create contract")


@router.get("")
async def list_contracts(request: Request):
    user = await require_auth(request)

    company_id = request.query_params.get("company_id")
    if not company_id:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="companyId query parameter is required")

    await get_company_for_user(company_id, user["user_id"])
    try:
        return {"contracts": await repos.contract.find_by_company_id(company_id)}
    except Exception as e:
        logger.error(f"Error fetching contracts for {company_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to fetch contracts")


@router.get("/{contract_id}")
async def get_contract(contract_id: str, request: Request):
    user = await require_auth(request)
    return {"contract": await get_contract_for_user(contract_id, user["user_id"])}


@router.put("/{contract_id}")
async def update_contract(contract_id: str, body: ContractRequest, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])

    sent = body.model_fields_set
    updates: Dict[str, Any] = {}

    if "title" in sent:
        title = nullable_string(body.title)
        if not title:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="title cannot be empty")
        updates["title"] = title

    if "counterparty_name" in sent:
        counterparty_name = nullable_string(body.counterparty_name)
        if not counterparty_name:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="counterpartyName cannot be empty")
        updates["counterparty_name"] = counterparty_name

    if "status" in sent:
        if body.status not in CONTRACT_STATUSES:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Invalid contract status")
        updates["status"] = body.status

    for field in CONTRACT_STRING_FIELDS + ("stripe_price_id", "billing_currency"):
        if field in sent:
            updates[field] = nullable_string(getattr(body, field))

    for field in CONTRACT_DATE_FIELDS:
        if field in sent:
            updates[field] = parse_optional_date(getattr(body, field))

    if "currency" in sent:
        updates["currency"] = nullable_string(body.currency) or "USD"
    if "contract_value" in sent:
        updates["contract_value"] = parse_optional_number(body.contract_value)
    if "billing_amount" in sent:
        updates["billing_amount"] = parse_optional_number(body.billing_amount)
    if isinstance(body.is_billing_enabled, bool):
        updates["is_billing_enabled"] = body.is_billing_enabled

    if not updates:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="No valid fields provided for update")

    try:
        return {"contract": await repos.contract.update(contract_id, updates)}
    except Exception as e:
        logger.error(f"Error updating contract {contract_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to update contract")


@router.delete("/{contract_id}", status_code=204)
async def delete_contract(contract_id: str, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])
    try:
        await repos.contract.delete(contract_id)
        logger.info(f"Contract deleted: {contract_id}")
        return Response(status_code=HTTP_STATUS.NO_CONTENT)
    except Exception as e:
        logger.error(f"Error deleting contract {contract_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to delete contract")


# ============================================================================
# FILES
# ============================================================================

async def serialize_file(record: dict) -> dict:
    return {**record, "download_url": await signed_download_url(record.get("storage_key"))}


@router.get("/{contract_id}/files")
async def list_contract_files(contract_id: str, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])
    files = await repos.file.find_by_contract_id(contract_id)
    return {"files": [await serialize_file(f) for f in files]}


@router.post("/{contract_id}/files", status_code=201)
async def upload_contract_file(
    contract_id: str,
    request: Request,
    file: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
):
    """Store a document privately under contracts/{contract_id}/ and record it."""
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])

    if file is None or not file.filename:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Upload a document file before submitting.")

    body = await file.read()
    if len(body) > MAX_CONTRACT_FILE_BYTES:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="File must be 20MB or smaller.")

    ext = os.path.splitext(file.filename)[1].lower()
    storage_key = f"{contract_id}/{uuid.uuid4()}{ext}"

    try:
        await storage_service.upload_file(
            CONTRACT_FOLDER, storage_key, body, content_type=file.content_type, acl="private"
        )
    except StorageNotConfiguredError:
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
            detail="Storage service is not configured. Add DigitalOcean Spaces credentials before uploading files.",
        )
    except Exception as e:
        logger.error(f"Contract file upload failed for {contract_id}: {e}")
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
            detail="Unable to upload the file right now. Please try again later.",
        )

    record = await repos.file.create({
        "owner_type": "contract",
        "owner_id": contract_id,
        "contract_id": contract_id,
        "name": nullable_string(name) or file.filename,
        "description": nullable_string(description),
        "content_type": file.content_type,
        "size": len(body),
        "storage_key": storage_key,
    })
    return {"file": await serialize_file(record)}


@router.delete("/{contract_id}/files/{file_id}")
async def delete_contract_file(contract_id: str, file_id: str, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])

    record = await repos.file.find_by_id(file_id)
    if not record or record.get("contract_id") != contract_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="File not found")

    if record.get("storage_key"):
        try:
            await storage_service.delete_file(CONTRACT_FOLDER, record["storage_key"])
        except Exception as e:
            logger.error(f"Contract file delete failed for {file_id}: {e}")
            raise HTTPException(
                status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
                detail="Unable to delete the file right now. Please try again later.",
            )

    await repos.file.delete(file_id)
    return {"success": True}


# ============================================================================
# WORK ITEMS
# ============================================================================

async def _require_linked_file(contract_id: str, file_id: str) -> None:
    record = await repos.file.find_by_id(file_id)
    if not record or record.get("contract_id") != contract_id:
        raise HTTPException(
            status_code=HTTP_STATUS.BAD_REQUEST, detail="Linked file was not found for this contract."
        )


@router.get("/{contract_id}/work-items")
async def list_work_items(contract_id: str, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])
    return {"work_items": await repos.work_item.find_by_contract_id(contract_id)}


@router.post("/{contract_id}/work-items", status_code=201)
async def create_work_item(contract_id: str, body: WorkItemRequest, request: Request):
    """Append a work item; without an explicit position it goes after the current last one."""
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])

    title = nullable_string(body.title)
    if not title:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Title is required.")

    status = body.status if body.status in WORK_ITEM_STATUSES else WorkItemStatus.NOT_STARTED.value
    linked_file_id = nullable_string(body.linked_file_id)
    if linked_file_id:
        await _require_linked_file(contract_id, linked_file_id)

    requested = _finite_number(body.position)
    if requested is not None:
        position = max(0, math.floor(requested))
    else:
        existing = await repos.work_item.find_by_contract_id(contract_id)
        position = max((item.get("position", 0) for item in existing), default=-1) + 1

    try:
        work_item = await repos.work_item.create({
            "contract_id": contract_id,
            "title": title,
            "description": nullable_string(body.description),
            "status": status,
            "due_date": parse_optional_date(body.due_date),
            "completed_at": utc_now() if status == WorkItemStatus.COMPLETED.value else None,
            "position": position,
            "linked_file_id": linked_file_id,
        })
        return {"work_item": work_item}
    except Exception as e:
        logger.error(f"Error creating work item for {contract_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to create work item")


@router.patch("/{contract_id}/work-items/{work_item_id}")
async def update_work_item(contract_id: str, work_item_id: str, body: WorkItemRequest, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])

    existing = await repos.work_item.find_by_id(work_item_id)
    if not existing or existing.get("contract_id") != contract_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Work item not found")

    sent = body.model_fields_set
    updates: Dict[str, Any] = {}

    if body.title is not None:
        title = body.title.strip()
        if not title:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Title cannot be empty.")
        updates["title"] = title

    if "description" in sent:
        updates["description"] = nullable_string(body.description)

    if "status" in sent:
        if body.status not in WORK_ITEM_STATUSES:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Invalid status value.")
        updates["status"] = body.status
        if body.status == WorkItemStatus.COMPLETED.value:
            updates["completed_at"] = parse_optional_date(body.completed_at) or utc_now()
        else:
            updates["completed_at"] = parse_optional_date(body.completed_at)
    elif "completed_at" in sent:
        updates["completed_at"] = parse_optional_date(body.completed_at)

    if "due_date" in sent:
        updates["due_date"] = parse_optional_date(body.due_date)

    if "position" in sent:
        position = _finite_number(body.position)
        if position is None:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Position must be a number.")
        updates["position"] = max(0, math.floor(position))

    if "linked_file_id" in sent:
        linked_file_id = nullable_string(body.linked_file_id)
        if linked_file_id:
            await _require_linked_file(contract_id, linked_file_id)
        updates["linked_file_id"] = linked_file_id

    if not updates:
        return {"work_item": existing}

    try:
        return {"work_item": await repos.work_item.update(work_item_id, updates)}
    except Exception as e:
        logger.error(f"Error updating work item {work_item_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to update work item")


@router.delete("/{contract_id}/work-items/{work_item_id}")
async def delete_work_item(contract_id: str, work_item_id: str, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])

    existing = await repos.work_item.find_by_id(work_item_id)
    if not existing or existing.get("contract_id") != contract_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Work item not found")

    await repos.work_item.delete(work_item_id)
    return {"success": True}


# ============================================================================
# RELEVANT PARTIES
# ============================================================================

PARTY_OPTIONAL_FIELDS = ("phone", "role", "notes")


@router.get("/{contract_id}/relevant-parties")
async def list_relevant_parties(contract_id: str, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])
    return {"relevant_parties": await repos.relevant_party.find_by_contract_id(contract_id)}


@router.post("/{contract_id}/relevant-parties", status_code=201)
async def create_relevant_party(contract_id: str, body: RelevantPartyRequest, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])

    full_name = nullable_string(body.full_name)
    if not full_name:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Full name is required.")
    email = nullable_string(body.email)
    if not email:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Email is required.")

    try:
        party = await repos.relevant_party.create({
            "contract_id": contract_id,
            "full_name": full_name,
            "email": email.lower(),
            **{field: nullable_string(getattr(body, field)) for field in PARTY_OPTIONAL_FIELDS},
            "magic_link_token": None,
            "magic_link_expires_at": None,
        })
        return {"relevant_party": party}
    except DuplicateKeyError:
        raise HTTPException(
            status_code=HTTP_STATUS.CONFLICT, detail="A party with this email already exists for this contract."
        )
    except Exception as e:
        logger.error(f"Error creating relevant party for {contract_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to create relevant party")


@router.patch("/{contract_id}/relevant-parties/{party_id}")
async def update_relevant_party(contract_id: str, party_id: str, body: RelevantPartyRequest, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])

    existing = await repos.relevant_party.find_by_id(party_id)
    if not existing or existing.get("contract_id") != contract_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Relevant party not found")

    sent = body.model_fields_set
    updates: Dict[str, Any] = {}

    if "full_name" in sent:
        full_name = nullable_string(body.full_name)
        if not full_name:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Full name cannot be empty.")
        updates["full_name"] = full_name

    if "email" in sent:
        email = nullable_string(body.email)
        if not email:
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Email cannot be empty.")
        updates["email"] = email.lower()

    for field in PARTY_OPTIONAL_FIELDS + ("magic_link_token",):
        if field in sent:
            updates[field] = nullable_string(getattr(body, field))

    if "magic_link_expires_at" in sent:
        updates["magic_link_expires_at"] = parse_optional_date(body.magic_link_expires_at)

    if not updates:
        return {"relevant_party": existing}

    try:
        return {"relevant_party": await repos.relevant_party.update(party_id, updates)}
    except DuplicateKeyError:
        raise HTTPException(
            status_code=HTTP_STATUS.CONFLICT, detail="This email is already assigned to another party on this contract."
        )
    except Exception as e:
        logger.error(f"Error updating relevant party {party_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to update relevant party")


@router.delete("/{contract_id}/relevant-parties/{party_id}")
async def delete_relevant_party(contract_id: str, party_id: str, request: Request):
    user = await require_auth(request)
    await get_contract_for_user(contract_id, user["user_id"])

    existing = await repos.relevant_party.find_by_id(party_id)
    if not existing or existing.get("contract_id") != contract_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Relevant party not found")

    await repos.relevant_party.delete(party_id)
    return {"success": True}
