"""Admin Routes - cross-tenant views for platform administrators."""
from fastapi import APIRouter, HTTPException, Request
import logging

from middleware import require_admin
from repositories import repos
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/companies")
async def list_all_companies(request: Request):
    """Every company with its owner, Stripe account state and contract count."""
    await require_admin(request)
    try:
        companies = await repos.company.find_all()
        owners = {}
        payload = []
        for company in companies:
            owner_id = company.get("user_id")
            if owner_id not in owners:
                owners[owner_id] = await repos.user.find_by_id(owner_id) if owner_id else None
            owner = owners[owner_id] or {}
            finance = await repos.company_finance.find_by_company_id(company["company_id"]) or {}

            payload.append({
                "company_id": company["company_id"],
                "name": company.get("display_name") or company.get("legal_name"),
                "legal_name": company.get("legal_name"),
                "created_at": company.get("created_at"),
                "owner_name": owner.get("name") or "-",
                "owner_email": owner.get("email") or "-",
                "stripe_account_id": finance.get("stripe_account_id"),
                "charges_enabled": bool(finance.get("charges_enabled")),
                "contract_count": await repos.contract.count_by_company_id(company["company_id"]),
                "state": company.get("state"),
            })
        return {"companies": payload}
    except Exception as e:
        logger.error(f"Failed to load admin companies: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Unable to load companies.")
