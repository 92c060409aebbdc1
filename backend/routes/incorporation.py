"""Incorporation Routes - the LLC formation packet attached to a company.

The packet is free-form (business information, address, attestation), so the
body is stored as sent minus the keys the server owns.
"""
from fastapi import APIRouter, HTTPException, Request
from typing import Any, Dict
import logging

from middleware import require_auth
from repositories import repos
from utils.http import HTTP_STATUS
from routes.companies import get_company_for_user, read_json_object

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/company/{company_id}/incorporation", tags=["incorporation"])
dashboard_router = APIRouter(prefix="/api/dashboard/incorporation", tags=["incorporation"])

SERVER_OWNED_FIELDS = {"_id", "incorporation_id", "company_id", "created_at", "updated_at"}


def packet_fields(body: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in body.items() if k not in SERVER_OWNED_FIELDS}


async def _first_company_id(user_id: str) -> str:
    companies = await repos.company.find_by_user_id(user_id)
    if not companies:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="No company found for user")
    # oldest company is the one the dashboard works against
    return companies[-1]["company_id"]


async def _update_packet(company_id: str, incorporation_id: str, request: Request) -> dict:
    existing = await repos.incorporation.find_by_id(incorporation_id)
    if not existing or existing.get("company_id") != company_id:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Incorporation not found")

    updates = packet_fields(await read_json_object(request))
    if not updates:
        return existing
    return await repos.incorporation.update(incorporation_id, updates)


async def _create_packet(company_id: str, request: Request) -> dict:
    return await repos.incorporation.create({**packet_fields(await read_json_object(request)), "company_id": company_id})


# ============================================================================
# COMPANY-SCOPED
# ============================================================================

@router.get("")
async def get_incorporation(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    try:
        return {"incorporation": await repos.incorporation.find_by_company_id(company_id)}
    except Exception as e:
        logger.error(f"Failed to fetch incorporation data for {company_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to fetch incorporation data")


@router.post("")
async def create_incorporation(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    try:
        return {"incorporation": await _create_packet(company_id, request)}
    except Exception as e:
        logger.error(f"Failed to create incorporation data for {company_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to create incorporation data")


@router.put("/{incorporation_id}")
async def update_incorporation(company_id: str, incorporation_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    try:
        return {"incorporation": await _update_packet(company_id, incorporation_id, request)}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to update incorporation {incorporation_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to update incorporation data")


# ============================================================================
# DASHBOARD (caller's first company)
# ============================================================================

@dashboard_router.get("")
async def get_dashboard_incorporation(request: Request):
    user = await require_auth(request)
    company_id = await _first_company_id(user["user_id"])
    try:
        return {"incorporation": await repos.incorporation.find_by_company_id(company_id)}
    except Exception as e:
        logger.error(f"Failed to fetch incorporation data for {company_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to fetch incorporation data")


@dashboard_router.post("")
async def create_dashboard_incorporation(request: Request):
    user = await require_auth(request)
    company_id = await _first_company_id(user["user_id"])
    try:
        return {"incorporation": await _create_packet(company_id, request)}
    except Exception as e:
        logger.error(f"Failed to create incorporation data for {company_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to create incorporation data")


@dashboard_router.put("/{incorporation_id}")
async def update_dashboard_incorporation(incorporation_id: str, request: Request):
    user = await require_auth(request)
    company_id = await _first_company_id(user["user_id"])
    try:
        return {"incorporation": await _update_packet(company_id, incorporation_id, request)}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to update incorporation {incorporation_id}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to update incorporation data")
