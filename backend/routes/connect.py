"""Stripe Connect Routes - company payouts onboarding, product catalogue and storefront.

Owner-only (session):
- POST /api/company/{company_id}/finance/stripe/onboard
- GET  /api/company/{company_id}/finance/stripe/status?account_id=
- POST /api/company/{company_id}/finance/stripe/login
- GET/POST /api/company/{company_id}/finance/stripe/products
- PATCH/DELETE /api/company/{company_id}/finance/stripe/products/{product_id}

Public (storefront visitors):
- GET  /api/company/{company_id}/store/products
- POST /api/company/{company_id}/store/checkout
- GET  /api/public/company/{company_id}/storefront
"""
from fastapi import APIRouter, HTTPException, Request
from typing import Any, Dict
import logging

import stripe

import settings
from middleware import require_auth
from models import ConnectProductRequest, StoreCheckoutRequest
from repositories import repos
from services.connect_service import connect_service, validate_stripe_account_id
from utils.http import HTTP_STATUS, nullable_string, parse_optional_number
from routes.companies import get_company_for_user, read_json_object

logger = logging.getLogger(__name__)
router = APIRouter(tags=["connect"])

FINANCE_PREFIX = "/api/company/{company_id}/finance/stripe"


def _server_error(e: Exception) -> HTTPException:
    return HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e))


async def _connected_account(company_id: str, message: str) -> str:
    """Stripe account id of the company, or 400 with `message`."""
    finance = await repos.company_finance.find_by_company_id(company_id)
    account_id = (finance or {}).get("stripe_account_id")
    if not validate_stripe_account_id(account_id):
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail=message)
    return account_id


def storefront_name(company: Dict[str, Any]) -> str:
    return company.get("display_name") or company.get("legal_name") or f"{settings.APP_NAME} Storefront"


# ============================================================================
# ONBOARDING
# ============================================================================

@router.post(FINANCE_PREFIX + "/onboard")
async def onboard(company_id: str, request: Request):
    """Create the connected account on first use, then hand out a fresh onboarding link."""
    user = await require_auth(request)
    company = await get_company_for_user(company_id, user["user_id"])

    try:
        finance = await repos.company_finance.find_by_company_id(company_id)
        if not finance:
            finance = await repos.company_finance.create({"company_id": company_id})

        account_id = finance.get("stripe_account_id")
        if not account_id:
            account_id = connect_service.create_account(company_id, company.get("email"))
            await repos.company_finance.update_by_company_id(company_id, {"stripe_account_id": account_id})

        link = connect_service.create_onboarding_link(account_id, company_id)
        await repos.company_finance.update_by_company_id(company_id, {
            "account_onboarding_url": link["url"],
            "account_onboarding_expires_at": link["expires_at_datetime"],
        })
        return {"account_id": account_id, "url": link["url"], "expires_at": link["expires_at"]}
    except Exception as e:
        logger.error(f"Stripe Connect onboarding failed for {company_id}: {e}")
        raise _server_error(e)


@router.get(FINANCE_PREFIX + "/status")
async def account_status(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])

    account_id = request.query_params.get("account_id")
    if not validate_stripe_account_id(account_id):
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Invalid Stripe Account ID provided.")

    try:
        return connect_service.retrieve_status(account_id)
    except Exception as e:
        logger.error(f"Error retrieving Stripe account status for {account_id}: {e}")
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve live Stripe account status.",
        )


@router.post(FINANCE_PREFIX + "/login")
async def dashboard_login(company_id: str, request: Request):
    """Express dashboard login link; full-dashboard accounts get an onboarding link instead."""
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    account_id = await _connected_account(
        company_id, "Connect the company to Stripe before generating an account link."
    )

    try:
        try:
            url = connect_service.create_login_link(account_id)
        except stripe.StripeError as e:
            if getattr(e, "code", None) != "account_not_express":
                raise
            link = connect_service.create_onboarding_link(account_id, company_id)
            await repos.company_finance.update_by_company_id(company_id, {"account_onboarding_url": link["url"]})
            return {
                "url": link["url"],
                "type": "account_link",
                "message": "This account uses the full Stripe dashboard. Follow the link to update onboarding details.",
            }

        await repos.company_finance.update_by_company_id(company_id, {"account_login_link_url": url})
        return {"url": url, "type": "login_link"}
    except Exception as e:
        logger.error(f"Stripe Connect login link failed for {company_id}: {e}")
        raise _server_error(e)


# ============================================================================
# PRODUCTS
# ============================================================================

@router.get(FINANCE_PREFIX + "/products")
async def list_products(company_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    account_id = await _connected_account(
        company_id, "Connect the company to Stripe first before listing products."
    )
    try:
        return {"products": connect_service.list_products(account_id)}
    except Exception as e:
        logger.error(f"Failed to list products for {account_id}: {e}")
        raise _server_error(e)


@router.post(FINANCE_PREFIX + "/products", status_code=201)
async def create_product(company_id: str, body: ConnectProductRequest, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    account_id = await _connected_account(company_id, "Connect the company to Stripe before creating products.")

    name = nullable_string(body.name)
    currency = nullable_string(body.currency)
    amount = parse_optional_number(body.amount)
    if not name or not currency or amount is None:
        raise HTTPException(
            status_code=HTTP_STATUS.BAD_REQUEST,
            detail="Provide a product name, currency, and price (e.g., 29.99).",
        )

    try:
        created = connect_service.create_product(
            account_id, name, currency.lower(), amount, nullable_string(body.description)
        )
        finance = await repos.company_finance.find_by_company_id(company_id) or {}
        products = list(finance.get("products") or [])
        products.append(created)
        await repos.company_finance.update_by_company_id(company_id, {"products": products})
        return created
    except Exception as e:
        logger.error(f"Failed to create product for {account_id}: {e}")
        raise _server_error(e)


@router.patch(FINANCE_PREFIX + "/products/{product_id}")
async def update_product(company_id: str, product_id: str, request: Request):
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    body = await read_json_object(request)
    account_id = await _connected_account(company_id, "Connect the company to Stripe before managing products.")

    updates: Dict[str, Any] = {key: body[key] for key in ("name", "description", "active") if key in body}
    if "display_on_storefront" in body:
        updates["metadata"] = {"display_on_storefront": str(bool(body["display_on_storefront"])).lower()}

    if not updates:
        raise HTTPException(
            status_code=HTTP_STATUS.BAD_REQUEST,
            detail="Provide at least one field to update (name, description, or active).",
        )

    try:
        return {"success": True, "product": connect_service.update_product(account_id, product_id, updates)}
    except Exception as e:
        logger.error(f"Failed to update product {product_id} for {account_id}: {e}")
        raise _server_error(e)


@router.delete(FINANCE_PREFIX + "/products/{product_id}")
async def archive_product(company_id: str, product_id: str, request: Request):
    """Stripe products with prices cannot be deleted, so they are archived."""
    user = await require_auth(request)
    await get_company_for_user(company_id, user["user_id"])
    account_id = await _connected_account(company_id, "Connect the company to Stripe before managing products.")
    try:
        connect_service.update_product(account_id, product_id, {"active": False})
        return {"success": True}
    except Exception as e:
        logger.error(f"Failed to archive product {product_id} for {account_id}: {e}")
        raise _server_error(e)


# ============================================================================
# STOREFRONT
# ============================================================================

@router.get("/api/company/{company_id}/store/products")
async def storefront_products(company_id: str):
    company = await repos.company.find_by_id(company_id)
    if not company:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Company not found")

    finance = await repos.company_finance.find_by_company_id(company_id) or {}
    account_id = finance.get("stripe_account_id")
    if not validate_stripe_account_id(account_id):
        return {"products": [], "storefront_name": storefront_name(company), "stripe_account_id": None}

    try:
        products = [
            {**p, "description": p["description"] or "No description provided."}
            for p in connect_service.list_products(account_id, storefront_only=True)
        ]
        return {"products": products, "storefront_name": storefront_name(company), "stripe_account_id": account_id}
    except Exception as e:
        logger.error(f"Storefront products failed for {company_id}: {e}")
        raise _server_error(e)


@router.post("/api/company/{company_id}/store/checkout")
async def storefront_checkout(company_id: str, body: StoreCheckoutRequest):
    account_id = await _connected_account(company_id, "Storefront is not connected to Stripe.")

    if not body.price_id:
        raise HTTPException(
            status_code=HTTP_STATUS.BAD_REQUEST, detail="Provide the connected account price ID to sell."
        )

    try:
        return {"url": connect_service.create_store_checkout(account_id, body.price_id, company_id)}
    except Exception as e:
        logger.error(f"Storefront checkout failed for {company_id}: {e}")
        raise _server_error(e)


@router.get("/api/public/company/{company_id}/storefront")
async def public_storefront(company_id: str):
    company = await repos.company.find_by_id(company_id)
    if not company:
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Company not found")

    try:
        finance = await repos.company_finance.find_by_company_id(company_id) or {}
        return {
            "company": {
                "id": company["company_id"],
                "name": company.get("display_name") or company.get("legal_name"),
                "description": company.get("description"),
            },
            "storefront": {
                "stripe_account_id": finance.get("stripe_account_id"),
                "charges_enabled": bool(finance.get("charges_enabled")),
            },
        }
    except Exception as e:
        logger.error(f"Failed to load public storefront info for {company_id}: {e}")
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Unable to load storefront information."
        )
