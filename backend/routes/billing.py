"""Billing Routes - subscription lifecycle and invoices for the signed-in user.

Endpoints:
- POST /api/billing/create-customer - Find or create the Stripe customer
- POST /api/billing/create-subscription - Start a subscription, returns the payment client secret
- GET /api/billing/get-subscription - Local subscription record
- POST /api/billing/cancel-subscription - Move the Stripe subscription back to FREE
- POST /api/billing/checkout - Billing portal session for upgrading to PRO
- POST /api/billing/generate-invoice-storage - Render the invoice PDF into storage
- POST /api/billing/generate-invoice - Email the invoice with the PDF attached
- GET /api/billing/download-invoice/{invoice_number} - Signed URL for a stored invoice
"""
from fastapi import APIRouter, HTTPException, Request
from datetime import timedelta
import logging

from middleware import require_auth
from models import BillingPlan, CreateSubscriptionRequest, SubscriptionPlan, SubscriptionStatus, utc_now
from repositories import repos
from services.billing_service import billing_service
from services.invoice_delivery import InvoiceDeliveryError, INVOICE_FOLDER, invoice_key, store_invoice, email_invoice
from services.invoice_service import is_valid_invoice_number
from services.storage_service import storage_service
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/billing", tags=["billing"])

INVOICE_URL_TTL = 3600


def _internal_error():
    return HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Internal Server Error")


@router.post("/create-customer")
async def create_customer(request: Request):
    user = await require_auth(request)
    try:
        customers = await billing_service.list_customer(user["email"])
        if customers:
            return {"customer_id": customers[0]["id"]}

        customer = await billing_service.create_customer(user["email"], {"user_id": user["user_id"]})
        await repos.subscription.create({
            "user_id": user["user_id"],
            "customer_id": customer["id"],
            "plan": None,
            "status": None,
        })
        return {"customer_id": customer["id"]}
    except Exception as e:
        logger.error(f"Create customer failed for {user['user_id']}: {e}")
        raise _internal_error()


@router.post("/create-subscription")
async def create_subscription(body: CreateSubscriptionRequest, request: Request):
    user = await require_auth(request)

    if not body.plan:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Plan is required")

    try:
        record = await repos.subscription.find_by_user_id(user["user_id"])
        customer_id = (record or {}).get("customer_id")
        if not customer_id:
            customer = await billing_service.create_customer(user["email"], {"user_id": user["user_id"]})
            customer_id = customer["id"]
            if record:
                await repos.subscription.update_by_user_id(user["user_id"], {"customer_id": customer_id})
            else:
                await repos.subscription.create({
                    "user_id": user["user_id"],
                    "customer_id": customer_id,
                    "plan": None,
                    "status": None,
                })

        result = await billing_service.create_subscription(customer_id, body.plan)
        await repos.subscription.update_by_user_id(
            user["user_id"],
            {"status": SubscriptionStatus.PENDING.value, "plan": body.plan.value},
        )
        return {"client_secret": result["client_secret"]}
    except Exception as e:
        logger.error(f"Create subscription failed for {user['user_id']}: {e}")
        raise _internal_error()


@router.get("/get-subscription")
async def get_subscription(request: Request):
    user = await require_auth(request)
    try:
        record = await repos.subscription.find_by_user_id(user["user_id"])
        return {"subscription": [record] if record else []}
    except Exception as e:
        logger.error(f"Get subscription failed for {user['user_id']}: {e}")
        raise _internal_error()


@router.post("/cancel-subscription")
async def cancel_subscription(request: Request):
    """Cancelling keeps the customer on Stripe and moves them to the FREE price."""
    user = await require_auth(request)
    try:
        customers = await billing_service.list_customer(user["email"])
        if not customers:
            raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Customer not found")

        stripe_subscriptions = await billing_service.list_subscription(customers[0]["id"])
        if not stripe_subscriptions:
            raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="No active subscription")

        if not await repos.subscription.find_by_user_id(user["user_id"]):
            raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="No active subscription found")

        current = stripe_subscriptions[0]
        await billing_service.update_subscription(current["id"], current["items"][0]["id"], BillingPlan.FREE)
        await repos.subscription.update_by_user_id(
            user["user_id"],
            {"plan": SubscriptionPlan.FREE.value, "status": SubscriptionStatus.PENDING.value},
        )
        return {"canceled": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Cancel subscription failed for {user['user_id']}: {e}")
        raise _internal_error()


@router.post("/checkout")
async def checkout(request: Request):
    user = await require_auth(request)

    record = await repos.subscription.find_by_user_id(user["user_id"])
    if not record or not record.get("customer_id"):
        logger.error(f"No subscription found for user {user['user_id']}")
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="No subscription found")

    try:
        url = await billing_service.manage_subscription(BillingPlan.PRO, record["customer_id"])
    except Exception as e:
        logger.error(f"Error creating Billing Portal session: {e}")
        if "already on the" in str(e):
            raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail=str(e))
        raise _internal_error()

    if not url:
        logger.error("Billing Portal session returned no url")
        raise _internal_error()
    return {"url": url}


@router.post("/generate-invoice-storage")
async def generate_invoice_storage(request: Request):
    user = await require_auth(request)
    try:
        return await store_invoice(user)
    except InvoiceDeliveryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to generate and upload invoice for {user['user_id']}: {e}")
        raise HTTPException(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to generate and upload invoice"
        )


@router.post("/generate-invoice")
async def generate_invoice(request: Request):
    user = await require_auth(request)
    try:
        return await email_invoice(user)
    except InvoiceDeliveryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to generate invoice for {user['user_id']}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Failed to generate invoice")


@router.get("/download-invoice/{invoice_number}")
async def download_invoice(invoice_number: str, request: Request):
    user = await require_auth(request)

    if not is_valid_invoice_number(invoice_number):
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="Invalid invoice number format")

    try:
        url = await storage_service.get_file_url(
            INVOICE_FOLDER, invoice_key(user["user_id"], invoice_number), expires_in=INVOICE_URL_TTL
        )
    except Exception as e:
        logger.error(f"Invoice {invoice_number} unavailable for {user['user_id']}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="Invoice not found or access denied")

    return {
        "success": True,
        "invoice_url": url,
        "invoice_number": invoice_number,
        "expires_at": (utc_now() + timedelta(seconds=INVOICE_URL_TTL)).isoformat(),
    }
