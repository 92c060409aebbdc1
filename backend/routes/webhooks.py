"""Webhook Routes - Stripe events.

POST /api/webhook        - subscription lifecycle (created / updated / deleted)
POST /api/stripe/webhook - Connect account status for company finance records

Both verify the Stripe-Signature header against STRIPE_WEBHOOK_SECRET before
looking at the payload.
"""
from fastapi import APIRouter, HTTPException, Request
from typing import Any, Awaitable, Callable, Dict
import logging

import settings
from models import SubscriptionStatus
from repositories import repos
from services.billing_service import billing_service
from services.connect_service import account_status
from services.email_service import email_service
from services.email_templates import build_subscription_updated_email
from services.invoice_delivery import email_invoice
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


class WebhookPayloadError(Exception):
    pass


async def _verified_event(request: Request):
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.error("Missing Stripe signature header")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Internal Server Error")
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Stripe webhook secret is not configured")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Internal Server Error")

    payload = await request.body()
    try:
        return billing_service.construct_event(payload, signature)
    except Exception as e:
        logger.error(f"Error constructing Stripe webhook event: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Internal Server Error")


def _customer_id(event) -> str:
    customer_id = event["data"]["object"].get("customer")
    if not customer_id:
        raise WebhookPayloadError("Customer ID is required")
    return customer_id


async def handle_subscription_created(event) -> None:
    await repos.subscription.update_by_customer_id(
        _customer_id(event), {"status": SubscriptionStatus.ACTIVE.value}
    )


async def handle_subscription_deleted(event) -> None:
    await repos.subscription.update_by_customer_id(
        _customer_id(event), {"status": SubscriptionStatus.CANCELED.value}
    )


async def handle_subscription_updated(event) -> None:
    """Sync the plan from the price, then notify the user and invoice paid plans."""
    obj = event["data"]["object"]
    customer_id = obj.get("customer")
    items = (obj.get("items") or {}).get("data") or []
    price_id = items[0]["price"]["id"] if items else None
    if not customer_id or not price_id:
        raise WebhookPayloadError(f"Invalid event payload: missing {'customer' if not customer_id else 'price'} ID")

    plan = billing_service.plan_for_price(price_id)
    if plan is None or price_id == settings.STRIPE_PRO_GIFT_PRICE_ID:
        logger.warning(f"Ignoring unknown price ID: {price_id}")
        return

    subscription = await repos.subscription.update_by_customer_id(
        customer_id, {"status": SubscriptionStatus.ACTIVE.value, "plan": plan}
    )
    if not subscription:
        logger.warning(f"No local subscription for customer {customer_id}")
        return

    try:
        user = await repos.user.find_by_id(subscription["user_id"])
        if not user:
            logger.warning(f"User not found for subscription {subscription['subscription_id']}. Email not sent.")
            return

        current_plan = next((p for p in await billing_service.get_products() if p["price_id"] == price_id), None)
        if not current_plan:
            logger.warning(f"Plan not found for price ID: {price_id}. Email not sent.")
            return

        if not email_service.is_email_enabled():
            return

        await email_service.send_template(user["email"], build_subscription_updated_email(current_plan))

        if current_plan["amount"] > 0:
            try:
                await email_invoice(user, plan=current_plan, subscription=subscription)
                logger.info(f"Invoice sent for subscription {subscription['subscription_id']}")
            except Exception as e:
                logger.error(f"Error generating or sending invoice: {e}")
    except Exception as e:
        logger.error(f"Error sending subscription update email: {e}")


SUBSCRIPTION_HANDLERS: Dict[str, Callable[[Any], Awaitable[None]]] = {
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
}


@router.post("/api/webhook")
async def subscription_webhook(request: Request):
    event = await _verified_event(request)

    handler = SUBSCRIPTION_HANDLERS.get(event["type"])
    if handler is None:
        logger.warning(f"Unhandled webhook event type: {event['type']}")
        return {"received": True}

    logger.info(f"Handling webhook event: {event['type']}")
    try:
        await handler(event)
    except Exception as e:
        logger.error(f"Error handling webhook {event['type']}: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Internal Server Error")
    return {"received": True}


@router.post("/api/stripe/webhook")
async def connect_webhook(request: Request):
    """Mirror connected-account status into CompanyFinance via metadata.company_id."""
    event = await _verified_event(request)

    if event["type"] == "account.updated":
        account = event["data"]["object"]
        company_id = (account.get("metadata") or {}).get("company_id")
        if company_id:
            updates = {"stripe_account_id": account["id"], **account_status(account)}
            finance = await repos.company_finance.update_by_company_id(company_id, updates)
            if finance:
                logger.info(
                    f"Company finance status updated for {company_id}. "
                    f"Charges enabled: {updates['charges_enabled']}"
                )
            else:
                logger.warning(f"No finance record for company {company_id}")
    else:
        logger.info(f"Unhandled event type {event['type']}")

    return {"received": True}
