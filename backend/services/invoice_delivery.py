"""
Invoice delivery - generate a subscription invoice and store or email it.

Shared by the billing routes and the subscription webhook. Failures that map
to a client-facing answer raise InvoiceDeliveryError carrying the HTTP status.
"""
import logging
import re
from typing import Any, Dict, Optional, Tuple

import settings
from models import BillingPlan, SubscriptionPlan, SubscriptionStatus
from repositories import repos
from services.billing_service import billing_service
from services.email_service import email_service
from services.email_templates import build_invoice_email
from services.invoice_service import invoice_service, prepare_invoice_data, InvoiceData, GeneratedInvoice
from services.pdf_service import pdf_service
from services.storage_service import storage_service
from services.subscription_service import ensure_subscription
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)

INVOICE_FOLDER = "invoices"


class InvoiceDeliveryError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def invoice_key(user_id: str, invoice_number: str) -> str:
    return f"{user_id}/{invoice_number}.pdf"


def attachment_name(invoice_number: str, customer_name: str) -> str:
    safe_name = re.sub(r"\s+", "-", customer_name)
    return f"invoice-{invoice_number}-{safe_name}.pdf"


async def resolve_subscription(user: Dict[str, Any]) -> Dict[str, Any]:
    """Local subscription record, provisioning a FREE one when missing or planless."""
    record = await repos.subscription.find_by_user_id(user["user_id"])
    if record and record.get("plan"):
        return record

    if not record:
        record = await ensure_subscription(user, BillingPlan.FREE)
        if not record:
            raise InvoiceDeliveryError(
                HTTP_STATUS.INTERNAL_SERVER_ERROR,
                "Billing service not configured. Cannot create subscription.",
            )
        return record

    return await repos.subscription.update_by_user_id(
        user["user_id"],
        {"plan": SubscriptionPlan.FREE.value, "status": SubscriptionStatus.ACTIVE.value},
    )


async def plan_details(plan: Optional[str]) -> Dict[str, Any]:
    """get_products() entry for a local plan name."""
    price_id = {
        SubscriptionPlan.FREE.value: settings.STRIPE_FREE_PRICE_ID,
        SubscriptionPlan.PRO.value: settings.STRIPE_PRO_PRICE_ID,
    }.get(plan)
    for product in await billing_service.get_products():
        if price_id and product["price_id"] == price_id:
            return product
    raise InvoiceDeliveryError(HTTP_STATUS.NOT_FOUND, "Plan details not found")


async def _require_invoice_service() -> None:
    config = await invoice_service.check_configuration()
    if not config.configured or not config.connected:
        raise InvoiceDeliveryError(
            HTTP_STATUS.INTERNAL_SERVER_ERROR, "Invoice service not configured or connected"
        )


async def generate(
    user: Dict[str, Any], plan: Dict[str, Any], subscription: Dict[str, Any]
) -> Tuple[InvoiceData, GeneratedInvoice]:
    data = prepare_invoice_data(user, plan, subscription["subscription_id"])
    return data, await invoice_service.generate_invoice(data)


async def store_invoice(user: Dict[str, Any]) -> Dict[str, Any]:
    """Render the current plan's invoice to PDF and upload it privately."""
    subscription = await resolve_subscription(user)
    plan = await plan_details(subscription.get("plan"))
    await _require_invoice_service()

    storage_config = await storage_service.check_configuration()
    if not storage_config.configured or not storage_config.connected:
        raise InvoiceDeliveryError(
            HTTP_STATUS.INTERNAL_SERVER_ERROR, "Storage service not configured or connected"
        )

    data, generated = await generate(user, plan, subscription)

    try:
        pdf = await pdf_service.generate_invoice_pdf(generated.html)
    except Exception as e:
        logger.error(f"PDF generation failed for {data.invoice_number}: {e}")
        raise InvoiceDeliveryError(HTTP_STATUS.INTERNAL_SERVER_ERROR, "Failed to generate PDF invoice")

    await storage_service.upload_file(
        INVOICE_FOLDER,
        invoice_key(user["user_id"], data.invoice_number),
        pdf,
        content_type="application/pdf",
        acl="private",
    )
    logger.info(f"Invoice {data.invoice_number} stored for {user['user_id']}")

    return {
        "success": True,
        "invoice_number": data.invoice_number,
        "plan_name": plan["name"],
        "amount": plan["amount"],
        "message": "Invoice generated and stored successfully. Use the download button to access it.",
    }


async def email_invoice(
    user: Dict[str, Any],
    plan: Optional[Dict[str, Any]] = None,
    subscription: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Generate the invoice and email it with the PDF attached.

    The PDF is best effort: without a working browser the email goes out
    without an attachment.
    """
    subscription = subscription or await resolve_subscription(user)
    plan = plan or await plan_details(subscription.get("plan"))
    await _require_invoice_service()

    if not email_service.is_email_enabled():
        raise InvoiceDeliveryError(HTTP_STATUS.INTERNAL_SERVER_ERROR, "Email service is disabled")

    data, generated = await generate(user, plan, subscription)

    attachments = []
    try:
        pdf = await pdf_service.generate_invoice_pdf(generated.html)
        attachments.append({
            "filename": attachment_name(data.invoice_number, data.customer_name),
            "content": pdf,
            "content_type": "application/pdf",
        })
    except Exception as e:
        logger.warning(f"Sending invoice {data.invoice_number} without PDF: {e}")

    template = build_invoice_email(
        generated.html,
        generated.text,
        generated.subject,
        data.customer_name,
        plan["name"],
        plan["amount"],
        data.invoice_number,
    )
    await email_service.send_template(user["email"], template, attachments=attachments)

    return {
        "success": True,
        "message": f"Invoice generated and sent to {user['email']}",
        "invoice_number": data.invoice_number,
        "plan_name": plan["name"],
        "amount": plan["amount"],
        "pdf_attached": bool(attachments),
    }
