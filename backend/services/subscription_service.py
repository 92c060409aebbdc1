"""
Subscription reconciliation.

`ensure_subscription` brings a user's Stripe customer, Stripe subscription and
local Subscription record in line with a requested plan. It is idempotent:
calling it again with the same plan makes no further Stripe writes. Used by
email verification, signup without email, invoice generation and the admin
user editor.
"""
import logging
from typing import Optional, Dict, Any

from models import BillingPlan, SubscriptionStatus, SubscriptionPlan
from repositories import repos
from services.billing_service import billing_service, BillingError

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Billing service is not properly configured. Please check the system-status page"


def local_plan_for(plan: BillingPlan) -> str:
    """GIFT is stored locally as PRO."""
    return SubscriptionPlan.PRO.value if plan == BillingPlan.GIFT else plan.value


async def _ensure_customer(user: Dict[str, Any], record: Optional[Dict[str, Any]], create_customer: bool) -> str:
    if record and record.get("customer_id"):
        return record["customer_id"]

    if not create_customer:
        raise BillingError("No existing subscription found for user")

    existing = await billing_service.list_customer(user["email"])
    if existing:
        customer_id = existing[0]["id"]
        logger.info(f"Reusing Stripe customer {customer_id} for {user['user_id']}")
    else:
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
    return customer_id


async def ensure_subscription(
    user: Dict[str, Any],
    plan=BillingPlan.FREE,
    strict: bool = False,
    create_customer: bool = True,
) -> Optional[Dict[str, Any]]:
    """
    Make sure `user` holds exactly one Stripe subscription on `plan`.

    Args:
        user: user document (needs user_id and email)
        plan: FREE, PRO or GIFT
        strict: raise BillingError instead of returning None when billing is unavailable
        create_customer: when False a missing Stripe customer is an error

    Returns:
        The updated local subscription record, or None when billing is unavailable.
    """
    config = await billing_service.check_configuration()
    if not config.configured or not config.connected:
        logger.error(NOT_CONFIGURED)
        if strict:
            raise BillingError(NOT_CONFIGURED)
        return None

    plan = BillingPlan(getattr(plan, "value", plan))
    record = await repos.subscription.find_by_user_id(user["user_id"])
    customer_id = await _ensure_customer(user, record, create_customer)

    target_price = billing_service.get_price_id(plan)
    stripe_subscriptions = await billing_service.list_subscription(customer_id)

    if not stripe_subscriptions:
        await billing_service.create_subscription(customer_id, plan)
        status = SubscriptionStatus.PENDING.value
    else:
        current = stripe_subscriptions[0]
        item = current["items"][0]
        if item["price_id"] != target_price:
            await billing_service.update_subscription(current["id"], item["id"], plan)
            logger.info(f"Moved subscription {current['id']} to {plan.value}")
        existing_status = (record or {}).get("status")
        if existing_status:
            status = existing_status
        elif current["status"] == "active":
            status = SubscriptionStatus.ACTIVE.value
        else:
            status = SubscriptionStatus.PENDING.value

    return await repos.subscription.update_by_user_id(
        user["user_id"], {"plan": local_plan_for(plan), "status": status}
    )
