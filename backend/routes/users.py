"""Admin user management: paginated listing and edits (name, role, plan)."""
from fastapi import APIRouter, HTTPException, Request
from typing import Optional
import logging

from middleware import require_admin
from models import EditUserRequest, BillingPlan, SubscriptionPlan, SubscriptionStatus, public_user
from repositories import repos
from services.subscription_service import ensure_subscription
from utils.http import HTTP_STATUS

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("")
async def list_users(
    request: Request,
    page: int = 1,
    page_size: int = 10,
    search_name: Optional[str] = None,
    filter_plan: Optional[SubscriptionPlan] = None,
    filter_status: Optional[SubscriptionStatus] = None,
):
    await require_admin(request)
    try:
        users, total = await repos.user.find_all(
            page=max(page, 1),
            page_size=max(page_size, 1),
            search_name=search_name,
            filter_plan=filter_plan.value if filter_plan else None,
            filter_status=filter_status.value if filter_status else None,
        )
        return {"users": users, "total": total}
    except Exception as e:
        logger.error(f"Error listing users: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Internal server error")


@router.patch("/{user_id}")
async def edit_user(user_id: str, body: EditUserRequest, request: Request):
    """
    Update name/role and optionally move the user's plan.

    A PRO plan set by an admin is billed at the gift price; FREE goes back to
    the free price. The user must already have a Stripe customer.
    """
    await require_admin(request)

    updates = body.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=HTTP_STATUS.BAD_REQUEST, detail="No valid fields to update")

    try:
        user_fields = {k: v for k, v in updates.items() if k in ("name", "role")}
        if "role" in user_fields:
            user_fields["role"] = body.role.value
        user = await repos.user.update(user_id, user_fields) if user_fields else await repos.user.find_by_id(user_id)
        if not user:
            raise HTTPException(status_code=HTTP_STATUS.NOT_FOUND, detail="User not found")

        subscription = updates.get("subscription")
        if subscription:
            plan = subscription.get("plan")
            try:
                if plan in (SubscriptionPlan.PRO.value, SubscriptionPlan.FREE.value):
                    billing_plan = BillingPlan.GIFT if plan == SubscriptionPlan.PRO.value else BillingPlan.FREE
                    await ensure_subscription(user, billing_plan, strict=True, create_customer=False)
                local_fields = {k: subscription[k] for k in ("plan", "status") if k in subscription}
                if local_fields:
                    await repos.subscription.update_by_user_id(user_id, local_fields)
            except Exception as e:
                logger.error(f"Subscription update failed for {user_id}: {e}")
                raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail=str(e))

        logger.info(f"Admin updated user {user_id}: {sorted(updates.keys())}")
        return {"user": public_user(user)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error in edit_user: {e}")
        raise HTTPException(status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR, detail="Internal server error")
