"""Stripe Billing Service - customers, subscriptions and the billing portal.

This service handles:
- Finding or creating the Stripe customer behind a user
- Creating, switching and cancelling the single subscription a customer holds
- Billing portal sessions for plan upgrades
- Plan catalogue (price, product and entitlement features) for FREE and PRO

Key Principles:
- Price ids come from settings (STRIPE_FREE/PRO/PRO_GIFT_PRICE_ID)
- GIFT is the PRO product at $0 and is only used by admins
- Stripe objects are read dict-style so plain dicts work in tests
"""
import stripe
import logging
from typing import Optional, Dict, Any, List

import settings
from models import BillingPlan
from services.service_status import ConfigurableService, ServiceConfigStatus, missing_settings

logger = logging.getLogger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY


class BillingError(Exception):
    """Billing provider unavailable or misconfigured."""
    pass


class StripeBillingService(ConfigurableService):
    SERVICE_NAME = "Billing (Stripe)"
    DESCRIPTION = "The following features are impacted: signup, billing plans"

    def __init__(self):
        self._last_connection_error: Optional[str] = None

    def _required_config(self) -> Dict[str, Any]:
        return {
            "STRIPE_SECRET_KEY": settings.STRIPE_SECRET_KEY,
            "STRIPE_FREE_PRICE_ID": settings.STRIPE_FREE_PRICE_ID,
            "STRIPE_PRO_PRICE_ID": settings.STRIPE_PRO_PRICE_ID,
            "STRIPE_PRO_GIFT_PRICE_ID": settings.STRIPE_PRO_GIFT_PRICE_ID,
            "STRIPE_WEBHOOK_SECRET": settings.STRIPE_WEBHOOK_SECRET,
            "STRIPE_PORTAL_CONFIG_ID": settings.STRIPE_PORTAL_CONFIG_ID,
            "BASE_URL": settings.BASE_URL,
        }

    def is_configured(self) -> bool:
        return not missing_settings(self._required_config())

    def is_required(self) -> bool:
        return True

    def _require_client(self):
        if not self.is_configured():
            raise BillingError("Stripe client not initialized. Check Configuration")
        stripe.api_key = settings.STRIPE_SECRET_KEY
        return stripe

    def get_price_id(self, plan) -> str:
        plan = BillingPlan(getattr(plan, "value", plan))
        price_id = {
            BillingPlan.FREE: settings.STRIPE_FREE_PRICE_ID,
            BillingPlan.PRO: settings.STRIPE_PRO_PRICE_ID,
            BillingPlan.GIFT: settings.STRIPE_PRO_GIFT_PRICE_ID,
        }[plan]
        if not price_id:
            raise ValueError(f"{plan.value} price ID is not configured")
        return price_id

    def plan_for_price(self, price_id: Optional[str]) -> Optional[str]:
        """Map a Stripe price id back to the local plan (GIFT counts as PRO)."""
        if not price_id:
            return None
        if price_id == settings.STRIPE_FREE_PRICE_ID:
            return "FREE"
        if price_id in (settings.STRIPE_PRO_PRICE_ID, settings.STRIPE_PRO_GIFT_PRICE_ID):
            return "PRO"
        return None

    @staticmethod
    def _client_secret(subscription) -> Optional[str]:
        invoice = subscription.get("latest_invoice")
        if not invoice or isinstance(invoice, str):
            return None
        intent = invoice.get("payment_intent")
        if not intent or isinstance(intent, str):
            return None
        return intent.get("client_secret")

    async def list_customer(self, email: str) -> List[Dict[str, str]]:
        client = self._require_client()
        result = client.Customer.list(email=email, limit=1)
        return [{"id": c["id"]} for c in result["data"]]

    async def create_customer(self, email: str, metadata: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        client = self._require_client()
        customer = client.Customer.create(email=email, metadata=metadata or {})
        logger.info(f"Stripe customer created: {customer['id']}")
        return {"id": customer["id"]}

    async def create_subscription(self, customer_id: str, plan) -> Dict[str, Optional[str]]:
        client = self._require_client()
        price_id = self.get_price_id(plan)
        result = client.Subscription.create(
            customer=customer_id,
            items=[{"price": price_id}],
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
        )
        logger.info(f"Stripe subscription created: {result['id']} customer={customer_id}")
        return {"id": result["id"], "client_secret": self._client_secret(result)}

    async def list_subscription(self, customer_id: str) -> List[Dict[str, Any]]:
        client = self._require_client()
        result = client.Subscription.list(customer=customer_id, limit=1)
        return [
            {
                "id": sub["id"],
                "status": sub["status"],
                "items": [
                    {"id": item["id"], "price_id": item["price"]["id"]}
                    for item in sub["items"]["data"]
                ],
            }
            for sub in result["data"]
        ]

    async def cancel_subscription(self, subscription_id: str) -> None:
        client = self._require_client()
        client.Subscription.cancel(subscription_id)
        logger.info(f"Stripe subscription cancelled: {subscription_id}")

    async def update_subscription(self, subscription_id: str, item_id: str, plan) -> Dict[str, Optional[str]]:
        client = self._require_client()
        price_id = self.get_price_id(plan)
        result = client.Subscription.modify(
            subscription_id,
            items=[{"id": item_id, "price": price_id}],
            proration_behavior="always_invoice",
            payment_behavior="default_incomplete",
        )
        logger.info(f"Stripe subscription {subscription_id} moved to {price_id}")
        return {"client_secret": self._client_secret(result)}

    async def manage_subscription(self, plan, customer_id: str) -> Optional[str]:
        """Billing portal URL confirming a switch to `plan`."""
        client = self._require_client()
        result = client.Subscription.list(customer=customer_id, limit=1)
        if not result["data"]:
            raise ValueError("No subscription found for customer")

        subscription = result["data"][0]
        item = subscription["items"]["data"][0]
        requested_price_id = self.get_price_id(plan)
        if item["price"]["id"] == requested_price_id:
            raise ValueError(f"User is already on the {getattr(plan, 'value', plan)} plan")

        session = client.billing_portal.Session.create(
            customer=customer_id,
            configuration=settings.STRIPE_PORTAL_CONFIG_ID,
            flow_data={
                "type": "subscription_update_confirm",
                "subscription_update_confirm": {
                    "subscription": subscription["id"],
                    "items": [{"id": item["id"], "price": requested_price_id, "quantity": 1}],
                },
            },
            return_url=f"{settings.BASE_URL}/dashboard/subscription",
        )
        return session.get("url")

    async def get_products(self) -> List[Dict[str, Any]]:
        """FREE and PRO plan details: price_id, amount, interval, name, description, features."""
        client = self._require_client()
        plans = []
        for price_id in (settings.STRIPE_FREE_PRICE_ID, settings.STRIPE_PRO_PRICE_ID):
            price = client.Price.retrieve(price_id, expand=["product"])
            product = price["product"]
            features = client.Product.list_features(product["id"])
            recurring = price.get("recurring")
            plans.append({
                "price_id": price["id"],
                "amount": (price.get("unit_amount") or 0) / 100,
                "interval": recurring.get("interval") if recurring else None,
                "name": product["name"],
                "description": product.get("description") or "",
                "features": [f["entitlement_feature"]["name"] for f in features["data"]],
            })
        return plans

    def construct_event(self, payload: bytes, signature: str, secret: Optional[str] = None):
        """Verify a webhook payload. Raises stripe.SignatureVerificationError or ValueError."""
        return stripe.Webhook.construct_event(
            payload, signature, secret or settings.STRIPE_WEBHOOK_SECRET
        )

    async def check_connection(self) -> bool:
        if not self.is_configured():
            self._last_connection_error = "Stripe client not initialized"
            return False
        try:
            self._require_client().Product.list(limit=1)
            return True
        except Exception as e:
            logger.error(f"Billing connection test failed: {e}")
            self._last_connection_error = f"Connection error: {e}"
            return False

    async def check_configuration(self) -> ServiceConfigStatus:
        missing = missing_settings(self._required_config())
        if missing:
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=False,
                config_to_review=missing,
                error="Configuration missing",
                description=self.DESCRIPTION,
            )

        if not await self.check_connection():
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=True,
                connected=False,
                config_to_review=list(self._required_config().keys()),
                error=self._last_connection_error or "Connection failed",
                description=self.DESCRIPTION,
            )

        return ServiceConfigStatus(
            name=self.SERVICE_NAME, configured=True, connected=True, description=self.DESCRIPTION
        )


billing_service = StripeBillingService()
