"""Stripe Connect - connected accounts, onboarding links, storefront products and checkout.

Calls against a connected account pass `stripe_account=...` so they run as
that account. The platform secret key is set by services.billing_service.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

import stripe

import settings
from services.billing_service import billing_service

logger = logging.getLogger(__name__)

APPLICATION_FEE_PERCENT = 0.1
MIN_APPLICATION_FEE_CENTS = 100
PRODUCT_LIST_LIMIT = 20


class ConnectError(Exception):
    """Connected account missing or misconfigured."""
    pass


def validate_stripe_account_id(account_id: Optional[str]) -> bool:
    return isinstance(account_id, str) and account_id.startswith("acct_")


def application_fee(unit_amount: Optional[int]) -> int:
    """Platform fee in cents: 10% of the price, never below one dollar."""
    return max(round((unit_amount or 0) * APPLICATION_FEE_PERCENT), MIN_APPLICATION_FEE_CENTS)


def account_status(account) -> Dict[str, Any]:
    """Status fields mirrored into CompanyFinance."""
    requirements = account.get("requirements") or {}
    return {
        "details_submitted": bool(account.get("details_submitted")),
        "charges_enabled": bool(account.get("charges_enabled")),
        "payouts_enabled": bool(account.get("payouts_enabled")),
        "requirements_due": list(requirements.get("currently_due") or []),
        "requirements_due_soon": list(requirements.get("eventually_due") or []),
    }


def _default_price(product) -> Dict[str, Any]:
    price = product.get("default_price")
    if isinstance(price, str):
        return {"price_id": price, "unit_amount": None, "currency": None}
    if price:
        return {"price_id": price.get("id"), "unit_amount": price.get("unit_amount"), "currency": price.get("currency")}
    return {"price_id": None, "unit_amount": None, "currency": None}


def _base_url() -> str:
    if not settings.BASE_URL:
        raise ConnectError("BASE_URL is not set. Define it so Stripe can redirect users back to the app.")
    return settings.BASE_URL


class ConnectService:
    def _client(self):
        return billing_service._require_client()

    def create_account(self, company_id: str, email: Optional[str] = None) -> str:
        account = self._client().Account.create(
            controller={
                "fees": {"payer": "account"},
                "losses": {"payments": "stripe"},
                "stripe_dashboard": {"type": "full"},
            },
            email=email or None,
            metadata={"company_id": company_id},
        )
        logger.info(f"Stripe connected account {account['id']} created for company {company_id}")
        return account["id"]

    def create_onboarding_link(self, account_id: str, company_id: str) -> Dict[str, Any]:
        base_url = _base_url()
        link = self._client().AccountLink.create(
            account=account_id,
            refresh_url=f"{base_url}/dashboard/company/finances",
            return_url=f"{base_url}/dashboard/company/finances?account_id={company_id}",
            type="account_onboarding",
        )
        return {
            "url": link["url"],
            "expires_at": link["expires_at"],
            "expires_at_datetime": datetime.fromtimestamp(link["expires_at"], tz=timezone.utc),
        }

    def create_login_link(self, account_id: str) -> str:
        link = self._client().Account.create_login_link(account_id)
        return link["url"]

    def retrieve_status(self, account_id: str) -> Dict[str, Any]:
        return account_status(self._client().Account.retrieve(account_id))

    def list_products(self, account_id: str, storefront_only: bool = False) -> List[Dict[str, Any]]:
        result = self._client().Product.list(
            limit=PRODUCT_LIST_LIMIT,
            expand=["data.default_price"],
            stripe_account=account_id,
        )
        products = []
        for product in result["data"]:
            metadata = product.get("metadata") or {}
            if storefront_only and metadata.get("display_on_storefront") != "true":
                continue
            price = _default_price(product)
            if not price["price_id"]:
                continue
            products.append({
                "id": product["id"],
                "name": product["name"],
                "description": product.get("description") or "",
                **price,
                "active": product.get("active"),
            })
        return products

    def create_product(self, account_id: str, name: str, currency: str, amount: float,
                       description: Optional[str] = None) -> Dict[str, Optional[str]]:
        product = self._client().Product.create(
            name=name,
            description=description or None,
            default_price_data={"unit_amount": round(amount * 100), "currency": currency},
            stripe_account=account_id,
        )
        return {"product_id": product["id"], "price_id": _default_price(product)["price_id"]}

    def update_product(self, account_id: str, product_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        product = self._client().Product.modify(product_id, stripe_account=account_id, **updates)
        return {"id": product["id"], "active": product.get("active")}

    def create_store_checkout(self, account_id: str, price_id: str, company_id: str) -> Optional[str]:
        """Checkout for one storefront product, taking the platform fee."""
        base_url = _base_url()
        client = self._client()
        price = client.Price.retrieve(price_id, stripe_account=account_id)
        session = client.checkout.Session.create(
            line_items=[{"price": price_id, "quantity": 1}],
            mode="payment",
            payment_intent_data={"application_fee_amount": application_fee(price.get("unit_amount"))},
            success_url=f"{base_url}/success?session_id={{CHECKOUT_SESSION_ID}}&company_id={company_id}",
            cancel_url=f"{base_url}/company/{company_id}/store",
            stripe_account=account_id,
        )
        return session.get("url")

    def create_contract_checkout(self, account_id: str, contract: Dict[str, Any], customer_email: str,
                                 success_url: str, cancel_url: str) -> Optional[str]:
        """Checkout paying a contract: its Stripe price, else its billing amount."""
        if contract.get("stripe_price_id"):
            line_items = [{"price": contract["stripe_price_id"], "quantity": 1}]
        else:
            line_items = [{
                "price_data": {
                    "currency": contract.get("billing_currency") or "USD",
                    "product_data": {"name": contract["title"]},
                    "unit_amount": int(contract.get("billing_amount") or 0),
                },
                "quantity": 1,
            }]
        session = self._client().checkout.Session.create(
            payment_method_types=["card"],
            line_items=line_items,
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=customer_email,
            stripe_account=account_id,
        )
        return session.get("url")


connect_service = ConnectService()
