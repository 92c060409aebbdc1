"""
Stripe Billing Setup Script

Provisions the subscription catalogue in a clean Stripe test account:
1. Entitlement features (one per plan)
2. Products with a monthly price, plus a $0 gift price for giftable products
3. Feature attachments
4. A billing portal configuration allowing plan switches
5. STRIPE_* price ids, key and portal config id written to backend/.env

Anything created is deactivated again if a later step fails.

Usage:
    python scripts/setup_stripe.py [--dry-run] [--api-key sk_test_...] [--config path] [--env-file path]

Environment:
    STRIPE_SECRET_KEY - used when --api-key is not given (prompted otherwise)
"""
import os
import sys
import json
import getpass
import argparse
import logging
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional

import stripe

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

SCRIPT_DIR = Path(__file__).parent
DEFAULT_CONFIG = SCRIPT_DIR / "stripe_config.json"
DEFAULT_ENV_FILE = SCRIPT_DIR.parent / ".env"

TEST_KEY_PREFIX = "sk_test_"
ENV_LINE = re.compile(r"^([A-Z0-9_]+)\s*=")


class SetupAborted(Exception):
    pass


def validate_key_format(key: Optional[str]) -> bool:
    return bool(key) and key.startswith(TEST_KEY_PREFIX)


def load_config(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        config = json.load(f)
    for section in ("features", "products"):
        if not isinstance(config.get(section), list):
            raise ValueError(f"{path.name} must define a '{section}' list")
    return config


def price_env_key(product_id: str, gift: bool = False) -> str:
    suffix = "GIFT_PRICE_ID" if gift else "PRICE_ID"
    return f"STRIPE_{product_id.upper()}_{suffix}"


def merge_env(content: str, env_vars: Dict[str, str]) -> str:
    """Replace existing KEY= lines in place and append the rest."""
    lines = content.split("\n") if content else []
    while lines and not lines[-1].strip():
        lines.pop()
    index = {}
    for i, line in enumerate(lines):
        match = ENV_LINE.match(line)
        if match:
            index[match.group(1)] = i

    for key, value in env_vars.items():
        if key in index:
            lines[index[key]] = f"{key}={value}"
        else:
            lines.append(f"{key}={value}")

    return "\n".join(lines) + "\n"


def update_env_file(path: Path, env_vars: Dict[str, str], confirm: Callable[[str], str] = input) -> None:
    if path.exists():
        content = path.read_text(encoding="utf-8")
    else:
        logger.warning(f"{path} not found.")
        if confirm("Do you want to create it? (y/n): ").strip().lower() != "y":
            raise SetupAborted("Aborted by user")
        content = ""

    path.write_text(merge_env(content, env_vars), encoding="utf-8")
    logger.info(f"📄 {path} updated with {len(env_vars)} variables")


class StripeBillingSetup:
    """Creates features, products, prices and the portal config, remembering what it made."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.created_features: List[str] = []
        self.created_products: List[dict] = []
        self.created_prices: List[str] = []

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def create_features(self, features_config: List[dict]) -> Dict[str, str]:
        features: Dict[str, str] = {}
        for feat in features_config:
            logger.info(f"🔧 Creating feature '{feat['name']}'...")
            if self.dry_run:
                logger.info(f"  [DRY RUN] Would create feature {feat['key']}")
                features[feat["key"]] = f"feat_dryrun_{feat['key']}"
                continue

            try:
                feature = stripe.entitlements.Feature.create(name=feat["name"], lookup_key=feat["key"])
            except stripe.InvalidRequestError as e:
                if "lookup_key" not in str(e):
                    raise
                feature = self._find_feature(feat["key"])
                if feature is None:
                    raise RuntimeError(f"Feature '{feat['name']}' not found after conflict.")
                logger.info(f"  ✅ Feature '{feat['name']}' already exists")

            self.created_features.append(feature["id"])
            features[feat["key"]] = feature["id"]
        return features

    def _find_feature(self, lookup_key: str):
        for feature in stripe.entitlements.Feature.list(limit=100).data:
            if feature.get("lookup_key") == lookup_key:
                return feature
        return None

    # ------------------------------------------------------------------
    # Products and prices
    # ------------------------------------------------------------------

    def create_products_and_prices(self, products_config: List[dict], features: Dict[str, str]) -> Dict[str, str]:
        """Returns the STRIPE_*_PRICE_ID variables for the .env file."""
        env_vars: Dict[str, str] = {}
        for config in products_config:
            logger.info(f"🛒 Creating product '{config['name']}'...")
            product_id = self._create_product(config)

            price_id = self._create_price(config, product_id, config["price"])
            self.created_products.append({"id": product_id, "plan": config.get("plan"), "price": price_id})
            env_vars[price_env_key(config["id"])] = price_id

            if config.get("giftable"):
                env_vars[price_env_key(config["id"], gift=True)] = self._create_price(config, product_id, 0)

            for key in config.get("features", []):
                feature_id = features.get(key)
                if not feature_id:
                    logger.warning(f"⚠️ Feature '{key}' not found in feature map")
                    continue
                self._attach_feature(product_id, feature_id, config["name"], key)
        return env_vars

    def _create_product(self, config: dict) -> str:
        if self.dry_run:
            logger.info(f"  [DRY RUN] Would create product: {config['name']}")
            return f"prod_dryrun_{config['id']}"

        try:
            return stripe.Product.create(name=config["name"], description=config.get("description"))["id"]
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) != "resource_already_exists":
                raise
            existing = next(
                (p for p in stripe.Product.list(limit=100).data if p.get("name") == config["name"]), None
            )
            if existing is None:
                raise RuntimeError(f"Product '{config['name']}' not found after conflict.")
            logger.info(f"  ✅ Product '{config['name']}' already exists")
            return existing["id"]

    def _create_price(self, config: dict, product_id: str, amount: int) -> str:
        label = "gift price" if amount == 0 and config.get("giftable") else "price"
        if self.dry_run:
            logger.info(f"    [DRY RUN] Would create {label}: {amount / 100:.2f} {config['currency']}/{config['interval']}")
            return f"price_dryrun_{config['id']}_{amount}"

        price = stripe.Price.create(
            unit_amount=amount,
            currency=config["currency"],
            recurring={"interval": config["interval"]},
            product=product_id,
        )
        self.created_prices.append(price["id"])
        logger.info(f"    ✅ Created {label} {price['id']}")
        return price["id"]

    def _attach_feature(self, product_id: str, feature_id: str, product_name: str, feature_key: str) -> None:
        if self.dry_run:
            logger.info(f"    [DRY RUN] Would attach feature {feature_key} to {product_name}")
            return
        try:
            stripe.Product.create_feature(product_id, entitlement_feature=feature_id)
            logger.info(f"    🔗 Feature '{feature_key}' attached to '{product_name}'")
        except stripe.InvalidRequestError as e:
            if "already attached" not in str(e):
                raise
            logger.info(f"    ✅ Feature '{feature_key}' is already attached to '{product_name}'")

    # ------------------------------------------------------------------
    # Billing portal
    # ------------------------------------------------------------------

    def configure_billing_portal(self, headline: str) -> str:
        features = {
            "subscription_cancel": {"enabled": False},
            "payment_method_update": {"enabled": True},
            "subscription_update": {
                "enabled": True,
                "default_allowed_updates": ["price"],
                "products": [{"product": p["id"], "prices": [p["price"]]} for p in self.created_products],
            },
            "invoice_history": {"enabled": True},
            "customer_update": {"enabled": False},
        }
        if self.dry_run:
            logger.info(f"[DRY RUN] Would create billing portal config: {features}")
            return "bpc_dryrun"

        config = stripe.billing_portal.Configuration.create(
            business_profile={"headline": headline},
            features=features,
        )
        logger.info(f"✅ Created billing portal config ({config['id']})")
        return config["id"]

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def rollback(self) -> None:
        """Deactivate prices, then products, then features, newest first."""
        logger.info("⏪ Rolling back...")

        for price_id in reversed(self.created_prices):
            try:
                stripe.Price.modify(price_id, active=False)
                logger.info(f"🗑️ Deactivated price {price_id}")
            except Exception as e:
                logger.warning(f"⚠️ Could not deactivate price {price_id}: {e}")

        for product in reversed(self.created_products):
            try:
                stripe.Product.modify(product["id"], active=False)
                logger.info(f"🗑️ Deactivated product {product['id']}")
            except Exception as e:
                logger.warning(f"⚠️ Could not deactivate product {product['id']}: {e}")

        for feature_id in reversed(self.created_features):
            try:
                stripe.entitlements.Feature.modify(feature_id, active=False)
                logger.info(f"🗑️ Deactivated feature {feature_id}")
            except Exception as e:
                logger.warning(f"⚠️ Could not deactivate feature {feature_id}: {e}")

        logger.info("🔁 Rollback complete.")

    def run(self, config: dict, secret_key: str, env_file: Path, headline: str = "FormaNew") -> Dict[str, str]:
        try:
            features = self.create_features(config["features"])
            logger.info("✅ All features created.")

            env_vars = self.create_products_and_prices(config["products"], features)
            logger.info("✅ All products and prices created.")

            env_vars["STRIPE_SECRET_KEY"] = secret_key
            env_vars["STRIPE_PORTAL_CONFIG_ID"] = self.configure_billing_portal(headline)

            if self.dry_run:
                logger.info(f"[DRY RUN] Would write {sorted(env_vars)} to {env_file}")
            else:
                update_env_file(env_file, env_vars)
            return env_vars
        except Exception as e:
            logger.error(f"❌ Setup failed: {e}")
            if not self.dry_run:
                self.rollback()
            raise


def resolve_api_key(cli_key: Optional[str]) -> str:
    key = cli_key or os.getenv("STRIPE_SECRET_KEY")
    if not key:
        key = getpass.getpass(f"👉 Enter your Stripe Secret Key (starts with {TEST_KEY_PREFIX}): ")
    return key.strip()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Provision Stripe billing products, prices and portal config")
    parser.add_argument("--dry-run", action="store_true", help="Preview changes without calling Stripe")
    parser.add_argument("--api-key", help="Stripe test secret key (defaults to STRIPE_SECRET_KEY)")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Catalogue definition JSON")
    parser.add_argument("--env-file", type=Path, default=DEFAULT_ENV_FILE, help=".env file to update")
    args = parser.parse_args(argv)

    logger.info("🚀 Stripe Billing Setup")
    logger.info("This script assumes a clean Stripe account with no existing billing setup.")

    secret_key = resolve_api_key(args.api_key)
    if not validate_key_format(secret_key):
        logger.error(f"❌ Invalid key format. It must start with {TEST_KEY_PREFIX}")
        return 1

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        logger.error(f"❌ Failed to read {args.config}: {e}")
        return 1

    if not args.dry_run:
        stripe.api_key = secret_key
        try:
            stripe.Product.list(limit=1)
            logger.info("✅ Stripe key is valid.")
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe authentication failed: {e}")
            return 1

    try:
        StripeBillingSetup(dry_run=args.dry_run).run(
            config, secret_key, args.env_file, headline=os.getenv("APP_NAME", "FormaNew")
        )
    except Exception:
        return 1

    logger.info("🎉 Stripe billing setup complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
