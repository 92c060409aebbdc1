"""Runtime configuration loaded from the environment (.env next to this file)."""
import os
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

APP_NAME = os.getenv("APP_NAME", "FormaNew")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
BASE_URL = (os.getenv("BASE_URL") or "").rstrip("/")

# Database
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.getenv("DB_NAME", "formanew")

# Email (Postmark)
ENABLE_EMAIL_INTEGRATION = os.getenv("ENABLE_EMAIL_INTEGRATION", "false").lower() == "true"
POSTMARK_SERVER_TOKEN = os.getenv("POSTMARK_SERVER_TOKEN")
EMAIL_SENDER = os.getenv("EMAIL_SENDER")

# Storage (DigitalOcean Spaces, S3 compatible)
SPACES_KEY_ID = os.getenv("SPACES_KEY_ID")
SPACES_SECRET_KEY = os.getenv("SPACES_SECRET_KEY")
SPACES_BUCKET_NAME = os.getenv("SPACES_BUCKET_NAME")
SPACES_REGION = os.getenv("SPACES_REGION")

# Billing (Stripe)
STRIPE_SECRET_KEY = (os.getenv("STRIPE_SECRET_KEY") or "").strip()
STRIPE_FREE_PRICE_ID = os.getenv("STRIPE_FREE_PRICE_ID")
STRIPE_PRO_PRICE_ID = os.getenv("STRIPE_PRO_PRICE_ID")
STRIPE_PRO_GIFT_PRICE_ID = os.getenv("STRIPE_PRO_GIFT_PRICE_ID")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_PORTAL_CONFIG_ID = os.getenv("STRIPE_PORTAL_CONFIG_ID")

# Inference (chat-completions compatible endpoint)
DO_INFERENCE_API_KEY = os.getenv("DO_INFERENCE_API_KEY")
INFERENCE_BASE_URL = os.getenv("INFERENCE_BASE_URL", "https://inference.do-ai.run/v1")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_HOURS = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))
CLIENT_PORTAL_JWT_SECRET = os.getenv("CLIENT_PORTAL_JWT_SECRET", JWT_SECRET)
CLIENT_PORTAL_TOKEN_EXPIRY_MINUTES = int(os.getenv("CLIENT_PORTAL_TOKEN_EXPIRY_MINUTES", "60"))


def is_email_enabled() -> bool:
    return ENABLE_EMAIL_INTEGRATION


def has_ai_configured() -> bool:
    return bool(DO_INFERENCE_API_KEY)
