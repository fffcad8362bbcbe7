"""
Runtime configuration

All settings come from the environment (a local .env file is loaded first).
"""
import json
import os
import logging

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


# Database
DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("MONGODB_URI")
DATABASE_NAME = os.getenv("DATABASE_NAME") or os.getenv("MONGODB_DB") or "bricklink"

PRODUCTS_COLLECTION = os.getenv("PRODUCTS_COLLECTION", "products")
MINIFIG_COLLECTION = os.getenv("MINIFIG_COLLECTION", "products_minifig")
ENRICHED_COLLECTION = os.getenv("ENRICHED_COLLECTION", "products_minifig_enriched")
ORDERS_COLLECTION = os.getenv("ORDERS_COLLECTION", "orders")
USERS_COLLECTION = os.getenv("USERS_COLLECTION", "user")

# Site
SITE_URL = (os.getenv("SITE_URL") or "http://localhost:3000").strip().rstrip("/")
BRAND_NAME = os.getenv("BRAND_NAME", "1 Brick at a Time")
CURRENCY = (os.getenv("CURRENCY") or "AUD").upper()

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRES_MINUTES = _int("JWT_EXPIRES_MINUTES", 60 * 12)
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN") or ""

# PayPal
PAYPAL_ENV = (os.getenv("PAYPAL_ENV") or "sandbox").lower()
PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID") or ""
PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET") or ""
PAYPAL_TEST_MODE = (os.getenv("PAYPAL_TEST_MODE") or "").strip() == "1"

# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")

# Bank transfer
BANK_ACCOUNT_NAME = os.getenv("BANK_ACCOUNT_NAME", "")
BANK_BSB = os.getenv("BANK_BSB", "")
BANK_ACCOUNT_NUMBER = os.getenv("BANK_ACCOUNT_NUMBER", "")
BANK_REFERENCE_HINT = os.getenv("BANK_REFERENCE_HINT", "Use your order number as reference")
BANK_HOLD_HOURS = _int("BANK_HOLD_HOURS", 48)

# BrickLink
BL_KEY = os.getenv("BL_KEY", "")
BL_SECRET = os.getenv("BL_SECRET", "")
BL_TOKEN = os.getenv("BL_TOKEN", "")
BL_TOKEN_SECRET = os.getenv("BL_TOKEN_SECRET", "")
BL_API_BASE = os.getenv("BL_API_BASE", "https://api.bricklink.com/api/store/v1")
BL_TIMEOUT_SECONDS = _float("BL_TIMEOUT_SECONDS", 20.0)
BL_MAX_RETRIES = _int("BL_MAX_RETRIES", 2)

# SMTP
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = _int("SMTP_PORT", 587)
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SALES_EMAIL_TO = os.getenv("SALES_EMAIL_TO", "")
SALES_EMAIL_FROM = os.getenv("SALES_EMAIL_FROM") or SALES_EMAIL_TO

LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()

DEFAULT_POSTAGE_OPTIONS = {
    "letter": {"label": "Large letter (untracked)", "price": 3.50},
    "parcel": {"label": "Tracked parcel", "price": 9.95},
    "pickup": {"label": "Local pickup", "price": 0.0},
}


def _load_postage_options() -> dict:
    raw = (os.getenv("POSTAGE_OPTIONS_JSON") or "").strip()
    if not raw:
        return dict(DEFAULT_POSTAGE_OPTIONS)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("POSTAGE_OPTIONS_JSON is not valid JSON; using defaults")
        return dict(DEFAULT_POSTAGE_OPTIONS)
    if not isinstance(parsed, dict):
        return dict(DEFAULT_POSTAGE_OPTIONS)
    return parsed


POSTAGE_OPTIONS = _load_postage_options()


def paypal_base_url() -> str:
    if PAYPAL_ENV == "live":
        return "https://api-m.paypal.com"
    return "https://api-m.sandbox.paypal.com"


def mail_configured() -> bool:
    return bool(SMTP_HOST and SMTP_PORT and SMTP_USER and SMTP_PASS and SALES_EMAIL_TO)
