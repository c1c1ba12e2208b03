import os
from decimal import Decimal
from typing import Dict


def _parse_rates(raw: str) -> Dict[str, Decimal]:
    # "USD:83,EUR:90" -> {"USD": Decimal("83"), "EUR": Decimal("90")}
    rates: Dict[str, Decimal] = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        code, _, value = pair.partition(":")
        rates[code.strip().upper()] = Decimal(value.strip())
    return rates


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Security/JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
TOKEN_TTL_DAYS = int(os.getenv("TOKEN_TTL_DAYS", 7))

# Pricing
BASE_CURRENCY = os.getenv("BASE_CURRENCY", "INR").upper()
CHARGE_CURRENCY = os.getenv("CHARGE_CURRENCY", "INR").upper()
FX_RATES = _parse_rates(os.getenv("FX_RATES", "USD:83,EUR:90,GBP:105"))
FREE_SHIPPING_THRESHOLD = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "100"))
FLAT_SHIPPING_FEE = Decimal(os.getenv("FLAT_SHIPPING_FEE", "10"))
TAX_RATE = Decimal(os.getenv("TAX_RATE", "0.08"))

# Loyalty
POINTS_PER_CURRENCY_UNIT = int(os.getenv("POINTS_PER_CURRENCY_UNIT", 100))
EARN_CURRENCY_UNITS_PER_POINT = int(os.getenv("EARN_CURRENCY_UNITS_PER_POINT", 10))

# Payment gateway
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")

# Email
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
MAIL_FROM = os.getenv("MAIL_FROM", "onboarding@resend.dev")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
