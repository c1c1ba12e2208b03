"""
Razorpay payment gateway adapter.

Only two operations are used: creating a gateway order (the charge the
customer pays against) and verifying the signature the checkout widget
returns after payment.
"""
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

import requests

from errors import PaymentGatewayError

logger = logging.getLogger(__name__)

RAZORPAY_API = "https://api.razorpay.com/v1"


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, session: Optional[requests.Session] = None,
                 timeout: float = 15.0):
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (key_id, key_secret)

    def create_charge(self, amount_minor_units: int, currency: str, receipt: str,
                      notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        options = {
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": receipt[:40],
            "notes": notes or {},
        }
        try:
            response = self.session.post(f"{RAZORPAY_API}/orders", json=options, timeout=self.timeout)
            response.raise_for_status()
            gateway_order = response.json()
        except requests.RequestException as e:
            logger.exception("Razorpay order creation failed")
            raise PaymentGatewayError(f"Failed to create payment order: {e}")
        return {
            "charge_id": gateway_order["id"],
            "amount": gateway_order["amount"],
            "currency": gateway_order["currency"],
        }

    def expected_signature(self, gateway_order_id: str, payment_id: str) -> str:
        message = f"{gateway_order_id}|{payment_id}".encode()
        return hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            logger.error("RAZORPAY_KEY_SECRET is not configured, rejecting payment signature")
            return False
        valid = hmac.compare_digest(self.expected_signature(gateway_order_id, payment_id), signature or "")
        if not valid:
            logger.warning("Invalid payment signature for gateway order %s", gateway_order_id)
        return valid
