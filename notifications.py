"""
Transactional email through Resend.

Sending is fire-and-forget: failures are logged and never reach the caller.
"""
import logging
from html import escape
from typing import Any, Dict

import resend

logger = logging.getLogger(__name__)


class EmailSender:
    def __init__(self, api_key: str, sender: str):
        self.sender = sender
        self.enabled = bool(api_key)
        if self.enabled:
            resend.api_key = api_key

    def send(self, to: str, subject: str, html: str) -> None:
        if not self.enabled:
            logger.info("Email disabled, not sending %r to %s", subject, to)
            return
        try:
            resend.Emails.send({"from": self.sender, "to": [to], "subject": subject, "html": html})
        except Exception:
            logger.exception("Failed to send %r to %s", subject, to)

    def send_order_confirmation(self, to: str, order: Dict[str, Any]) -> None:
        order_id = str(order.get("_id", order.get("id", "")))
        currency = order.get("currency", "")
        rows = "".join(
            f"<tr><td>{escape(item['title'])}</td><td>{item['quantity']}</td>"
            f"<td>{currency} {item['price']:.2f}</td></tr>"
            for item in order.get("items", [])
        )
        html = (
            f"<h2>Thank you for your order</h2>"
            f"<p>Order #{order_id}</p>"
            f"<table>{rows}</table>"
            f"<p>Total: {currency} {order.get('total', 0):.2f}</p>"
        )
        self.send(to, "Your Orephia order confirmation", html)
