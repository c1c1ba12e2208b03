"""
Order settlement: turns a cart into a priced, persisted order.

Pricing order of operations:
    subtotal (catalog prices)
    - coupon discount      (clamped to the subtotal)
    - points discount      (clamped to what the coupon leaves)
    + shipping             (flat fee unless the subtotal clears the threshold)
    + tax                  (on the discounted subtotal)
    = total

Point redemption happens before the order insert. If the insert fails the
redemption is reversed before the error propagates.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from errors import (
    CouponError,
    IllegalStatusTransition,
    InsufficientPoints,
    InvalidCart,
    OrderNotFound,
    PaymentAlreadySettled,
    PaymentMismatch,
)
from pricing import ZERO, CurrencyConverter, PricingRules, compute_subtotal, money
from schemas import CartLine, Order, OrderItem, ShippingAddress

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered", "cancelled"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}


@dataclass
class SettlementQuote:
    items: List[OrderItem]
    currency: str
    subtotal: Decimal
    discount: Decimal = ZERO
    coupon: Optional[dict] = None
    points_requested: int = 0
    points_redeemed: int = 0
    points_discount: Decimal = ZERO
    shipping: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    notes: List[str] = field(default_factory=list)

    @property
    def coupon_code(self) -> Optional[str]:
        if self.coupon is None or self.discount <= 0:
            return None
        return self.coupon["code"]


class OrderSettlement:
    def __init__(self, catalog, coupons, ledger, orders, rules: PricingRules = None,
                 converter: CurrencyConverter = None, mailer=None, currency: Optional[str] = None):
        self.catalog = catalog
        self.coupons = coupons
        self.ledger = ledger
        self.orders = orders
        self.rules = rules or PricingRules()
        self.converter = converter or CurrencyConverter()
        self.mailer = mailer
        self.currency = (currency or self.converter.base_currency).upper()

    # Pricing
    def quote(self, user_id: str, lines: Iterable[CartLine], coupon_code: Optional[str] = None,
              points: int = 0, now: Optional[datetime] = None) -> SettlementQuote:
        """Price a cart without side effects"""
        lines = list(lines)
        if not lines:
            raise InvalidCart()
        priced = compute_subtotal(lines, self.catalog.get_product)
        quote = SettlementQuote(items=priced.items, currency=self.currency, subtotal=priced.subtotal)

        if coupon_code:
            self._apply_coupon(quote, coupon_code, now)

        if points and points > 0:
            self._apply_points(quote, user_id, points)

        taxable = quote.subtotal - quote.discount - quote.points_discount
        quote.shipping = self.rules.shipping_for(quote.subtotal)
        quote.tax = self.rules.tax_for(taxable)
        quote.total = money(taxable + quote.shipping + quote.tax)
        return quote

    def _apply_coupon(self, quote: SettlementQuote, coupon_code: str, now: Optional[datetime]) -> None:
        try:
            coupon = self.coupons.validate(coupon_code, quote.subtotal, now)
        except CouponError as exc:
            # An unusable coupon never blocks the order; it just stops discounting
            logger.warning("Coupon %s not applied: %s", coupon_code, exc.message)
            quote.notes.append(exc.message)
            return
        discount = self.coupons.compute_discount(coupon, quote.subtotal)
        quote.coupon = coupon
        quote.discount = min(discount, quote.subtotal)

    def _apply_points(self, quote: SettlementQuote, user_id: str, points: int) -> None:
        available = self.ledger.get_balance(user_id)
        if points > available:
            raise InsufficientPoints(points, available)

        base = self.converter.base_currency
        requested_value = self.converter.convert(self.rules.points_value(points), base, quote.currency)
        ceiling = quote.subtotal - quote.discount
        redeemed = points
        points_discount = requested_value
        if requested_value > ceiling:
            redeemed = self.rules.points_for_value(self.converter.convert(ceiling, quote.currency, base))
            points_discount = min(
                ceiling, self.converter.convert(self.rules.points_value(redeemed), base, quote.currency)
            )
            logger.info("Clamped redemption for user %s from %s to %s points", user_id, points, redeemed)

        quote.points_requested = points
        quote.points_redeemed = redeemed
        quote.points_discount = money(points_discount) if redeemed else ZERO

    def total_in_base(self, total: Decimal, currency: Optional[str] = None) -> Decimal:
        return self.converter.convert(total, currency or self.currency, self.converter.base_currency)

    def charge_amount(self, quote: SettlementQuote, charge_currency: str) -> Tuple[Decimal, str]:
        charge_currency = charge_currency.upper()
        return self.converter.convert(quote.total, quote.currency, charge_currency), charge_currency

    # Order creation
    def place_order(self, user_id: str, lines: Iterable[CartLine], shipping_address: ShippingAddress,
                    coupon_code: Optional[str] = None, points: int = 0, payment_status: str = "pending",
                    payment_reference: Optional[str] = None, gateway_order_id: Optional[str] = None,
                    notify_email: Optional[str] = None, now: Optional[datetime] = None) -> dict:
        quote = self.quote(user_id, lines, coupon_code, points, now)

        paid = payment_status == "paid"
        points_earned = self.rules.points_earned_for(self.total_in_base(quote.total)) if paid else 0
        order = Order(
            user_id=user_id,
            items=quote.items,
            shipping_address=shipping_address,
            currency=quote.currency,
            subtotal=float(quote.subtotal),
            discount=float(quote.discount),
            points_discount=float(quote.points_discount),
            shipping=float(quote.shipping),
            tax=float(quote.tax),
            total=float(quote.total),
            coupon_code=quote.coupon_code,
            payment_status="paid" if paid else "pending",
            order_status="processing",
            points_redeemed=quote.points_redeemed,
            points_earned=points_earned,
            payment_reference=payment_reference,
            gateway_order_id=gateway_order_id,
        )

        redemption_id = None
        if quote.points_redeemed > 0:
            redemption_id = self.ledger.redeem(
                user_id, quote.points_redeemed, "Points redeemed at checkout (order pending)"
            )

        try:
            order_id = self.orders.insert(order)
        except Exception:
            if redemption_id is not None:
                self._reverse_redemption(user_id, redemption_id, quote.points_redeemed)
            raise

        if redemption_id is not None:
            try:
                self.ledger.link_to_order(redemption_id, order_id, f"Points redeemed for order #{order_id}")
            except Exception:
                logger.exception("Failed to link redemption %s to order %s", redemption_id, order_id)

        if quote.coupon_code:
            try:
                self.coupons.record_usage(quote.coupon)
            except Exception:
                logger.exception("Error updating usage for coupon %s", quote.coupon_code)

        if paid and points_earned > 0:
            self._credit_points(user_id, points_earned, order_id)

        created = self.orders.get(order_id)
        if notify_email and self.mailer is not None:
            self.mailer.send_order_confirmation(notify_email, created)
        return created

    def _reverse_redemption(self, user_id: str, redemption_id: str, points: int) -> None:
        try:
            self.ledger.reverse_redemption(
                redemption_id, user_id, points, "Refund for failed order"
            )
        except Exception:
            logger.critical(
                "Could not refund %s points to user %s after failed order (redemption %s); "
                "manual reconciliation required", points, user_id, redemption_id, exc_info=True,
            )

    def _credit_points(self, user_id: str, points: int, order_id: str) -> None:
        try:
            self.ledger.earn(user_id, points, f"Earned from order #{order_id}", order_id)
        except Exception:
            logger.exception("Failed to credit %s points for order %s", points, order_id)

    # Lifecycle
    def _get(self, order_id: str) -> dict:
        order = self.orders.get(order_id)
        if not order:
            raise OrderNotFound(order_id)
        return order

    def update_status(self, order_id: str, new_status: str) -> dict:
        order = self._get(order_id)
        current = order.get("order_status", "processing")
        if new_status not in ORDER_TRANSITIONS.get(current, frozenset()):
            raise IllegalStatusTransition(current, new_status)
        if not self.orders.update(order_id, {"order_status": new_status}, expected={"order_status": current}):
            # Someone else moved it first
            raise IllegalStatusTransition(self._get(order_id).get("order_status"), new_status)
        return self._get(order_id)

    def settle_payment(self, order_id: str, payment_reference: Optional[str] = None,
                       gateway_order_id: Optional[str] = None) -> dict:
        """
        Mark a pending order paid and credit the points it earns.

        When `gateway_order_id` is given the order must have been placed
        against that gateway order. A payment reference settles at most one
        order.
        """
        order = self._get(order_id)
        if order.get("payment_status") == "paid":
            raise PaymentAlreadySettled(order_id)

        expected = {"payment_status": "pending"}
        if gateway_order_id is not None:
            if order.get("gateway_order_id") != gateway_order_id:
                raise PaymentMismatch(order_id)
            expected["gateway_order_id"] = gateway_order_id
        if payment_reference:
            other = self.orders.find_by_payment_reference(payment_reference)
            if other is not None and other["_id"] != order["_id"]:
                raise PaymentMismatch(order_id, f"Payment {payment_reference} is already applied to another order")

        total = money(order["total"])
        points_earned = self.rules.points_earned_for(self.total_in_base(total, order.get("currency")))
        updates = {"payment_status": "paid", "points_earned": points_earned}
        if payment_reference:
            updates["payment_reference"] = payment_reference
        if not self.orders.update(order_id, updates, expected=expected):
            raise PaymentAlreadySettled(order_id)

        if points_earned > 0:
            self._credit_points(order["user_id"], points_earned, order_id)
        return self._get(order_id)


