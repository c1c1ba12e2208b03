"""
Pricing primitives shared by the order and payment flows.

All money math runs on Decimal quantized to cents (ROUND_HALF_UP). Prices
always come from the catalog, never from the request body.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional

import config
from errors import ProductNotFound
from schemas import CartLine, OrderItem

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingRules:
    free_shipping_threshold: Decimal = config.FREE_SHIPPING_THRESHOLD
    flat_shipping_fee: Decimal = config.FLAT_SHIPPING_FEE
    tax_rate: Decimal = config.TAX_RATE
    points_per_currency_unit: int = config.POINTS_PER_CURRENCY_UNIT
    earn_currency_units_per_point: int = config.EARN_CURRENCY_UNITS_PER_POINT

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        if subtotal > self.free_shipping_threshold:
            return ZERO
        return money(self.flat_shipping_fee)

    def tax_for(self, taxable: Decimal) -> Decimal:
        return money(taxable * self.tax_rate)

    def points_value(self, points: int) -> Decimal:
        """Currency value of `points`, in the base currency"""
        return money(Decimal(points) / self.points_per_currency_unit)

    def points_for_value(self, value: Decimal) -> int:
        """Whole points worth at most `value`; fractional points are dropped"""
        points = (value * self.points_per_currency_unit).to_integral_value(rounding=ROUND_DOWN)
        return int(points)

    def points_earned_for(self, total: Decimal) -> int:
        if total <= 0:
            return 0
        points = (total / self.earn_currency_units_per_point).to_integral_value(rounding=ROUND_DOWN)
        return int(points)


@dataclass
class CurrencyConverter:
    """
    Converts between the base currency and any currency with a known rate.

    `rates` maps a currency code to how many base-currency units one unit of
    that currency is worth.
    """
    base_currency: str = config.BASE_CURRENCY
    rates: Dict[str, Decimal] = field(default_factory=lambda: dict(config.FX_RATES))
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def rate_for(self, currency: str) -> Decimal:
        currency = currency.upper()
        if currency == self.base_currency:
            return Decimal(1)
        try:
            return Decimal(self.rates[currency])
        except KeyError:
            raise ValueError(f"No exchange rate configured for {currency}")

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return money(amount)
        in_base = Decimal(amount) * self.rate_for(from_currency)
        return money(in_base / self.rate_for(to_currency))

    @staticmethod
    def to_minor_units(amount: Decimal) -> int:
        return int((money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


# Price ledger
class PricedCart(NamedTuple):
    subtotal: Decimal
    items: List[OrderItem]


PriceLookup = Callable[[str], Optional[Dict[str, Any]]]


def compute_subtotal(lines: Iterable[CartLine], price_lookup: PriceLookup) -> PricedCart:
    """
    Sum unit price x quantity over the cart using catalog prices.

    Raises ProductNotFound for the first line whose product cannot be
    resolved. The returned items freeze the resolved price for persistence.
    """
    subtotal = ZERO
    items: List[OrderItem] = []
    for line in lines:
        product = price_lookup(line.product_id)
        if not product:
            raise ProductNotFound(line.product_id)
        unit_price = money(product["price"])
        subtotal += unit_price * line.quantity
        images = product.get("images") or []
        items.append(OrderItem(
            product_id=line.product_id,
            title=product.get("title", ""),
            image=images[0] if images else None,
            quantity=line.quantity,
            size=line.size,
            color=line.color,
            price=float(unit_price),
        ))
    return PricedCart(money(subtotal), items)
