"""
Service container built once at startup and shared by the route handlers.
"""
from dataclasses import dataclass
from typing import Optional

import config
from coupons import CouponEvaluator
from loyalty import LoyaltyLedger
from notifications import EmailSender
from payments import RazorpayGateway
from pricing import CurrencyConverter, PricingRules
from settlement import OrderSettlement
from stores import AddressStore, CatalogStore, OrderStore, UserStore, WishlistStore


@dataclass
class Services:
    database: object
    users: UserStore
    catalog: CatalogStore
    orders: OrderStore
    coupons: CouponEvaluator
    ledger: LoyaltyLedger
    settlement: OrderSettlement
    gateway: object
    mailer: object
    wishlist: WishlistStore
    addresses: AddressStore
    charge_currency: str = config.CHARGE_CURRENCY


def build_services(database, gateway=None, mailer=None, rules: Optional[PricingRules] = None,
                   converter: Optional[CurrencyConverter] = None,
                   charge_currency: str = config.CHARGE_CURRENCY) -> Services:
    users = UserStore(database)
    catalog = CatalogStore(database)
    orders = OrderStore(database)
    coupons = CouponEvaluator(database)
    ledger = LoyaltyLedger(database)
    gateway = gateway or RazorpayGateway(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET)
    mailer = mailer or EmailSender(config.RESEND_API_KEY, config.MAIL_FROM)
    settlement = OrderSettlement(
        catalog, coupons, ledger, orders,
        rules=rules or PricingRules(),
        converter=converter or CurrencyConverter(),
        mailer=mailer,
    )
    return Services(
        database=database,
        users=users,
        catalog=catalog,
        orders=orders,
        coupons=coupons,
        ledger=ledger,
        settlement=settlement,
        gateway=gateway,
        mailer=mailer,
        wishlist=WishlistStore(database),
        addresses=AddressStore(database),
        charge_currency=charge_currency.upper(),
    )
