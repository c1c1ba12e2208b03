"""
Coupon validation and discount computation.

Validation never mutates the coupon; usage is recorded separately once an
order has been stored.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING

from database import create_document
from errors import (
    CouponExhausted,
    CouponExpired,
    CouponInactive,
    CouponMinimumNotMet,
    CouponNotFound,
    InvalidCouponRequest,
)
from pricing import ZERO, money
from schemas import Coupon

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CouponEvaluator:
    def __init__(self, database):
        self.collection = database["coupon"]
        self.database = database

    def find(self, code: str) -> Optional[dict]:
        return self.collection.find_one({"code": normalize_code(code)})

    def validate(self, code: str, subtotal: Decimal, now: Optional[datetime] = None) -> dict:
        """Return the coupon document if it may be applied to `subtotal`, else raise a CouponError"""
        if not code or not isinstance(code, str):
            raise InvalidCouponRequest("Invalid coupon code")
        now = now or datetime.now(timezone.utc)

        coupon = self.find(code)
        if not coupon:
            raise CouponNotFound(normalize_code(code))
        code = coupon["code"]
        if not coupon.get("is_active", False):
            raise CouponInactive(code)
        expires_at = coupon.get("expires_at")
        if expires_at is not None and _as_utc(expires_at) < now:
            raise CouponExpired(code)
        usage_limit = coupon.get("usage_limit")
        if usage_limit and coupon.get("used_count", 0) >= usage_limit:
            raise CouponExhausted(code)
        min_purchase = coupon.get("min_purchase")
        if min_purchase is not None and subtotal < money(min_purchase):
            raise CouponMinimumNotMet(code, money(min_purchase))
        return coupon

    @staticmethod
    def compute_discount(coupon: Dict[str, Any], subtotal: Decimal) -> Decimal:
        """
        Percentage coupons take value% of the subtotal, capped at max_discount
        when set. Fixed coupons are worth their value; callers clamp the
        result to the subtotal.
        """
        value = Decimal(str(coupon.get("discount_value", 0)))
        if coupon.get("discount_type") == "percentage":
            discount = money(subtotal * value / 100)
            max_discount = coupon.get("max_discount")
            if max_discount and discount > money(max_discount):
                discount = money(max_discount)
            return discount
        if coupon.get("discount_type") == "fixed":
            return money(value)
        return ZERO

    def record_usage(self, coupon: Dict[str, Any]) -> bool:
        """
        Count one use of `coupon`. The increment only lands while used_count
        is below the stored usage limit; returns False when it did not.
        """
        current = self.collection.find_one({"_id": coupon["_id"]}, {"usage_limit": 1})
        if current is None:
            logger.warning("Coupon %s vanished before its usage was recorded", coupon.get("code"))
            return False
        query: Dict[str, Any] = {"_id": coupon["_id"]}
        usage_limit = current.get("usage_limit")
        if usage_limit:
            query["used_count"] = {"$lt": usage_limit}
        result = self.collection.update_one(query, {"$inc": {"used_count": 1}})
        if result.matched_count == 0:
            logger.warning("Coupon %s is at its usage limit of %s; usage not recorded",
                           coupon.get("code"), usage_limit)
            return False
        return True

    # Admin
    def list_all(self) -> List[dict]:
        return list(self.collection.find({}).sort("code", ASCENDING))

    def create(self, coupon: Coupon) -> str:
        coupon = coupon.model_copy(update={"code": normalize_code(coupon.code)})
        if self.find(coupon.code):
            raise InvalidCouponRequest(f"Coupon {coupon.code} already exists")
        return create_document("coupon", coupon, database=self.database)

    def update(self, code: str, updates: Dict[str, Any]) -> bool:
        updates = {**updates, "updated_at": datetime.now(timezone.utc)}
        if "code" in updates:
            updates["code"] = normalize_code(updates["code"])
            if updates["code"] != normalize_code(code) and self.find(updates["code"]):
                raise InvalidCouponRequest(f"Coupon {updates['code']} already exists")
        result = self.collection.update_one({"code": normalize_code(code)}, {"$set": updates})
        return result.matched_count > 0

    def delete(self, code: str) -> bool:
        return self.collection.delete_one({"code": normalize_code(code)}).deleted_count > 0

    def count(self) -> int:
        return self.collection.count_documents({})
