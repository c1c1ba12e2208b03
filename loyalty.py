"""
Loyalty points ledger.

The balance is never stored: it is the sum of a user's earned entries minus
the sum of their redeemed entries in the append-only `loyalty_transaction`
collection.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from pymongo import DESCENDING

from database import create_document
from errors import InsufficientPoints
from schemas import LoyaltyTransaction

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


class LoyaltyLedger:
    def __init__(self, database):
        self.collection = database["loyalty_transaction"]
        self.database = database
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, user_id: str) -> threading.Lock:
        # unrelated users may share a stripe
        return self._locks[hash(user_id) % LOCK_STRIPES]

    def get_balance(self, user_id: str) -> int:
        balance = 0
        for txn in self.collection.find({"user_id": user_id}, {"type": 1, "points": 1}):
            if txn["type"] == "earned":
                balance += txn["points"]
            elif txn["type"] == "redeemed":
                balance -= txn["points"]
        return balance

    def transactions(self, user_id: str) -> List[dict]:
        return list(self.collection.find({"user_id": user_id}).sort("created_at", DESCENDING))

    def _append(self, user_id: str, type_: str, points: int, description: str, order_id: Optional[str]) -> str:
        txn = LoyaltyTransaction(user_id=user_id, type=type_, points=points, description=description,
                                 order_id=order_id)
        return create_document("loyalty_transaction", txn, database=self.database)

    def earn(self, user_id: str, points: int, description: str, order_id: Optional[str] = None) -> str:
        if points <= 0:
            raise ValueError("points must be positive")
        txn_id = self._append(user_id, "earned", points, description, order_id)
        logger.info("Credited %s points to user %s (%s)", points, user_id, description)
        return txn_id

    def redeem(self, user_id: str, points: int, description: str, order_id: Optional[str] = None) -> str:
        """
        Append a redemption of `points` and return its transaction id.

        The balance check and the append run under a per-user lock so two
        concurrent redemptions cannot both spend the same balance.
        """
        if points <= 0:
            raise ValueError("points must be positive")
        with self._lock_for(user_id):
            available = self.get_balance(user_id)
            if points > available:
                raise InsufficientPoints(points, available)
            txn_id = self._append(user_id, "redeemed", points, description, order_id)
        logger.info("Redeemed %s points for user %s", points, user_id)
        return txn_id

    def link_to_order(self, txn_id: str, order_id: str, description: str) -> None:
        self.collection.update_one(
            {"_id": ObjectId(txn_id)},
            {"$set": {"order_id": order_id, "description": description,
                      "updated_at": datetime.now(timezone.utc)}},
        )

    def reverse_redemption(self, txn_id: str, user_id: str, points: int, description: str) -> None:
        """
        Undo a redemption so the balance is exactly what it was before it.

        The redeemed row is deleted; if it cannot be removed a compensating
        earned entry of the same magnitude is appended instead.
        """
        deleted = self.collection.delete_one(
            {"_id": ObjectId(txn_id), "user_id": user_id, "type": "redeemed"}
        ).deleted_count
        if deleted:
            logger.info("Reversed redemption %s of %s points for user %s", txn_id, points, user_id)
            return
        logger.warning("Redemption %s not found, crediting %s points back to user %s", txn_id, points, user_id)
        self.earn(user_id, points, description)
