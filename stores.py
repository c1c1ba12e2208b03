"""
Plain persistence for users, products, orders, wishlists and saved
addresses on top of pymongo.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING

from database import create_document
from schemas import Address, Order, Product, User, WishlistItem


def to_object_id(value: str) -> Optional[ObjectId]:
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize_doc(doc: Dict[str, Any]):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    # Convert datetime
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


class UserStore:
    def __init__(self, database):
        self.collection = database["user"]
        self.database = database

    def get(self, user_id: str) -> Optional[dict]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def find_by_email(self, email: str) -> Optional[dict]:
        return self.collection.find_one({"email": email})

    def find_by_username(self, username: str) -> Optional[dict]:
        return self.collection.find_one({"username": username})

    def create(self, user: User) -> str:
        return create_document("user", user, database=self.database)

    def count(self) -> int:
        return self.collection.count_documents({})


class CatalogStore:
    def __init__(self, database):
        self.collection = database["product"]
        self.database = database

    def get_product(self, product_id: str) -> Optional[dict]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def search(self, search: Optional[str] = None, category: Optional[str] = None, limit: int = 100) -> List[dict]:
        query: Dict[str, Any] = {}
        if search:
            query["$or"] = [
                {"title": {"$regex": search, "$options": "i"}},
                {"description": {"$regex": search, "$options": "i"}},
                {"designer": {"$regex": search, "$options": "i"}},
            ]
        if category and category.lower() != "all":
            query["category"] = {"$regex": f"^{category}$", "$options": "i"}
        return list(self.collection.find(query).limit(limit))

    def create(self, product: Product) -> str:
        return create_document("product", product, database=self.database)

    def update(self, product_id: str, updates: Dict[str, Any]) -> bool:
        oid = to_object_id(product_id)
        if oid is None:
            return False
        updates = {**updates, "updated_at": datetime.now(timezone.utc)}
        result = self.collection.update_one({"_id": oid}, {"$set": updates})
        return result.matched_count > 0

    def delete(self, product_id: str) -> bool:
        oid = to_object_id(product_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count > 0

    def count(self) -> int:
        return self.collection.count_documents({})


class OrderStore:
    def __init__(self, database):
        self.collection = database["order"]
        self.database = database

    def insert(self, order: Order) -> str:
        return create_document("order", order, database=self.database)

    def get(self, order_id: str) -> Optional[dict]:
        oid = to_object_id(order_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def list_for_user(self, user_id: str) -> List[dict]:
        return list(self.collection.find({"user_id": user_id}).sort("created_at", DESCENDING))

    def list_all(self, limit: int = 200) -> List[dict]:
        return list(self.collection.find({}).sort("created_at", DESCENDING).limit(limit))

    def find_by_payment_reference(self, reference: str) -> Optional[dict]:
        return self.collection.find_one({"payment_reference": reference})

    def update(self, order_id: str, updates: Dict[str, Any], expected: Optional[Dict[str, Any]] = None) -> bool:
        """Set fields on an order; `expected` adds match conditions so the write only lands on that state"""
        oid = to_object_id(order_id)
        if oid is None:
            return False
        query = {"_id": oid, **(expected or {})}
        updates = {**updates, "updated_at": datetime.now(timezone.utc)}
        return self.collection.update_one(query, {"$set": updates}).matched_count > 0

    def count(self) -> int:
        return self.collection.count_documents({})


class WishlistStore:
    def __init__(self, database):
        self.collection = database["wishlist_item"]
        self.database = database

    def list_for_user(self, user_id: str) -> List[dict]:
        return list(self.collection.find({"user_id": user_id}).sort("created_at", DESCENDING))

    def add(self, user_id: str, product_id: str) -> dict:
        """Add a product to the user's wishlist; adding it twice returns the existing entry"""
        existing = self.collection.find_one({"user_id": user_id, "product_id": product_id})
        if existing:
            return existing
        item_id = create_document("wishlist_item", WishlistItem(user_id=user_id, product_id=product_id),
                                  database=self.database)
        return self.collection.find_one({"_id": ObjectId(item_id)})

    def remove(self, user_id: str, product_id: str) -> bool:
        return self.collection.delete_many({"user_id": user_id, "product_id": product_id}).deleted_count > 0


class AddressStore:
    def __init__(self, database):
        self.collection = database["address"]
        self.database = database

    def list_for_user(self, user_id: str) -> List[dict]:
        return list(self.collection.find({"user_id": user_id}).sort([("is_default", DESCENDING),
                                                                     ("created_at", DESCENDING)]))

    def get_for_user(self, address_id: str, user_id: str) -> Optional[dict]:
        oid = to_object_id(address_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid, "user_id": user_id})

    def create(self, address: Address) -> dict:
        if address.is_default:
            self.collection.update_many({"user_id": address.user_id, "is_default": True},
                                        {"$set": {"is_default": False}})
        address_id = create_document("address", address, database=self.database)
        return self.collection.find_one({"_id": ObjectId(address_id)})
