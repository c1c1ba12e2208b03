"""
Database Schemas for the Orephia storefront

Each Pydantic model maps to a MongoDB collection (lowercased class name).

Collections:
- user
- product
- coupon
- loyalty_transaction
- order
- wishlist_item
- address
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, EmailStr

DiscountType = Literal["percentage", "fixed"]
PaymentStatus = Literal["pending", "paid"]
OrderStatus = Literal["processing", "shipped", "delivered", "cancelled"]
LoyaltyType = Literal["earned", "redeemed"]


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    username: str = Field(..., min_length=3, max_length=50, description="Login name")
    email: EmailStr = Field(..., description="Email address")
    full_name: Optional[str] = Field(None, description="Full name")
    password_hash: str = Field(..., description="BCrypt password hash")
    is_admin: bool = Field(False, description="Admin user flag")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    title: str = Field(..., description="Product title")
    description: str = Field("", description="Product description")
    price: float = Field(..., ge=0, description="Unit price in the base currency")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    category: str = Field(..., description="Category: dresses, outerwear, bags, ...")
    designer: Optional[str] = Field(None, description="Designer label")
    stock: int = Field(0, ge=0, description="Units in stock")
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    featured: bool = Field(False, description="Shown on the homepage")
    external_id: Optional[str] = Field(None, description="Identifier in the synced external catalog")


class Coupon(BaseModel):
    """
    Coupons collection schema
    Collection name: "coupon"
    """
    code: str = Field(..., description="Unique code, stored uppercased")
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0, description="Percent for percentage coupons, amount for fixed")
    min_purchase: Optional[float] = Field(None, ge=0, description="Subtotal required to apply")
    max_discount: Optional[float] = Field(None, ge=0, description="Cap on percentage discounts")
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: int = Field(0, ge=0)
    expires_at: Optional[datetime] = None
    is_active: bool = True


class LoyaltyTransaction(BaseModel):
    """
    Loyalty ledger collection schema
    Collection name: "loyalty_transaction"

    Append-only. `points` is a positive magnitude; `type` gives the direction.
    """
    user_id: str
    type: LoyaltyType
    points: int = Field(..., gt=0)
    description: str
    order_id: Optional[str] = None


class CartLine(BaseModel):
    """Client-held cart entry; never persisted and never carries a price"""
    product_id: str
    quantity: int = Field(..., gt=0)
    size: Optional[str] = None
    color: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    title: str
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    color: Optional[str] = None
    price: float = Field(..., ge=0, description="Server-verified unit price at order time")


class ShippingAddress(BaseModel):
    full_name: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str
    phone: str


class Address(ShippingAddress):
    """
    Saved shipping addresses
    Collection name: "address"
    """
    user_id: str
    is_default: bool = Field(False, description="Preselected at checkout")


class WishlistItem(BaseModel):
    """
    Wishlist collection schema
    Collection name: "wishlist_item"
    """
    user_id: str
    product_id: str


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    user_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    currency: str
    subtotal: float = Field(..., ge=0)
    discount: float = Field(0.0, ge=0, description="Coupon discount")
    points_discount: float = Field(0.0, ge=0)
    shipping: float = Field(0.0, ge=0)
    tax: float = Field(0.0, ge=0)
    total: float = Field(..., ge=0)
    coupon_code: Optional[str] = None
    payment_status: PaymentStatus = "pending"
    order_status: OrderStatus = "processing"
    points_redeemed: int = Field(0, ge=0)
    points_earned: int = Field(0, ge=0)
    payment_reference: Optional[str] = None
    gateway_order_id: Optional[str] = None
