import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from jose import jwt, JWTError
from passlib.context import CryptContext

import config
from coupons import normalize_code
from database import db
from errors import InvalidCouponRequest, StoreError
from pricing import CurrencyConverter, compute_subtotal
from schemas import (
    Address as AddressSchema,
    CartLine,
    Coupon as CouponSchema,
    DiscountType,
    PaymentStatus,
    Product as ProductSchema,
    ShippingAddress,
    User as UserSchema,
)
from services import Services, build_services
from stores import serialize_doc

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# App init
app = FastAPI(title="Orephia Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=500, detail="Database not connected")
    return services


# Auth helpers
def create_token(user: dict):
    payload = {
        "sub": str(user["_id"]),
        "username": user.get("username"),
        "is_admin": user.get("is_admin", False),
        "exp": datetime.now(timezone.utc) + timedelta(days=config.TOKEN_TTL_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def get_current_user(authorization: Optional[str] = Header(None), services: Services = Depends(get_services)):
    if not authorization:
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = authorization.replace("Bearer ", "").strip()
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = services.users.get(payload.get("sub") or "")
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token user")
    return user


def require_admin(user=Depends(get_current_user)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def public_user(user: dict) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "username": user["username"],
        "email": user["email"],
        "full_name": user.get("full_name"),
        "is_admin": user.get("is_admin", False),
    }


# Request models
class SignupRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class ProductUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = None
    category: Optional[str] = None
    designer: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    featured: Optional[bool] = None


class OrderCreateRequest(BaseModel):
    items: List[CartLine]
    shipping_address: Optional[ShippingAddress] = None
    address_id: Optional[str] = None
    coupon_code: Optional[str] = None
    points_redeemed: int = Field(0, ge=0)
    payment_status: PaymentStatus = "pending"
    payment_reference: Optional[str] = None
    gateway_order_id: Optional[str] = None


class CouponValidateRequest(BaseModel):
    code: Optional[str] = None
    items: List[CartLine] = []


class ChargeCreateRequest(BaseModel):
    items: List[CartLine]
    coupon_code: Optional[str] = None
    points_redeemed: int = Field(0, ge=0)
    address_id: Optional[str] = None


class PaymentVerifyRequest(BaseModel):
    gateway_order_id: str
    payment_id: str
    signature: str
    order_id: Optional[str] = None


class CouponUpdateRequest(BaseModel):
    code: Optional[str] = Field(None, min_length=1)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    min_purchase: Optional[float] = Field(None, ge=0)
    max_discount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class OrderStatusRequest(BaseModel):
    order_status: str


class PaymentSettleRequest(BaseModel):
    payment_reference: Optional[str] = None


class WishlistAddRequest(BaseModel):
    product_id: str


class AddressCreateRequest(ShippingAddress):
    is_default: bool = False


# Routes
@app.get("/")
def root():
    return {"message": "Orephia Storefront API running"}


@app.get("/test")
def test_database(request: Request):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    services = getattr(request.app.state, "services", None)
    if services is None:
        return response
    database = services.database
    response["database"] = "✅ Available"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = getattr(database, "name", None)
    response["connection_status"] = "Connected"
    try:
        response["collections"] = database.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# Auth
@app.post("/api/auth/signup", status_code=201)
def signup(req: SignupRequest, services: Services = Depends(get_services)):
    if services.users.find_by_email(req.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    if services.users.find_by_username(req.username):
        raise HTTPException(status_code=400, detail="Username already taken")
    user = UserSchema(
        username=req.username,
        email=req.email,
        full_name=req.full_name,
        password_hash=pwd_context.hash(req.password),
        is_admin=False,
    )
    user_id = services.users.create(user)
    created = services.users.get(user_id)
    return {"token": create_token(created), "user": public_user(created)}


@app.post("/api/auth/login")
def login(req: LoginRequest, services: Services = Depends(get_services)):
    user = services.users.find_by_username(req.username)
    if not user or not pwd_context.verify(req.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"token": create_token(user), "user": public_user(user)}


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return public_user(user)


# Products
@app.get("/api/products")
def list_products(search: Optional[str] = None, category: Optional[str] = None,
                  services: Services = Depends(get_services)):
    return [serialize_doc(p) for p in services.catalog.search(search, category)]


@app.get("/api/products/{product_id}")
def get_product(product_id: str, services: Services = Depends(get_services)):
    p = services.catalog.get_product(product_id)
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(p)


@app.post("/api/products", status_code=201)
def create_product(req: ProductSchema, admin=Depends(require_admin), services: Services = Depends(get_services)):
    product_id = services.catalog.create(req)
    return serialize_doc(services.catalog.get_product(product_id))


@app.put("/api/products/{product_id}")
def update_product(product_id: str, req: ProductUpdateRequest, admin=Depends(require_admin),
                   services: Services = Depends(get_services)):
    updates = {k: v for k, v in req.model_dump().items() if v is not None}
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")
    if not services.catalog.update(product_id, updates):
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(services.catalog.get_product(product_id))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    if not services.catalog.delete(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return {"deleted": True}


# Orders
def saved_address(services: Services, user_id: str, address_id: str) -> dict:
    address = services.addresses.get_for_user(address_id, user_id)
    if not address:
        raise HTTPException(status_code=404, detail="Address not found")
    return address


@app.post("/api/orders", status_code=201)
def create_order(req: OrderCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    user_id = str(user["_id"])
    shipping_address = req.shipping_address
    if shipping_address is None:
        if not req.address_id:
            raise HTTPException(status_code=400, detail="Shipping address required")
        shipping_address = ShippingAddress(**saved_address(services, user_id, req.address_id))
    order = services.settlement.place_order(
        user_id,
        req.items,
        shipping_address,
        coupon_code=req.coupon_code,
        points=req.points_redeemed,
        payment_status=req.payment_status,
        payment_reference=req.payment_reference,
        gateway_order_id=req.gateway_order_id,
        notify_email=user.get("email"),
    )
    return serialize_doc(order)


@app.get("/api/orders")
def list_orders(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return [serialize_doc(o) for o in services.orders.list_for_user(str(user["_id"]))]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    order = services.orders.get(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order["user_id"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Forbidden")
    return serialize_doc(order)


# Coupons
@app.post("/api/coupons/validate")
def validate_coupon(req: CouponValidateRequest, services: Services = Depends(get_services)):
    try:
        if not req.code:
            raise InvalidCouponRequest("Invalid coupon code")
        if not req.items:
            raise InvalidCouponRequest("Invalid cart items")
        priced = compute_subtotal(req.items, services.catalog.get_product)
        coupon = services.coupons.validate(req.code, priced.subtotal)
    except StoreError as e:
        return JSONResponse(status_code=e.status_code, content={"success": False, "message": e.message})

    discount = min(services.coupons.compute_discount(coupon, priced.subtotal), priced.subtotal)
    return {
        "success": True,
        "coupon": {
            "code": coupon["code"],
            "discount_type": coupon["discount_type"],
            "discount_value": coupon["discount_value"],
            "discount_amount": float(discount),
        },
        "message": f"Coupon applied! You save {discount:.2f}",
    }


# Wishlist
@app.get("/api/wishlist")
def get_wishlist(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return [serialize_doc(i) for i in services.wishlist.list_for_user(str(user["_id"]))]


@app.post("/api/wishlist", status_code=201)
def add_to_wishlist(req: WishlistAddRequest, user=Depends(get_current_user),
                    services: Services = Depends(get_services)):
    if not services.catalog.get_product(req.product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(services.wishlist.add(str(user["_id"]), req.product_id))


@app.delete("/api/wishlist/{product_id}", status_code=204)
def remove_from_wishlist(product_id: str, user=Depends(get_current_user),
                         services: Services = Depends(get_services)):
    services.wishlist.remove(str(user["_id"]), product_id)
    return Response(status_code=204)


# Addresses
@app.get("/api/addresses")
def list_addresses(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return [serialize_doc(a) for a in services.addresses.list_for_user(str(user["_id"]))]


@app.post("/api/addresses", status_code=201)
def create_address(req: AddressCreateRequest, user=Depends(get_current_user),
                   services: Services = Depends(get_services)):
    address = AddressSchema(user_id=str(user["_id"]), **req.model_dump())
    return serialize_doc(services.addresses.create(address))


# Loyalty
@app.get("/api/loyalty/balance")
def loyalty_balance(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return {"points": services.ledger.get_balance(str(user["_id"]))}


@app.get("/api/loyalty/transactions")
def loyalty_transactions(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return [serialize_doc(t) for t in services.ledger.transactions(str(user["_id"]))]


# Payments
@app.post("/api/payments/create-order")
def create_payment_order(req: ChargeCreateRequest, user=Depends(get_current_user),
                         services: Services = Depends(get_services)):
    user_id = str(user["_id"])
    if req.address_id:
        saved_address(services, user_id, req.address_id)
    quote = services.settlement.quote(user_id, req.items, req.coupon_code, req.points_redeemed)
    amount, currency = services.settlement.charge_amount(quote, services.charge_currency)
    charge = services.gateway.create_charge(
        CurrencyConverter.to_minor_units(amount),
        currency,
        receipt=f"receipt_{int(datetime.now(timezone.utc).timestamp())}_{user_id}",
        notes={"user_id": user_id, "item_count": len(req.items), "coupon_code": quote.coupon_code or "none",
               "address_id": req.address_id or "none"},
    )
    return {
        "gateway_order_id": charge["charge_id"],
        "amount": charge["amount"],
        "currency": charge["currency"],
        "total_base": float(quote.total),
        "total_charge": float(amount),
        "discount": float(quote.discount),
        "points_discount": float(quote.points_discount),
        "points_redeemed": quote.points_redeemed,
        "coupon_applied": quote.coupon_code,
        "fx_rates_as_of": services.settlement.converter.fetched_at.isoformat(),
        "notes": quote.notes,
    }


@app.post("/api/payments/verify")
def verify_payment(req: PaymentVerifyRequest, user=Depends(get_current_user),
                   services: Services = Depends(get_services)):
    if not services.gateway.verify_signature(req.gateway_order_id, req.payment_id, req.signature):
        return JSONResponse(status_code=400, content={"success": False, "message": "Invalid signature"})

    response: Dict[str, Any] = {
        "success": True,
        "message": "Payment verified successfully",
        "payment_id": req.payment_id,
        "gateway_order_id": req.gateway_order_id,
    }
    if req.order_id:
        order = services.orders.get(req.order_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        if order["user_id"] != str(user["_id"]):
            raise HTTPException(status_code=403, detail="Forbidden")
        response["order"] = serialize_doc(services.settlement.settle_payment(
            req.order_id, req.payment_id, gateway_order_id=req.gateway_order_id))
    return response


# Admin
@app.get("/api/admin/orders")
def admin_list_orders(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return [serialize_doc(o) for o in services.orders.list_all()]


@app.patch("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, req: OrderStatusRequest, admin=Depends(require_admin),
                              services: Services = Depends(get_services)):
    return serialize_doc(services.settlement.update_status(order_id, req.order_status))


@app.patch("/api/admin/orders/{order_id}/payment")
def admin_settle_payment(order_id: str, req: PaymentSettleRequest, admin=Depends(require_admin),
                         services: Services = Depends(get_services)):
    return serialize_doc(services.settlement.settle_payment(order_id, req.payment_reference))


@app.get("/api/admin/coupons")
def admin_list_coupons(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return [serialize_doc(c) for c in services.coupons.list_all()]


@app.post("/api/admin/coupons", status_code=201)
def admin_create_coupon(req: CouponSchema, admin=Depends(require_admin), services: Services = Depends(get_services)):
    services.coupons.create(req)
    return serialize_doc(services.coupons.find(req.code))


@app.put("/api/admin/coupons/{code}")
def admin_update_coupon(code: str, req: CouponUpdateRequest, admin=Depends(require_admin),
                        services: Services = Depends(get_services)):
    updates = req.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")
    if not services.coupons.update(code, updates):
        raise HTTPException(status_code=404, detail="Coupon not found")
    return serialize_doc(services.coupons.find(updates.get("code") or code))


@app.delete("/api/admin/coupons/{code}")
def admin_delete_coupon(code: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    if not services.coupons.delete(code):
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"deleted": True, "code": normalize_code(code)}


@app.get("/api/admin/stats")
def admin_stats(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return {
        "users": services.users.count(),
        "orders": services.orders.count(),
        "products": services.catalog.count(),
        "coupons": services.coupons.count(),
    }


# Seed demo catalog and coupons on startup
DEMO_PRODUCTS: List[dict] = [
    {
        "title": "Silk Evening Gown",
        "description": "Elegant floor-length silk gown with a flattering silhouette.",
        "price": 489.00,
        "images": ["https://images.unsplash.com/photo-1595777457583-95e059d581b8?w=800&h=1200&fit=crop"],
        "category": "dresses",
        "designer": "Valentino",
        "stock": 5,
        "sizes": ["XS", "S", "M", "L"],
        "colors": ["Black", "Navy", "Burgundy"],
        "tags": ["evening", "formal", "luxury"],
        "featured": True,
    },
    {
        "title": "Cashmere Wrap Coat",
        "description": "Luxurious cashmere coat with a timeless wrap design.",
        "price": 895.00,
        "images": ["https://images.unsplash.com/photo-1539533018447-63fcce2678e3?w=800&h=1200&fit=crop"],
        "category": "outerwear",
        "designer": "Max Mara",
        "stock": 3,
        "sizes": ["S", "M", "L"],
        "colors": ["Camel", "Black", "Grey"],
        "tags": ["coat", "winter", "cashmere"],
        "featured": True,
    },
    {
        "title": "Leather Crossbody Bag",
        "description": "Premium Italian leather crossbody bag with gold hardware.",
        "price": 325.00,
        "images": ["https://images.unsplash.com/photo-1584917865442-de89df76afd3?w=800&h=800&fit=crop"],
        "category": "bags",
        "designer": "Saint Laurent",
        "stock": 8,
        "colors": ["Black", "Tan", "Burgundy"],
        "tags": ["bag", "leather", "accessories"],
    },
    {
        "title": "Satin Midi Skirt",
        "description": "Flowing satin midi skirt with an elegant drape.",
        "price": 185.00,
        "images": ["https://images.unsplash.com/photo-1583496661160-fb5886a0aaaa?w=800&h=1200&fit=crop"],
        "category": "skirts",
        "designer": "Reformation",
        "stock": 12,
        "sizes": ["XS", "S", "M", "L", "XL"],
        "colors": ["Champagne", "Black", "Emerald"],
        "tags": ["skirt", "satin", "midi"],
    },
    {
        "title": "Wool Blazer",
        "description": "Tailored wool blazer with a modern fit.",
        "price": 425.00,
        "images": ["https://images.unsplash.com/photo-1591369822096-ffd140ec948f?w=800&h=1200&fit=crop"],
        "category": "blazers",
        "designer": "The Row",
        "stock": 7,
        "sizes": ["XS", "S", "M", "L"],
        "colors": ["Black", "Navy", "Grey"],
        "tags": ["blazer", "tailored", "professional"],
        "featured": True,
    },
]


def demo_coupons() -> List[CouponSchema]:
    now = datetime.now(timezone.utc)
    return [
        CouponSchema(code="WELCOME10", discount_type="percentage", discount_value=10, min_purchase=50),
        CouponSchema(code="LUXURY20", discount_type="percentage", discount_value=20, min_purchase=200,
                     max_discount=50, usage_limit=100, expires_at=now + timedelta(days=30)),
        CouponSchema(code="FREESHIP", discount_type="fixed", discount_value=10),
        CouponSchema(code="VIP50", discount_type="fixed", discount_value=50, min_purchase=300,
                     usage_limit=50, expires_at=now + timedelta(days=60)),
    ]


@app.on_event("startup")
def seed_if_empty():
    if getattr(app.state, "services", None) is None:
        if db is None:
            logger.warning("DATABASE_URL/DATABASE_NAME not set, starting without a database")
            return
        app.state.services = build_services(db)
    services = app.state.services
    try:
        if services.catalog.count() == 0:
            for prod in DEMO_PRODUCTS:
                services.catalog.create(ProductSchema(**prod))
            logger.info("Seeded %s demo products", len(DEMO_PRODUCTS))
        if services.coupons.count() == 0:
            for coupon in demo_coupons():
                services.coupons.create(coupon)
            logger.info("Seeded demo coupons")
    except Exception:
        logger.exception("Seeding demo data failed")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
