"""
Domain errors raised by the pricing, coupon, loyalty and settlement layers.

Each error carries the HTTP status the API layer answers with.
"""


class StoreError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProductNotFound(StoreError):
    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class InsufficientPoints(StoreError):
    def __init__(self, requested: int, available: int):
        super().__init__(f"Insufficient points: requested {requested}, available {available}")
        self.requested = requested
        self.available = available


class InvalidCouponRequest(StoreError):
    pass


class CouponError(StoreError):
    pass


class CouponNotFound(CouponError):
    status_code = 404

    def __init__(self, code: str):
        super().__init__("Invalid coupon code")
        self.code = code


class CouponInactive(CouponError):
    def __init__(self, code: str):
        super().__init__("This coupon is no longer active")
        self.code = code


class CouponExpired(CouponError):
    def __init__(self, code: str):
        super().__init__("This coupon has expired")
        self.code = code


class CouponExhausted(CouponError):
    def __init__(self, code: str):
        super().__init__("This coupon has reached its usage limit")
        self.code = code


class CouponMinimumNotMet(CouponError):
    def __init__(self, code: str, minimum):
        super().__init__(f"Minimum purchase of {minimum:.2f} required for this coupon")
        self.code = code
        self.minimum = minimum


class OrderNotFound(StoreError):
    status_code = 404

    def __init__(self, order_id: str):
        super().__init__("Order not found")
        self.order_id = order_id


class IllegalStatusTransition(StoreError):
    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move order from {current} to {requested}")
        self.current = current
        self.requested = requested


class PaymentAlreadySettled(StoreError):
    status_code = 409

    def __init__(self, order_id: str):
        super().__init__("Order payment is already settled")
        self.order_id = order_id


class PaymentGatewayError(StoreError):
    status_code = 502


class InvalidCart(StoreError):
    def __init__(self, message: str = "Invalid cart items"):
        super().__init__(message)


class PaymentMismatch(StoreError):
    status_code = 409

    def __init__(self, order_id: str, message: str = "Payment does not belong to this order"):
        super().__init__(message)
        self.order_id = order_id
