from .coupon_repository import CouponRepository
from .order_repository import OrderRepository

__all__ = ["CouponRepository", "OrderRepository"]
