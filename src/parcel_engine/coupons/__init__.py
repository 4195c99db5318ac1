from .engine import CouponEngine, calculate_discount
from .models import AccountType, Coupon, CouponPreview, CouponValidation, DiscountType

__all__ = [
    "AccountType",
    "Coupon",
    "CouponEngine",
    "CouponPreview",
    "CouponValidation",
    "DiscountType",
    "calculate_discount",
]
