"""Coupon domain models."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

AccountType = Literal["individual", "business"]


class DiscountType(str, Enum):
    ELIMINATE_FEE = "eliminate_fee"
    FIXED_DISCOUNT = "fixed_discount"
    PERCENTAGE_DISCOUNT = "percentage_discount"


def normalize_code(code: str) -> str:
    return code.strip().upper()


class Coupon(BaseModel):
    """Live coupon record as managed by operators.

    ``discount_value`` is cents for fixed discounts and a whole percentage
    for percentage discounts; it is ignored for eliminate_fee.
    """

    model_config = ConfigDict(frozen=True)

    code: str = Field(min_length=1)
    discount_type: DiscountType
    discount_value: int | None = Field(default=None, ge=0)
    expiry_date: datetime | None = None
    is_active: bool = True
    max_uses_total: int | None = Field(default=None, ge=0)
    max_uses_per_user: int | None = Field(default=1, ge=0)
    current_uses_total: int = Field(default=0, ge=0)
    applicable_user_ids: tuple[str, ...] = ()
    applicable_account_types: tuple[AccountType, ...] = ()
    min_order_amount_cents: int | None = Field(default=None, ge=0)
    description: str | None = None
    created_by: str | None = None

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, v: str) -> str:
        code = normalize_code(v)
        if not code:
            raise ValueError("Coupon code must not be blank")
        return code

    @model_validator(mode="after")
    def _check_value(self) -> "Coupon":
        if self.discount_type == DiscountType.PERCENTAGE_DISCOUNT:
            if self.discount_value is None or self.discount_value > 100:
                raise ValueError("percentage_discount requires a discount_value between 0 and 100")
        elif self.discount_type == DiscountType.FIXED_DISCOUNT and self.discount_value is None:
            raise ValueError("fixed_discount requires a discount_value in cents")
        return self


class CouponValidation(BaseModel):
    """Outcome of running the ordered coupon checks."""

    valid: bool
    coupon: Coupon | None = None
    reason: str | None = None


class CouponPreview(BaseModel):
    valid: bool
    code: str | None = None
    discount_type: DiscountType | None = None
    discount_preview: int | None = None
    reason: str | None = None
