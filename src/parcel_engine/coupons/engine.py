"""Coupon validation, discount math and usage accounting."""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.exceptions import EngineError, PersistenceError, ValidationError
from ..core.retry import RetryConfig, with_retry_sync
from ..db.repositories.coupon_repository import CouponRepository
from ..db.transaction import transaction
from ..db.utils import as_utc, utc_now
from ..order import CouponSnapshot
from .models import AccountType, Coupon, CouponPreview, CouponValidation, DiscountType

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "Invalid coupon code"
REASON_INACTIVE = "This coupon is no longer active"
REASON_EXPIRED = "This coupon has expired"
REASON_EXHAUSTED = "This coupon has reached its usage limit"
REASON_USER_LIMIT = "You have already used this coupon the maximum number of times"
REASON_USER_NOT_ELIGIBLE = "This coupon is not available for your account"
REASON_ACCOUNT_TYPE = "This coupon is not available for your account type"


def min_order_reason(min_order_amount_cents: int) -> str:
    return f"Minimum order amount of ${min_order_amount_cents / 100:.2f} required"


def calculate_discount(coupon: Coupon, subtotal_cents: int, base_fee_cents: int) -> int:
    """Discount in cents, never negative and never more than the subtotal."""
    if subtotal_cents <= 0:
        return 0

    if coupon.discount_type == DiscountType.ELIMINATE_FEE:
        discount = base_fee_cents
    elif coupon.discount_type == DiscountType.FIXED_DISCOUNT:
        discount = coupon.discount_value or 0
    elif coupon.discount_type == DiscountType.PERCENTAGE_DISCOUNT:
        # Integer math keeps floor exact for whole percentages
        discount = subtotal_cents * (coupon.discount_value or 0) // 100
    else:
        discount = 0

    return max(0, min(discount, subtotal_cents))


class CouponEngine:
    """Validates coupon codes against an order and records redemptions.

    Validation runs eight checks in a fixed order and stops at the first
    failure, so the reason returned is always the earliest one that applies.
    """

    def __init__(
        self,
        session_maker: sessionmaker[Session],
        clock: Callable[[], datetime] = utc_now,
        usage_retry: RetryConfig | None = None,
    ):
        self._session_maker = session_maker
        self._clock = clock
        self._usage_retry = usage_retry or RetryConfig(
            max_attempts=3,
            base_delay=0.1,
            retryable_exceptions=(PersistenceError,),
        )

    def validate(
        self,
        code: str,
        user_id: str,
        order_amount_cents: int,
        account_type: AccountType | None = None,
        now: datetime | None = None,
    ) -> CouponValidation:
        now = as_utc(now) if now is not None else self._clock()
        with self._session_maker() as session:
            repo = CouponRepository(session)
            coupon = repo.get_by_code(code)
            if coupon is None:
                return CouponValidation(valid=False, reason=REASON_NOT_FOUND)

            if not coupon.is_active:
                return CouponValidation(valid=False, coupon=coupon, reason=REASON_INACTIVE)

            if coupon.expiry_date is not None and now > coupon.expiry_date:
                return CouponValidation(valid=False, coupon=coupon, reason=REASON_EXPIRED)

            if (
                coupon.max_uses_total is not None
                and coupon.current_uses_total >= coupon.max_uses_total
            ):
                return CouponValidation(valid=False, coupon=coupon, reason=REASON_EXHAUSTED)

            if coupon.max_uses_per_user is not None:
                used = repo.count_user_redemptions(coupon.code, user_id)
                if used >= coupon.max_uses_per_user:
                    return CouponValidation(valid=False, coupon=coupon, reason=REASON_USER_LIMIT)

        if coupon.applicable_user_ids and user_id not in coupon.applicable_user_ids:
            return CouponValidation(valid=False, coupon=coupon, reason=REASON_USER_NOT_ELIGIBLE)

        if coupon.applicable_account_types and account_type not in coupon.applicable_account_types:
            return CouponValidation(valid=False, coupon=coupon, reason=REASON_ACCOUNT_TYPE)

        if (
            coupon.min_order_amount_cents is not None
            and order_amount_cents < coupon.min_order_amount_cents
        ):
            return CouponValidation(
                valid=False,
                coupon=coupon,
                reason=min_order_reason(coupon.min_order_amount_cents),
            )

        return CouponValidation(valid=True, coupon=coupon)

    def calculate_discount(self, coupon: Coupon, subtotal_cents: int, base_fee_cents: int) -> int:
        return calculate_discount(coupon, subtotal_cents, base_fee_cents)

    def preview(
        self,
        code: str,
        user_id: str,
        subtotal_cents: int,
        base_fee_cents: int,
        account_type: AccountType | None = None,
    ) -> CouponPreview:
        result = self.validate(code, user_id, subtotal_cents, account_type)
        if not result.valid or result.coupon is None:
            return CouponPreview(valid=False, reason=result.reason)
        coupon = result.coupon
        return CouponPreview(
            valid=True,
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_preview=calculate_discount(coupon, subtotal_cents, base_fee_cents),
        )

    @staticmethod
    def snapshot(coupon: Coupon) -> CouponSnapshot:
        value = None if coupon.discount_type == DiscountType.ELIMINATE_FEE else coupon.discount_value
        return CouponSnapshot(
            code=coupon.code,
            discount_type=coupon.discount_type.value,  # type: ignore[arg-type]
            discount_value=value,
        )

    def record_usage(self, code: str, user_id: str, order_id: str) -> bool:
        """Increment usage and record the redemption for a persisted order.

        Failures are retried and then logged; they never propagate to the
        caller because the order already exists.
        """

        def _record() -> None:
            try:
                with self._session_maker() as session, transaction(session):
                    repo = CouponRepository(session)
                    if not repo.increment_usage(code):
                        logger.warning(f"Coupon {code} disappeared before usage was recorded")
                        return
                    repo.record_redemption(code, user_id, order_id, self._clock())
            except IntegrityError:
                raise
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to record coupon usage: {e}") from e

        try:
            with_retry_sync(_record, self._usage_retry, operation_name=f"record_usage({code})")
        except IntegrityError:
            logger.warning(f"Coupon {code} already redeemed for order {order_id}")
            return False
        except EngineError as e:
            logger.error(
                f"Coupon usage not recorded for {code} on order {order_id}: {e}",
                extra={"coupon_code": code, "order_id": order_id},
            )
            return False
        return True

    def create_coupon(self, **fields: Any) -> Coupon:
        try:
            coupon = Coupon.model_validate(fields)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid coupon: {e}") from e
        with self._session_maker() as session, transaction(session):
            created = CouponRepository(session).create(coupon)
        logger.info(f"Coupon created: {created.code}", extra={"coupon_code": created.code})
        return created

    def get_coupon(self, code: str) -> Coupon | None:
        with self._session_maker() as session:
            return CouponRepository(session).get_by_code(code)

    def list_coupons(
        self,
        is_active: bool | None = None,
        discount_type: DiscountType | None = None,
    ) -> list[Coupon]:
        with self._session_maker() as session:
            return CouponRepository(session).list_all(is_active, discount_type)

    def update_coupon(self, code: str, **changes: Any) -> Coupon:
        with self._session_maker() as session, transaction(session):
            updated = CouponRepository(session).update(code, changes)
        logger.info(f"Coupon updated: {updated.code}", extra={"coupon_code": updated.code})
        return updated

    def set_active(self, code: str, is_active: bool) -> Coupon:
        coupon = self.update_coupon(code, is_active=is_active)
        logger.info(f"Coupon {coupon.code} {'activated' if is_active else 'deactivated'}")
        return coupon
