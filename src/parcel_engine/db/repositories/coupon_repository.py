from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ...core.exceptions import ConflictError, NotFoundError, ValidationError
from ...coupons.models import Coupon, DiscountType, normalize_code
from ..schema import Coupon as CouponRow
from ..schema import CouponRedemption

UPDATABLE_FIELDS = frozenset(
    {
        "discount_type",
        "discount_value",
        "expiry_date",
        "is_active",
        "max_uses_total",
        "max_uses_per_user",
        "applicable_user_ids",
        "applicable_account_types",
        "min_order_amount_cents",
        "description",
    }
)


def _join(values: tuple[str, ...] | list[str]) -> str:
    return ",".join(values)


def _split(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(v for v in value.split(",") if v)


class CouponRepository:
    """Repository for coupon and redemption persistence."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_code(self, code: str) -> Coupon | None:
        row = self.session.get(CouponRow, normalize_code(code), populate_existing=True)
        if row is None:
            return None
        return self._to_domain(row)

    def create(self, coupon: Coupon) -> Coupon:
        if self.session.get(CouponRow, coupon.code) is not None:
            raise ConflictError(f"Coupon {coupon.code} already exists", {"code": coupon.code})
        self.session.add(
            CouponRow(
                code=coupon.code,
                discount_type=coupon.discount_type.value,
                discount_value=coupon.discount_value,
                expiry_date=coupon.expiry_date,
                is_active=coupon.is_active,
                max_uses_total=coupon.max_uses_total,
                max_uses_per_user=coupon.max_uses_per_user,
                current_uses_total=coupon.current_uses_total,
                applicable_user_ids=_join(coupon.applicable_user_ids),
                applicable_account_types=_join(coupon.applicable_account_types),
                min_order_amount_cents=coupon.min_order_amount_cents,
                description=coupon.description,
                created_by=coupon.created_by,
            )
        )
        self.session.flush()
        return coupon

    def list_all(
        self,
        is_active: bool | None = None,
        discount_type: DiscountType | None = None,
    ) -> list[Coupon]:
        """List coupons, newest first."""
        stmt = select(CouponRow)
        if is_active is not None:
            stmt = stmt.where(CouponRow.is_active == is_active)
        if discount_type is not None:
            stmt = stmt.where(CouponRow.discount_type == discount_type.value)
        stmt = stmt.order_by(CouponRow.created_at.desc(), CouponRow.code)
        return [self._to_domain(r) for r in self.session.execute(stmt).scalars().all()]

    def update(self, code: str, changes: dict[str, Any]) -> Coupon:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot update coupon fields: {', '.join(sorted(unknown))}",
                {"fields": sorted(unknown)},
            )

        row = self.session.get(CouponRow, normalize_code(code))
        if row is None:
            raise NotFoundError(f"Coupon {normalize_code(code)} not found")

        current = self._to_domain(row)
        # Re-validate the merged record before touching the row
        try:
            merged = Coupon.model_validate({**current.model_dump(), **changes})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid coupon update: {e}") from e

        row.discount_type = merged.discount_type.value
        row.discount_value = merged.discount_value
        row.expiry_date = merged.expiry_date
        row.is_active = merged.is_active
        row.max_uses_total = merged.max_uses_total
        row.max_uses_per_user = merged.max_uses_per_user
        row.applicable_user_ids = _join(merged.applicable_user_ids)
        row.applicable_account_types = _join(merged.applicable_account_types)
        row.min_order_amount_cents = merged.min_order_amount_cents
        row.description = merged.description
        self.session.flush()
        return merged

    def increment_usage(self, code: str) -> bool:
        """Atomically bump the usage counter in the database."""
        stmt = (
            update(CouponRow)
            .where(CouponRow.code == normalize_code(code))
            .values(current_uses_total=CouponRow.current_uses_total + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return int(result.rowcount) == 1  # type: ignore[attr-defined]

    def record_redemption(
        self, code: str, user_id: str, order_id: str, redeemed_at: datetime
    ) -> None:
        self.session.add(
            CouponRedemption(
                coupon_code=normalize_code(code),
                user_id=user_id,
                order_id=order_id,
                redeemed_at=redeemed_at,
            )
        )

    def count_user_redemptions(self, code: str, user_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(CouponRedemption)
            .where(
                CouponRedemption.coupon_code == normalize_code(code),
                CouponRedemption.user_id == user_id,
            )
        )
        return self.session.execute(stmt).scalar() or 0

    @staticmethod
    def _to_domain(row: CouponRow) -> Coupon:
        return Coupon(
            code=row.code,
            discount_type=DiscountType(row.discount_type),
            discount_value=row.discount_value,
            expiry_date=row.expiry_date,
            is_active=row.is_active,
            max_uses_total=row.max_uses_total,
            max_uses_per_user=row.max_uses_per_user,
            current_uses_total=row.current_uses_total,
            applicable_user_ids=_split(row.applicable_user_ids),
            applicable_account_types=_split(row.applicable_account_types),  # type: ignore[arg-type]
            min_order_amount_cents=row.min_order_amount_cents,
            description=row.description,
            created_by=row.created_by,
        )
