"""SQLAlchemy ORM models for order and coupon persistence."""

from datetime import datetime

from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .utils import UTCDateTime, utc_now


class Base(DeclarativeBase):
    type_annotation_map = {datetime: UTCDateTime}


class DeliveryOrder(Base):
    __tablename__ = "delivery_orders"

    order_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    driver_id: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    payment_status: Mapped[str] = mapped_column(String, nullable=False)

    pickup_address: Mapped[str] = mapped_column(String, nullable=False)
    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_contact_name: Mapped[str] = mapped_column(String, nullable=False)
    pickup_contact_phone: Mapped[str] = mapped_column(String, nullable=False)
    pickup_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    pickup_scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    pickup_actual_at: Mapped[datetime | None] = mapped_column(nullable=True)

    dropoff_address: Mapped[str] = mapped_column(String, nullable=False)
    dropoff_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_contact_name: Mapped[str] = mapped_column(String, nullable=False)
    dropoff_contact_phone: Mapped[str] = mapped_column(String, nullable=False)
    dropoff_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    dropoff_scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dropoff_actual_at: Mapped[datetime | None] = mapped_column(nullable=True)

    package_size: Mapped[str] = mapped_column(String, nullable=False)
    package_weight: Mapped[str | None] = mapped_column(String, nullable=True)
    package_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    base_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    base_fare: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    tax: Mapped[int] = mapped_column(Integer, nullable=False)
    coupon_discount: Mapped[int] = mapped_column(Integer, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False)
    pricing_config_version: Mapped[int | None] = mapped_column(Integer, nullable=True)

    coupon_code: Mapped[str | None] = mapped_column(String, nullable=True)
    coupon_discount_type: Mapped[str | None] = mapped_column(String, nullable=True)
    coupon_discount_value: Mapped[int | None] = mapped_column(Integer, nullable=True)

    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=lambda: utc_now())
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    picked_up_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: utc_now(),
        onupdate=lambda: utc_now(),
    )

    __table_args__ = (
        Index("idx_order_status_created", "status", "created_at"),
        Index("idx_order_user_created", "user_id", "created_at"),
        Index("idx_order_driver_status", "driver_id", "status"),
        Index("idx_order_expiry", "status", "expires_at"),
    )


class Coupon(Base):
    __tablename__ = "coupons"

    code: Mapped[str] = mapped_column(String, primary_key=True)
    discount_type: Mapped[str] = mapped_column(String, nullable=False)
    discount_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)
    max_uses_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_uses_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_uses_total: Mapped[int] = mapped_column(Integer, default=0)
    # Comma-separated allow-lists; empty means unrestricted
    applicable_user_ids: Mapped[str] = mapped_column(Text, default="")
    applicable_account_types: Mapped[str] = mapped_column(String, default="")
    min_order_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=lambda: utc_now())
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: utc_now(),
        onupdate=lambda: utc_now(),
    )

    __table_args__ = (
        Index("idx_coupon_active", "is_active"),
        Index("idx_coupon_expiry_active", "expiry_date", "is_active"),
    )


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    coupon_code: Mapped[str] = mapped_column(ForeignKey("coupons.code"), nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    order_id: Mapped[str] = mapped_column(String, nullable=False)
    redeemed_at: Mapped[datetime] = mapped_column(default=lambda: utc_now())

    __table_args__ = (
        UniqueConstraint("coupon_code", "order_id", name="uq_redemption_coupon_order"),
        Index("idx_redemption_coupon_user", "coupon_code", "user_id"),
    )


class EngineMetadata(Base):
    __tablename__ = "engine_metadata"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: utc_now(),
        onupdate=lambda: utc_now(),
    )
