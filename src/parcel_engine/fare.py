import math

from pydantic import BaseModel, Field

from .core.exceptions import ValidationError
from .order import PricingSnapshot
from .pricing.config import PricingConfig, TaxRule


class FareBreakdown(BaseModel):
    """Itemized fare for one delivery, all amounts in cents."""

    base_fee: int = Field(ge=0)
    distance_charge: int = Field(ge=0)
    size_multiplier: float = Field(gt=0)
    base_fare: int = Field(ge=0)
    tax: int = Field(ge=0)
    total: int = Field(ge=0)
    currency: str
    distance_km: float = Field(ge=0)
    duration_minutes: int = Field(ge=0)
    band_label: str = ""


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for non-negatives."""
    return int(math.floor(value + 0.5))


def compute_tax(amount_cents: int, tax: TaxRule) -> int:
    """Single tax formula for every pricing path (with or without coupon)."""
    if not tax.enabled or amount_cents <= 0:
        return 0
    return round_half_up(amount_cents * tax.rate)


def format_fare_display(total_cents: int, currency: str) -> str:
    return f"{currency} ${total_cents / 100:.2f}"


class FareCalculator:
    """Converts distance + package size + pricing config into a fare.

    Pure: the config is an argument, never read from ambient state.
    Duration is carried through for display but does not affect price.
    """

    def calculate(
        self,
        distance_km: float,
        package_size: str,
        config: PricingConfig,
        duration_minutes: int = 0,
    ) -> FareBreakdown:
        if not math.isfinite(distance_km) or distance_km < 0:
            raise ValidationError("Distance must be a non-negative number")
        if duration_minutes < 0:
            raise ValidationError("Duration must be non-negative")

        rate_card = config.rate_card
        base_component = rate_card.base_cents

        distance_component = 0.0
        previous_km = 0.0
        remaining = distance_km
        band_label = config.bands[0].label
        last_index = len(config.bands) - 1

        for index, band in enumerate(config.bands):
            if remaining <= 0:
                break
            if index == last_index:
                # Open-ended ceiling tier absorbs everything left.
                portion = remaining
            else:
                portion = min(remaining, band.km_max - previous_km)
            distance_component += portion * rate_card.per_km_cents * band.multiplier
            remaining -= portion
            previous_km = band.km_max
            band_label = band.label

        distance_charge = round_half_up(distance_component)
        fare = base_component + distance_charge

        size_multiplier = rate_card.size_multiplier.for_size(package_size)
        fare = round_half_up(fare * size_multiplier)
        fare = max(fare, rate_card.min_fare_cents)

        tax_amount = compute_tax(fare, config.tax)

        return FareBreakdown(
            base_fee=base_component,
            distance_charge=distance_charge,
            size_multiplier=size_multiplier,
            base_fare=fare,
            tax=tax_amount,
            total=fare + tax_amount,
            currency=rate_card.currency,
            distance_km=round(distance_km, 2),
            duration_minutes=duration_minutes,
            band_label=band_label,
        )

    @staticmethod
    def apply_discount(fare: FareBreakdown, discount_cents: int, tax: TaxRule) -> PricingSnapshot:
        """Subtract a discount before tax and recompute tax on what remains."""
        discount = max(0, min(discount_cents, fare.base_fare))
        subtotal = fare.base_fare - discount
        tax_amount = compute_tax(subtotal, tax)
        return PricingSnapshot(
            base_fee=fare.base_fee,
            base_fare=fare.base_fare,
            subtotal=subtotal,
            tax=tax_amount,
            coupon_discount=discount,
            total=subtotal + tax_amount,
            currency=fare.currency,
        )


_calculator = FareCalculator()


def compute_fare(
    distance_km: float,
    package_size: str,
    config: PricingConfig,
    duration_minutes: int = 0,
) -> FareBreakdown:
    return _calculator.calculate(distance_km, package_size, config, duration_minutes)
