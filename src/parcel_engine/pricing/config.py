"""Versioned pricing configuration models."""

import hashlib
import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

PackageSize = Literal["XS", "S", "M", "L"]
PACKAGE_SIZES: tuple[PackageSize, ...] = ("XS", "S", "M", "L")

ConfigStatus = Literal["active", "inactive", "draft"]


class ServiceCenter(BaseModel):
    """Named geographic anchor with an operable radius."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(min_length=1)
    label: str
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)
    soft_radius_km: float = Field(gt=0.0)
    active: bool = True


class ServiceArea(BaseModel):
    model_config = ConfigDict(frozen=True)

    centers: tuple[ServiceCenter, ...] = Field(min_length=1)

    @property
    def active_centers(self) -> list[ServiceCenter]:
        return [c for c in self.centers if c.active]


class SizeMultiplier(BaseModel):
    model_config = ConfigDict(frozen=True)

    XS: float = Field(default=1.0, gt=0.0)
    S: float = Field(default=1.0, gt=0.0)
    M: float = Field(default=1.0, gt=0.0)
    L: float = Field(default=1.0, gt=0.0)

    def for_size(self, size: str) -> float:
        """Multiplier for a package size; unknown sizes price at 1.0."""
        if size in PACKAGE_SIZES:
            return float(getattr(self, size))
        return 1.0


class RateCard(BaseModel):
    model_config = ConfigDict(frozen=True)

    currency: str = Field(default="CAD", min_length=3, max_length=3)
    base_cents: int = Field(ge=0)
    per_km_cents: int = Field(ge=0)
    # Reserved: duration never affects price.
    per_min_cents: int = Field(default=0, ge=0)
    min_fare_cents: int = Field(ge=0)
    size_multiplier: SizeMultiplier = Field(default_factory=SizeMultiplier)


class DistanceBand(BaseModel):
    """Distance tier priced at its own per-km multiplier."""

    model_config = ConfigDict(frozen=True)

    km_max: float = Field(gt=0.0)
    multiplier: float = Field(ge=0.0)
    label: str = ""


class TaxRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    rate: float = Field(default=0.0, ge=0.0, le=1.0)


class PricingConfig(BaseModel):
    """Rate schedule, distance bands, service centers and tax rule."""

    model_config = ConfigDict(frozen=True)

    service_area: ServiceArea
    rate_card: RateCard
    bands: tuple[DistanceBand, ...] = Field(min_length=1)
    tax: TaxRule = Field(default_factory=TaxRule)

    @model_validator(mode="after")
    def bands_strictly_increasing(self) -> "PricingConfig":
        thresholds = [band.km_max for band in self.bands]
        for previous, current in zip(thresholds, thresholds[1:], strict=False):
            if current <= previous:
                raise ValueError(
                    f"Distance bands must be sorted by km_max in strictly increasing order "
                    f"(got {previous} then {current})"
                )
        return self

    def checksum(self) -> str:
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class PricingConfigVersion(BaseModel):
    """One effective-dated version of the pricing config."""

    model_config = ConfigDict(frozen=True)

    id: str
    version: int = Field(ge=1)
    status: ConfigStatus = "active"
    effective_from: datetime
    checksum: str = ""
    payload: PricingConfig
    created_at: datetime
    created_by: str = "system"


def validate_pricing_config(data: dict[str, Any]) -> list[str]:
    """Return human-readable problems with a raw pricing payload (empty if valid)."""
    try:
        PricingConfig.model_validate(data)
    except PydanticValidationError as e:
        errors = []
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            message = error["msg"].removeprefix("Value error, ")
            errors.append(f"{location}: {message}" if location else message)
        return errors
    return []
