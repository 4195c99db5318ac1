from .config import (
    PACKAGE_SIZES,
    DistanceBand,
    PackageSize,
    PricingConfig,
    PricingConfigVersion,
    RateCard,
    ServiceArea,
    ServiceCenter,
    SizeMultiplier,
    TaxRule,
    validate_pricing_config,
)
from .config_store import PricingConfigStore

__all__ = [
    "PACKAGE_SIZES",
    "PackageSize",
    "ServiceCenter",
    "ServiceArea",
    "SizeMultiplier",
    "RateCard",
    "DistanceBand",
    "TaxRule",
    "PricingConfig",
    "PricingConfigVersion",
    "PricingConfigStore",
    "validate_pricing_config",
]
