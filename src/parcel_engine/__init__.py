"""Parcel delivery pricing and order lifecycle engine."""

from .engine import FareEstimate, FareRange, OrderEngine
from .fare import FareBreakdown, FareCalculator, compute_fare

__all__ = [
    "FareBreakdown",
    "FareCalculator",
    "FareEstimate",
    "FareRange",
    "OrderEngine",
    "compute_fare",
]

__version__ = "0.1.0"
