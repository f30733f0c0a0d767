"""GPS signal quality classification from horizontal accuracy."""

from __future__ import annotations

from enum import Enum
from typing import Final


class SignalQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNUSABLE = "unusable"


# Upper bounds (inclusive) of horizontal accuracy in meters, best first.
QUALITY_BOUNDS_M: Final[tuple[tuple[float, SignalQuality], ...]] = (
    (10.0, SignalQuality.EXCELLENT),
    (20.0, SignalQuality.GOOD),
    (35.0, SignalQuality.FAIR),
    (50.0, SignalQuality.POOR),
)

_DESCRIPTIONS: Final[dict[SignalQuality, str]] = {
    SignalQuality.EXCELLENT: "Excellent GPS signal",
    SignalQuality.GOOD: "Good GPS signal",
    SignalQuality.FAIR: "Fair GPS signal",
    SignalQuality.POOR: "Poor GPS signal",
    SignalQuality.UNUSABLE: "GPS signal too weak",
}


def quality_from_accuracy(accuracy_m: float) -> SignalQuality:
    """Classify a fix by its horizontal accuracy.

    Negative values (the "unknown" sentinel) and NaN are unusable.
    """

    if not accuracy_m >= 0.0:
        return SignalQuality.UNUSABLE
    for bound, quality in QUALITY_BOUNDS_M:
        if accuracy_m <= bound:
            return quality
    return SignalQuality.UNUSABLE


def describe_quality(quality: SignalQuality) -> str:
    return _DESCRIPTIONS[quality]
