"""
Parcel Pricing Calculator.

Maps a parcel's weight to its price using fixed weight tiers. Each tier's
upper bound is inclusive; the whole weight is billed at the tier's rate.

    (0, 5]    →  5 / kg   Light
    (5, 20]   →  8 / kg   Medium
    (20, 50]  → 12 / kg   Heavy
    (50, ∞)   → 20 / kg   Extra Heavy
"""

import math
from typing import NamedTuple


class WeightTier(NamedTuple):
    max_weight: float
    price_per_kg: float
    label: str


WEIGHT_TIERS = (
    WeightTier(5.0, 5.0, "Light (0-5kg)"),
    WeightTier(20.0, 8.0, "Medium (5-20kg)"),
    WeightTier(50.0, 12.0, "Heavy (20-50kg)"),
    WeightTier(math.inf, 20.0, "Extra Heavy (50kg+)"),
)


def resolve_tier(weight: float) -> WeightTier:
    for tier in WEIGHT_TIERS:
        if weight <= tier.max_weight:
            return tier
    return WEIGHT_TIERS[-1]


def calculate_parcel_price(weight: float) -> float:
    """
    Price a parcel by weight.

    Rounded to cents so that e.g. 5.01 kg prices at exactly 40.08.
    """
    return round(weight * resolve_tier(weight).price_per_kg, 2)


def get_weight_category(weight: float) -> str:
    return resolve_tier(weight).label
