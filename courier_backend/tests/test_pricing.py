"""
Unit tests for weight-tier pricing and tracking numbers.
"""

import pytest

from courier_backend.app.domain.pricing.pricing_calculator import (
    calculate_parcel_price,
    get_weight_category,
)
from courier_backend.app.domain.parcels.tracking_number import (
    generate_tracking_number,
    tracking_number_pattern,
)


@pytest.mark.parametrize("weight, expected", [
    (0.1, 0.5),
    (3, 15.0),
    (5, 25.0),
    (5.01, 40.08),
    (20, 160.0),
    (20.01, 240.12),
    (50, 600.0),
    (50.01, 1000.2),
    (120, 2400.0),
])
def test_price_follows_weight_tiers(weight, expected):
    assert calculate_parcel_price(weight) == pytest.approx(expected)


def test_tier_upper_bounds_are_inclusive():
    """A parcel exactly on a boundary is billed at the lower tier."""
    assert calculate_parcel_price(5) / 5 == pytest.approx(5)
    assert calculate_parcel_price(20) / 20 == pytest.approx(8)
    assert calculate_parcel_price(50) / 50 == pytest.approx(12)


@pytest.mark.parametrize("weight, label", [
    (1, "Light (0-5kg)"),
    (5, "Light (0-5kg)"),
    (12, "Medium (5-20kg)"),
    (35, "Heavy (20-50kg)"),
    (75, "Extra Heavy (50kg+)"),
])
def test_weight_category(weight, label):
    assert get_weight_category(weight) == label


def test_tracking_number_format():
    pattern = tracking_number_pattern()
    for _ in range(50):
        assert pattern.match(generate_tracking_number())


def test_tracking_number_custom_prefix():
    number = generate_tracking_number(prefix="TST-")
    assert number.startswith("TST-")
    assert tracking_number_pattern("TST-").match(number)
    assert not tracking_number_pattern().match(number)
