"""Tests for the static package catalog."""

import pytest

from ubora.core.errors import ValidationError
from ubora.features.catalog.service import (
    as_tier,
    compare_tiers,
    enabled_features,
    format_amount,
    get_package_limit,
    has_package_feature,
    is_unlimited,
    limits_of,
    list_packages,
    price_label,
    price_of,
)
from ubora.models.package import UNLIMITED, PackageTier, add_to_limit


def test_starter_limits_are_bounded():
    limits = limits_of("starter")
    assert limits.max_forms == 4
    assert limits.max_dashboards == 1
    assert limits.max_users == 3
    assert limits.monthly_tokens == 300000


def test_standard_forms_are_unlimited():
    assert get_package_limit(PackageTier.STANDARD, "max_forms") == UNLIMITED
    assert is_unlimited(PackageTier.STANDARD, "max_forms")
    assert not is_unlimited(PackageTier.STANDARD, "max_users")


def test_custom_tier_is_unbounded_everywhere():
    for name in ("max_forms", "max_dashboards", "max_users", "monthly_tokens"):
        assert is_unlimited("custom", name)


def test_prices_and_labels():
    assert price_of("starter") == 35000
    assert price_of("standard") == 85000
    assert price_label("starter") == "35 000 FCFA/mois"
    assert price_label("custom") == "À partir de 250 000 FCFA/mois"
    assert format_amount(1500000) == "1 500 000"


def test_tier_names_are_normalized():
    assert as_tier(" Premium ") == PackageTier.PREMIUM


def test_unknown_tier_rejected():
    with pytest.raises(ValidationError):
        as_tier("gold")


def test_unknown_limit_and_feature_rejected():
    with pytest.raises(ValidationError):
        get_package_limit("starter", "max_widgets")
    with pytest.raises(ValidationError):
        has_package_feature("starter", "teleportation")


def test_feature_flags_follow_tier():
    assert has_package_feature("premium", "predictive_ai")
    assert not has_package_feature("standard", "predictive_ai")
    assert has_package_feature("custom", "dedicated_hosting")
    assert "basic_forms" in enabled_features("starter")
    assert "advanced_ai" not in enabled_features("starter")


def test_list_packages_in_price_order():
    tiers = [p.tier for p in list_packages()]
    assert tiers == [PackageTier.STARTER, PackageTier.STANDARD, PackageTier.PREMIUM, PackageTier.CUSTOM]


def test_compare_tiers_by_price():
    assert compare_tiers("starter", "standard") == 1
    assert compare_tiers("premium", "standard") == -1
    assert compare_tiers("premium", "premium") == 0


def test_unlimited_absorbs_additions():
    assert add_to_limit(UNLIMITED, 500) == UNLIMITED
    assert add_to_limit(4, 5) == 9
