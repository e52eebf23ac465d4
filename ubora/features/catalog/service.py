"""
ubora/features/catalog/service.py

Package catalog.

Static tables of limits, feature flags, prices and display names for the
four package tiers. Pure lookups, no persistence.
"""

from typing import Dict, List, Union

from ubora.core.errors import ValidationError
from ubora.models.package import (
    UNLIMITED,
    PackageDescription,
    PackageFeatures,
    PackageLimits,
    PackageTier,
)


PACKAGE_LIMITS: Dict[PackageTier, PackageLimits] = {
    PackageTier.STARTER: PackageLimits(
        max_forms=4,
        max_dashboards=1,
        max_users=3,
        monthly_tokens=300000,
        additional_user_cost=10000,
    ),
    PackageTier.STANDARD: PackageLimits(
        max_forms=UNLIMITED,
        max_dashboards=UNLIMITED,
        max_users=7,
        monthly_tokens=600000,
        additional_user_cost=7000,
    ),
    PackageTier.PREMIUM: PackageLimits(
        max_forms=UNLIMITED,
        max_dashboards=UNLIMITED,
        max_users=20,
        monthly_tokens=1500000,
        additional_user_cost=7000,
    ),
    # Token allotment and user pricing are negotiated for custom deals
    PackageTier.CUSTOM: PackageLimits(
        max_forms=UNLIMITED,
        max_dashboards=UNLIMITED,
        max_users=UNLIMITED,
        monthly_tokens=UNLIMITED,
        additional_user_cost=0,
    ),
}

PACKAGE_FEATURES: Dict[PackageTier, PackageFeatures] = {
    PackageTier.STARTER: PackageFeatures(
        basic_forms=True,
        basic_dashboard=True,
        basic_metrics=True,
        basic_ai=True,
        pdf_export=True,
        excel_export=True,
        shared_hosting=True,
    ),
    PackageTier.STANDARD: PackageFeatures(
        basic_forms=True,
        unlimited_forms=True,
        basic_dashboard=True,
        unlimited_dashboards=True,
        basic_metrics=True,
        advanced_metrics=True,
        basic_ai=True,
        advanced_ai=True,
        pdf_export=True,
        excel_export=True,
        push_notifications=True,
        shared_hosting=True,
    ),
    PackageTier.PREMIUM: PackageFeatures(
        basic_forms=True,
        unlimited_forms=True,
        basic_dashboard=True,
        unlimited_dashboards=True,
        basic_metrics=True,
        advanced_metrics=True,
        basic_ai=True,
        advanced_ai=True,
        predictive_ai=True,
        pdf_export=True,
        excel_export=True,
        push_notifications=True,
        whatsapp_support=True,
        custom_branding=True,
        shared_hosting=True,
    ),
    PackageTier.CUSTOM: PackageFeatures(
        basic_forms=True,
        unlimited_forms=True,
        basic_dashboard=True,
        unlimited_dashboards=True,
        basic_metrics=True,
        advanced_metrics=True,
        basic_ai=True,
        advanced_ai=True,
        predictive_ai=True,
        custom_integrations=True,
        pdf_export=True,
        excel_export=True,
        push_notifications=True,
        whatsapp_support=True,
        on_site_support=True,
        custom_branding=True,
        dedicated_hosting=True,
        custom_workflows=True,
        external_connectors=True,
        team_training=True,
    ),
}

# Monthly price, FCFA
PACKAGE_PRICES: Dict[PackageTier, int] = {
    PackageTier.STARTER: 35000,
    PackageTier.STANDARD: 85000,
    PackageTier.PREMIUM: 160000,
    PackageTier.CUSTOM: 250000,
}

DISPLAY_NAMES: Dict[PackageTier, str] = {
    PackageTier.STARTER: "Starter",
    PackageTier.STANDARD: "Standard",
    PackageTier.PREMIUM: "Premium",
    PackageTier.CUSTOM: "Sur mesure",
}

LIMIT_NAMES = tuple(PackageLimits.model_fields.keys())
FEATURE_NAMES = tuple(PackageFeatures.model_fields.keys())


def as_tier(value: Union[PackageTier, str]) -> PackageTier:
    """Coerce a tier name into PackageTier, rejecting unknown names."""
    if isinstance(value, PackageTier):
        return value
    try:
        return PackageTier(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown package tier: {value!r}") from None


def limits_of(tier: Union[PackageTier, str]) -> PackageLimits:
    return PACKAGE_LIMITS[as_tier(tier)]


def features_of(tier: Union[PackageTier, str]) -> PackageFeatures:
    return PACKAGE_FEATURES[as_tier(tier)]


def price_of(tier: Union[PackageTier, str]) -> int:
    return PACKAGE_PRICES[as_tier(tier)]


def display_name(tier: Union[PackageTier, str]) -> str:
    return DISPLAY_NAMES[as_tier(tier)]


def format_amount(amount: int) -> str:
    """Group thousands with a space: 35000 -> '35 000'."""
    return f"{amount:,}".replace(",", " ")


def price_label(tier: Union[PackageTier, str]) -> str:
    """Human price label, e.g. '35 000 FCFA/mois'."""
    tier = as_tier(tier)
    label = f"{format_amount(price_of(tier))} FCFA/mois"
    if tier == PackageTier.CUSTOM:
        return f"À partir de {label}"
    return label


def get_package_limit(tier: Union[PackageTier, str], limit_name: str) -> int:
    if limit_name not in LIMIT_NAMES:
        raise ValidationError(f"Unknown package limit: {limit_name!r}")
    return getattr(limits_of(tier), limit_name)


def is_unlimited(tier: Union[PackageTier, str], limit_name: str) -> bool:
    return get_package_limit(tier, limit_name) == UNLIMITED


def has_package_feature(tier: Union[PackageTier, str], feature: str) -> bool:
    if feature not in FEATURE_NAMES:
        raise ValidationError(f"Unknown package feature: {feature!r}")
    return bool(getattr(features_of(tier), feature))


def enabled_features(tier: Union[PackageTier, str]) -> List[str]:
    """Names of the feature flags switched on for a tier, in catalog order."""
    features = features_of(tier)
    return [name for name in FEATURE_NAMES if getattr(features, name)]


def describe(tier: Union[PackageTier, str]) -> PackageDescription:
    tier = as_tier(tier)
    return PackageDescription(
        tier=tier,
        display_name=display_name(tier),
        price=price_of(tier),
        price_label=price_label(tier),
        limits=limits_of(tier),
        features=features_of(tier),
    )


def list_packages() -> List[PackageDescription]:
    """Full catalog in ascending price order."""
    return [describe(tier) for tier in sorted(PackageTier, key=price_of)]


def compare_tiers(current: Union[PackageTier, str], target: Union[PackageTier, str]) -> int:
    """-1 when target is cheaper than current, 1 when dearer, 0 when equal."""
    current_price, target_price = price_of(current), price_of(target)
    if target_price > current_price:
        return 1
    if target_price < current_price:
        return -1
    return 0
