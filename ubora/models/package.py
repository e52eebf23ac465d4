"""
ubora/models/package.py

Package tier, limits and feature-flag models.

A tier's limits and features are immutable catalog data. A limit value of
-1 means unlimited.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict

UNLIMITED = -1


class PackageTier(str, Enum):
    STARTER = "starter"
    STANDARD = "standard"
    PREMIUM = "premium"
    CUSTOM = "custom"


class PackageLimits(BaseModel):
    """
    Resource limits granted by a tier.

    Limit keys:
    - max_forms (int): forms a director can create
    - max_dashboards (int): dashboards a director can create
    - max_users (int): team members (employees) a director can add
    - monthly_tokens (int): ARCHA tokens granted per 30-day cycle
    - additional_user_cost (int): price of one extra user, FCFA

    -1 = unlimited (or negotiated, for the custom tier).
    """
    model_config = ConfigDict(frozen=True)

    max_forms: int
    max_dashboards: int
    max_users: int
    monthly_tokens: int
    additional_user_cost: int


class PackageFeatures(BaseModel):
    """Boolean feature flags of a tier."""
    model_config = ConfigDict(frozen=True)

    # Core
    basic_forms: bool = False
    unlimited_forms: bool = False
    basic_dashboard: bool = False
    unlimited_dashboards: bool = False
    basic_metrics: bool = False
    advanced_metrics: bool = False

    # AI
    basic_ai: bool = False
    advanced_ai: bool = False
    predictive_ai: bool = False
    custom_integrations: bool = False

    # Export
    pdf_export: bool = False
    excel_export: bool = False

    # Communication and support
    push_notifications: bool = False
    whatsapp_support: bool = False
    on_site_support: bool = False

    # Branding
    custom_branding: bool = False

    # Hosting
    shared_hosting: bool = False
    dedicated_hosting: bool = False

    # Advanced
    custom_workflows: bool = False
    external_connectors: bool = False
    team_training: bool = False


class PackageDescription(BaseModel):
    """Catalog entry as served to the package-selection screens."""
    model_config = ConfigDict(frozen=True)

    tier: PackageTier
    display_name: str
    price: int
    price_label: str
    limits: PackageLimits
    features: PackageFeatures


def is_unbounded(value: int) -> bool:
    return value == UNLIMITED


def add_to_limit(limit: int, extra: int) -> int:
    """Add extra capacity to a limit; unlimited absorbs any addition."""
    if limit == UNLIMITED:
        return UNLIMITED
    return limit + extra
