"""
ubora/models/transition.py

Package transition quote models.
"""

from typing import Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from ubora.models.package import PackageTier
from ubora.models.session import ResourceKind, SessionType, SubscriptionSession


class UserNeeds(BaseModel):
    """Resource volumes the director expects to need after the change."""
    model_config = ConfigDict(frozen=True)

    forms: Optional[int] = Field(default=None, ge=0)
    dashboards: Optional[int] = Field(default=None, ge=0)
    users: Optional[int] = Field(default=None, ge=0)
    tokens: Optional[int] = Field(default=None, ge=0)

    def need(self, kind: ResourceKind) -> int:
        return getattr(self, kind.value) or 0


class TransitionOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    preserve_unused_pay_as_you_go: bool = True


class PayAsYouGoItem(BaseModel):
    """A shortfall between a stated need and the new tier's limit."""
    model_config = ConfigDict(frozen=True)

    feature: ResourceKind
    current_limit: int
    requested_amount: int
    cost_per_unit: int
    total_cost: int

    @property
    def extra_units(self) -> int:
        return self.requested_amount - self.current_limit


class FeatureChange(BaseModel):
    """One limit or flag that differs between the two tiers."""
    model_config = ConfigDict(frozen=True)

    feature: str
    from_limit: Union[bool, int]
    to_limit: Union[bool, int]
    is_unlimited: bool = False


class TransitionQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_session: SubscriptionSession
    current_package: PackageTier
    new_package: PackageTier
    session_type: SessionType
    days_remaining: int

    # Pricing, FCFA
    current_package_remaining_value: int
    new_package_price: int
    pay_as_you_go_total_cost: int
    final_amount_to_pay: int
    savings: int
    pay_as_you_go_items: List[PayAsYouGoItem] = Field(default_factory=list)

    # Tokens
    unused_package_tokens: int
    unused_pay_as_you_go_tokens: int
    preserved_pay_as_you_go_tokens: int
    new_package_tokens: int
    total_tokens_after: int
    forfeited_pay_as_you_go_tokens: int = 0
    # Purchased forms, dashboards and users moved onto the new session
    preserved_pay_as_you_go_resources: Dict[ResourceKind, int] = Field(default_factory=dict)

    feature_upgrades: List[FeatureChange] = Field(default_factory=list)
    feature_downgrades: List[FeatureChange] = Field(default_factory=list)


class TransitionPreview(BaseModel):
    model_config = ConfigDict(frozen=True)

    quote: TransitionQuote
    summary: str
