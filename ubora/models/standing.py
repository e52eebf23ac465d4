"""
Read-side projections of a director's package state.

Totals and remaining counts report -1 when the resource is unbounded.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from ubora.models.package import PackageTier
from ubora.models.session import ResourceKind, SubscriptionSession


class PackageAction(str, Enum):
    CREATE_FORM = "create_form"
    CREATE_DASHBOARD = "create_dashboard"
    ADD_USER = "add_user"
    USE_TOKENS = "use_tokens"


ACTION_RESOURCES = {
    PackageAction.CREATE_FORM: ResourceKind.FORMS,
    PackageAction.CREATE_DASHBOARD: ResourceKind.DASHBOARDS,
    PackageAction.ADD_USER: ResourceKind.USERS,
    PackageAction.USE_TOKENS: ResourceKind.TOKENS,
}


class PackageInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    package_type: Optional[PackageTier] = None
    package_features: List[str] = Field(default_factory=list)
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    subscription_status: Literal["active", "expired"] = "expired"
    days_remaining: int = 0

    # Snapshotted package grant
    package_tokens: int = 0
    package_forms: int = 0
    package_dashboards: int = 0
    package_users: int = 0

    # Pay-as-you-go extras
    pay_as_you_go_tokens: int = 0
    pay_as_you_go_forms: int = 0
    pay_as_you_go_dashboards: int = 0
    pay_as_you_go_users: int = 0

    total_tokens: int = 0
    total_forms: int = 0
    total_dashboards: int = 0
    total_users: int = 0

    tokens_used: int = 0
    forms_created: int = 0
    dashboards_created: int = 0
    users_added: int = 0

    tokens_remaining: int = 0
    forms_remaining: int = 0
    dashboards_remaining: int = 0
    users_remaining: int = 0

    amount_paid: int = 0
    payment_method: Optional[str] = None
    session_type: str = "none"


class PackageLimitsView(BaseModel):
    """Effective limits of the current session (package grant plus extras)."""
    model_config = ConfigDict(frozen=True)

    max_forms: int = 0
    max_dashboards: int = 0
    max_users: int = 0
    max_tokens: int = 0

    def limit_for(self, kind: ResourceKind) -> int:
        return {
            ResourceKind.FORMS: self.max_forms,
            ResourceKind.DASHBOARDS: self.max_dashboards,
            ResourceKind.USERS: self.max_users,
            ResourceKind.TOKENS: self.max_tokens,
        }[kind]


class Applicable(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["applicable"] = "applicable"
    info: PackageInfo


class NotApplicable(BaseModel):
    """The package concept does not apply, as opposed to zero usage."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["not_applicable"] = "not_applicable"
    reason: Literal["not_director", "no_active_session"]


PackageStanding = Annotated[Union[Applicable, NotApplicable], Field(discriminator="kind")]


class SubscriptionHistory(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_session: Optional[SubscriptionSession] = None
    all_sessions: List[SubscriptionSession] = Field(default_factory=list)
    total_sessions: int = 0


class HistorySummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_sessions: int = 0
    total_amount_paid: int = 0
    total_pay_as_you_go_spent: int = 0
    total_tokens_granted: int = 0
    total_tokens_used: int = 0
    sessions_by_type: Dict[str, int] = Field(default_factory=dict)
    sessions_by_package: Dict[str, int] = Field(default_factory=dict)
    current_session: Optional[SubscriptionSession] = None
