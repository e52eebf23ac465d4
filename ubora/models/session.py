"""
ubora/models/session.py

Subscription session models.

A session is one time-bounded package activation living inside the user
record: the resources snapshotted from the catalog at creation time, the
pay-as-you-go add-ons bought during its lifetime and its usage counters.
Sessions are never deleted; they form the director's billing history.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ubora.core.timeutils import to_instant
from ubora.models.package import PackageTier, add_to_limit, is_unbounded


class SessionType(str, Enum):
    SUBSCRIPTION = "subscription"
    PAY_AS_YOU_GO = "pay_as_you_go"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    RENEWAL = "renewal"


class ResourceKind(str, Enum):
    TOKENS = "tokens"
    FORMS = "forms"
    DASHBOARDS = "dashboards"
    USERS = "users"


# Usage counter and last-touched field per resource
USAGE_FIELDS = {
    ResourceKind.TOKENS: ("tokens_used", "last_token_used"),
    ResourceKind.FORMS: ("forms_created", "last_form_created"),
    ResourceKind.DASHBOARDS: ("dashboards_created", "last_dashboard_created"),
    ResourceKind.USERS: ("users_added", "last_user_added"),
}

# Snapshotted package field per resource
PACKAGE_RESOURCE_FIELDS = {
    ResourceKind.TOKENS: "tokens_included",
    ResourceKind.FORMS: "forms_included",
    ResourceKind.DASHBOARDS: "dashboards_included",
    ResourceKind.USERS: "users_included",
}


def _optional_instant(value):
    if value is None:
        return None
    return to_instant(value)


class PackageResources(BaseModel):
    """Grants copied from the catalog when the session was created."""
    model_config = ConfigDict(frozen=True)

    tokens_included: int = 0
    forms_included: int = 0
    dashboards_included: int = 0
    users_included: int = 0

    def included(self, kind: ResourceKind) -> int:
        return getattr(self, PACKAGE_RESOURCE_FIELDS[kind])


class PayAsYouGoPurchase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    item_type: ResourceKind
    quantity: int
    amount_paid: int
    purchase_date: datetime
    payment_method: Optional[str] = None
    offer_id: Optional[str] = None

    @field_validator("purchase_date", mode="before")
    @classmethod
    def normalize_date(cls, value):
        return to_instant(value)


class PayAsYouGoResources(BaseModel):
    """Extra capacity bought on top of the package grant."""
    model_config = ConfigDict(frozen=True)

    tokens: int = 0
    forms: int = 0
    dashboards: int = 0
    users: int = 0
    purchases: List[PayAsYouGoPurchase] = Field(default_factory=list)

    def amount(self, kind: ResourceKind) -> int:
        return getattr(self, kind.value)


class SessionUsage(BaseModel):
    """Monotonic consumption counters for one session."""
    model_config = ConfigDict(frozen=True)

    tokens_used: int = 0
    forms_created: int = 0
    dashboards_created: int = 0
    users_added: int = 0
    last_token_used: Optional[datetime] = None
    last_form_created: Optional[datetime] = None
    last_dashboard_created: Optional[datetime] = None
    last_user_added: Optional[datetime] = None

    @field_validator(
        "last_token_used",
        "last_form_created",
        "last_dashboard_created",
        "last_user_added",
        mode="before",
    )
    @classmethod
    def normalize_dates(cls, value):
        return _optional_instant(value)

    def used(self, kind: ResourceKind) -> int:
        return getattr(self, USAGE_FIELDS[kind][0])


class SubscriptionSession(BaseModel):
    """
    One package activation.

    Constraint: at most one session per user has is_active=True, and it is
    the one the user's current_session_id points at.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    package_type: PackageTier
    session_type: SessionType
    start_date: datetime
    end_date: datetime
    amount_paid: int = 0
    duration_days: int = 30
    payment_method: Optional[str] = None
    is_active: bool = False
    package_resources: PackageResources = Field(default_factory=PackageResources)
    pay_as_you_go_resources: PayAsYouGoResources = Field(default_factory=PayAsYouGoResources)
    usage: SessionUsage = Field(default_factory=SessionUsage)
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def normalize_bounds(cls, value):
        return to_instant(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def normalize_stamps(cls, value):
        return _optional_instant(value)

    def total(self, kind: ResourceKind) -> int:
        """Package grant plus pay-as-you-go extras (-1 when unbounded)."""
        return add_to_limit(
            self.package_resources.included(kind),
            self.pay_as_you_go_resources.amount(kind),
        )

    @property
    def total_tokens(self) -> int:
        return self.total(ResourceKind.TOKENS)

    @property
    def unused_tokens(self) -> int:
        """Tokens still spendable in this session (0 for unbounded sessions)."""
        if is_unbounded(self.total_tokens):
            return 0
        return max(0, self.total_tokens - self.usage.tokens_used)

    @property
    def unused_package_tokens(self) -> int:
        """Unused share of the package's own token allotment."""
        return max(0, self.package_resources.tokens_included - self.usage.tokens_used)

    @property
    def unused_pay_as_you_go_tokens(self) -> int:
        """
        Unused share of the purchased tokens.

        Spending draws on the package allotment first, so purchased tokens
        are only touched once the allotment is gone.
        """
        if is_unbounded(self.total_tokens):
            return 0
        return min(self.pay_as_you_go_resources.tokens, self.unused_tokens)


class SessionDraft(BaseModel):
    """Caller-supplied part of a new session; the service fills the rest."""
    model_config = ConfigDict(frozen=True)

    package_type: PackageTier
    session_type: SessionType = SessionType.SUBSCRIPTION
    start_date: datetime
    end_date: datetime
    amount_paid: int = 0
    payment_method: Optional[str] = None
    duration_days: Optional[int] = None
    # Monthly token allotments granted by the package snapshot
    billing_months: int = Field(default=1, ge=1)
    notes: Optional[str] = None
    # Extra resources granted at creation (e.g. carried-over tokens)
    pay_as_you_go_resources: Optional[PayAsYouGoResources] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def normalize_bounds(cls, value):
        return to_instant(value)


class PurchaseRequest(BaseModel):
    """A pay-as-you-go buy event before it is recorded on a session."""
    model_config = ConfigDict(frozen=True)

    item_type: str
    quantity: int
    amount_paid: int = 0
    payment_method: Optional[str] = None
    purchase_date: Optional[datetime] = None
    offer_id: Optional[str] = None

    @field_validator("purchase_date", mode="before")
    @classmethod
    def normalize_date(cls, value):
        return _optional_instant(value)
