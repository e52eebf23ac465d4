"""
ubora/features/sessions/resolver.py

Read projection of a director's package state.

Everything here is pure arithmetic over the current session's snapshot:
no store access, no writes. Non-director roles and directors without a
current session resolve to empty values (or NotApplicable, for callers that
need to tell "no package" from "zero usage").
"""

from typing import Iterable, Optional, Union

from ubora.core.config import settings
from ubora.core.errors import ValidationError
from ubora.core.timeutils import Clock, days_remaining, utc_now
from ubora.features.catalog.service import FEATURE_NAMES, enabled_features, has_package_feature
from ubora.features.sessions.service import current_session_of
from ubora.models.package import UNLIMITED, is_unbounded
from ubora.models.session import ResourceKind, SubscriptionSession
from ubora.models.standing import (
    ACTION_RESOURCES,
    Applicable,
    NotApplicable,
    PackageAction,
    PackageInfo,
    PackageLimitsView,
    PackageStanding,
    SubscriptionHistory,
)
from ubora.models.user import UserRecord


def _remaining(total: int, used: int) -> int:
    if is_unbounded(total):
        return UNLIMITED
    return max(0, total - used)


class UserSessionService:
    """Session info resolver used by screens and by the action gate."""

    def __init__(self, clock: Clock = utc_now, director_roles: Optional[Iterable[str]] = None):
        self.clock = clock
        self.director_roles = frozenset(director_roles or settings.director_roles())

    def is_director(self, user: UserRecord) -> bool:
        return user.role in self.director_roles

    def _session(self, user: UserRecord) -> Optional[SubscriptionSession]:
        if not self.is_director(user):
            return None
        return current_session_of(user)

    def get_package_standing(self, user: UserRecord) -> PackageStanding:
        if not self.is_director(user):
            return NotApplicable(reason="not_director")
        session = current_session_of(user)
        if session is None:
            return NotApplicable(reason="no_active_session")
        return Applicable(info=self._build_info(session))

    def get_user_package_info(self, user: UserRecord) -> PackageInfo:
        """Full package picture; the empty info for non-directors or no session."""
        session = self._session(user)
        if session is None:
            return PackageInfo()
        return self._build_info(session)

    def _build_info(self, session: SubscriptionSession) -> PackageInfo:
        remaining_days = days_remaining(session.end_date, self.clock())
        grant = session.package_resources
        extras = session.pay_as_you_go_resources
        usage = session.usage

        totals = {kind: session.total(kind) for kind in ResourceKind}

        return PackageInfo(
            package_type=session.package_type,
            package_features=enabled_features(session.package_type),
            subscription_start_date=session.start_date,
            subscription_end_date=session.end_date,
            subscription_status="active" if session.is_active and remaining_days > 0 else "expired",
            days_remaining=remaining_days,
            package_tokens=grant.tokens_included,
            package_forms=grant.forms_included,
            package_dashboards=grant.dashboards_included,
            package_users=grant.users_included,
            pay_as_you_go_tokens=extras.tokens,
            pay_as_you_go_forms=extras.forms,
            pay_as_you_go_dashboards=extras.dashboards,
            pay_as_you_go_users=extras.users,
            total_tokens=totals[ResourceKind.TOKENS],
            total_forms=totals[ResourceKind.FORMS],
            total_dashboards=totals[ResourceKind.DASHBOARDS],
            total_users=totals[ResourceKind.USERS],
            tokens_used=usage.tokens_used,
            forms_created=usage.forms_created,
            dashboards_created=usage.dashboards_created,
            users_added=usage.users_added,
            tokens_remaining=_remaining(totals[ResourceKind.TOKENS], usage.tokens_used),
            forms_remaining=_remaining(totals[ResourceKind.FORMS], usage.forms_created),
            dashboards_remaining=_remaining(totals[ResourceKind.DASHBOARDS], usage.dashboards_created),
            users_remaining=_remaining(totals[ResourceKind.USERS], usage.users_added),
            amount_paid=session.amount_paid,
            payment_method=session.payment_method,
            session_type=session.session_type.value,
        )

    def get_package_limits(self, user: UserRecord) -> PackageLimitsView:
        """Effective limits: snapshot plus extras, -1 when unbounded, zeros without a package."""
        session = self._session(user)
        if session is None:
            return PackageLimitsView()
        return PackageLimitsView(
            max_forms=session.total(ResourceKind.FORMS),
            max_dashboards=session.total(ResourceKind.DASHBOARDS),
            max_users=session.total(ResourceKind.USERS),
            max_tokens=session.total(ResourceKind.TOKENS),
        )

    def has_feature(self, user: UserRecord, feature: str) -> bool:
        if feature not in FEATURE_NAMES:
            raise ValidationError(f"Unknown package feature: {feature!r}")
        session = self._session(user)
        if session is None:
            return False
        return has_package_feature(session.package_type, feature)

    def can_perform_action(self, user: UserRecord, action: Union[PackageAction, str], current_count: int) -> bool:
        """
        Gate for form/dashboard/user creation and token use.

        True when current_count is below the effective limit, always true
        for an unbounded limit, always false without a package.
        """
        try:
            action = PackageAction(action)
        except ValueError:
            raise ValidationError(f"Unknown package action: {action!r}") from None

        if self._session(user) is None:
            return False
        limit = self.get_package_limits(user).limit_for(ACTION_RESOURCES[action])
        if is_unbounded(limit):
            return True
        return current_count < limit

    def get_total_pay_as_you_go_tokens(self, user: UserRecord) -> int:
        session = self._session(user)
        if session is None:
            return 0
        return session.pay_as_you_go_resources.tokens

    def get_total_available_tokens(self, user: UserRecord) -> int:
        """Package tokens plus pay-as-you-go tokens of the current session."""
        session = self._session(user)
        if session is None:
            return 0
        return session.total_tokens

    def get_subscription_history(self, user: UserRecord) -> SubscriptionHistory:
        if not self.is_director(user):
            return SubscriptionHistory()
        sessions = list(user.subscription_sessions)
        return SubscriptionHistory(
            current_session=current_session_of(user),
            all_sessions=sessions,
            total_sessions=len(sessions),
        )

    def needs_package_selection(self, user: UserRecord) -> bool:
        """True for a director with no current session."""
        if not self.is_director(user):
            return False
        return current_session_of(user) is None

