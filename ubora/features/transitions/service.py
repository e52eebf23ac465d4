"""
ubora/features/transitions/service.py

Package transition pricing engine.

Pricing rules:
- Remaining value of the current package is prorated linearly over a fixed
  30-day cycle: round(price * days_remaining / 30)
- Needs above the new tier's bounded limits (forms, dashboards, users) are
  priced at the flat pay-as-you-go unit rate
- Amount payable = new price - remaining value + pay-as-you-go cost, never
  below 0 (a proration credit cannot become a refund)

Token rules:
- The new session gets the new tier's fresh monthly allotment
- Unused tokens of the current package's own allotment are forfeited
- Unused purchased tokens of every active session (the current one and any
  pay-as-you-go session) carry over unless the caller opts out, in which
  case they are forfeited too

Purchased forms, dashboards and users on the current session follow the same
opt-out and carry over onto the new tier's bounded limits; an unlimited limit
absorbs them.

Every money value is rounded half-up where it is derived.
"""

from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from ubora.core.errors import NoActiveSessionError
from ubora.core.logging import log_event
from ubora.core.timeutils import Clock, IdFactory, days_remaining, new_id, utc_now
from ubora.features.catalog.service import (
    FEATURE_NAMES,
    as_tier,
    compare_tiers,
    features_of,
    format_amount,
    limits_of,
    price_of,
)
from ubora.features.payg.pricing import round_amount, unit_price
from ubora.features.sessions.service import CYCLE_DAYS, SubscriptionSessionService, current_session_of
from ubora.features.sessions.store import UserStore
from ubora.models.package import UNLIMITED, PackageTier, add_to_limit, is_unbounded
from ubora.models.session import (
    PayAsYouGoPurchase,
    PayAsYouGoResources,
    ResourceKind,
    SessionDraft,
    SessionType,
    SubscriptionSession,
)
from ubora.models.transition import (
    FeatureChange,
    PayAsYouGoItem,
    TransitionOptions,
    TransitionPreview,
    TransitionQuote,
    UserNeeds,
)
from ubora.models.user import UserRecord

# Resources priced from stated needs; tokens go through carry-over instead
PRICED_NEEDS = {
    ResourceKind.FORMS: "max_forms",
    ResourceKind.DASHBOARDS: "max_dashboards",
    ResourceKind.USERS: "max_users",
}

# Numeric limits compared when diffing two tiers
COMPARED_LIMITS = ("max_forms", "max_dashboards", "max_users", "monthly_tokens")

CARRY_OVER_METHOD = "carry_over"
TRANSITION_METHOD = "transition"

RESOURCE_LABELS = {
    ResourceKind.FORMS: "formulaires",
    ResourceKind.DASHBOARDS: "tableaux de bord",
    ResourceKind.USERS: "utilisateurs",
}


def unused_pay_as_you_go_tokens(user: UserRecord, exclude_session_id: Optional[str] = None) -> int:
    """Unspent purchased tokens across active sessions, floored at 0 per session."""
    return sum(
        session.unused_pay_as_you_go_tokens
        for session in user.subscription_sessions
        if session.is_active and session.id != exclude_session_id
    )


def carried_resources(session: SubscriptionSession, new_tier: PackageTier) -> Dict[ResourceKind, int]:
    """Purchased forms, dashboards and users that still matter under the new tier's limits."""
    limits = limits_of(new_tier)
    carried = {}
    for kind, limit_name in PRICED_NEEDS.items():
        amount = session.pay_as_you_go_resources.amount(kind)
        if amount > 0 and not is_unbounded(getattr(limits, limit_name)):
            carried[kind] = amount
    return carried


def _limit_change(name: str, old: int, new: int) -> Optional[Tuple[str, FeatureChange]]:
    if old == new:
        return None
    change = FeatureChange(feature=name, from_limit=old, to_limit=new, is_unlimited=is_unbounded(new))
    if is_unbounded(new):
        return "upgrade", change
    if is_unbounded(old):
        return "downgrade", change
    return ("upgrade" if new > old else "downgrade"), change


def diff_tiers(current: PackageTier, target: PackageTier) -> Tuple[List[FeatureChange], List[FeatureChange]]:
    """Split the limits and flags that differ into (upgrades, downgrades)."""
    upgrades: List[FeatureChange] = []
    downgrades: List[FeatureChange] = []

    old_limits, new_limits = limits_of(current), limits_of(target)
    for name in COMPARED_LIMITS:
        result = _limit_change(name, getattr(old_limits, name), getattr(new_limits, name))
        if result:
            direction, change = result
            (upgrades if direction == "upgrade" else downgrades).append(change)

    old_features, new_features = features_of(current), features_of(target)
    for name in FEATURE_NAMES:
        old, new = getattr(old_features, name), getattr(new_features, name)
        if old == new:
            continue
        change = FeatureChange(feature=name, from_limit=old, to_limit=new)
        (upgrades if new else downgrades).append(change)

    return upgrades, downgrades


def _tokens_label(tokens: int) -> str:
    return "illimités" if is_unbounded(tokens) else format_amount(tokens)


def _resources_label(resources: Dict[ResourceKind, int]) -> str:
    return ", ".join(f"{amount} {RESOURCE_LABELS[kind]}" for kind, amount in resources.items())


class PackageTransitionService:
    """Quotes and executes a change of package tier mid-cycle."""

    def __init__(
        self,
        store: UserStore,
        clock: Clock = utc_now,
        id_factory: IdFactory = new_id,
        sessions: Optional[SubscriptionSessionService] = None,
    ):
        self.store = store
        self.clock = clock
        self.id_factory = id_factory
        self.sessions = sessions or SubscriptionSessionService(store, clock=clock, id_factory=id_factory)

    # ------------------------------------------------------------------
    # Quotes (pure)
    # ------------------------------------------------------------------

    def calculate_transition(
        self,
        user: UserRecord,
        new_tier: Union[PackageTier, str],
        options: Optional[TransitionOptions] = None,
    ) -> TransitionQuote:
        """Quote without stated needs."""
        return self.calculate_enhanced_transition(user, new_tier, None, options)

    def calculate_enhanced_transition(
        self,
        user: UserRecord,
        new_tier: Union[PackageTier, str],
        needs: Optional[UserNeeds] = None,
        options: Optional[TransitionOptions] = None,
    ) -> TransitionQuote:
        """
        Full quote for moving the user's current session to new_tier.

        Raises:
            NoActiveSessionError: nothing to transition from
        """
        new_tier = as_tier(new_tier)
        needs = needs or UserNeeds()
        options = options or TransitionOptions()

        current = current_session_of(user)
        if current is None:
            raise NoActiveSessionError(user.user_id)

        days = days_remaining(current.end_date, self.clock())
        remaining_value = round_amount(Decimal(price_of(current.package_type)) * days / CYCLE_DAYS)
        new_price = price_of(new_tier)

        preserve = options.preserve_unused_pay_as_you_go
        carried = carried_resources(current, new_tier) if preserve else {}
        items = self._pay_as_you_go_items(new_tier, needs, carried)
        pay_as_you_go_cost = sum(item.total_cost for item in items)

        unused_payg = unused_pay_as_you_go_tokens(user)
        preserved = unused_payg if preserve else 0
        new_tokens = limits_of(new_tier).monthly_tokens
        upgrades, downgrades = diff_tiers(current.package_type, new_tier)

        return TransitionQuote(
            current_session=current,
            current_package=current.package_type,
            new_package=new_tier,
            session_type=self._session_type(current.package_type, new_tier),
            days_remaining=days,
            current_package_remaining_value=remaining_value,
            new_package_price=new_price,
            pay_as_you_go_total_cost=pay_as_you_go_cost,
            final_amount_to_pay=max(0, new_price - remaining_value + pay_as_you_go_cost),
            savings=max(0, remaining_value - pay_as_you_go_cost),
            pay_as_you_go_items=items,
            unused_package_tokens=current.unused_package_tokens,
            unused_pay_as_you_go_tokens=unused_payg,
            preserved_pay_as_you_go_tokens=preserved,
            forfeited_pay_as_you_go_tokens=unused_payg - preserved,
            preserved_pay_as_you_go_resources=carried,
            new_package_tokens=new_tokens,
            total_tokens_after=add_to_limit(new_tokens, preserved),
            feature_upgrades=upgrades,
            feature_downgrades=downgrades,
        )

    def _pay_as_you_go_items(
        self,
        tier: PackageTier,
        needs: UserNeeds,
        carried: Dict[ResourceKind, int],
    ) -> List[PayAsYouGoItem]:
        """Shortfalls against the new limits, counting carried-over purchases as capacity."""
        limits = limits_of(tier)
        items = []
        for kind, limit_name in PRICED_NEEDS.items():
            limit = add_to_limit(getattr(limits, limit_name), carried.get(kind, 0))
            requested = needs.need(kind)
            if is_unbounded(limit) or requested <= limit:
                continue
            rate = unit_price(kind)
            items.append(PayAsYouGoItem(
                feature=kind,
                current_limit=limit,
                requested_amount=requested,
                cost_per_unit=round_amount(rate),
                total_cost=round_amount(rate * (requested - limit)),
            ))
        return items

    @staticmethod
    def _session_type(current: PackageTier, target: PackageTier) -> SessionType:
        if current == target:
            return SessionType.RENEWAL
        if compare_tiers(current, target) < 0:
            return SessionType.DOWNGRADE
        return SessionType.UPGRADE

    def get_transition_preview(
        self,
        user: UserRecord,
        new_tier: Union[PackageTier, str],
        options: Optional[TransitionOptions] = None,
    ) -> TransitionPreview:
        quote = self.calculate_transition(user, new_tier, options)
        return TransitionPreview(quote=quote, summary=self._summary(quote))

    def get_enhanced_transition_preview(
        self,
        user: UserRecord,
        new_tier: Union[PackageTier, str],
        needs: Optional[UserNeeds] = None,
        options: Optional[TransitionOptions] = None,
    ) -> TransitionPreview:
        quote = self.calculate_enhanced_transition(user, new_tier, needs, options)
        return TransitionPreview(quote=quote, summary=self._summary(quote))

    @staticmethod
    def _summary(quote: TransitionQuote) -> str:
        parts = [f"Coût: {format_amount(quote.final_amount_to_pay)} FCFA"]
        if quote.current_package_remaining_value > 0:
            parts.append(
                f"Crédit restant: {format_amount(quote.current_package_remaining_value)} FCFA "
                f"({quote.days_remaining} jours)"
            )
        if quote.pay_as_you_go_total_cost > 0:
            parts.append(f"Pay-as-you-go: {format_amount(quote.pay_as_you_go_total_cost)} FCFA")
        parts.append(f"Nouveaux tokens: {_tokens_label(quote.new_package_tokens)}")
        if quote.preserved_pay_as_you_go_tokens > 0:
            parts.append(f"Pay-as-you-go préservé: {format_amount(quote.preserved_pay_as_you_go_tokens)} tokens")
        if quote.preserved_pay_as_you_go_resources:
            parts.append(f"Achats préservés: {_resources_label(quote.preserved_pay_as_you_go_resources)}")
        if quote.forfeited_pay_as_you_go_tokens > 0:
            parts.append(f"⚠️ {format_amount(quote.forfeited_pay_as_you_go_tokens)} tokens pay-as-you-go seront perdus")
        if quote.unused_package_tokens > 0:
            parts.append(f"⚠️ {format_amount(quote.unused_package_tokens)} tokens package seront perdus")
        return " • ".join(parts)

    @staticmethod
    def _notes(quote: TransitionQuote) -> str:
        notes = [
            f"{quote.current_package.value} → {quote.new_package.value}",
            f"Tokens réinitialisés: {_tokens_label(quote.new_package_tokens)}",
        ]
        if quote.preserved_pay_as_you_go_tokens > 0:
            notes.append(f"Pay-as-you-go préservé: {format_amount(quote.preserved_pay_as_you_go_tokens)} tokens")
        if quote.preserved_pay_as_you_go_resources:
            notes.append(f"Achats préservés: {_resources_label(quote.preserved_pay_as_you_go_resources)}")
        if quote.forfeited_pay_as_you_go_tokens > 0:
            notes.append(f"Tokens pay-as-you-go perdus: {format_amount(quote.forfeited_pay_as_you_go_tokens)}")
        if quote.unused_package_tokens > 0:
            notes.append(f"Tokens package perdus: {format_amount(quote.unused_package_tokens)}")
        if quote.pay_as_you_go_total_cost > 0:
            notes.append(f"Pay-as-you-go inclus: {format_amount(quote.pay_as_you_go_total_cost)} FCFA")
        return " | ".join(notes)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_transition(
        self,
        user_id: str,
        new_tier: Union[PackageTier, str],
        options: Optional[TransitionOptions] = None,
        payment_method: Optional[str] = None,
        needs: Optional[UserNeeds] = None,
    ) -> SubscriptionSession:
        """
        Quote and commit a transition in one versioned write.

        The new session keeps the current cycle's start and end dates, is
        charged final_amount_to_pay and starts with zero usage. Carried-over
        tokens, carried-over purchased capacity and resources bought to cover stated needs are recorded as
        zero-cost purchases, their cost being part of the session charge.

        Raises:
            UserNotFoundError: unknown user_id
            NoActiveSessionError: nothing to transition from
            ConflictError: the record changed during the transition
        """
        user = self.store.get(user_id)
        quote = self.calculate_enhanced_transition(user, new_tier, needs, options)
        current = quote.current_session
        now = self.clock()

        granted = {kind: 0 for kind in ResourceKind}
        purchases = []
        if quote.preserved_pay_as_you_go_tokens > 0:
            granted[ResourceKind.TOKENS] += quote.preserved_pay_as_you_go_tokens
            purchases.append(PayAsYouGoPurchase(
                id=self.id_factory("purchase"),
                item_type=ResourceKind.TOKENS,
                quantity=quote.preserved_pay_as_you_go_tokens,
                amount_paid=0,
                purchase_date=now,
                payment_method=CARRY_OVER_METHOD,
            ))
        for kind, amount in quote.preserved_pay_as_you_go_resources.items():
            granted[kind] += amount
            purchases.append(PayAsYouGoPurchase(
                id=self.id_factory("purchase"),
                item_type=kind,
                quantity=amount,
                amount_paid=0,
                purchase_date=now,
                payment_method=CARRY_OVER_METHOD,
            ))
        for item in quote.pay_as_you_go_items:
            granted[item.feature] += item.extra_units
            purchases.append(PayAsYouGoPurchase(
                id=self.id_factory("purchase"),
                item_type=item.feature,
                quantity=item.extra_units,
                amount_paid=0,
                purchase_date=now,
                payment_method=TRANSITION_METHOD,
            ))

        extras = None
        if purchases:
            extras = PayAsYouGoResources(
                **{kind.value: amount for kind, amount in granted.items()},
                purchases=purchases,
            )

        draft = SessionDraft(
            package_type=quote.new_package,
            session_type=quote.session_type,
            start_date=current.start_date,
            end_date=current.end_date,
            amount_paid=quote.final_amount_to_pay,
            payment_method=payment_method,
            duration_days=current.duration_days,
            notes=self._notes(quote),
            pay_as_you_go_resources=extras,
        )
        session, _ = self.sessions.append_session(user, draft)

        log_event(
            "info",
            "[transitions] executed",
            user_id=user_id,
            session_id=session.id,
            event_type="package_transition",
            extra={
                "from_package": quote.current_package.value,
                "to_package": quote.new_package.value,
                "amount_paid": quote.final_amount_to_pay,
                "preserved_tokens": quote.preserved_pay_as_you_go_tokens,
                "forfeited_tokens": quote.unused_package_tokens + quote.forfeited_pay_as_you_go_tokens,
            },
        )
        return session

    # ------------------------------------------------------------------
    # Token totals
    # ------------------------------------------------------------------

    def get_total_available_tokens(self, user: UserRecord, new_tier: Union[PackageTier, str]) -> int:
        """Tokens the user would hold after moving to new_tier (-1 when unbounded)."""
        return add_to_limit(limits_of(new_tier).monthly_tokens, unused_pay_as_you_go_tokens(user))

    def get_current_total_available_tokens(self, user: UserRecord) -> int:
        """Unspent tokens now: current session plus other active pay-as-you-go sessions."""
        current = current_session_of(user)
        if current is None:
            return unused_pay_as_you_go_tokens(user)
        if is_unbounded(current.total_tokens):
            return UNLIMITED
        return current.unused_tokens + unused_pay_as_you_go_tokens(user, exclude_session_id=current.id)
