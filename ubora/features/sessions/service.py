"""
ubora/features/sessions/service.py

Subscription session service.

Handles:
- Session creation (first selection, renewal, transition, pay-as-you-go)
- Current session lookup
- Pay-as-you-go additions and offer purchases
- Usage counters and token consumption
- History summary

Each mutation loads the user record once, validates, and writes the whole
session list back in a single versioned update.
"""

import logging
import math
from collections import Counter
from datetime import timedelta
from typing import Callable, List, Optional, Union

from ubora.core.errors import InvalidPurchaseError, NoActiveSessionError, QuotaExceededError, ValidationError
from ubora.core.timeutils import DAY, Clock, IdFactory, new_id, utc_now
from ubora.features.catalog.service import as_tier, limits_of, price_of
from ubora.features.payg.pricing import as_resource_kind, get_offer
from ubora.features.sessions.store import UserStore
from ubora.models.package import UNLIMITED, PackageTier, is_unbounded
from ubora.models.session import (
    USAGE_FIELDS,
    PackageResources,
    PayAsYouGoPurchase,
    PayAsYouGoResources,
    PurchaseRequest,
    ResourceKind,
    SessionDraft,
    SessionType,
    SessionUsage,
    SubscriptionSession,
)
from ubora.models.standing import HistorySummary
from ubora.models.user import UserRecord


logger = logging.getLogger(__name__)

CYCLE_DAYS = 30


def current_session_of(user: UserRecord) -> Optional[SubscriptionSession]:
    """
    The session named by current_session_id, only if it is also flagged active.

    A pointer/flag disagreement yields None rather than a stale session.
    """
    if not user.current_session_id:
        return None
    for session in user.subscription_sessions:
        if session.id == user.current_session_id and session.is_active:
            return session
    return None


def _scaled(limit: int, months: int) -> int:
    if is_unbounded(limit):
        return UNLIMITED
    return limit * months


def snapshot_resources(tier: PackageTier, session_type: SessionType, months: int = 1) -> PackageResources:
    """Copy the catalog grant for a tier; pay-as-you-go sessions get none."""
    if session_type == SessionType.PAY_AS_YOU_GO:
        return PackageResources()
    limits = limits_of(tier)
    return PackageResources(
        tokens_included=_scaled(limits.monthly_tokens, months),
        forms_included=limits.max_forms,
        dashboards_included=limits.max_dashboards,
        users_included=limits.max_users,
    )


def _usage_kind(value: Union[ResourceKind, str]) -> ResourceKind:
    try:
        return ResourceKind(value)
    except ValueError:
        raise ValidationError(f"Unknown resource kind: {value!r}") from None


class SubscriptionSessionService:
    """Write side of the session history kept inside each user record."""

    def __init__(self, store: UserStore, clock: Clock = utc_now, id_factory: IdFactory = new_id):
        self.store = store
        self.clock = clock
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_session(self, user_id: str, draft: SessionDraft) -> SubscriptionSession:
        """
        Append a new active session built from a draft.

        Snapshots the tier's resources, starts with empty pay-as-you-go and
        zero usage, deactivates every existing session and writes the full
        list with the new current_session_id.

        Raises:
            UserNotFoundError: unknown user_id
            ConflictError: the record changed between read and write
        """
        user = self.store.get(user_id)
        session, _ = self.append_session(user, draft)
        return session

    def append_session(self, user: UserRecord, draft: SessionDraft):
        """Append a session to an already loaded user. Returns (session, updated user)."""
        if draft.end_date < draft.start_date:
            raise ValidationError("Session end_date precedes start_date")

        now = self.clock()
        duration_days = draft.duration_days
        if duration_days is None:
            duration_days = math.ceil((draft.end_date - draft.start_date) / DAY)

        session = SubscriptionSession(
            id=self.id_factory("session"),
            package_type=draft.package_type,
            session_type=draft.session_type,
            start_date=draft.start_date,
            end_date=draft.end_date,
            amount_paid=draft.amount_paid,
            duration_days=duration_days,
            payment_method=draft.payment_method,
            is_active=True,
            package_resources=snapshot_resources(draft.package_type, draft.session_type, draft.billing_months),
            pay_as_you_go_resources=draft.pay_as_you_go_resources or PayAsYouGoResources(),
            usage=SessionUsage(),
            notes=draft.notes,
            created_at=now,
            updated_at=now,
        )

        sessions = [
            s.model_copy(update={"is_active": False, "updated_at": now}) if s.is_active else s
            for s in user.subscription_sessions
        ]
        sessions.append(session)

        updated = self.store.update(
            user.user_id,
            {
                "subscription_sessions": sessions,
                "current_session_id": session.id,
                "package": session.package_type,
                "subscription_status": "active",
            },
            expected_version=user.version,
        )

        logger.info(
            "[sessions] created",
            extra={
                "user_id": user.user_id,
                "session_id": session.id,
                "package": session.package_type.value,
                "session_type": session.session_type.value,
                "amount_paid": session.amount_paid,
            },
        )
        return session, updated

    def create_subscription_session(
        self,
        user_id: str,
        tier: Union[PackageTier, str],
        duration_months: int = 1,
        amount_paid: Optional[int] = None,
        payment_method: Optional[str] = None,
    ) -> SubscriptionSession:
        """Start a package subscription: 30 days and one token allotment per month."""
        tier = as_tier(tier)
        if duration_months < 1:
            raise ValidationError("duration_months must be at least 1")
        if amount_paid is None:
            amount_paid = price_of(tier) * duration_months

        start = self.clock()
        draft = SessionDraft(
            package_type=tier,
            session_type=SessionType.SUBSCRIPTION,
            start_date=start,
            end_date=start + timedelta(days=CYCLE_DAYS * duration_months),
            amount_paid=amount_paid,
            payment_method=payment_method,
            duration_days=CYCLE_DAYS * duration_months,
            billing_months=duration_months,
            notes=f"Abonnement {tier.value} pour {duration_months} mois",
        )
        return self.create_session(user_id, draft)

    def create_renewal_session(
        self,
        user_id: str,
        payment_method: Optional[str] = None,
        amount_paid: Optional[int] = None,
    ) -> SubscriptionSession:
        """
        Renew the current tier for another cycle.

        The new cycle starts when the current one ends, or now if it has
        already lapsed.
        """
        user = self.store.get(user_id)
        current = current_session_of(user)
        if current is None:
            raise NoActiveSessionError(user_id)

        start = max(self.clock(), current.end_date)
        tier = current.package_type
        draft = SessionDraft(
            package_type=tier,
            session_type=SessionType.RENEWAL,
            start_date=start,
            end_date=start + timedelta(days=CYCLE_DAYS),
            amount_paid=price_of(tier) if amount_paid is None else amount_paid,
            payment_method=payment_method,
            duration_days=CYCLE_DAYS,
            notes=f"Renouvellement {tier.value}",
        )
        session, _ = self.append_session(user, draft)
        return session

    def create_pay_as_you_go_session(
        self,
        user_id: str,
        tokens: int,
        amount_paid: int,
        payment_method: Optional[str] = None,
        offer_id: Optional[str] = None,
    ) -> SubscriptionSession:
        """
        Open a 30-day session holding only purchased tokens.

        The tier is kept from the current session (starter when there is none)
        so feature flags stay meaningful; the package grant itself is empty.
        The buy is logged as the session's first purchase.
        """
        if tokens <= 0:
            raise InvalidPurchaseError("Token quantity must be positive")
        if amount_paid < 0:
            raise InvalidPurchaseError("Amount paid must be non-negative")

        user = self.store.get(user_id)
        current = current_session_of(user)
        tier = current.package_type if current else PackageTier.STARTER

        start = self.clock()
        purchase = PayAsYouGoPurchase(
            id=self.id_factory("purchase"),
            item_type=ResourceKind.TOKENS,
            quantity=tokens,
            amount_paid=amount_paid,
            purchase_date=start,
            payment_method=payment_method,
            offer_id=offer_id,
        )
        draft = SessionDraft(
            package_type=tier,
            session_type=SessionType.PAY_AS_YOU_GO,
            start_date=start,
            end_date=start + timedelta(days=CYCLE_DAYS),
            amount_paid=amount_paid,
            payment_method=payment_method,
            duration_days=CYCLE_DAYS,
            notes=f"Achat de {tokens} tokens pay-as-you-go",
            pay_as_you_go_resources=PayAsYouGoResources(tokens=tokens, purchases=[purchase]),
        )
        session, _ = self.append_session(user, draft)
        return session

    # ------------------------------------------------------------------
    # Lookups (pure)
    # ------------------------------------------------------------------

    def get_current_session(self, user: UserRecord) -> Optional[SubscriptionSession]:
        return current_session_of(user)

    def get_all_sessions(self, user: UserRecord) -> List[SubscriptionSession]:
        return list(user.subscription_sessions)

    def get_session_by_id(self, user: UserRecord, session_id: str) -> Optional[SubscriptionSession]:
        return next((s for s in user.subscription_sessions if s.id == session_id), None)

    def get_sessions_by_type(self, user: UserRecord, session_type: Union[SessionType, str]) -> List[SubscriptionSession]:
        session_type = SessionType(session_type)
        return [s for s in user.subscription_sessions if s.session_type == session_type]

    def is_subscription_active(self, user: UserRecord) -> bool:
        current = current_session_of(user)
        if current is None:
            return False
        return self.clock() <= current.end_date

    def get_days_until_expiration(self, user: UserRecord) -> int:
        """Days until the current session ends (-1 without one, negative once lapsed)."""
        current = current_session_of(user)
        if current is None:
            return -1
        return math.ceil((current.end_date - self.clock()) / DAY)

    def get_available_tokens(self, user: UserRecord) -> int:
        current = current_session_of(user)
        if current is None:
            return 0
        if is_unbounded(current.total_tokens):
            return UNLIMITED
        return current.unused_tokens

    def get_subscription_history_summary(self, user: UserRecord) -> HistorySummary:
        sessions = user.subscription_sessions
        granted = sum(s.total_tokens for s in sessions if not is_unbounded(s.total_tokens))
        return HistorySummary(
            total_sessions=len(sessions),
            total_amount_paid=sum(s.amount_paid for s in sessions),
            total_pay_as_you_go_spent=sum(
                p.amount_paid for s in sessions for p in s.pay_as_you_go_resources.purchases
            ),
            total_tokens_granted=granted,
            total_tokens_used=sum(s.usage.tokens_used for s in sessions),
            sessions_by_type=dict(Counter(s.session_type.value for s in sessions)),
            sessions_by_package=dict(Counter(s.package_type.value for s in sessions)),
            current_session=current_session_of(user),
        )

    # ------------------------------------------------------------------
    # Mutations of the current session
    # ------------------------------------------------------------------

    def _mutate_current(
        self,
        user_id: str,
        change: Callable[[SubscriptionSession], SubscriptionSession],
    ) -> SubscriptionSession:
        user = self.store.get(user_id)
        current = current_session_of(user)
        if current is None:
            raise NoActiveSessionError(user_id)

        changed = change(current).model_copy(update={"updated_at": self.clock()})
        sessions = [changed if s.id == current.id else s for s in user.subscription_sessions]
        self.store.update(user_id, {"subscription_sessions": sessions}, expected_version=user.version)
        return changed

    def add_pay_as_you_go_resources(self, user_id: str, purchase: PurchaseRequest) -> SubscriptionSession:
        """
        Record a purchase on the current session and grow the matching counter.

        Raises:
            InvalidPurchaseError: unknown item type, non-positive quantity or negative amount
            NoActiveSessionError: the user has no current session
        """
        kind = as_resource_kind(purchase.item_type)
        if purchase.quantity <= 0:
            raise InvalidPurchaseError("Purchase quantity must be positive")
        if purchase.amount_paid < 0:
            raise InvalidPurchaseError("Purchase amount must be non-negative")

        record = PayAsYouGoPurchase(
            id=self.id_factory("purchase"),
            item_type=kind,
            quantity=purchase.quantity,
            amount_paid=purchase.amount_paid,
            purchase_date=purchase.purchase_date or self.clock(),
            payment_method=purchase.payment_method,
            offer_id=purchase.offer_id,
        )

        def change(session: SubscriptionSession) -> SubscriptionSession:
            extras = session.pay_as_you_go_resources
            extras = extras.model_copy(update={
                kind.value: extras.amount(kind) + record.quantity,
                "purchases": [*extras.purchases, record],
            })
            return session.model_copy(update={"pay_as_you_go_resources": extras})

        session = self._mutate_current(user_id, change)
        logger.info(
            "[sessions] pay-as-you-go added",
            extra={
                "user_id": user_id,
                "session_id": session.id,
                "item_type": kind.value,
                "quantity": record.quantity,
                "amount_paid": record.amount_paid,
            },
        )
        return session

    def purchase_offer(self, user_id: str, offer_id: str, payment_method: Optional[str] = None) -> SubscriptionSession:
        """
        Buy a catalog offer.

        Goes to the current session; without one, a token pack opens a
        pay-as-you-go session and any other pack raises NoActiveSessionError.
        """
        offer = get_offer(offer_id)
        user = self.store.get(user_id)
        if current_session_of(user) is None:
            if offer.item_type != ResourceKind.TOKENS:
                raise NoActiveSessionError(user_id)
            return self.create_pay_as_you_go_session(
                user_id, offer.quantity, offer.price, payment_method=payment_method, offer_id=offer.id
            )

        return self.add_pay_as_you_go_resources(
            user_id,
            PurchaseRequest(
                item_type=offer.item_type.value,
                quantity=offer.quantity,
                amount_paid=offer.price,
                payment_method=payment_method,
                offer_id=offer.id,
            ),
        )

    def update_usage(self, user_id: str, kind: Union[ResourceKind, str], quantity: int = 1) -> SubscriptionSession:
        """Increment a usage counter on the current session and stamp it."""
        kind = _usage_kind(kind)
        if quantity < 0:
            raise ValidationError("Usage quantity must be non-negative")
        counter, stamp = USAGE_FIELDS[kind]
        now = self.clock()

        def change(session: SubscriptionSession) -> SubscriptionSession:
            usage = session.usage.model_copy(update={
                counter: session.usage.used(kind) + quantity,
                stamp: now,
            })
            return session.model_copy(update={"usage": usage})

        session = self._mutate_current(user_id, change)
        logger.debug(
            "[sessions] usage updated",
            extra={"user_id": user_id, "session_id": session.id, "resource": kind.value, "quantity": quantity},
        )
        return session

    def consume_tokens(self, user_id: str, tokens: int) -> SubscriptionSession:
        """
        Spend tokens from the current session.

        Raises:
            QuotaExceededError: the spend would exceed the session's token total
        """
        if tokens < 0:
            raise ValidationError("Token quantity must be non-negative")
        now = self.clock()

        def change(session: SubscriptionSession) -> SubscriptionSession:
            total = session.total_tokens
            if not is_unbounded(total) and session.usage.tokens_used + tokens > total:
                logger.warning(
                    "[sessions] token quota exceeded",
                    extra={
                        "user_id": user_id,
                        "session_id": session.id,
                        "requested": tokens,
                        "available": session.unused_tokens,
                        "error_code": "quota_exceeded",
                    },
                )
                raise QuotaExceededError(
                    f"Not enough tokens: requested {tokens}, available {session.unused_tokens}"
                )
            usage = session.usage.model_copy(update={
                "tokens_used": session.usage.tokens_used + tokens,
                "last_token_used": now,
            })
            return session.model_copy(update={"usage": usage})

        return self._mutate_current(user_id, change)

    def deactivate_current_session(self, user_id: str) -> SubscriptionSession:
        """Flag the current session inactive and clear the pointer."""
        user = self.store.get(user_id)
        current = current_session_of(user)
        if current is None:
            raise NoActiveSessionError(user_id)

        now = self.clock()
        deactivated = current.model_copy(update={"is_active": False, "updated_at": now})
        sessions = [deactivated if s.id == current.id else s for s in user.subscription_sessions]
        self.store.update(
            user_id,
            {
                "subscription_sessions": sessions,
                "current_session_id": None,
                "subscription_status": "expired",
            },
            expected_version=user.version,
        )
        logger.info("[sessions] deactivated", extra={"user_id": user_id, "session_id": current.id})
        return deactivated
