"""
Package and subscription session API.

Thin routes over the session service, the session info resolver and the
transition engine. Domain errors propagate to the AppError handlers, which
render the standard error envelope.
"""
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from ubora.core.config import settings
from ubora.core.timeutils import Clock, IdFactory, new_id, utc_now
from ubora.features.catalog.service import list_packages
from ubora.features.payg.pricing import list_offers
from ubora.features.sessions.resolver import UserSessionService
from ubora.features.sessions.service import SubscriptionSessionService
from ubora.features.sessions.store import InMemoryUserStore, SqlUserStore, UserStore
from ubora.features.transitions.service import PackageTransitionService
from ubora.models.package import PackageTier
from ubora.models.session import PurchaseRequest, ResourceKind
from ubora.models.transition import TransitionOptions, UserNeeds

router = APIRouter(prefix="/v1", tags=["packages"])

_memory_store: Optional[InMemoryUserStore] = None


def get_clock() -> Clock:
    return utc_now


def get_id_factory() -> IdFactory:
    return new_id


def get_user_store() -> UserStore:
    """SQL store when DATABASE_URL is set, otherwise a process-wide in-memory store."""
    global _memory_store
    if settings.DATABASE_URL:
        return SqlUserStore()
    if _memory_store is None:
        _memory_store = InMemoryUserStore()
    return _memory_store


def get_session_service(
    store: UserStore = Depends(get_user_store),
    clock: Clock = Depends(get_clock),
    id_factory: IdFactory = Depends(get_id_factory),
) -> SubscriptionSessionService:
    return SubscriptionSessionService(store, clock=clock, id_factory=id_factory)


def get_resolver(clock: Clock = Depends(get_clock)) -> UserSessionService:
    return UserSessionService(clock=clock)


def get_transition_service(
    sessions: SubscriptionSessionService = Depends(get_session_service),
) -> PackageTransitionService:
    return PackageTransitionService(
        sessions.store,
        clock=sessions.clock,
        id_factory=sessions.id_factory,
        sessions=sessions,
    )


def _strip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


class SubscribeIn(BaseModel):
    package: PackageTier
    duration_months: int = Field(default=1, ge=1)
    amount_paid: Optional[int] = Field(default=None, ge=0)
    payment_method: Optional[str] = None

    @field_validator("payment_method")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip(value)


class RenewIn(BaseModel):
    amount_paid: Optional[int] = Field(default=None, ge=0)
    payment_method: Optional[str] = None

    @field_validator("payment_method")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip(value)


class PurchaseIn(BaseModel):
    item_type: str
    quantity: int
    amount_paid: int = 0
    payment_method: Optional[str] = None

    @field_validator("item_type", "payment_method")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip(value)


class OfferPurchaseIn(BaseModel):
    payment_method: Optional[str] = None

    @field_validator("payment_method")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip(value)


class UsageIn(BaseModel):
    resource: ResourceKind
    quantity: int = Field(default=1, ge=0)


class CanIn(BaseModel):
    action: str
    current_count: int = Field(ge=0)


class TransitionIn(BaseModel):
    package: PackageTier
    needs: Optional[UserNeeds] = None
    preserve_unused_pay_as_you_go: bool = True
    payment_method: Optional[str] = None

    @field_validator("payment_method")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip(value)

    def options(self) -> TransitionOptions:
        return TransitionOptions(preserve_unused_pay_as_you_go=self.preserve_unused_pay_as_you_go)


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------

@router.get("/packages")
def get_packages() -> Dict:
    """Full package catalog in ascending price order."""
    packages = [p.model_dump(mode="json") for p in list_packages()]
    return {"packages": packages, "count": len(packages)}


@router.get("/packages/offers")
def get_offers(item_type: Optional[str] = None) -> Dict:
    """Pay-as-you-go offer packs, optionally filtered by resource."""
    offers = [o.model_dump(mode="json") for o in list_offers(item_type)]
    return {"offers": offers, "count": len(offers)}


# ----------------------------------------------------------------------
# Read projections
# ----------------------------------------------------------------------

@router.get("/users/{user_id}/package")
def get_package(
    user_id: str,
    sessions: SubscriptionSessionService = Depends(get_session_service),
    resolver: UserSessionService = Depends(get_resolver),
) -> Dict:
    """Package standing: the full info, or why the package concept does not apply."""
    user = sessions.store.get(user_id)
    standing = resolver.get_package_standing(user)
    return {
        "userId": user_id,
        "standing": standing.model_dump(mode="json"),
        "needs_package_selection": resolver.needs_package_selection(user),
    }


@router.get("/users/{user_id}/limits")
def get_limits(
    user_id: str,
    sessions: SubscriptionSessionService = Depends(get_session_service),
    resolver: UserSessionService = Depends(get_resolver),
) -> Dict:
    user = sessions.store.get(user_id)
    return {"userId": user_id, **resolver.get_package_limits(user).model_dump(mode="json")}


@router.get("/users/{user_id}/history")
def get_history(
    user_id: str,
    sessions: SubscriptionSessionService = Depends(get_session_service),
    resolver: UserSessionService = Depends(get_resolver),
) -> Dict:
    user = sessions.store.get(user_id)
    return {"userId": user_id, **resolver.get_subscription_history(user).model_dump(mode="json")}


@router.get("/users/{user_id}/history/summary")
def get_history_summary(
    user_id: str,
    sessions: SubscriptionSessionService = Depends(get_session_service),
) -> Dict:
    user = sessions.store.get(user_id)
    summary = sessions.get_subscription_history_summary(user)
    return {
        "userId": user_id,
        **summary.model_dump(mode="json"),
        "days_until_expiration": sessions.get_days_until_expiration(user),
        "is_active": sessions.is_subscription_active(user),
    }


@router.get("/users/{user_id}/features/{feature}")
def get_feature(
    user_id: str,
    feature: str,
    sessions: SubscriptionSessionService = Depends(get_session_service),
    resolver: UserSessionService = Depends(get_resolver),
) -> Dict:
    user = sessions.store.get(user_id)
    return {"userId": user_id, "feature": feature, "enabled": resolver.has_feature(user, feature)}


@router.post("/users/{user_id}/can")
def can_perform(
    user_id: str,
    body: CanIn,
    sessions: SubscriptionSessionService = Depends(get_session_service),
    resolver: UserSessionService = Depends(get_resolver),
) -> Dict:
    """Action gate used before creating forms, dashboards, users or spending tokens."""
    user = sessions.store.get(user_id)
    allowed = resolver.can_perform_action(user, body.action, body.current_count)
    return {"userId": user_id, "action": body.action, "allowed": allowed}


# ----------------------------------------------------------------------
# Sessions
# ----------------------------------------------------------------------

@router.post("/users/{user_id}/sessions")
def subscribe(
    user_id: str,
    body: SubscribeIn,
    sessions: SubscriptionSessionService = Depends(get_session_service),
) -> Dict:
    session = sessions.create_subscription_session(
        user_id,
        body.package,
        duration_months=body.duration_months,
        amount_paid=body.amount_paid,
        payment_method=body.payment_method,
    )
    return {"userId": user_id, "session": session.model_dump(mode="json")}


@router.post("/users/{user_id}/sessions/renew")
def renew(
    user_id: str,
    body: Optional[RenewIn] = None,
    sessions: SubscriptionSessionService = Depends(get_session_service),
) -> Dict:
    body = body or RenewIn()
    session = sessions.create_renewal_session(
        user_id,
        payment_method=body.payment_method,
        amount_paid=body.amount_paid,
    )
    return {"userId": user_id, "session": session.model_dump(mode="json")}


@router.post("/users/{user_id}/sessions/deactivate")
def deactivate(
    user_id: str,
    sessions: SubscriptionSessionService = Depends(get_session_service),
) -> Dict:
    session = sessions.deactivate_current_session(user_id)
    return {"userId": user_id, "session": session.model_dump(mode="json")}


# ----------------------------------------------------------------------
# Pay-as-you-go and usage
# ----------------------------------------------------------------------

@router.post("/users/{user_id}/payg/purchases")
def add_purchase(
    user_id: str,
    body: PurchaseIn,
    sessions: SubscriptionSessionService = Depends(get_session_service),
) -> Dict:
    session = sessions.add_pay_as_you_go_resources(
        user_id,
        PurchaseRequest(
            item_type=body.item_type or "",
            quantity=body.quantity,
            amount_paid=body.amount_paid,
            payment_method=body.payment_method,
        ),
    )
    return {"userId": user_id, "session": session.model_dump(mode="json")}


@router.post("/users/{user_id}/payg/offers/{offer_id}")
def buy_offer(
    user_id: str,
    offer_id: str,
    body: Optional[OfferPurchaseIn] = None,
    sessions: SubscriptionSessionService = Depends(get_session_service),
) -> Dict:
    body = body or OfferPurchaseIn()
    session = sessions.purchase_offer(user_id, offer_id, payment_method=body.payment_method)
    return {"userId": user_id, "session": session.model_dump(mode="json")}


@router.post("/users/{user_id}/usage")
def record_usage(
    user_id: str,
    body: UsageIn,
    sessions: SubscriptionSessionService = Depends(get_session_service),
) -> Dict:
    """Record usage; token spends are checked against the session's token total."""
    if body.resource == ResourceKind.TOKENS:
        session = sessions.consume_tokens(user_id, body.quantity)
    else:
        session = sessions.update_usage(user_id, body.resource, body.quantity)
    return {"userId": user_id, "usage": session.usage.model_dump(mode="json")}


# ----------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------

@router.post("/users/{user_id}/transitions/preview")
def preview_transition(
    user_id: str,
    body: TransitionIn,
    transitions: PackageTransitionService = Depends(get_transition_service),
) -> Dict:
    user = transitions.store.get(user_id)
    preview = transitions.get_enhanced_transition_preview(user, body.package, body.needs, body.options())
    return {
        "userId": user_id,
        **preview.model_dump(mode="json"),
        "total_available_tokens": transitions.get_total_available_tokens(user, body.package),
        "current_total_available_tokens": transitions.get_current_total_available_tokens(user),
    }


@router.post("/users/{user_id}/transitions")
def execute_transition(
    user_id: str,
    body: TransitionIn,
    transitions: PackageTransitionService = Depends(get_transition_service),
) -> Dict:
    session = transitions.execute_transition(
        user_id,
        body.package,
        options=body.options(),
        payment_method=body.payment_method,
        needs=body.needs,
    )
    return {"userId": user_id, "session": session.model_dump(mode="json")}
