"""
ubora/features/payg/pricing.py

Pay-as-you-go price list.

A separate a-la-carte table, not derived from the package catalog:
- per-unit rates used to price shortfalls during a package transition
- the fixed offer packs a director can buy on top of a package
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Union

from ubora.core.errors import InvalidPurchaseError, ValidationError
from ubora.models.offer import PayAsYouGoOffer
from ubora.models.session import ResourceKind


# FCFA per unit; tokens are priced per single token
UNIT_PRICES: Dict[ResourceKind, Decimal] = {
    ResourceKind.FORMS: Decimal("5000"),
    ResourceKind.DASHBOARDS: Decimal("10000"),
    ResourceKind.USERS: Decimal("7000"),
    ResourceKind.TOKENS: Decimal("0.0085"),
}

# "Unlimited" packs are sold as a large fixed quantity
UNLIMITED_PACK_QUANTITY = 999

OFFERS: List[PayAsYouGoOffer] = [
    PayAsYouGoOffer(
        id="tokens-10k",
        item_type=ResourceKind.TOKENS,
        quantity=10000,
        price=2500,
        name="10 000 Tokens Archa",
        description="Pour conversations et analyses supplémentaires",
    ),
    PayAsYouGoOffer(
        id="tokens-25k",
        item_type=ResourceKind.TOKENS,
        quantity=25000,
        price=5000,
        name="25 000 Tokens Archa",
        description="Idéal pour usage intensif",
    ),
    PayAsYouGoOffer(
        id="tokens-40k",
        item_type=ResourceKind.TOKENS,
        quantity=40000,
        price=8500,
        name="40 000 Tokens Archa",
        description="Pour équipes importantes",
    ),
    PayAsYouGoOffer(
        id="forms-5",
        item_type=ResourceKind.FORMS,
        quantity=5,
        price=15000,
        name="5 Formulaires supplémentaires",
        description="Créez 5 formulaires de plus",
    ),
    PayAsYouGoOffer(
        id="forms-10",
        item_type=ResourceKind.FORMS,
        quantity=10,
        price=25000,
        name="10 Formulaires supplémentaires",
        description="Idéal pour les structures en croissance",
    ),
    PayAsYouGoOffer(
        id="forms-unlimited",
        item_type=ResourceKind.FORMS,
        quantity=UNLIMITED_PACK_QUANTITY,
        price=50000,
        name="Formulaires illimités",
        description="Accès illimité aux formulaires",
    ),
    PayAsYouGoOffer(
        id="dashboards-3",
        item_type=ResourceKind.DASHBOARDS,
        quantity=3,
        price=20000,
        name="3 Tableaux de bord supplémentaires",
        description="Créez 3 tableaux de bord de plus",
    ),
    PayAsYouGoOffer(
        id="dashboards-5",
        item_type=ResourceKind.DASHBOARDS,
        quantity=5,
        price=30000,
        name="5 Tableaux de bord supplémentaires",
        description="Pour analyses approfondies",
    ),
    PayAsYouGoOffer(
        id="dashboards-unlimited",
        item_type=ResourceKind.DASHBOARDS,
        quantity=UNLIMITED_PACK_QUANTITY,
        price=60000,
        name="Tableaux de bord illimités",
        description="Accès illimité aux tableaux de bord",
    ),
    PayAsYouGoOffer(
        id="users-3",
        item_type=ResourceKind.USERS,
        quantity=3,
        price=21000,
        name="3 Utilisateurs supplémentaires",
        description="Ajoutez 3 utilisateurs à votre équipe",
    ),
    PayAsYouGoOffer(
        id="users-5",
        item_type=ResourceKind.USERS,
        quantity=5,
        price=35000,
        name="5 Utilisateurs supplémentaires",
        description="Idéal pour les équipes moyennes",
    ),
    PayAsYouGoOffer(
        id="users-10",
        item_type=ResourceKind.USERS,
        quantity=10,
        price=70000,
        name="10 Utilisateurs supplémentaires",
        description="Pour les grandes équipes",
    ),
]

_OFFERS_BY_ID = {offer.id: offer for offer in OFFERS}


def as_resource_kind(value: Union[ResourceKind, str]) -> ResourceKind:
    """Coerce a resource name, raising InvalidPurchaseError on unknown kinds."""
    if isinstance(value, ResourceKind):
        return value
    try:
        return ResourceKind(str(value).strip().lower())
    except ValueError:
        raise InvalidPurchaseError(f"Unknown pay-as-you-go item type: {value!r}") from None


def round_amount(value: Decimal) -> int:
    """Round half-up to a whole currency unit."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def unit_price(kind: Union[ResourceKind, str]) -> Decimal:
    return UNIT_PRICES[as_resource_kind(kind)]


def price_for(kind: Union[ResourceKind, str], quantity: int) -> int:
    """Price of `quantity` units at the flat per-unit rate."""
    if quantity < 0:
        raise ValidationError("Quantity must be non-negative")
    return round_amount(unit_price(kind) * quantity)


def get_offer(offer_id: str) -> PayAsYouGoOffer:
    offer = _OFFERS_BY_ID.get(offer_id)
    if offer is None:
        raise InvalidPurchaseError(f"Unknown pay-as-you-go offer: {offer_id!r}")
    return offer


def list_offers(item_type: Union[ResourceKind, str, None] = None) -> List[PayAsYouGoOffer]:
    if item_type is None:
        return list(OFFERS)
    kind = as_resource_kind(item_type)
    return [offer for offer in OFFERS if offer.item_type == kind]
