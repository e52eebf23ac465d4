from pydantic import BaseModel, ConfigDict

from ubora.models.session import ResourceKind


class PayAsYouGoOffer(BaseModel):
    """A purchasable a-la-carte pack (tokens, forms, dashboards or users)."""
    model_config = ConfigDict(frozen=True)

    id: str
    item_type: ResourceKind
    quantity: int
    price: int
    name: str
    description: str = ""
