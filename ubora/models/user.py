from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ubora.core.timeutils import to_instant
from ubora.models.package import PackageTier
from ubora.models.session import SubscriptionSession


class UserRecord(BaseModel):
    """
    The user document that owns the session history.

    Only directors carry subscription sessions; every other role resolves to
    "no package" by policy. `version` increments on every store write.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: str
    name: Optional[str] = None
    email: Optional[str] = None
    agency_id: Optional[str] = None
    subscription_sessions: List[SubscriptionSession] = Field(default_factory=list)
    current_session_id: Optional[str] = None
    # Denormalized copy of the current session's tier and status
    package: Optional[PackageTier] = None
    subscription_status: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def normalize_stamps(cls, value):
        if value is None:
            return None
        return to_instant(value)
