"""Domain models for viewing passes and unlocked listings."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ItemType(str, Enum):
    """Kinds of listings that can be unlocked with a viewing pass."""

    WAREHOUSE = "warehouse"
    CUSTOMER = "customer"

    @property
    def label(self) -> str:
        return "창고" if self is ItemType.WAREHOUSE else "고객사"


class PassDecision(str, Enum):
    """Outcome of evaluating a pass against a listing."""

    ALREADY_VIEWED = "already_viewed"
    NO_PASS = "no_pass"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    GRANT = "grant"


class ConsumptionFailure(str, Enum):
    """Reasons a consume call did not charge and unlock a listing."""

    NOT_AUTHENTICATED = "not_authenticated"
    NO_PASS = "no_pass"
    PASS_EXPIRED = "pass_expired"
    PASS_EXHAUSTED = "pass_exhausted"
    STORE_UNAVAILABLE = "store_unavailable"
    RECORD_UNCONFIRMED = "record_unconfirmed"
    CHARGE_LOST_AFTER_UNLOCK = "charge_lost_after_unlock"


class UsageHistoryEntry(BaseModel):
    """A single charge recorded against a pass."""

    used_at: datetime = Field(alias="date")
    item_id: str = Field(alias="itemId")
    item_type: ItemType = Field(alias="itemType")
    item_name: str = Field(alias="itemName")
    count_used: int = Field(alias="countUsed", default=1, ge=1)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_document(self) -> Dict[str, object]:
        """Serialize the entry for the pass row's JSON history column."""

        return {
            "date": self.used_at.isoformat(),
            "itemId": self.item_id,
            "itemType": self.item_type.value,
            "itemName": self.item_name,
            "countUsed": self.count_used,
        }


class ViewingPass(BaseModel):
    """A user's purchased bundle of view credits."""

    id: str
    user_id: str
    remaining_count: int = Field(ge=0)
    total_count: int = Field(default=0, ge=0)
    expires_at: Optional[datetime] = None
    used_history: Sequence[UsageHistoryEntry] = Field(default_factory=tuple)
    version: int = 0
    package_type: Optional[str] = None
    purchased_at: Optional[datetime] = None
    extended_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("used_history", mode="before")
    @classmethod
    def _coerce_history(cls, value: object) -> object:
        if value is None:
            return ()
        return value

    @property
    def used_count(self) -> int:
        return sum(entry.count_used for entry in self.used_history)


class ViewRecord(BaseModel):
    """Permanent proof that a user unlocked a listing."""

    user_id: str
    item_id: str
    item_type: ItemType
    viewed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> tuple[str, str, ItemType]:
        return (self.user_id, self.item_id, self.item_type)


class Listing(BaseModel):
    """Shared projection of warehouse and customer listings."""

    item_type: ItemType
    id: str
    owner_id: Optional[str] = None
    company_name: Optional[str] = None
    location: Optional[str] = None
    city: Optional[str] = None
    dong: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ConsumptionOutcome(BaseModel):
    """Result of a consume call."""

    success: bool
    already_viewed: bool = False
    remaining_count: Optional[int] = None
    failure: Optional[ConsumptionFailure] = None
    message: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def unlocked(self) -> bool:
        """Whether the listing is viewable after this call."""

        return self.success or self.failure == ConsumptionFailure.CHARGE_LOST_AFTER_UNLOCK

    @classmethod
    def viewed(cls) -> "ConsumptionOutcome":
        return cls(success=True, already_viewed=True)

    @classmethod
    def failed(cls, failure: ConsumptionFailure, message: str) -> "ConsumptionOutcome":
        return cls(success=False, failure=failure, message=message)


class AccessReason(str, Enum):
    """Why the access guard allowed or denied a detail view."""

    PRIVILEGED = "privileged"
    OWNER = "owner"
    VIEWED = "viewed"
    LOCKED = "locked"
    NOT_AUTHENTICATED = "not_authenticated"


class AccessDecision(BaseModel):
    """Access-guard verdict for navigating to a listing's detail view."""

    allowed: bool
    reason: AccessReason

    model_config = ConfigDict(frozen=True)


class PassSummary(BaseModel):
    """Balance and expiry state of a user's pass."""

    has_pass: bool
    remaining_count: int = 0
    total_count: int = 0
    expires_at: Optional[datetime] = None
    remaining_days: int = 0
    expired: bool = True
    expiry_warning: bool = False

    model_config = ConfigDict(frozen=True)


class MonthlyUsage(BaseModel):
    month: str
    count: int

    model_config = ConfigDict(frozen=True)


class UsageStatistics(BaseModel):
    """Aggregated usage of a pass."""

    monthly_usage: List[MonthlyUsage] = Field(default_factory=list)
    item_type_stats: Dict[ItemType, int] = Field(
        default_factory=lambda: {ItemType.WAREHOUSE: 0, ItemType.CUSTOMER: 0}
    )
    total_used: int = 0

    model_config = ConfigDict(frozen=True)


class PassDiscrepancy(BaseModel):
    """Difference between unlocked listings and charged history entries."""

    user_id: str
    pass_id: Optional[str] = None
    view_record_count: int
    charged_count: int
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def lost_decrements(self) -> int:
        return max(self.view_record_count - self.charged_count, 0)

    @property
    def in_sync(self) -> bool:
        return self.view_record_count == self.charged_count
