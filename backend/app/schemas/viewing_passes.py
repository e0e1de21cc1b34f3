"""API schemas for viewing pass endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..viewing_passes import (
    AccessDecision,
    AccessReason,
    ConsumptionFailure,
    ConsumptionOutcome,
    ItemType,
    PassDecision,
    PassDiscrepancy,
    PassSummary,
    UsageHistoryEntry,
    UsageStatistics,
    ViewRecord,
)


class ConsumeResponse(BaseModel):
    success: bool
    already_viewed: bool = Field(alias="alreadyViewed")
    unlocked: bool
    remaining_count: Optional[int] = Field(default=None, alias="remainingCount")
    failure_reason: Optional[ConsumptionFailure] = Field(default=None, alias="failureReason")
    warning: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_outcome(cls, outcome: ConsumptionOutcome) -> "ConsumeResponse":
        warning = outcome.message if outcome.failure == ConsumptionFailure.CHARGE_LOST_AFTER_UNLOCK else None
        return cls(
            success=outcome.success,
            already_viewed=outcome.already_viewed,
            unlocked=outcome.unlocked,
            remaining_count=outcome.remaining_count,
            failure_reason=outcome.failure,
            warning=warning,
        )


class DecisionResponse(BaseModel):
    item_type: ItemType = Field(alias="itemType")
    item_id: str = Field(alias="itemId")
    decision: PassDecision
    purchase_required: bool = Field(alias="purchaseRequired")

    model_config = ConfigDict(populate_by_name=True)


class AccessResponse(BaseModel):
    allowed: bool
    reason: AccessReason

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_decision(cls, decision: AccessDecision) -> "AccessResponse":
        return cls(allowed=decision.allowed, reason=decision.reason)


class DisplayNameResponse(BaseModel):
    item_type: ItemType = Field(alias="itemType")
    item_id: str = Field(alias="itemId")
    display_name: str = Field(alias="displayName")

    model_config = ConfigDict(populate_by_name=True)


class PassSummaryResponse(BaseModel):
    has_pass: bool = Field(alias="hasPass")
    remaining_count: int = Field(alias="remainingCount")
    total_count: int = Field(alias="totalCount")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    remaining_days: int = Field(alias="remainingDays")
    expired: bool
    expiry_warning: bool = Field(alias="expiryWarning")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: PassSummary) -> "PassSummaryResponse":
        return cls(
            has_pass=summary.has_pass,
            remaining_count=summary.remaining_count,
            total_count=summary.total_count,
            expires_at=summary.expires_at,
            remaining_days=summary.remaining_days,
            expired=summary.expired,
            expiry_warning=summary.expiry_warning,
        )


class UsageHistoryResponse(BaseModel):
    items: List[UsageHistoryEntry]


class MonthlyUsageItem(BaseModel):
    month: str
    count: int


class UsageStatisticsResponse(BaseModel):
    monthly_usage: List[MonthlyUsageItem] = Field(alias="monthlyUsage")
    item_type_stats: Dict[str, int] = Field(alias="itemTypeStats")
    total_used: int = Field(alias="totalUsed")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_statistics(cls, stats: UsageStatistics) -> "UsageStatisticsResponse":
        return cls(
            monthly_usage=[MonthlyUsageItem(month=item.month, count=item.count) for item in stats.monthly_usage],
            item_type_stats={item_type.value: count for item_type, count in stats.item_type_stats.items()},
            total_used=stats.total_used,
        )


class RecentViewItem(BaseModel):
    item_id: str = Field(alias="itemId")
    item_type: ItemType = Field(alias="itemType")
    viewed_at: datetime = Field(alias="viewedAt")

    model_config = ConfigDict(populate_by_name=True)


class RecentViewsResponse(BaseModel):
    items: List[RecentViewItem]

    @classmethod
    def from_records(cls, records: List[ViewRecord]) -> "RecentViewsResponse":
        return cls(
            items=[
                RecentViewItem(item_id=record.item_id, item_type=record.item_type, viewed_at=record.viewed_at)
                for record in records
            ]
        )


class ReconciliationResponse(BaseModel):
    pass_id: Optional[str] = Field(default=None, alias="passId")
    view_record_count: int = Field(alias="viewRecordCount")
    charged_count: int = Field(alias="chargedCount")
    lost_decrements: int = Field(alias="lostDecrements")
    in_sync: bool = Field(alias="inSync")
    checked_at: datetime = Field(alias="checkedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_report(cls, report: PassDiscrepancy) -> "ReconciliationResponse":
        return cls(
            pass_id=report.pass_id,
            view_record_count=report.view_record_count,
            charged_count=report.charged_count,
            lost_decrements=report.lost_decrements,
            in_sync=report.in_sync,
            checked_at=report.checked_at,
        )


__all__ = [
    "AccessResponse",
    "ConsumeResponse",
    "DecisionResponse",
    "DisplayNameResponse",
    "PassSummaryResponse",
    "ReconciliationResponse",
    "RecentViewsResponse",
    "UsageHistoryResponse",
    "UsageStatisticsResponse",
]
