"""Viewing pass consumption: metered unlocking of masked listing details."""

from .cache import InMemoryViewedHintCache, ViewedHintCache
from .coordinator import ConsumptionCoordinator, ConsumptionMonitor, LedgerStore
from .display import masked_name, resolve_display_name
from .evaluator import evaluate, is_expired, remaining_days, should_show_expiry_warning
from .exceptions import DuplicateViewRecordError, LedgerStoreError, PassUpdateConflictError, ViewingPassError
from .models import (
    AccessDecision,
    AccessReason,
    ConsumptionFailure,
    ConsumptionOutcome,
    ItemType,
    Listing,
    MonthlyUsage,
    PassDecision,
    PassDiscrepancy,
    PassSummary,
    UsageHistoryEntry,
    UsageStatistics,
    ViewingPass,
    ViewRecord,
)
from .service import (
    ListingDirectory,
    ViewingPassMonitor,
    ViewingPassRepository,
    ViewingPassService,
    add_months,
)

__all__ = [
    "AccessDecision",
    "AccessReason",
    "ConsumptionCoordinator",
    "ConsumptionFailure",
    "ConsumptionMonitor",
    "ConsumptionOutcome",
    "DuplicateViewRecordError",
    "InMemoryViewedHintCache",
    "ItemType",
    "LedgerStore",
    "LedgerStoreError",
    "Listing",
    "ListingDirectory",
    "MonthlyUsage",
    "PassUpdateConflictError",
    "PassDecision",
    "PassDiscrepancy",
    "PassSummary",
    "UsageHistoryEntry",
    "UsageStatistics",
    "ViewRecord",
    "ViewedHintCache",
    "ViewingPass",
    "ViewingPassError",
    "ViewingPassMonitor",
    "ViewingPassRepository",
    "ViewingPassService",
    "add_months",
    "evaluate",
    "is_expired",
    "masked_name",
    "remaining_days",
    "resolve_display_name",
    "should_show_expiry_warning",
]
