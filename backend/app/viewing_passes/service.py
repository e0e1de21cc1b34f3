"""Service facade over viewing pass consumption, access and reporting."""
from __future__ import annotations

import calendar
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, FrozenSet, List, Optional, Protocol

from .cache import InMemoryViewedHintCache, ViewedHintCache
from .config import ADMIN_ROLES, CHARGE_ATTEMPTS, EXPIRY_WARNING_DAYS, EXTEND_ATTEMPTS, RECENT_VIEWS_LIMIT
from .coordinator import ConsumptionCoordinator, ConsumptionMonitor, LedgerStore
from .display import resolve_display_name
from .evaluator import evaluate, is_expired, remaining_days, should_show_expiry_warning
from .exceptions import PassUpdateConflictError
from .models import (
    AccessDecision,
    AccessReason,
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


class ViewingPassRepository(LedgerStore, Protocol):
    """Ledger primitives plus the purchase, extension and reporting queries."""

    def upsert_pass(
        self,
        user_id: str,
        *,
        count: int,
        expires_at: datetime,
        package_type: Optional[str],
        purchased_at: datetime,
    ) -> ViewingPass:
        ...

    def extend_pass(
        self,
        pass_id: str,
        *,
        expected_version: int,
        expires_at: datetime,
        extended_at: datetime,
    ) -> Optional[ViewingPass]:
        ...

    def list_view_records(self, user_id: str, *, limit: Optional[int] = None) -> List[ViewRecord]:
        ...

    def count_view_records(self, user_id: str) -> int:
        ...


class ListingDirectory(Protocol):
    """Resolves warehouse and customer listings by id."""

    def get_listing(self, item_type: ItemType, item_id: str) -> Optional[Listing]:
        ...


class ViewingPassMonitor(ConsumptionMonitor, Protocol):
    """Consumption events plus reconciliation findings."""

    def discrepancy(self, report: PassDiscrepancy) -> None:
        ...


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by whole months, clamping to the last day of the month."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


@dataclass(slots=True)
class ViewingPassService:
    """Coordinates pass consumption, access checks, labels and usage reports."""

    repository: ViewingPassRepository
    listings: ListingDirectory
    monitor: ViewingPassMonitor
    hint_cache: ViewedHintCache = field(default_factory=InMemoryViewedHintCache)
    admin_roles: FrozenSet[str] = ADMIN_ROLES
    charge_attempts: int = CHARGE_ATTEMPTS
    extend_attempts: int = EXTEND_ATTEMPTS
    expiry_warning_days: int = EXPIRY_WARNING_DAYS
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    @property
    def coordinator(self) -> ConsumptionCoordinator:
        return ConsumptionCoordinator(
            store=self.repository,
            monitor=self.monitor,
            charge_attempts=self.charge_attempts,
            clock=self.clock,
        )

    # Consumption ---------------------------------------------------------

    def has_view_record(self, user_id: str, item_id: str, item_type: ItemType) -> bool:
        return self.repository.has_view_record(user_id, item_id, item_type)

    def evaluate_item(self, user_id: str, item_id: str, item_type: ItemType) -> PassDecision:
        """Pick the prompt to show before committing to ``consume``."""

        if self.repository.has_view_record(user_id, item_id, item_type):
            return PassDecision.ALREADY_VIEWED
        return evaluate(self.repository.get_pass(user_id), False, now=self.clock())

    def consume(
        self,
        user_id: Optional[str],
        item_id: str,
        item_type: ItemType,
        item_name: Optional[str] = None,
    ) -> ConsumptionOutcome:
        outcome = self.coordinator.consume(user_id, item_id, item_type, item_name)
        if outcome.unlocked and user_id:
            self.hint_cache.remember((user_id, item_id, item_type))
        return outcome

    def consume_listing(self, user_id: Optional[str], listing: Listing) -> ConsumptionOutcome:
        """Unlock a resolved listing, labelling the charge with its company name.

        Owners already have access to their own listings and are never charged.
        """

        if user_id and listing.owner_id and listing.owner_id == user_id:
            return ConsumptionOutcome.viewed()
        return self.consume(user_id, listing.id, listing.item_type, listing.company_name)

    # Access and labels ---------------------------------------------------

    def is_privileged(self, actor: Any) -> bool:
        role = getattr(actor, "role", None)
        return bool(role) and str(role).lower() in self.admin_roles

    def get_listing(self, item_type: ItemType, item_id: str) -> Listing:
        listing = self.listings.get_listing(item_type, item_id)
        if listing is None:
            raise LookupError(f"Listing not found: {item_type.value}/{item_id}")
        return listing

    def check_access(self, actor: Any, listing: Listing) -> AccessDecision:
        """Decide whether ``actor`` may open the listing's detail view.

        Always reads the ledger store; cached hints never grant access.
        """

        if actor is None:
            return AccessDecision(allowed=False, reason=AccessReason.NOT_AUTHENTICATED)
        if self.is_privileged(actor):
            return AccessDecision(allowed=True, reason=AccessReason.PRIVILEGED)
        user_id = str(actor.id)
        if listing.owner_id and listing.owner_id == user_id:
            return AccessDecision(allowed=True, reason=AccessReason.OWNER)
        if self.repository.has_view_record(user_id, listing.id, listing.item_type):
            return AccessDecision(allowed=True, reason=AccessReason.VIEWED)
        return AccessDecision(allowed=False, reason=AccessReason.LOCKED)

    def display_name_for(self, actor: Any, listing: Listing) -> str:
        privileged = actor is not None and self.is_privileged(actor)
        viewed = False
        if actor is not None and not privileged:
            viewed = self._viewed_hint(str(actor.id), listing.id, listing.item_type)
        return resolve_display_name(listing, listing.item_type, privileged, viewed)

    def _viewed_hint(self, user_id: str, item_id: str, item_type: ItemType) -> bool:
        key = (user_id, item_id, item_type)
        if self.hint_cache.get(key):
            return True
        viewed = self.repository.has_view_record(user_id, item_id, item_type)
        if viewed:
            self.hint_cache.remember(key)
        return viewed

    # Pass lifecycle ------------------------------------------------------

    def pass_summary(self, user_id: str) -> PassSummary:
        viewing_pass = self.repository.get_pass(user_id)
        if viewing_pass is None:
            return PassSummary(has_pass=False)
        now = self.clock()
        return PassSummary(
            has_pass=True,
            remaining_count=viewing_pass.remaining_count,
            total_count=viewing_pass.total_count,
            expires_at=viewing_pass.expires_at,
            remaining_days=remaining_days(viewing_pass, now=now),
            expired=is_expired(viewing_pass, now=now),
            expiry_warning=should_show_expiry_warning(
                viewing_pass, now=now, warning_days=self.expiry_warning_days
            ),
        )

    def grant_pass(
        self,
        user_id: str,
        *,
        count: int,
        validity_months: int = 3,
        package_type: Optional[str] = None,
    ) -> ViewingPass:
        """Create or replace a user's pass after an external purchase."""

        if count < 1:
            raise ValueError("count must be >= 1")
        if validity_months < 1:
            raise ValueError("validity_months must be >= 1")
        now = self.clock()
        return self.repository.upsert_pass(
            user_id,
            count=count,
            expires_at=add_months(now, validity_months),
            package_type=package_type,
            purchased_at=now,
        )

    def extend_pass(self, pass_id: str, *, months: int = 3) -> ViewingPass:
        """Push a pass's expiry forward from whichever is later: expiry or now."""

        if months < 1:
            raise ValueError("months must be >= 1")
        for _attempt in range(self.extend_attempts):
            viewing_pass = self.repository.get_pass_by_id(pass_id)
            if viewing_pass is None:
                raise LookupError("Viewing pass not found")
            now = self.clock()
            base = viewing_pass.expires_at if viewing_pass.expires_at and viewing_pass.expires_at > now else now
            updated = self.repository.extend_pass(
                pass_id,
                expected_version=viewing_pass.version,
                expires_at=add_months(base, months),
                extended_at=now,
            )
            if updated is not None:
                return updated
        raise PassUpdateConflictError(f"Viewing pass {pass_id} changed concurrently; extension not applied")

    # Reporting -----------------------------------------------------------

    def usage_history(self, user_id: str) -> List[UsageHistoryEntry]:
        viewing_pass = self.repository.get_pass(user_id)
        if viewing_pass is None:
            return []
        return sorted(viewing_pass.used_history, key=lambda entry: entry.used_at, reverse=True)

    def usage_statistics(self, user_id: str) -> UsageStatistics:
        viewing_pass = self.repository.get_pass(user_id)
        if viewing_pass is None or not viewing_pass.used_history:
            return UsageStatistics()

        monthly: Counter[str] = Counter()
        by_type = {ItemType.WAREHOUSE: 0, ItemType.CUSTOMER: 0}
        for entry in viewing_pass.used_history:
            monthly[entry.used_at.strftime("%Y-%m")] += entry.count_used
            by_type[entry.item_type] += entry.count_used

        return UsageStatistics(
            monthly_usage=[MonthlyUsage(month=month, count=count) for month, count in sorted(monthly.items())],
            item_type_stats=by_type,
            total_used=viewing_pass.used_count,
        )

    def recent_views(self, user_id: str, *, limit: Optional[int] = None) -> List[ViewRecord]:
        effective_limit = limit if limit is not None else RECENT_VIEWS_LIMIT
        if effective_limit < 1:
            raise ValueError("limit must be >= 1")
        return self.repository.list_view_records(user_id, limit=effective_limit)

    def reconcile(self, user_id: str) -> PassDiscrepancy:
        """Compare unlocked listings with charged history entries.

        Lost decrements are reported to the monitor and never repaired here.
        """

        viewing_pass = self.repository.get_pass(user_id)
        report = PassDiscrepancy(
            user_id=user_id,
            pass_id=viewing_pass.id if viewing_pass else None,
            view_record_count=self.repository.count_view_records(user_id),
            charged_count=viewing_pass.used_count if viewing_pass else 0,
            checked_at=self.clock(),
        )
        if not report.in_sync:
            self.monitor.discrepancy(report)
        return report


__all__ = [
    "ListingDirectory",
    "ViewingPassMonitor",
    "ViewingPassRepository",
    "ViewingPassService",
    "add_months",
]
