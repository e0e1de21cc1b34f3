from __future__ import annotations

import sys
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.viewing_passes import (
    ConsumptionCoordinator,
    ConsumptionOutcome,
    InMemoryViewedHintCache,
    ItemType,
    Listing,
    PassDiscrepancy,
    UsageHistoryEntry,
    ViewingPass,
    ViewingPassService,
    ViewRecord,
)
from backend.app.viewing_passes.exceptions import DuplicateViewRecordError, LedgerStoreError

ViewKey = Tuple[str, str, ItemType]


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryLedgerStore:
    """Ledger store with single-operation atomicity and a unique view-record key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.passes: Dict[str, ViewingPass] = {}
        self.views: Dict[ViewKey, ViewRecord] = {}
        self.calls: Counter[str] = Counter()
        self.failures: Dict[str, List[Exception]] = {}
        self.commit_then_fail_insert = False
        self.hide_views = False
        self.before_insert: Optional[Callable[[ViewRecord], None]] = None
        self.before_charge: Optional[Callable[[str], None]] = None
        self._next_id = 1

    # Test helpers --------------------------------------------------------

    def add_pass(
        self,
        user_id: str,
        *,
        remaining: int,
        expires_at: Optional[datetime],
        total: Optional[int] = None,
        history: Tuple[UsageHistoryEntry, ...] = (),
    ) -> ViewingPass:
        viewing_pass = ViewingPass(
            id=f"pass-{self._next_id}",
            user_id=user_id,
            remaining_count=remaining,
            total_count=total if total is not None else remaining,
            expires_at=expires_at,
            used_history=history,
        )
        self._next_id += 1
        self.passes[viewing_pass.id] = viewing_pass
        return viewing_pass

    def add_view(self, user_id: str, item_id: str, item_type: ItemType, viewed_at: Optional[datetime] = None) -> None:
        record = ViewRecord(user_id=user_id, item_id=item_id, item_type=item_type)
        if viewed_at is not None:
            record = record.model_copy(update={"viewed_at": viewed_at})
        self.views[record.key] = record

    def fail(self, operation: str, error: Exception) -> None:
        self.failures.setdefault(operation, []).append(error)

    def bump_version(self, pass_id: str) -> None:
        with self._lock:
            current = self.passes[pass_id]
            self.passes[pass_id] = current.model_copy(update={"version": current.version + 1})

    def pass_for(self, user_id: str) -> Optional[ViewingPass]:
        for viewing_pass in self.passes.values():
            if viewing_pass.user_id == user_id:
                return viewing_pass
        return None

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] += 1
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    # LedgerStore ---------------------------------------------------------

    def get_pass(self, user_id: str) -> Optional[ViewingPass]:
        self._maybe_fail("get_pass")
        with self._lock:
            return self.pass_for(user_id)

    def get_pass_by_id(self, pass_id: str) -> Optional[ViewingPass]:
        self._maybe_fail("get_pass_by_id")
        with self._lock:
            return self.passes.get(pass_id)

    def has_view_record(self, user_id: str, item_id: str, item_type: ItemType) -> bool:
        self._maybe_fail("has_view_record")
        if self.hide_views:
            return False
        with self._lock:
            return (user_id, item_id, item_type) in self.views

    def insert_view_record(self, record: ViewRecord) -> ViewRecord:
        if self.before_insert is not None:
            hook, self.before_insert = self.before_insert, None
            hook(record)
        self._maybe_fail("insert_view_record")
        with self._lock:
            if record.key in self.views:
                raise DuplicateViewRecordError("duplicate key value violates unique constraint")
            self.views[record.key] = record
        if self.commit_then_fail_insert:
            raise LedgerStoreError("connection reset after commit")
        return record

    def charge_pass(
        self,
        pass_id: str,
        *,
        expected_version: int,
        entry: UsageHistoryEntry,
    ) -> Optional[ViewingPass]:
        if self.before_charge is not None:
            hook, self.before_charge = self.before_charge, None
            hook(pass_id)
        self._maybe_fail("charge_pass")
        with self._lock:
            current = self.passes.get(pass_id)
            if current is None or current.version != expected_version or current.remaining_count <= 0:
                return None
            updated = current.model_copy(
                update={
                    "remaining_count": current.remaining_count - 1,
                    "used_history": tuple(current.used_history) + (entry,),
                    "version": current.version + 1,
                }
            )
            self.passes[pass_id] = updated
            return updated

    # ViewingPassRepository -----------------------------------------------

    def upsert_pass(
        self,
        user_id: str,
        *,
        count: int,
        expires_at: datetime,
        package_type: Optional[str],
        purchased_at: datetime,
    ) -> ViewingPass:
        self._maybe_fail("upsert_pass")
        with self._lock:
            existing = self.pass_for(user_id)
            if existing is None:
                existing = ViewingPass(id=f"pass-{self._next_id}", user_id=user_id, remaining_count=0, version=-1)
                self._next_id += 1
            updated = existing.model_copy(
                update={
                    "remaining_count": count,
                    "total_count": count,
                    "expires_at": expires_at,
                    "package_type": package_type,
                    "purchased_at": purchased_at,
                    "version": existing.version + 1,
                }
            )
            self.passes[updated.id] = updated
            return updated

    def extend_pass(
        self,
        pass_id: str,
        *,
        expected_version: int,
        expires_at: datetime,
        extended_at: datetime,
    ) -> Optional[ViewingPass]:
        self._maybe_fail("extend_pass")
        with self._lock:
            current = self.passes.get(pass_id)
            if current is None or current.version != expected_version:
                return None
            updated = current.model_copy(
                update={"expires_at": expires_at, "extended_at": extended_at, "version": current.version + 1}
            )
            self.passes[pass_id] = updated
            return updated

    def list_view_records(self, user_id: str, *, limit: Optional[int] = None) -> List[ViewRecord]:
        self._maybe_fail("list_view_records")
        with self._lock:
            records = sorted(
                (record for record in self.views.values() if record.user_id == user_id),
                key=lambda record: record.viewed_at,
                reverse=True,
            )
        return records[:limit] if limit is not None else records

    def count_view_records(self, user_id: str) -> int:
        self._maybe_fail("count_view_records")
        with self._lock:
            return sum(1 for record in self.views.values() if record.user_id == user_id)


class FakeListingDirectory:
    def __init__(self) -> None:
        self._listings: Dict[Tuple[ItemType, str], Listing] = {}

    def add(self, listing: Listing) -> Listing:
        self._listings[(listing.item_type, listing.id)] = listing
        return listing

    def get_listing(self, item_type: ItemType, item_id: str) -> Optional[Listing]:
        return self._listings.get((item_type, item_id))


class RecordingMonitor:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: List[Tuple[str, Dict[str, object]]] = []

    def _record(self, name: str, **data: object) -> None:
        with self._lock:
            self.events.append((name, data))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def charged(self, outcome: ConsumptionOutcome, *, user_id: str, item_id: str, item_type: ItemType) -> None:
        self._record("charged", outcome=outcome, user_id=user_id, item_id=item_id, item_type=item_type)

    def already_viewed(self, *, user_id: str, item_id: str, item_type: ItemType, stage: str) -> None:
        self._record("already_viewed", user_id=user_id, item_id=item_id, item_type=item_type, stage=stage)

    def store_error(
        self,
        error: Exception,
        *,
        user_id: str,
        item_id: str,
        item_type: ItemType,
        stage: str,
    ) -> None:
        self._record("store_error", error=error, stage=stage)

    def charge_lost(
        self,
        *,
        user_id: str,
        item_id: str,
        item_type: ItemType,
        pass_id: str,
        reason: str,
    ) -> None:
        self._record("charge_lost", user_id=user_id, item_id=item_id, pass_id=pass_id, reason=reason)

    def discrepancy(self, report: PassDiscrepancy) -> None:
        self._record("discrepancy", report=report)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 3, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger_store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def listing_directory() -> FakeListingDirectory:
    return FakeListingDirectory()


@pytest.fixture
def monitor() -> RecordingMonitor:
    return RecordingMonitor()


@pytest.fixture
def coordinator(ledger_store, monitor, clock) -> ConsumptionCoordinator:
    return ConsumptionCoordinator(store=ledger_store, monitor=monitor, charge_attempts=3, clock=clock)


@pytest.fixture
def hint_cache(clock) -> InMemoryViewedHintCache:
    return InMemoryViewedHintCache(ttl_seconds=300, clock=clock)


@pytest.fixture
def viewing_pass_service(ledger_store, listing_directory, monitor, hint_cache, clock) -> ViewingPassService:
    return ViewingPassService(
        repository=ledger_store,
        listings=listing_directory,
        monitor=monitor,
        hint_cache=hint_cache,
        admin_roles=frozenset({"admin"}),
        charge_attempts=3,
        expiry_warning_days=7,
        clock=clock,
    )
