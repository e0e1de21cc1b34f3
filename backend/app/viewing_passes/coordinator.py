"""Check, record, confirm, then charge: the viewing pass consumption protocol.

The ledger store only guarantees single-row atomicity, so the pass row and the
view record cannot be written in one transaction. The coordinator makes the
unique constraint on view records the sole arbiter of who pays:

1. a view record that already exists short-circuits with no writes;
2. the pass is evaluated and nothing is written unless it grants;
3. the view record is inserted, and losing the unique-constraint race means
   another call owns the charge;
4. the record is read back, and nothing is charged without durable proof;
5. the pass row is decremented with a version-guarded update.

A failed charge after step 4 leaves the listing unlocked and uncharged. Calling
``consume`` again resolves to ``already_viewed`` through step 1, so a charge is
lost at worst and never taken twice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from .config import CHARGE_ATTEMPTS
from .evaluator import evaluate
from .exceptions import DuplicateViewRecordError, LedgerStoreError
from .models import (
    ConsumptionFailure,
    ConsumptionOutcome,
    ItemType,
    PassDecision,
    UsageHistoryEntry,
    ViewingPass,
    ViewRecord,
)

logger = logging.getLogger("viewing_passes")


class LedgerStore(Protocol):
    """Atomic primitives over passes and view records."""

    def get_pass(self, user_id: str) -> Optional[ViewingPass]:
        ...

    def get_pass_by_id(self, pass_id: str) -> Optional[ViewingPass]:
        ...

    def has_view_record(self, user_id: str, item_id: str, item_type: ItemType) -> bool:
        ...

    def insert_view_record(self, record: ViewRecord) -> ViewRecord:
        """Insert a record, raising ``DuplicateViewRecordError`` on a unique violation."""

    def charge_pass(
        self,
        pass_id: str,
        *,
        expected_version: int,
        entry: UsageHistoryEntry,
    ) -> Optional[ViewingPass]:
        """Decrement by one and append ``entry`` if the version still matches.

        Returns ``None`` without writing when the version moved or the balance
        is already zero.
        """


class ConsumptionMonitor(Protocol):
    """Receives notable events from the consumption protocol."""

    def charged(self, outcome: ConsumptionOutcome, *, user_id: str, item_id: str, item_type: ItemType) -> None:
        ...

    def already_viewed(self, *, user_id: str, item_id: str, item_type: ItemType, stage: str) -> None:
        ...

    def store_error(
        self,
        error: Exception,
        *,
        user_id: str,
        item_id: str,
        item_type: ItemType,
        stage: str,
    ) -> None:
        ...

    def charge_lost(
        self,
        *,
        user_id: str,
        item_id: str,
        item_type: ItemType,
        pass_id: str,
        reason: str,
    ) -> None:
        ...


MESSAGES = {
    ConsumptionFailure.NOT_AUTHENTICATED: "로그인이 필요합니다.",
    ConsumptionFailure.NO_PASS: "열람권이 없습니다.",
    ConsumptionFailure.PASS_EXPIRED: "열람권이 만료되었습니다.",
    ConsumptionFailure.PASS_EXHAUSTED: "열람권이 모두 소진되었습니다.",
    ConsumptionFailure.STORE_UNAVAILABLE: "열람 기록 저장 중 오류가 발생했습니다.",
    ConsumptionFailure.RECORD_UNCONFIRMED: "열람 기록 저장에 실패했습니다.",
    ConsumptionFailure.CHARGE_LOST_AFTER_UNLOCK: "열람권 차감 중 오류가 발생했습니다. 열람 기록은 저장되었습니다.",
}

_DECISION_FAILURES = {
    PassDecision.NO_PASS: ConsumptionFailure.NO_PASS,
    PassDecision.EXPIRED: ConsumptionFailure.PASS_EXPIRED,
    PassDecision.EXHAUSTED: ConsumptionFailure.PASS_EXHAUSTED,
}


def _failure(failure: ConsumptionFailure) -> ConsumptionOutcome:
    return ConsumptionOutcome.failed(failure, MESSAGES[failure])


@dataclass(slots=True)
class ConsumptionCoordinator:
    """Spends one pass unit per (user, listing) pair, at most once."""

    store: LedgerStore
    monitor: ConsumptionMonitor
    charge_attempts: int = CHARGE_ATTEMPTS
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def consume(
        self,
        user_id: Optional[str],
        item_id: str,
        item_type: ItemType,
        item_name: Optional[str] = None,
    ) -> ConsumptionOutcome:
        if not user_id:
            return _failure(ConsumptionFailure.NOT_AUTHENTICATED)

        target = {"user_id": user_id, "item_id": item_id, "item_type": item_type}

        try:
            if self.store.has_view_record(user_id, item_id, item_type):
                self.monitor.already_viewed(**target, stage="pre_check")
                return ConsumptionOutcome.viewed()
            viewing_pass = self.store.get_pass(user_id)
        except LedgerStoreError as exc:
            self.monitor.store_error(exc, **target, stage="pre_check")
            return _failure(ConsumptionFailure.STORE_UNAVAILABLE)

        decision = evaluate(viewing_pass, False, now=self.clock())
        if decision != PassDecision.GRANT:
            return _failure(_DECISION_FAILURES[decision])
        assert viewing_pass is not None

        record = ViewRecord(user_id=user_id, item_id=item_id, item_type=item_type, viewed_at=self.clock())
        try:
            self.store.insert_view_record(record)
        except DuplicateViewRecordError:
            self.monitor.already_viewed(**target, stage="insert")
            return ConsumptionOutcome.viewed()
        except LedgerStoreError as exc:
            self.monitor.store_error(exc, **target, stage="insert")
            return self._recheck_after_insert_error(**target)

        try:
            confirmed = self.store.has_view_record(user_id, item_id, item_type)
        except LedgerStoreError as exc:
            self.monitor.store_error(exc, **target, stage="confirm")
            confirmed = False
        if not confirmed:
            logger.error(
                "View record missing after insert user=%s item=%s/%s",
                user_id,
                item_type.value,
                item_id,
            )
            return _failure(ConsumptionFailure.RECORD_UNCONFIRMED)

        entry = UsageHistoryEntry(
            used_at=self.clock(),
            item_id=item_id,
            item_type=item_type,
            item_name=item_name or f"{item_type.value}-{item_id}",
            count_used=1,
        )
        return self._charge(viewing_pass, entry, **target)

    def _recheck_after_insert_error(self, *, user_id: str, item_id: str, item_type: ItemType) -> ConsumptionOutcome:
        # The store may report an error for an insert that committed.
        try:
            exists = self.store.has_view_record(user_id, item_id, item_type)
        except LedgerStoreError as exc:
            self.monitor.store_error(exc, user_id=user_id, item_id=item_id, item_type=item_type, stage="recheck")
            return _failure(ConsumptionFailure.STORE_UNAVAILABLE)
        if exists:
            self.monitor.already_viewed(user_id=user_id, item_id=item_id, item_type=item_type, stage="recheck")
            return ConsumptionOutcome.viewed()
        return _failure(ConsumptionFailure.STORE_UNAVAILABLE)

    def _charge(
        self,
        viewing_pass: ViewingPass,
        entry: UsageHistoryEntry,
        *,
        user_id: str,
        item_id: str,
        item_type: ItemType,
    ) -> ConsumptionOutcome:
        target = {"user_id": user_id, "item_id": item_id, "item_type": item_type}
        pass_id = viewing_pass.id
        current: Optional[ViewingPass] = viewing_pass

        for _attempt in range(self.charge_attempts):
            assert current is not None
            try:
                updated = self.store.charge_pass(pass_id, expected_version=current.version, entry=entry)
            except LedgerStoreError as exc:
                # The update may have committed; retrying could charge twice.
                self.monitor.store_error(exc, **target, stage="charge")
                return self._charge_lost(pass_id, reason=f"charge failed: {exc}", **target)

            if updated is not None:
                outcome = ConsumptionOutcome(success=True, remaining_count=updated.remaining_count)
                self.monitor.charged(outcome, **target)
                return outcome

            # Version guard did not match, so nothing was written.
            try:
                current = self.store.get_pass_by_id(pass_id)
            except LedgerStoreError as exc:
                self.monitor.store_error(exc, **target, stage="charge_reload")
                return self._charge_lost(pass_id, reason=f"reload failed: {exc}", **target)
            if current is None:
                return self._charge_lost(pass_id, reason="pass removed", **target)
            if current.remaining_count <= 0:
                return self._charge_lost(pass_id, reason="balance exhausted concurrently", **target)

        return self._charge_lost(pass_id, reason="version conflict", **target)

    def _charge_lost(
        self,
        pass_id: str,
        *,
        reason: str,
        user_id: str,
        item_id: str,
        item_type: ItemType,
    ) -> ConsumptionOutcome:
        self.monitor.charge_lost(
            user_id=user_id,
            item_id=item_id,
            item_type=item_type,
            pass_id=pass_id,
            reason=reason,
        )
        return _failure(ConsumptionFailure.CHARGE_LOST_AFTER_UNLOCK)


__all__ = ["ConsumptionCoordinator", "ConsumptionMonitor", "LedgerStore", "MESSAGES"]
