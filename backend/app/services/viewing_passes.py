"""Application wiring for the viewing pass service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..viewing_passes import (
    ConsumptionOutcome,
    InMemoryViewedHintCache,
    ItemType,
    PassDiscrepancy,
    ViewingPassMonitor,
    ViewingPassService,
)
from ..viewing_passes.config import HINT_TTL_SECONDS
from ..viewing_passes.repository import PostgresLedgerStore, PostgresListingDirectory


logger = logging.getLogger("viewing_passes")


class LoggingConsumptionMonitor(ViewingPassMonitor):
    """Monitor that records consumption events to the application logger."""

    def charged(self, outcome: ConsumptionOutcome, *, user_id: str, item_id: str, item_type: ItemType) -> None:
        logger.info(
            "Viewing pass charged user=%s item=%s/%s remaining=%s",
            user_id,
            item_type.value,
            item_id,
            outcome.remaining_count,
        )

    def already_viewed(self, *, user_id: str, item_id: str, item_type: ItemType, stage: str) -> None:
        if stage == "pre_check":
            logger.info(
                "Already viewed, no charge user=%s item=%s/%s",
                user_id,
                item_type.value,
                item_id,
            )
            return
        logger.warning(
            "Concurrent unlock detected at %s, no charge user=%s item=%s/%s",
            stage,
            user_id,
            item_type.value,
            item_id,
        )

    def store_error(
        self,
        error: Exception,
        *,
        user_id: str,
        item_id: str,
        item_type: ItemType,
        stage: str,
    ) -> None:
        logger.warning(
            "Ledger store error at %s user=%s item=%s/%s: %s",
            stage,
            user_id,
            item_type.value,
            item_id,
            error,
        )

    def charge_lost(
        self,
        *,
        user_id: str,
        item_id: str,
        item_type: ItemType,
        pass_id: str,
        reason: str,
    ) -> None:
        logger.error(
            "Charge lost after unlock user=%s item=%s/%s pass=%s reason=%s",
            user_id,
            item_type.value,
            item_id,
            pass_id,
            reason,
        )

    def discrepancy(self, report: PassDiscrepancy) -> None:
        logger.error(
            "Viewing pass discrepancy user=%s pass=%s views=%s charged=%s lost=%s",
            report.user_id,
            report.pass_id,
            report.view_record_count,
            report.charged_count,
            report.lost_decrements,
        )


@lru_cache(maxsize=1)
def get_viewing_pass_service() -> ViewingPassService:
    return ViewingPassService(
        repository=PostgresLedgerStore(),
        listings=PostgresListingDirectory(),
        monitor=LoggingConsumptionMonitor(),
        hint_cache=InMemoryViewedHintCache(ttl_seconds=HINT_TTL_SECONDS),
    )


__all__ = ["LoggingConsumptionMonitor", "get_viewing_pass_service"]
