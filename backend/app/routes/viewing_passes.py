"""API routes exposing viewing pass consumption and reporting."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, status

from ..schemas.viewing_passes import (
    AccessResponse,
    ConsumeResponse,
    DecisionResponse,
    DisplayNameResponse,
    PassSummaryResponse,
    ReconciliationResponse,
    RecentViewsResponse,
    UsageHistoryResponse,
    UsageStatisticsResponse,
)
from ..services import viewing_passes as viewing_pass_services
from ..viewing_passes import ItemType, LedgerStoreError, PassDecision, ViewingPassError


try:  # pragma: no cover - resolve shared context when imported from FastAPI app
    from backend import app_context
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ... import app_context  # type: ignore[no-redef]


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


def _get_optional_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_optional_current_user(session_token=session_token)


def _store_unavailable(exc: LedgerStoreError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


router = APIRouter(prefix="/api/viewing-passes", tags=["viewing-passes"])

_PURCHASE_DECISIONS = {PassDecision.NO_PASS, PassDecision.EXPIRED, PassDecision.EXHAUSTED}


@router.get("/me", response_model=PassSummaryResponse)
def get_pass_summary(*, current_user=Depends(_get_current_user)) -> PassSummaryResponse:
    service = viewing_pass_services.get_viewing_pass_service()
    try:
        summary = service.pass_summary(str(current_user.id))
    except LedgerStoreError as exc:
        raise _store_unavailable(exc) from exc
    return PassSummaryResponse.from_summary(summary)


@router.get("/items/{item_type}/{item_id}/decision", response_model=DecisionResponse)
def get_decision(
    item_type: ItemType,
    item_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> DecisionResponse:
    """Tell the client which prompt to show: confirm, purchase, or none."""

    service = viewing_pass_services.get_viewing_pass_service()
    try:
        decision = service.evaluate_item(str(current_user.id), item_id, item_type)
    except LedgerStoreError as exc:
        raise _store_unavailable(exc) from exc
    return DecisionResponse(
        item_type=item_type,
        item_id=item_id,
        decision=decision,
        purchase_required=decision in _PURCHASE_DECISIONS,
    )


@router.post("/items/{item_type}/{item_id}/consume", response_model=ConsumeResponse)
def consume_item(
    item_type: ItemType,
    item_id: str,
    *,
    current_user=Depends(_get_optional_current_user),
) -> ConsumeResponse:
    service = viewing_pass_services.get_viewing_pass_service()
    if current_user is None:
        # Rejected before any store access.
        outcome = service.consume(None, item_id, item_type)
    else:
        try:
            listing = service.get_listing(item_type, item_id)
        except LookupError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except LedgerStoreError as exc:
            raise _store_unavailable(exc) from exc
        outcome = service.consume_listing(str(current_user.id), listing)
    if not outcome.unlocked:
        raise ViewingPassError.from_outcome(outcome).to_http_exception()
    return ConsumeResponse.from_outcome(outcome)


@router.get("/items/{item_type}/{item_id}/access", response_model=AccessResponse)
def check_access(
    item_type: ItemType,
    item_id: str,
    *,
    current_user=Depends(_get_optional_current_user),
) -> AccessResponse:
    service = viewing_pass_services.get_viewing_pass_service()
    try:
        listing = service.get_listing(item_type, item_id)
        decision = service.check_access(current_user, listing)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LedgerStoreError as exc:
        raise _store_unavailable(exc) from exc
    return AccessResponse.from_decision(decision)


@router.get("/items/{item_type}/{item_id}/display-name", response_model=DisplayNameResponse)
def get_display_name(
    item_type: ItemType,
    item_id: str,
    *,
    current_user=Depends(_get_optional_current_user),
) -> DisplayNameResponse:
    service = viewing_pass_services.get_viewing_pass_service()
    try:
        listing = service.get_listing(item_type, item_id)
        display_name = service.display_name_for(current_user, listing)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LedgerStoreError as exc:
        raise _store_unavailable(exc) from exc
    return DisplayNameResponse(item_type=item_type, item_id=item_id, display_name=display_name)


@router.get("/history", response_model=UsageHistoryResponse)
def get_usage_history(*, current_user=Depends(_get_current_user)) -> UsageHistoryResponse:
    service = viewing_pass_services.get_viewing_pass_service()
    try:
        entries = service.usage_history(str(current_user.id))
    except LedgerStoreError as exc:
        raise _store_unavailable(exc) from exc
    return UsageHistoryResponse(items=entries)


@router.get("/statistics", response_model=UsageStatisticsResponse)
def get_usage_statistics(*, current_user=Depends(_get_current_user)) -> UsageStatisticsResponse:
    service = viewing_pass_services.get_viewing_pass_service()
    try:
        stats = service.usage_statistics(str(current_user.id))
    except LedgerStoreError as exc:
        raise _store_unavailable(exc) from exc
    return UsageStatisticsResponse.from_statistics(stats)


@router.get("/recent-views", response_model=RecentViewsResponse)
def get_recent_views(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    *,
    current_user=Depends(_get_current_user),
) -> RecentViewsResponse:
    service = viewing_pass_services.get_viewing_pass_service()
    try:
        records = service.recent_views(str(current_user.id), limit=limit)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except LedgerStoreError as exc:
        raise _store_unavailable(exc) from exc
    return RecentViewsResponse.from_records(records)


@router.get("/reconciliation", response_model=ReconciliationResponse)
def get_reconciliation(*, current_user=Depends(_get_current_user)) -> ReconciliationResponse:
    service = viewing_pass_services.get_viewing_pass_service()
    try:
        report = service.reconcile(str(current_user.id))
    except LedgerStoreError as exc:
        raise _store_unavailable(exc) from exc
    return ReconciliationResponse.from_report(report)


__all__ = [
    "router",
    "check_access",
    "consume_item",
    "get_decision",
    "get_display_name",
    "get_pass_summary",
    "get_reconciliation",
    "get_recent_views",
    "get_usage_history",
    "get_usage_statistics",
]
