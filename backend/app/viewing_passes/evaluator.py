"""Pure decision logic for whether a pass can unlock a listing."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional

from .config import EXPIRY_WARNING_DAYS
from .models import PassDecision, ViewingPass

_SECONDS_PER_DAY = 60 * 60 * 24


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_expired(viewing_pass: Optional[ViewingPass], *, now: Optional[datetime] = None) -> bool:
    """Return ``True`` when the pass is missing an expiry or it has passed."""

    if viewing_pass is None or viewing_pass.expires_at is None:
        return True
    return viewing_pass.expires_at < (now or _utcnow())


def evaluate(
    viewing_pass: Optional[ViewingPass],
    has_view_record: bool,
    *,
    now: Optional[datetime] = None,
) -> PassDecision:
    """Decide whether viewing a listing may consume one unit of the pass.

    An existing view record dominates every pass check: a listing unlocked
    once stays viewable after the pass expires, runs out, or is removed.
    """

    if has_view_record:
        return PassDecision.ALREADY_VIEWED
    if viewing_pass is None:
        return PassDecision.NO_PASS
    if is_expired(viewing_pass, now=now):
        return PassDecision.EXPIRED
    if viewing_pass.remaining_count <= 0:
        return PassDecision.EXHAUSTED
    return PassDecision.GRANT


def remaining_days(viewing_pass: Optional[ViewingPass], *, now: Optional[datetime] = None) -> int:
    """Whole days left before expiry, rounded up and never negative."""

    if viewing_pass is None or viewing_pass.expires_at is None:
        return 0
    delta = viewing_pass.expires_at - (now or _utcnow())
    days = math.ceil(delta.total_seconds() / _SECONDS_PER_DAY)
    return days if days > 0 else 0


def should_show_expiry_warning(
    viewing_pass: Optional[ViewingPass],
    *,
    now: Optional[datetime] = None,
    warning_days: int = EXPIRY_WARNING_DAYS,
) -> bool:
    days = remaining_days(viewing_pass, now=now)
    return 0 < days <= warning_days


__all__ = ["evaluate", "is_expired", "remaining_days", "should_show_expiry_warning"]
