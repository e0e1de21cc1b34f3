"""Tests for the pure pass decision helpers."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.app.viewing_passes import (
    PassDecision,
    ViewingPass,
    evaluate,
    is_expired,
    remaining_days,
    should_show_expiry_warning,
)

NOW = datetime(2025, 3, 15, 9, 0, tzinfo=timezone.utc)


def _pass(remaining: int = 3, expires_at=NOW + timedelta(days=30)) -> ViewingPass:
    return ViewingPass(id="pass-1", user_id="user-1", remaining_count=remaining, total_count=5, expires_at=expires_at)


def test_view_record_dominates_every_pass_state() -> None:
    assert evaluate(None, True, now=NOW) is PassDecision.ALREADY_VIEWED
    assert evaluate(_pass(remaining=0), True, now=NOW) is PassDecision.ALREADY_VIEWED
    assert evaluate(_pass(expires_at=NOW - timedelta(days=1)), True, now=NOW) is PassDecision.ALREADY_VIEWED


def test_missing_pass_requires_purchase() -> None:
    assert evaluate(None, False, now=NOW) is PassDecision.NO_PASS


def test_expiry_is_checked_before_balance() -> None:
    expired_and_empty = _pass(remaining=0, expires_at=NOW - timedelta(seconds=1))

    assert evaluate(expired_and_empty, False, now=NOW) is PassDecision.EXPIRED


def test_pass_without_expiry_counts_as_expired() -> None:
    assert evaluate(_pass(expires_at=None), False, now=NOW) is PassDecision.EXPIRED
    assert is_expired(None, now=NOW)


def test_exhausted_pass() -> None:
    assert evaluate(_pass(remaining=0), False, now=NOW) is PassDecision.EXHAUSTED


def test_grant_when_valid_and_funded() -> None:
    assert evaluate(_pass(remaining=1), False, now=NOW) is PassDecision.GRANT


def test_pass_expiring_exactly_now_is_still_valid() -> None:
    assert not is_expired(_pass(expires_at=NOW), now=NOW)
    assert evaluate(_pass(expires_at=NOW), False, now=NOW) is PassDecision.GRANT


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(days=10), 10),
        (timedelta(days=2, hours=1), 3),
        (timedelta(minutes=5), 1),
        (timedelta(0), 0),
        (timedelta(days=-3), 0),
    ],
)
def test_remaining_days_rounds_up_and_never_goes_negative(delta: timedelta, expected: int) -> None:
    assert remaining_days(_pass(expires_at=NOW + delta), now=NOW) == expected


def test_remaining_days_without_pass() -> None:
    assert remaining_days(None, now=NOW) == 0
    assert remaining_days(_pass(expires_at=None), now=NOW) == 0


def test_expiry_warning_window() -> None:
    assert should_show_expiry_warning(_pass(expires_at=NOW + timedelta(days=7)), now=NOW, warning_days=7)
    assert should_show_expiry_warning(_pass(expires_at=NOW + timedelta(hours=3)), now=NOW, warning_days=7)
    assert not should_show_expiry_warning(_pass(expires_at=NOW + timedelta(days=8)), now=NOW, warning_days=7)
    assert not should_show_expiry_warning(_pass(expires_at=NOW - timedelta(days=1)), now=NOW, warning_days=7)
    assert not should_show_expiry_warning(None, now=NOW)
