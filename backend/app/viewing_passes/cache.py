"""Hint cache for "already viewed" lookups used when rendering labels.

Entries only ever hold positive lookups, which stay true because view records
are never deleted. They are still hints: the access guard reads the ledger
store on every check.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple

from .models import ItemType

HintKey = Tuple[str, str, ItemType]


class ViewedHintCache(Protocol):
    """Protocol describing cache operations used by the viewing pass service."""

    def get(self, key: HintKey) -> bool:
        ...

    def remember(self, key: HintKey) -> None:
        ...


class InMemoryViewedHintCache:
    """Simple in-memory cache suitable for tests and a single worker."""

    def __init__(
        self,
        ttl_seconds: int = 300,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ttl = timedelta(seconds=max(ttl_seconds, 0))
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: Dict[HintKey, datetime] = {}
        self._next_sweep: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: HintKey) -> bool:
        expires_at = self._entries.get(key)
        if expires_at is None:
            return False
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return False
        return True

    def remember(self, key: HintKey) -> None:
        if not self._ttl:
            return
        now = self._clock()
        if self._next_sweep is None or now >= self._next_sweep:
            self._sweep(now)
        self._entries[key] = now + self._ttl

    def _sweep(self, now: datetime) -> None:
        # At most one full pass per TTL window.
        expired = [key for key, expires_at in list(self._entries.items()) if now >= expires_at]
        for key in expired:
            self._entries.pop(key, None)
        self._next_sweep = now + self._ttl

    def clear(self) -> None:
        self._entries.clear()
        self._next_sweep = None


__all__ = ["HintKey", "InMemoryViewedHintCache", "ViewedHintCache"]
