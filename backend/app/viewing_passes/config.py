"""Runtime configuration for viewing pass consumption."""

from __future__ import annotations

import os
from typing import FrozenSet


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw_value = os.getenv(name, str(default))
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _env_set(name: str, default: str) -> FrozenSet[str]:
    raw_value = os.getenv(name, default)
    return frozenset(part.strip().lower() for part in raw_value.split(",") if part.strip())


CHARGE_ATTEMPTS = _env_int("VIEWING_PASS_CHARGE_ATTEMPTS", 3, minimum=1)
EXTEND_ATTEMPTS = _env_int("VIEWING_PASS_EXTEND_ATTEMPTS", 3, minimum=1)
EXPIRY_WARNING_DAYS = _env_int("VIEWING_PASS_EXPIRY_WARNING_DAYS", 7)
RECENT_VIEWS_LIMIT = _env_int("VIEWING_PASS_RECENT_VIEWS_LIMIT", 10, minimum=1)
HINT_TTL_SECONDS = _env_int("VIEWING_PASS_HINT_TTL_SECONDS", 300)
ADMIN_ROLES = _env_set("ADMIN_ROLES", "admin")
