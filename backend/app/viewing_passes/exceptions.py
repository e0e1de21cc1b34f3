"""Errors raised by the viewing pass ledger and surfaced to API callers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status

from .models import ConsumptionFailure, ConsumptionOutcome


class LedgerStoreError(Exception):
    """Transient failure talking to the ledger store."""


class DuplicateViewRecordError(LedgerStoreError):
    """A view record for the same user and listing already exists."""


class PassUpdateConflictError(Exception):
    """Concurrent writers kept moving a pass's version past the retry budget."""


_FAILURE_STATUS: Dict[ConsumptionFailure, int] = {
    ConsumptionFailure.NOT_AUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ConsumptionFailure.NO_PASS: status.HTTP_402_PAYMENT_REQUIRED,
    ConsumptionFailure.PASS_EXPIRED: status.HTTP_402_PAYMENT_REQUIRED,
    ConsumptionFailure.PASS_EXHAUSTED: status.HTTP_402_PAYMENT_REQUIRED,
    ConsumptionFailure.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ConsumptionFailure.RECORD_UNCONFIRMED: status.HTTP_503_SERVICE_UNAVAILABLE,
    ConsumptionFailure.CHARGE_LOST_AFTER_UNLOCK: status.HTTP_200_OK,
}

_PURCHASE_FAILURES = frozenset(
    {
        ConsumptionFailure.NO_PASS,
        ConsumptionFailure.PASS_EXPIRED,
        ConsumptionFailure.PASS_EXHAUSTED,
    }
)


@dataclass
class ViewingPassError(Exception):
    """Represents a consume failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_402_PAYMENT_REQUIRED
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    @classmethod
    def from_outcome(cls, outcome: ConsumptionOutcome) -> "ViewingPassError":
        if outcome.failure is None:
            raise ValueError("outcome does not describe a failure")
        return cls(
            code=outcome.failure.value,
            message=outcome.message or outcome.failure.value,
            status_code=_FAILURE_STATUS[outcome.failure],
            detail={"purchase_required": outcome.failure in _PURCHASE_FAILURES},
        )

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


__all__ = ["DuplicateViewRecordError", "LedgerStoreError", "PassUpdateConflictError", "ViewingPassError"]
