"""Error taxonomy shared by the ledger services and the HTTP layer."""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class LoyaltyError(RuntimeError):
    """Base exception for loyalty ledger failures surfaced to callers."""

    kind: str = "loyalty_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": {key: _jsonable(value) for key, value in self.details.items()},
        }


class NotFoundError(LoyaltyError):
    """Raised when a referenced customer, store or discount does not exist."""

    kind = "not_found"


class InvalidArgumentError(LoyaltyError):
    """Raised for malformed or out-of-range input."""

    kind = "invalid_argument"


class InvalidTransitionError(InvalidArgumentError):
    """Raised when a pending discount status change is not allowed."""

    kind = "invalid_transition"

    def __init__(self, current_status: str, requested_status: str, **details: Any) -> None:
        super().__init__(
            f"Cannot transition discount from {current_status} to {requested_status}",
            current_status=current_status,
            requested_status=requested_status,
            **details,
        )
        self.current_status = current_status
        self.requested_status = requested_status


class InsufficientBalanceError(LoyaltyError):
    """Raised when a redemption exceeds the customer's balance."""

    kind = "insufficient_balance"

    def __init__(self, *, required: Decimal, available: Decimal) -> None:
        super().__init__("Insufficient balance", required=required, available=available)
        self.required = required
        self.available = available


class LimitExceededError(LoyaltyError):
    """Raised when a redemption exceeds the maximum discount share of the check."""

    kind = "limit_exceeded"

    def __init__(self, *, requested: Decimal, cap: Decimal, max_discount_percent: Decimal) -> None:
        super().__init__(
            "Redemption exceeds maximum discount",
            requested=requested,
            cap=cap,
            max_discount_percent=max_discount_percent,
        )
        self.requested = requested
        self.cap = cap


class TransactionalFailureError(LoyaltyError):
    """Raised when the storage commit fails; the operation left no effect and may be retried."""

    kind = "transactional_failure"


class ConfigurationError(ValueError):
    """Raised at startup when loyalty program configuration is invalid."""


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


__all__ = [
    "ConfigurationError",
    "InsufficientBalanceError",
    "InvalidArgumentError",
    "InvalidTransitionError",
    "LimitExceededError",
    "LoyaltyError",
    "NotFoundError",
    "TransactionalFailureError",
]
