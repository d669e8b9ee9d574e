from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    transactions: Dict[str, int]
    discount_transitions: Dict[str, int]
    sweeps: Dict[str, object]

    def as_dict(self) -> Dict[str, object]:
        return {
            "transactions": dict(self.transactions),
            "discount_transitions": dict(self.discount_transitions),
            "sweeps": dict(self.sweeps),
        }


class LoyaltyObservabilityStore:
    """Collect ledger telemetry for dashboards and readiness probes."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._transactions: Dict[str, int] = defaultdict(int)
        self._transitions: Dict[str, int] = defaultdict(int)
        self._sweep_runs = 0
        self._sweep_skipped = 0
        self._customers_affected = 0
        self._points_expired = Decimal("0")
        self._integrity_warnings = 0

    def record_transaction(self, outcome: str) -> None:
        with self._lock:
            self._transactions[outcome] += 1

    def record_discount_transition(self, status: str) -> None:
        with self._lock:
            self._transitions[status] += 1

    def record_sweep(
        self,
        *,
        customers_affected: int,
        points_expired: Decimal,
        warnings: int,
        skipped: bool = False,
    ) -> None:
        with self._lock:
            if skipped:
                self._sweep_skipped += 1
                return
            self._sweep_runs += 1
            self._customers_affected += customers_affected
            self._points_expired += points_expired
            self._integrity_warnings += warnings

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            sweeps = {
                "runs": self._sweep_runs,
                "skipped": self._sweep_skipped,
                "customers_affected": self._customers_affected,
                "points_expired": float(self._points_expired),
                "integrity_warnings": self._integrity_warnings,
            }
            return LoyaltySnapshot(
                transactions=dict(self._transactions),
                discount_transitions=dict(self._transitions),
                sweeps=sweeps,
            )

    def reset(self) -> None:
        with self._lock:
            self._transactions.clear()
            self._transitions.clear()
            self._sweep_runs = 0
            self._sweep_skipped = 0
            self._customers_affected = 0
            self._points_expired = Decimal("0")
            self._integrity_warnings = 0


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
