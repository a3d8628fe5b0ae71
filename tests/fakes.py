"""
fakes.py - Test doubles for the external collaborators

Provides collaborators that fail on demand so tests can check that a
failed external call leaves the position ledger untouched, and a ledger
that slips another operation in between two steps of a market call.
"""

from __future__ import annotations
from typing import Any, Dict, Optional

from lending import AccountPositionLedger, InMemoryPoolLedger, PoolError


class FlakyPoolLedger(InMemoryPoolLedger):
    """
    InMemoryPoolLedger that raises on selected calls.

    Example:
        pool_ledger = FlakyPoolLedger()
        pool_ledger.fail_next("withdraw_for")
        market.withdraw(...)   # raises PoolError, nothing moves
    """

    def __init__(self):
        super().__init__()
        self._failures: Dict[str, Exception] = {}
        self.calls: Dict[str, int] = {}

    def fail_next(self, method: str, error: Optional[Exception] = None) -> None:
        self._failures[method] = error or PoolError(f"injected failure in {method}")

    def clear_failures(self) -> None:
        self._failures.clear()

    def _maybe_fail(self, method: str) -> None:
        self.calls[method] = self.calls.get(method, 0) + 1
        error = self._failures.pop(method, None)
        if error is not None:
            raise error

    def deposit_for(self, *args, **kwargs):
        self._maybe_fail("deposit_for")
        return super().deposit_for(*args, **kwargs)

    def withdraw_for(self, *args, **kwargs):
        self._maybe_fail("withdraw_for")
        return super().withdraw_for(*args, **kwargs)

    def borrow_for(self, *args, **kwargs):
        self._maybe_fail("borrow_for")
        return super().borrow_for(*args, **kwargs)

    def repay_for(self, *args, **kwargs):
        self._maybe_fail("repay_for")
        return super().repay_for(*args, **kwargs)

    def seize_for(self, *args, **kwargs):
        self._maybe_fail("seize_for")
        return super().seize_for(*args, **kwargs)

    def liquidate_for(self, *args, **kwargs):
        # A failure queued for either leg fails the combined call
        self._maybe_fail("liquidate_for")
        for leg in ("repay_for", "seize_for"):
            error = self._failures.pop(leg, None)
            if error is not None:
                raise error
        return super().liquidate_for(*args, **kwargs)


class BrokenAuditLog:
    """Audit log whose emit() always raises."""

    def __init__(self):
        self.attempts = 0

    def emit(self, event: Any) -> None:
        self.attempts += 1
        raise RuntimeError("audit sink unavailable")


class InterleavingLedger(AccountPositionLedger):
    """
    AccountPositionLedger that runs one queued deposit straight after the
    next publish, as a concurrent caller on the same key could.

    Example:
        ledger.interleave = ("alice", weth, 50)
        market.repay("alice", "WETH", "asset", 100)   # deposit lands right after
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.interleave = None

    def _publish(self, unit):
        super()._publish(unit)
        pending, self.interleave = self.interleave, None
        if pending is not None:
            self.deposit(*pending)
