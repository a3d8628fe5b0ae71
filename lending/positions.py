"""
positions.py - Account Position Ledger

The AccountPositionLedger is the sole owner of AccountPosition records and
the authority that accepts or rejects every collateral/debt change against
the risk limits held by the ProtocolConfigStore.

Key responsibilities:
    - Deposit, withdraw, borrow, repay and liquidate against one
      (account, pool, direction) position at a time
    - Enforce the solvency invariant at the end of every operation:
          debt == 0  or  debt * PRECISION <= collateral * ltv
    - Stage changes in a unit of work (atomic()) and publish them only when
      the whole unit succeeds, so callers can pair a ledger change with an
      external value movement
    - Keep a journal of every published change

Pure calculation functions (calculate_*) take every input explicitly and are
usable without a ledger instance.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
import logging
import threading
from typing import Dict, Iterator, List, Optional, Tuple, Any

from .classifier import direction_of
from .config import ProtocolConfigStore
from .core import (
    # Types
    AccountPosition, PositionKey, PositionChange, PositionHealth,
    LiquidationResult, OperationKind, Pool, Identity,
    # Constants
    PRECISION, EMPTY_POSITION,
    # Helpers
    validate_amount, mul_ratio_down, mul_ratio_up, within_limit,
    # Exceptions
    LendingError, CollateralModeMismatch, InsufficientCollateral,
    ExceedsLtv, WithdrawalWouldUndercollateralize, PositionHealthy,
    SelfLiquidation,
)

logger = logging.getLogger(__name__)


# ============================================================================
# PURE CALCULATION FUNCTIONS - No ledger, All Inputs Explicit
# ============================================================================

def calculate_max_debt(collateral: int, ltv: int) -> int:
    """Largest debt the collateral supports at this LTV, rounded down."""
    return mul_ratio_down(collateral, ltv)


def calculate_required_collateral(debt: int, ltv: int) -> int:
    """Smallest collateral that keeps `debt` within this LTV, rounded up."""
    if debt == 0:
        return 0
    return -(-(debt * PRECISION) // ltv)


def calculate_debt_ratio(collateral: int, debt: int) -> Optional[int]:
    """debt / collateral over PRECISION, rounded up. None when there is no collateral."""
    if collateral == 0:
        return None
    return -(-(debt * PRECISION) // collateral)


def is_breached(collateral: int, debt: int, liquidation_threshold: int) -> bool:
    """True if debt exceeds collateral * liquidation_threshold."""
    return debt > 0 and debt * PRECISION > collateral * liquidation_threshold


def calculate_liquidation(
    collateral: int,
    debt: int,
    max_amount: int,
    liquidation_fee: int,
) -> LiquidationResult:
    """
    Split a liquidation into repaid debt and seized collateral.

    PURE FUNCTION - All inputs explicit.

        repaid = min(max_amount, debt)
        seized = repaid * (1 + liquidation_fee)     (rounded up)

    If `seized` would exceed the recorded collateral, the whole collateral is
    seized and `repaid` shrinks to collateral / (1 + liquidation_fee), rounded
    down, so the premium is never paid out of thin air. Whatever debt remains
    once the collateral is gone is reported as `bad_debt`.

    Example:
        # 1000 collateral, 710 debt, 10% fee, repay up to 100
        calculate_liquidation(1000, 710, 100, PRECISION // 10)
        # -> LiquidationResult(seized_collateral=110, repaid_debt=100, premium=10, bad_debt=0)

        # 100 collateral, 100 debt, 10% fee: 90 repaid, 10 left unbacked
        calculate_liquidation(100, 100, 100, PRECISION // 10)
        # -> LiquidationResult(seized_collateral=100, repaid_debt=90, premium=10, bad_debt=10)
    """
    repaid = min(max_amount, debt)
    seized = repaid + mul_ratio_up(repaid, liquidation_fee)
    if seized > collateral:
        seized = collateral
        repaid = min(repaid, collateral * PRECISION // (PRECISION + liquidation_fee))
    bad_debt = debt - repaid if seized == collateral else 0
    return LiquidationResult(
        seized_collateral=seized,
        repaid_debt=repaid,
        premium=seized - repaid,
        bad_debt=bad_debt,
    )


# ============================================================================
# UNIT OF WORK
# ============================================================================

@dataclass
class _UnitOfWork:
    """Changes staged against one key, invisible until published."""
    key: PositionKey
    staged: Optional[AccountPosition] = None
    changes: List[Tuple[OperationKind, AccountPosition, AccountPosition]] = field(default_factory=list)


# ============================================================================
# LEDGER
# ============================================================================

class AccountPositionLedger:
    """
    Per-account, per-pool collateral and debt bookkeeping with risk checks.

    Design Principles:
        - Always validates: a rejected operation raises before anything is
          staged, so the stored record is untouched.
        - Always journals: every published change is appended to the
          journal with before/after records and a sequence number.

    Thread Safety:
        Operations on the same PositionKey are serialized by that key's
        RLock. Operations on different keys only share a short guard lock
        for publishing. A unit of work holds its key lock from start to
        publish, so readers of that key never see a staged value.

    Example:
        ledger = AccountPositionLedger(store)
        weth = Pool("WETH", AssetKind.ASSET)
        ledger.deposit("alice", weth, 1000)
        ledger.borrow("alice", weth, 400)
        applied = ledger.repay("alice", weth, 1000)   # -> 400
    """

    def __init__(self, config: ProtocolConfigStore, name: str = "positions", verbose: bool = False):
        """
        Create an empty position ledger.

        Args:
            config: Source of risk limits and the liquidation fee (read-only use)
            name: Ledger identifier used in log messages
            verbose: Log committed operations at INFO instead of DEBUG
        """
        self.name = name
        self.verbose = verbose
        self._config = config
        self._positions: Dict[PositionKey, AccountPosition] = {}
        self._journal: List[PositionChange] = []
        self._next_sequence = 0
        self._units: Dict[PositionKey, _UnitOfWork] = {}
        self._locks: Dict[PositionKey, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._guard = threading.Lock()

    # ========================================================================
    # KEYS AND UNITS OF WORK
    # ========================================================================

    def key_for(self, account: Identity, pool: Pool) -> PositionKey:
        """Build the position key; the direction is derived from the pool kind."""
        if not account or not account.strip():
            raise ValueError("account cannot be empty")
        return PositionKey(account, pool, direction_of(pool))

    def _lock_for(self, key: PositionKey) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def atomic(self, account: Identity, pool: Pool) -> Iterator[PositionKey]:
        """
        Open a unit of work over one position.

        Changes made inside the block are staged and published together when
        the block exits normally. If the block raises (including a failure in
        an external call made inside it), every staged change is discarded and
        the exception propagates.

        Nested use on the same key from the same thread joins the outer unit.

        Example:
            with ledger.atomic("alice", weth):
                ledger.withdraw("alice", weth, 100)
                pool_ledger.withdraw_for("alice", weth, 100)   # may raise PoolError
        """
        key = self.key_for(account, pool)
        with self._lock_for(key):
            if key in self._units:
                yield key
                return
            unit = _UnitOfWork(key)
            self._units[key] = unit
            try:
                yield key
            except BaseException:
                del self._units[key]
                if unit.changes:
                    self._log("%s: rolled back %d staged change(s) on %r",
                              self.name, len(unit.changes), key)
                raise
            del self._units[key]
            self._publish(unit)

    def _current(self, key: PositionKey) -> AccountPosition:
        unit = self._units.get(key)
        if unit is not None and unit.staged is not None:
            return unit.staged
        return self._positions.get(key, EMPTY_POSITION)

    def _stage(self, key: PositionKey, operation: OperationKind,
               before: AccountPosition, after: AccountPosition) -> AccountPosition:
        unit = self._units[key]
        unit.staged = after
        unit.changes.append((operation, before, after))
        return after

    def _publish(self, unit: _UnitOfWork) -> None:
        if not unit.changes:
            return
        with self._guard:
            self._positions[unit.key] = unit.staged
            for operation, before, after in unit.changes:
                self._journal.append(PositionChange(
                    sequence_number=self._next_sequence,
                    operation=operation,
                    key=unit.key,
                    before=before,
                    after=after,
                ))
                self._next_sequence += 1
        for operation, before, after in unit.changes:
            self._log("%s: %s %r collateral %d->%d debt %d->%d",
                      self.name, operation.value, unit.key,
                      before.collateral_amount, after.collateral_amount,
                      before.debt_amount, after.debt_amount)

    def _log(self, msg: str, *args: Any) -> None:
        logger.log(logging.INFO if self.verbose else logging.DEBUG, msg, *args)

    def _reject(self, error: LendingError) -> LendingError:
        self._log("%s: REJECTED %s: %s", self.name, type(error).__name__, error)
        return error

    # ========================================================================
    # OPERATIONS (Mutating)
    # ========================================================================

    def deposit(self, account: Identity, pool: Pool, amount: int,
                is_collateral_only: bool = False) -> AccountPosition:
        """
        Add collateral to a position.

        A zero amount is a no-op. Deposits only improve solvency, so no risk
        check runs, but the pool's asset must be registered.

        Raises:
            UnknownAsset: If the pool's asset has no risk config
            CollateralModeMismatch: If the position holds collateral under the
                                    opposite collateral-only flag
        """
        validate_amount(amount)
        self._config.risk_config(pool.asset_id)
        with self.atomic(account, pool) as key:
            before = self._current(key)
            if amount == 0:
                return before
            if before.collateral_amount > 0 and before.is_collateral_only != bool(is_collateral_only):
                raise self._reject(CollateralModeMismatch(
                    f"{account} holds {'collateral-only' if before.is_collateral_only else 'lendable'} "
                    f"collateral in {pool!r}; withdraw it before switching modes"
                ))
            after = replace(
                before,
                collateral_amount=before.collateral_amount + amount,
                is_collateral_only=bool(is_collateral_only),
            )
            return self._stage(key, OperationKind.DEPOSIT, before, after)

    def withdraw(self, account: Identity, pool: Pool, amount: int) -> AccountPosition:
        """
        Remove collateral from a position.

        Raises:
            InsufficientCollateral: If amount exceeds the recorded collateral
            WithdrawalWouldUndercollateralize: If the remaining collateral no
                                               longer covers the debt at ltv
        """
        validate_amount(amount)
        with self.atomic(account, pool) as key:
            before = self._current(key)
            if amount == 0:
                return before
            if amount > before.collateral_amount:
                raise self._reject(InsufficientCollateral(
                    f"{account} cannot withdraw {amount} from {pool!r}: "
                    f"only {before.collateral_amount} deposited"
                ))
            remaining = before.collateral_amount - amount
            ltv = self._config.ltv(pool.asset_id)
            if not within_limit(remaining, before.debt_amount, ltv):
                raise self._reject(WithdrawalWouldUndercollateralize(
                    f"{account} cannot withdraw {amount} from {pool!r}: debt {before.debt_amount} "
                    f"needs collateral {calculate_required_collateral(before.debt_amount, ltv)}"
                ))
            after = replace(before, collateral_amount=remaining)
            return self._stage(key, OperationKind.WITHDRAW, before, after)

    def borrow(self, account: Identity, pool: Pool, amount: int) -> AccountPosition:
        """
        Add debt against a position's collateral.

        Raises:
            UnknownAsset: If the pool's asset has no risk config
            ExceedsLtv: If the new debt exceeds collateral * ltv
        """
        validate_amount(amount)
        ltv = self._config.ltv(pool.asset_id)
        with self.atomic(account, pool) as key:
            before = self._current(key)
            if amount == 0:
                return before
            new_debt = before.debt_amount + amount
            if not within_limit(before.collateral_amount, new_debt, ltv):
                raise self._reject(ExceedsLtv(
                    f"{account} cannot borrow {amount} against {pool!r}: debt {new_debt} "
                    f"> max {calculate_max_debt(before.collateral_amount, ltv)}"
                ))
            after = replace(before, debt_amount=new_debt)
            return self._stage(key, OperationKind.BORROW, before, after)

    def repay(self, account: Identity, pool: Pool, amount: int) -> int:
        """
        Reduce debt by min(amount, debt).

        Overpayment is clamped, not rejected.

        Returns:
            The amount actually applied to the debt.
        """
        validate_amount(amount)
        with self.atomic(account, pool) as key:
            before = self._current(key)
            applied = min(amount, before.debt_amount)
            if applied == 0:
                return 0
            after = replace(before, debt_amount=before.debt_amount - applied)
            self._stage(key, OperationKind.REPAY, before, after)
            return applied

    def liquidate(self, liquidator: Identity, account: Identity, pool: Pool,
                  max_amount: int) -> LiquidationResult:
        """
        Repay part of a breached position's debt and seize collateral plus premium.

        Permitted only when debt exceeds collateral * liquidation_threshold.
        The seized collateral is repaid_debt * (1 + liquidation_fee), and is
        never more than the recorded collateral (see calculate_liquidation).

        If the collateral is exhausted first, the position is left with zero
        collateral and the remaining debt, which `bad_debt` on the result
        reports. Such a position stays breached and can only be repaid.

        Raises:
            SelfLiquidation: If liquidator is the position's own account
            PositionHealthy: If the liquidation threshold is not breached
        """
        validate_amount(max_amount, "max_amount")
        if liquidator == account:
            raise self._reject(SelfLiquidation(f"{account} cannot liquidate its own position"))
        threshold = self._config.liquidation_threshold(pool.asset_id)
        liquidation_fee = self._config.liquidation_fee
        with self.atomic(account, pool) as key:
            before = self._current(key)
            if not is_breached(before.collateral_amount, before.debt_amount, threshold):
                raise self._reject(PositionHealthy(
                    f"{account} in {pool!r} is within its liquidation threshold "
                    f"(collateral {before.collateral_amount}, debt {before.debt_amount})"
                ))
            result = calculate_liquidation(
                before.collateral_amount, before.debt_amount, max_amount, liquidation_fee
            )
            if result.repaid_debt == 0 and result.seized_collateral == 0:
                return result
            after = replace(
                before,
                collateral_amount=before.collateral_amount - result.seized_collateral,
                debt_amount=before.debt_amount - result.repaid_debt,
            )
            self._stage(key, OperationKind.LIQUIDATE, before, after)
            self._log("%s: %s liquidated %r: repaid %d, seized %d (premium %d)",
                      self.name, liquidator, key, result.repaid_debt,
                      result.seized_collateral, result.premium)
            if result.bad_debt:
                logger.warning("%s: %r left with %d debt and no collateral",
                               self.name, key, result.bad_debt)
            return result

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    def get_position(self, account: Identity, pool: Pool) -> AccountPosition:
        """Return the position, or an all-zero record if none exists."""
        key = self.key_for(account, pool)
        with self._lock_for(key):
            return self._current(key)

    def has_position(self, account: Identity, pool: Pool) -> bool:
        """True if a record has ever been created for this position."""
        return self.key_for(account, pool) in self._positions

    def positions_of(self, account: Identity) -> Dict[PositionKey, AccountPosition]:
        """Return all non-empty positions held by an account."""
        return {
            key: position for key, position in self._committed()
            if key.account == account and not position.is_empty()
        }

    def health(self, account: Identity, pool: Pool) -> PositionHealth:
        """Value a position against its asset's current risk limits."""
        position = self.get_position(account, pool)
        config = self._config.risk_config(pool.asset_id)
        collateral, debt = position.collateral_amount, position.debt_amount
        return PositionHealth(
            collateral_amount=collateral,
            debt_amount=debt,
            max_debt=calculate_max_debt(collateral, config.ltv),
            liquidation_limit=mul_ratio_down(collateral, config.liquidation_threshold),
            debt_ratio=calculate_debt_ratio(collateral, debt),
            is_liquidatable=is_breached(collateral, debt, config.liquidation_threshold),
        )

    def max_borrowable(self, account: Identity, pool: Pool) -> int:
        """Additional debt the position can take on at the current LTV."""
        position = self.get_position(account, pool)
        max_debt = calculate_max_debt(position.collateral_amount, self._config.ltv(pool.asset_id))
        return max(0, max_debt - position.debt_amount)

    def max_withdrawable(self, account: Identity, pool: Pool) -> int:
        """Collateral that can be withdrawn without breaking the LTV limit."""
        position = self.get_position(account, pool)
        if position.debt_amount == 0:
            return position.collateral_amount
        required = calculate_required_collateral(position.debt_amount, self._config.ltv(pool.asset_id))
        return max(0, position.collateral_amount - required)

    # ========================================================================
    # POOL AGGREGATES (computed from committed records)
    # ========================================================================

    def _committed(self) -> List[Tuple[PositionKey, AccountPosition]]:
        with self._guard:
            items = list(self._positions.items())
        return sorted(items, key=lambda kv: (kv[0].account, kv[0].pool.asset_id, kv[0].pool.kind.value))

    def total_collateral(self, pool: Pool) -> int:
        return sum(p.collateral_amount for k, p in self._committed() if k.pool == pool)

    def total_collateral_only(self, pool: Pool) -> int:
        """Collateral flagged as protected; never lent to other borrowers."""
        return sum(
            p.collateral_amount for k, p in self._committed()
            if k.pool == pool and p.is_collateral_only
        )

    def lendable_collateral(self, pool: Pool) -> int:
        """Collateral available to other borrowers (excludes collateral-only deposits)."""
        return self.total_collateral(pool) - self.total_collateral_only(pool)

    def total_debt(self, pool: Pool) -> int:
        return sum(p.debt_amount for k, p in self._committed() if k.pool == pool)

    # ========================================================================
    # AUDIT
    # ========================================================================

    @property
    def journal(self) -> List[PositionChange]:
        """Published changes in sequence order."""
        with self._guard:
            return list(self._journal)

    def changes_for(self, account: Identity, pool: Pool) -> List[PositionChange]:
        key = self.key_for(account, pool)
        return [change for change in self.journal if change.key == key]

    def verify_solvency(self) -> Dict[str, Any]:
        """
        Check the solvency invariant for every committed position.

        Positions are checked against the ltv currently configured for their
        asset, so lowering an ltv can surface violations here.

        Returns:
            Dict with keys:
            - 'valid': bool - True if no position violates the invariant
            - 'checked': int - Number of records examined
            - 'violations': List[Dict] - key, collateral_amount, debt_amount, max_debt

        Example:
            result = ledger.verify_solvency()
            assert result['valid'], f"Insolvent positions: {result['violations']}"
        """
        violations = []
        committed = self._committed()
        for key, position in committed:
            ltv = self._config.ltv(key.pool.asset_id)
            if not within_limit(position.collateral_amount, position.debt_amount, ltv):
                violations.append({
                    'key': key,
                    'collateral_amount': position.collateral_amount,
                    'debt_amount': position.debt_amount,
                    'max_debt': calculate_max_debt(position.collateral_amount, ltv),
                })
        return {
            'valid': len(violations) == 0,
            'checked': len(committed),
            'violations': violations,
        }
