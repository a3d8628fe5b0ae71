"""
market.py - Market Orchestrator

Public entry surface of the lending core. Each entry point:

    1. resolves the pool type tag to an AssetKind      (InvalidPoolType)
    2. derives the position direction via the classifier
    3. opens a unit of work on the position            (ledger.atomic)
    4. applies the risk bookkeeping                    (AccountPositionLedger)
    5. moves real value                                (PoolLedger)
    6. publishes the unit, then records a PositionChanged (AuditLog)

If step 5 raises, the unit of work discards step 4 and the error reaches the
caller: a failed call leaves every balance exactly as it was.
"""

from __future__ import annotations
import logging
from typing import Optional, Union

from .classifier import resolve_kind, direction_of, debt_pool_of
from .config import ProtocolConfigStore
from .core import (
    AssetKind, Pool, Identity, OperationKind, PositionChanged,
    BorrowReceipt, LiquidationResult, AccountPosition,
    PoolLedger, AuditLog, validate_amount,
)
from .positions import AccountPositionLedger

logger = logging.getLogger(__name__)

PoolType = Union[AssetKind, str]


class MarketOrchestrator:
    """
    Entry point for deposit, withdraw, borrow, repay and liquidate.

    `pool_type` always names the kind of the collateral pool; debt is drawn
    from the counterpart pool of the same asset (see classifier.debt_pool_of).

    Example:
        market = MarketOrchestrator(store, ledger, pool_ledger, audit_log)
        market.deposit("alice", "WETH", "asset", 1000)
        receipt = market.borrow("alice", "WETH", "asset", 400)
        market.repay("alice", "WETH", "asset", receipt.amount)
    """

    def __init__(
        self,
        config: ProtocolConfigStore,
        ledger: AccountPositionLedger,
        pool_ledger: PoolLedger,
        audit_log: Optional[AuditLog] = None,
        verbose: bool = False,
    ):
        self.config = config
        self.ledger = ledger
        self.pool_ledger = pool_ledger
        self.audit_log = audit_log
        self.verbose = verbose

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    def deposit(self, account: Identity, asset_id: str, pool_type: PoolType,
                amount: int, is_collateral_only: bool = False) -> AccountPosition:
        """Deposit collateral. Returns the resulting position."""
        pool = self._pool(asset_id, pool_type)
        validate_amount(amount)
        if amount == 0:
            return self.ledger.deposit(account, pool, 0, is_collateral_only)
        with self.ledger.atomic(account, pool):
            position = self.ledger.deposit(account, pool, amount, is_collateral_only)
            self.pool_ledger.deposit_for(account, pool, amount, is_collateral_only)
        self._record(account, pool, OperationKind.DEPOSIT, {
            'amount': amount,
            'is_collateral_only': bool(is_collateral_only),
            **position.snapshot(),
        })
        return position

    def withdraw(self, account: Identity, asset_id: str, pool_type: PoolType,
                 amount: int) -> AccountPosition:
        """Withdraw collateral. Returns the resulting position."""
        pool = self._pool(asset_id, pool_type)
        validate_amount(amount)
        if amount == 0:
            return self.ledger.withdraw(account, pool, 0)
        with self.ledger.atomic(account, pool):
            position = self.ledger.withdraw(account, pool, amount)
            self.pool_ledger.withdraw_for(account, pool, amount)
        self._record(account, pool, OperationKind.WITHDRAW, {
            'amount': amount,
            **position.snapshot(),
        })
        return position

    def borrow(self, account: Identity, asset_id: str, pool_type: PoolType,
               amount: int, recipient: Optional[Identity] = None) -> BorrowReceipt:
        """
        Borrow against collateral held in the (asset_id, pool_type) pool.

        The full `amount` is added to the debt. The entry fee is kept by the
        protocol, so the recipient (the account itself unless given) receives
        amount - entry_fee from the counterpart pool.
        """
        pool = self._pool(asset_id, pool_type)
        validate_amount(amount)
        recipient = recipient or account
        if amount == 0:
            self.ledger.borrow(account, pool, 0)
            return BorrowReceipt(amount=0, entry_fee=0, received=0)
        fee = min(self.config.calculate_entry_fee(amount), amount)
        receipt = BorrowReceipt(amount=amount, entry_fee=fee, received=amount - fee)
        with self.ledger.atomic(account, pool):
            position = self.ledger.borrow(account, pool, amount)
            self.pool_ledger.borrow_for(debt_pool_of(pool), account, recipient, receipt.received, fee)
        self._record(account, pool, OperationKind.BORROW, {
            'amount': amount,
            'entry_fee': fee,
            'received': receipt.received,
            'recipient': recipient,
            **position.snapshot(),
        })
        return receipt

    def repay(self, account: Identity, asset_id: str, pool_type: PoolType, amount: int) -> int:
        """
        Repay debt. Overpayment is clamped to the outstanding debt.

        Returns:
            The amount applied; only this much is taken by the Pool Ledger.
        """
        pool = self._pool(asset_id, pool_type)
        validate_amount(amount)
        with self.ledger.atomic(account, pool):
            applied = self.ledger.repay(account, pool, amount)
            if applied:
                self.pool_ledger.repay_for(account, debt_pool_of(pool), applied)
            position = self.ledger.get_position(account, pool)
        if applied:
            self._record(account, pool, OperationKind.REPAY, {
                'requested': amount,
                'applied': applied,
                **position.snapshot(),
            })
        return applied

    def liquidate(self, liquidator: Identity, account: Identity, asset_id: str,
                  pool_type: PoolType, max_amount: int) -> LiquidationResult:
        """
        Liquidate a position that breached its liquidation threshold.

        The liquidator repays `repaid_debt` into the debt pool and receives
        `seized_collateral` from the account's collateral in the pool. Both
        movements go to the Pool Ledger as a single liquidate_for call, so
        either both happen or neither does.

        When the collateral runs out before the debt does, `result.bad_debt`
        reports what is left owing against an empty position.
        """
        pool = self._pool(asset_id, pool_type)
        validate_amount(max_amount, "max_amount")
        with self.ledger.atomic(account, pool):
            result = self.ledger.liquidate(liquidator, account, pool, max_amount)
            if result.repaid_debt or result.seized_collateral:
                self.pool_ledger.liquidate_for(pool, debt_pool_of(pool), account, liquidator,
                                               result.repaid_debt, result.seized_collateral)
            position = self.ledger.get_position(account, pool)
        if result.repaid_debt or result.seized_collateral:
            self._record(account, pool, OperationKind.LIQUIDATE, {
                'liquidator': liquidator,
                'repaid_debt': result.repaid_debt,
                'seized_collateral': result.seized_collateral,
                'premium': result.premium,
                'bad_debt': result.bad_debt,
                **position.snapshot(),
            })
        return result

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _pool(self, asset_id: str, pool_type: PoolType) -> Pool:
        pool = Pool(asset_id, resolve_kind(pool_type))
        direction_of(pool)
        return pool

    def _record(self, account: Identity, pool: Pool, kind: OperationKind, amounts: dict) -> None:
        logger.log(logging.INFO if self.verbose else logging.DEBUG,
                   "%s %s %r %s", account, kind.value, pool, amounts)
        if self.audit_log is None:
            return
        try:
            self.audit_log.emit(PositionChanged(account, pool, kind, amounts))
        except Exception:
            logger.exception("Audit log failed to record %s for %s in %r", kind.value, account, pool)
