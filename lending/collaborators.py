"""
collaborators.py - Reference implementations of the external collaborators

The risk core consumes three narrow interfaces (see core.py):
- AccessControl: assert_is_admin()
- PoolLedger: deposit_for / withdraw_for / borrow_for / repay_for / seize_for /
  liquidate_for
- AuditLog: emit()

Classes:
- AdminAccessControl: a single designated administrator
- InMemoryPoolLedger: custodied balances kept in dictionaries
- MemoryAuditLog: keeps every event in order
- LoggingAuditLog: writes every event to the "lending.audit" logger

These back the test-suite; deployments plug in their own.
"""

from __future__ import annotations
from collections import defaultdict
import logging
import threading
from typing import Any, Dict, List, Type

from .core import (
    Pool, Identity, ConfigChanged, PositionChanged,
    Unauthorized, PoolError, validate_amount,
)

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("lending.audit")


class AdminAccessControl:
    """
    Access control with one administrator identity.

    The administrator can hand the role to another identity.
    """

    def __init__(self, admin: Identity):
        if not admin or not admin.strip():
            raise ValueError("admin cannot be empty")
        self._admin = admin

    @property
    def admin(self) -> Identity:
        return self._admin

    def assert_is_admin(self, identity: Identity) -> None:
        if identity != self._admin:
            raise Unauthorized(f"{identity} is not the protocol administrator")

    def transfer_admin(self, caller: Identity, new_admin: Identity) -> None:
        self.assert_is_admin(caller)
        if not new_admin or not new_admin.strip():
            raise ValueError("new_admin cannot be empty")
        logger.info("Admin role transferred from %s to %s", caller, new_admin)
        self._admin = new_admin

    def __repr__(self):
        return f"AdminAccessControl(admin={self._admin})"


class InMemoryPoolLedger:
    """
    Pool Ledger holding balances in memory.

    Per pool it tracks each account's deposit (and the collateral-only part
    of it), the amount lent out, external reserves, and collected fees.
    Tokens paid out land in per-account wallet balances.

    Liquidity available to borrowers:
        deposits - collateral_only_deposits + reserves - lent_out

    Every method checks first and moves second; a PoolError means nothing moved.
    """

    def __init__(self):
        self._deposits: Dict[Pool, Dict[Identity, int]] = defaultdict(lambda: defaultdict(int))
        self._collateral_only: Dict[Pool, Dict[Identity, int]] = defaultdict(lambda: defaultdict(int))
        self._wallets: Dict[Identity, Dict[Pool, int]] = defaultdict(lambda: defaultdict(int))
        self._lent_out: Dict[Pool, int] = defaultdict(int)
        self._reserves: Dict[Pool, int] = defaultdict(int)
        self._treasury: Dict[Pool, int] = defaultdict(int)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def deposit_of(self, account: Identity, pool: Pool) -> int:
        return self._deposits[pool][account]

    def collateral_only_of(self, account: Identity, pool: Pool) -> int:
        return self._collateral_only[pool][account]

    def balance_of(self, account: Identity, pool: Pool) -> int:
        """Tokens of the pool's asset held in an account's wallet."""
        return self._wallets[account][pool]

    def lent_out(self, pool: Pool) -> int:
        return self._lent_out[pool]

    def fees_collected(self, pool: Pool) -> int:
        return self._treasury[pool]

    def available_liquidity(self, pool: Pool) -> int:
        with self._lock:
            lendable = sum(self._deposits[pool].values()) - sum(self._collateral_only[pool].values())
            return lendable + self._reserves[pool] - self._lent_out[pool]

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    def mint(self, account: Identity, pool: Pool, amount: int) -> None:
        """Credit tokens to a wallet (issuance outside the protocol)."""
        validate_amount(amount)
        with self._lock:
            self._wallets[account][pool] += amount

    def supply_liquidity(self, pool: Pool, amount: int) -> None:
        """Add reserves that borrowers may draw on."""
        validate_amount(amount)
        with self._lock:
            self._reserves[pool] += amount

    # ------------------------------------------------------------------
    # PoolLedger protocol
    # ------------------------------------------------------------------

    def deposit_for(self, account: Identity, pool: Pool, amount: int, is_collateral_only: bool) -> None:
        validate_amount(amount)
        with self._lock:
            self._deposits[pool][account] += amount
            if is_collateral_only:
                self._collateral_only[pool][account] += amount

    def withdraw_for(self, account: Identity, pool: Pool, amount: int) -> None:
        validate_amount(amount)
        with self._lock:
            self._release(pool, account, amount)
            self._wallets[account][pool] += amount

    def borrow_for(self, pool: Pool, on_behalf_of: Identity, recipient: Identity,
                   amount: int, fee: int = 0) -> None:
        validate_amount(amount)
        validate_amount(fee, "fee")
        with self._lock:
            available = self.available_liquidity(pool)
            if amount + fee > available:
                raise PoolError(
                    f"Insufficient liquidity in {pool!r} for {on_behalf_of}: "
                    f"requested {amount + fee}, available {available}"
                )
            self._lent_out[pool] += amount + fee
            self._treasury[pool] += fee
            self._wallets[recipient][pool] += amount

    def repay_for(self, account: Identity, pool: Pool, amount: int) -> None:
        validate_amount(amount)
        with self._lock:
            self._check_repay(account, pool, amount)
            self._wallets[account][pool] -= amount
            self._lent_out[pool] -= amount

    def seize_for(self, pool: Pool, account: Identity, recipient: Identity, amount: int) -> None:
        validate_amount(amount)
        with self._lock:
            self._release(pool, account, amount)
            self._wallets[recipient][pool] += amount

    def liquidate_for(self, pool: Pool, debt_pool: Pool, account: Identity, liquidator: Identity,
                      repaid: int, seized: int) -> None:
        """
        Take `repaid` from the liquidator into `debt_pool` and pay `seized`
        of the account's deposit in `pool` to the liquidator.

        Both legs are checked before either moves.
        """
        validate_amount(repaid, "repaid")
        validate_amount(seized, "seized")
        with self._lock:
            self._check_repay(liquidator, debt_pool, repaid)
            self._check_release(pool, account, seized)
            self._wallets[liquidator][debt_pool] -= repaid
            self._lent_out[debt_pool] -= repaid
            self._release(pool, account, seized)
            self._wallets[liquidator][pool] += seized

    def _check_repay(self, account: Identity, pool: Pool, amount: int) -> None:
        held = self._wallets[account][pool]
        if amount > held:
            raise PoolError(f"{account} holds {held} of {pool!r}, cannot repay {amount}")
        if amount > self._lent_out[pool]:
            raise PoolError(f"Repayment {amount} exceeds {self._lent_out[pool]} lent out of {pool!r}")

    def _check_release(self, pool: Pool, account: Identity, amount: int) -> int:
        """Return the protected part of a release; raise PoolError if it cannot happen."""
        deposited = self._deposits[pool][account]
        if amount > deposited:
            raise PoolError(f"{account} has {deposited} deposited in {pool!r}, cannot release {amount}")
        from_protected = min(amount, self._collateral_only[pool][account])
        from_lendable = amount - from_protected
        if from_lendable > self.available_liquidity(pool):
            raise PoolError(
                f"Insufficient liquidity in {pool!r}: {from_lendable} requested, "
                f"{self.available_liquidity(pool)} available"
            )
        return from_protected

    def _release(self, pool: Pool, account: Identity, amount: int) -> None:
        """Take `amount` out of an account's deposit; protected balance first."""
        from_protected = self._check_release(pool, account, amount)
        self._deposits[pool][account] -= amount
        self._collateral_only[pool][account] -= from_protected

    def __repr__(self):
        return f"InMemoryPoolLedger({len(self._deposits)} pools)"


class MemoryAuditLog:
    """Audit log that keeps every event in emission order."""

    def __init__(self):
        self.events: List[Any] = []
        self._lock = threading.Lock()

    def emit(self, event: Any) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: Type) -> List[Any]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()

    def __len__(self):
        return len(self.events)


class LoggingAuditLog:
    """Audit log that writes one INFO record per event to 'lending.audit'."""

    def __init__(self, log: logging.Logger = None):
        self._log = log or audit_logger

    def emit(self, event: Any) -> None:
        if isinstance(event, ConfigChanged):
            self._log.info("config_changed caller=%s subject=%s version=%d values=%s",
                           event.caller, event.subject, event.version, event.snapshot)
        elif isinstance(event, PositionChanged):
            self._log.info("position_changed account=%s pool=%s kind=%s amounts=%s",
                           event.account, event.pool, event.kind.value, event.amounts)
        else:
            self._log.info("event %r", event)
