"""
Core types and pure functions for the lending risk core.

This module provides the foundational data structures and protocols:
1. Enums: AssetKind, PositionDirection, OperationKind
2. Immutable records: Pool, PositionKey, ProtocolFees, AssetRiskConfig, AccountPosition
3. Exceptions: LendingError and the four error categories beneath it
4. Protocols: AccessControl, PoolLedger, AuditLog (external collaborators)
5. Audit events: ConfigChanged, PositionChanged
6. Fixed-point helpers: all ratios are integers over PRECISION (1e18)

All functions in this module are pure. Nothing here holds mutable state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale for every ratio (fees, LTV, liquidation threshold).
PRECISION = 10 ** 18

# Protocol defaults (0.5% fees, 50% LTV, 70% liquidation threshold).
DEFAULT_ENTRY_FEE = PRECISION // 1000 * 5
DEFAULT_SHARE_FEE = PRECISION // 1000 * 5
DEFAULT_LIQUIDATION_FEE = PRECISION // 1000 * 5
DEFAULT_LTV = PRECISION // 100 * 50
DEFAULT_LIQUIDATION_THRESHOLD = PRECISION // 100 * 70


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Identity of an account or administrator.
Identity = str

# Snapshot of a record, as carried by audit events.
Snapshot = Dict[str, Any]


# ============================================================================
# ENUMS
# ============================================================================

class AssetKind(str, Enum):
    """Whether a pool holds the real underlying asset or its shadow counterpart."""
    ASSET = "asset"
    SHADOW = "shadow"


class PositionDirection(str, Enum):
    """
    Relationship between the collateral pool and the debt pool of a position.

    ASSET_TO_SHADOW: real asset deposited, shadow token borrowed against it.
    SHADOW_TO_ASSET: shadow token deposited, real asset borrowed against it.
    """
    ASSET_TO_SHADOW = "asset_to_shadow"
    SHADOW_TO_ASSET = "shadow_to_asset"


class OperationKind(str, Enum):
    """State-changing operations recorded against a position."""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    BORROW = "borrow"
    REPAY = "repay"
    LIQUIDATE = "liquidate"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending core errors."""
    pass


# --- Authorization ---------------------------------------------------------

class AuthorizationError(LendingError):
    """Base class for permission failures."""
    pass


class Unauthorized(AuthorizationError):
    """Raised when the caller is not the protocol administrator."""
    pass


# --- Configuration ---------------------------------------------------------

class ConfigurationError(LendingError):
    """Base class for protocol configuration failures."""
    pass


class NotInitialized(ConfigurationError):
    """Raised when the configuration store is read or mutated before initialize()."""
    pass


class AlreadyInitialized(ConfigurationError):
    """Raised when initialize() is called a second time."""
    pass


class UnknownAsset(ConfigurationError):
    """Raised when an asset has no registered risk configuration."""
    pass


class AssetAlreadyRegistered(ConfigurationError):
    """Raised when register_asset() is called for an asset that already exists."""
    pass


class InvalidFeeRange(ConfigurationError):
    """Raised when a fee ratio falls outside [0, PRECISION]."""
    pass


class InvalidRiskRange(ConfigurationError):
    """Raised when ltv/liquidation_threshold violate 0 < ltv <= threshold <= PRECISION."""
    pass


# --- Classification --------------------------------------------------------

class ClassificationError(LendingError):
    """Base class for pool and position classification failures."""
    pass


class InvalidPoolType(ClassificationError):
    """Raised when a pool type tag does not resolve to an AssetKind."""
    pass


class InvalidPositionKind(ClassificationError):
    """Raised when collateral and debt pools are of the same kind."""
    pass


class CollateralModeMismatch(ClassificationError):
    """Raised when a deposit's collateral-only flag conflicts with the open position."""
    pass


# --- Solvency --------------------------------------------------------------

class SolvencyError(LendingError):
    """Base class for risk-limit failures."""
    pass


class InsufficientCollateral(SolvencyError):
    """Raised when a withdrawal exceeds the recorded collateral."""
    pass


class ExceedsLtv(SolvencyError):
    """Raised when a borrow would push debt above collateral * ltv."""
    pass


class WithdrawalWouldUndercollateralize(SolvencyError):
    """Raised when a withdrawal would leave outstanding debt above collateral * ltv."""
    pass


class PositionHealthy(SolvencyError):
    """Raised when liquidation is attempted on a position within its threshold."""
    pass


class SelfLiquidation(SolvencyError):
    """Raised when an account attempts to liquidate its own position."""
    pass


# --- External --------------------------------------------------------------

class PoolError(LendingError):
    """Raised by a Pool Ledger when it cannot move the requested value."""
    pass


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def validate_amount(amount: int, name: str = "amount") -> int:
    """
    Check that an amount is a non-negative integer.

    Raises:
        TypeError: If amount is not an int (bools are rejected too).
        ValueError: If amount is negative.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"{name} must be int, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"{name} cannot be negative, got {amount}")
    return amount


def mul_ratio_down(amount: int, ratio: int) -> int:
    """amount * ratio / PRECISION, rounded toward zero."""
    return amount * ratio // PRECISION


def mul_ratio_up(amount: int, ratio: int) -> int:
    """amount * ratio / PRECISION, rounded away from zero."""
    return -(-(amount * ratio) // PRECISION)


def within_limit(collateral: int, debt: int, ratio: int) -> bool:
    """
    Return True if debt <= collateral * ratio / PRECISION.

    Evaluated as debt * PRECISION <= collateral * ratio so that no rounding
    is involved. Zero debt is always within the limit.
    """
    if debt == 0:
        return True
    return debt * PRECISION <= collateral * ratio


def format_ratio(ratio: int) -> str:
    """Render a fixed-point ratio as a percentage string, e.g. '50%'."""
    whole, frac = divmod(ratio * 100, PRECISION)
    if frac == 0:
        return f"{whole}%"
    return f"{ratio * 100 / PRECISION:.4f}%"


# ============================================================================
# POOL IDENTITY
# ============================================================================

@dataclass(frozen=True, slots=True)
class Pool:
    """
    Identity of an asset pool.

    Attributes:
        asset_id: Asset held by the pool; also the key of its risk configuration.
        kind: Whether the pool holds the real asset or its shadow token.
    """
    asset_id: str
    kind: AssetKind

    def __post_init__(self):
        if not isinstance(self.asset_id, str):
            raise TypeError(f"Pool asset_id must be str, got {type(self.asset_id).__name__}")
        if not self.asset_id.strip():
            raise ValueError("Pool asset_id cannot be empty")
        if not isinstance(self.kind, AssetKind):
            raise ValueError(f"Pool kind must be AssetKind, got {self.kind!r}")

    def __repr__(self) -> str:
        return f"Pool({self.asset_id}:{self.kind.value})"


@dataclass(frozen=True, slots=True)
class PositionKey:
    """Composite key of an AccountPosition: (account, pool, direction)."""
    account: Identity
    pool: Pool
    direction: PositionDirection

    def __repr__(self) -> str:
        return f"PositionKey({self.account}, {self.pool!r}, {self.direction.value})"


# ============================================================================
# CONFIGURATION RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class ProtocolFees:
    """
    Global fee ratios, each an integer numerator over PRECISION.

    Attributes:
        entry_fee: Charged on the borrowed amount when debt is opened.
        share_fee: Protocol share of interest collected by the pools.
        liquidation_fee: Premium added to collateral seized in a liquidation.
    """
    entry_fee: int = DEFAULT_ENTRY_FEE
    share_fee: int = DEFAULT_SHARE_FEE
    liquidation_fee: int = DEFAULT_LIQUIDATION_FEE

    def out_of_range(self) -> Tuple[str, ...]:
        """Return the names of fields that are not ints in [0, PRECISION]."""
        bad = []
        for name in ("entry_fee", "share_fee", "liquidation_fee"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= PRECISION:
                bad.append(name)
        return tuple(bad)

    def snapshot(self) -> Snapshot:
        return {
            'entry_fee': self.entry_fee,
            'share_fee': self.share_fee,
            'liquidation_fee': self.liquidation_fee,
        }


@dataclass(frozen=True, slots=True)
class AssetRiskConfig:
    """
    Per-asset risk limits, as integer numerators over PRECISION.

    Invariant: 0 < ltv <= liquidation_threshold <= PRECISION.
    """
    ltv: int = DEFAULT_LTV
    liquidation_threshold: int = DEFAULT_LIQUIDATION_THRESHOLD

    def is_valid(self) -> bool:
        for value in (self.ltv, self.liquidation_threshold):
            if isinstance(value, bool) or not isinstance(value, int):
                return False
        return 0 < self.ltv <= self.liquidation_threshold <= PRECISION

    def snapshot(self) -> Snapshot:
        return {
            'ltv': self.ltv,
            'liquidation_threshold': self.liquidation_threshold,
        }


# ============================================================================
# POSITION RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccountPosition:
    """
    Collateral and debt of one account in one pool, for one direction.

    Attributes:
        collateral_amount: Amount deposited as collateral.
        debt_amount: Amount borrowed against the collateral.
        is_collateral_only: Collateral is protected and never lent to other borrowers.
    """
    collateral_amount: int = 0
    debt_amount: int = 0
    is_collateral_only: bool = False

    def is_empty(self) -> bool:
        """An all-zero position is logically equivalent to no position."""
        return self.collateral_amount == 0 and self.debt_amount == 0

    def snapshot(self) -> Snapshot:
        return {
            'collateral_amount': self.collateral_amount,
            'debt_amount': self.debt_amount,
            'is_collateral_only': self.is_collateral_only,
        }


EMPTY_POSITION = AccountPosition()


@dataclass(frozen=True, slots=True)
class PositionChange:
    """
    Journal entry for a committed position change.

    Stores complete before/after records so a change can be audited or
    reverted without recomputation.
    """
    sequence_number: int
    operation: OperationKind
    key: PositionKey
    before: AccountPosition
    after: AccountPosition

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.before.snapshot()
        new = self.after.snapshot()
        return {k: (old[k], new[k]) for k in old if old[k] != new[k]}


@dataclass(frozen=True, slots=True)
class PositionHealth:
    """Read-only valuation of a position against its asset's risk limits."""
    collateral_amount: int
    debt_amount: int
    max_debt: int                 # collateral * ltv, rounded down
    liquidation_limit: int        # collateral * liquidation_threshold, rounded down
    debt_ratio: Optional[int]     # debt / collateral over PRECISION (None without collateral)
    is_liquidatable: bool


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    """
    Outcome of a liquidation: what was repaid and what was seized.

    bad_debt is the debt left on a position whose collateral was seized in
    full. It is zero unless the collateral could not cover the repayment
    plus the liquidation premium.
    """
    seized_collateral: int
    repaid_debt: int
    premium: int                  # seized_collateral - repaid_debt
    bad_debt: int = 0


@dataclass(frozen=True, slots=True)
class BorrowReceipt:
    """Outcome of a borrow through the market: gross debt, fee, and net proceeds."""
    amount: int
    entry_fee: int
    received: int


# ============================================================================
# AUDIT EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class ConfigChanged:
    """Emitted after a committed configuration change."""
    caller: Identity
    subject: str                  # "fees" or the asset_id whose risk changed
    snapshot: Snapshot
    version: int


@dataclass(frozen=True, slots=True)
class PositionChanged:
    """Emitted after a committed position change."""
    account: Identity
    pool: Pool
    kind: OperationKind
    amounts: Snapshot = field(default_factory=dict)


# ============================================================================
# PROTOCOLS (external collaborators)
# ============================================================================

@runtime_checkable
class AccessControl(Protocol):
    """Authorization subsystem. Only the admin check is consumed."""

    def assert_is_admin(self, identity: Identity) -> None:
        """Raise Unauthorized unless identity is the protocol administrator."""
        ...


@runtime_checkable
class PoolLedger(Protocol):
    """
    Storage engine that custodies pooled funds.

    Each method either moves value and returns None, or raises PoolError
    without moving anything.
    """

    def deposit_for(self, account: Identity, pool: Pool, amount: int, is_collateral_only: bool) -> None:
        ...

    def withdraw_for(self, account: Identity, pool: Pool, amount: int) -> None:
        ...

    def borrow_for(self, pool: Pool, on_behalf_of: Identity, recipient: Identity, amount: int, fee: int = 0) -> None:
        ...

    def repay_for(self, account: Identity, pool: Pool, amount: int) -> None:
        ...

    def seize_for(self, pool: Pool, account: Identity, recipient: Identity, amount: int) -> None:
        ...

    def liquidate_for(self, pool: Pool, debt_pool: Pool, account: Identity, liquidator: Identity,
                      repaid: int, seized: int) -> None:
        """repay_for(liquidator, debt_pool, repaid) and seize_for(pool, account, liquidator, seized) as one move."""
        ...


@runtime_checkable
class AuditLog(Protocol):
    """Event sink for structured change events. Best-effort."""

    def emit(self, event: Any) -> None:
        ...
