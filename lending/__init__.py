"""
lending - Risk and Position Accounting Core

Tracks collateral and debt per account across asset and shadow pools,
enforces per-asset LTV and liquidation-threshold limits, and computes
protocol fees (entry, share, liquidation).

Usage:
    from lending import (
        AdminAccessControl, InMemoryPoolLedger, MemoryAuditLog,
        ProtocolConfigStore, AccountPositionLedger, MarketOrchestrator,
    )

    audit = MemoryAuditLog()
    store = ProtocolConfigStore(AdminAccessControl("admin"), audit)
    store.initialize("admin")
    store.register_asset("admin", "WETH")

    market = MarketOrchestrator(store, AccountPositionLedger(store), InMemoryPoolLedger(), audit)
    market.deposit("alice", "WETH", "asset", 1000)
    receipt = market.borrow("alice", "WETH", "asset", 400)
"""

# Core types
from .core import (
    AssetKind,
    PositionDirection,
    OperationKind,
    Pool,
    PositionKey,
    ProtocolFees,
    AssetRiskConfig,
    AccountPosition,
    PositionChange,
    PositionHealth,
    LiquidationResult,
    BorrowReceipt,
    ConfigChanged,
    PositionChanged,
    AccessControl,
    PoolLedger,
    AuditLog,
    PRECISION,
    DEFAULT_ENTRY_FEE,
    DEFAULT_SHARE_FEE,
    DEFAULT_LIQUIDATION_FEE,
    DEFAULT_LTV,
    DEFAULT_LIQUIDATION_THRESHOLD,
    EMPTY_POSITION,
    mul_ratio_down,
    mul_ratio_up,
    within_limit,
    # Exceptions
    LendingError,
    AuthorizationError,
    ConfigurationError,
    ClassificationError,
    SolvencyError,
    Unauthorized,
    NotInitialized,
    AlreadyInitialized,
    UnknownAsset,
    AssetAlreadyRegistered,
    InvalidFeeRange,
    InvalidRiskRange,
    InvalidPoolType,
    InvalidPositionKind,
    CollateralModeMismatch,
    InsufficientCollateral,
    ExceedsLtv,
    WithdrawalWouldUndercollateralize,
    PositionHealthy,
    SelfLiquidation,
    PoolError,
)

# Position Classifier
from .classifier import (
    classify,
    resolve_kind,
    counterpart,
    direction_of,
    debt_pool_of,
    collateral_kind_of,
    debt_kind_of,
)

# Protocol Configuration Store
from .config import ProtocolConfigStore

# Account Position Ledger
from .positions import (
    AccountPositionLedger,
    calculate_max_debt,
    calculate_required_collateral,
    calculate_debt_ratio,
    calculate_liquidation,
    is_breached,
)

# Market Orchestrator
from .market import MarketOrchestrator

# Collaborators
from .collaborators import (
    AdminAccessControl,
    InMemoryPoolLedger,
    MemoryAuditLog,
    LoggingAuditLog,
)

__all__ = [
    # Core
    'AssetKind', 'PositionDirection', 'OperationKind', 'Pool', 'PositionKey',
    'ProtocolFees', 'AssetRiskConfig', 'AccountPosition', 'PositionChange',
    'PositionHealth', 'LiquidationResult', 'BorrowReceipt',
    'ConfigChanged', 'PositionChanged',
    'AccessControl', 'PoolLedger', 'AuditLog',
    'PRECISION', 'DEFAULT_ENTRY_FEE', 'DEFAULT_SHARE_FEE', 'DEFAULT_LIQUIDATION_FEE',
    'DEFAULT_LTV', 'DEFAULT_LIQUIDATION_THRESHOLD', 'EMPTY_POSITION',
    'mul_ratio_down', 'mul_ratio_up', 'within_limit',
    # Exceptions
    'LendingError', 'AuthorizationError', 'ConfigurationError', 'ClassificationError',
    'SolvencyError', 'Unauthorized', 'NotInitialized', 'AlreadyInitialized',
    'UnknownAsset', 'AssetAlreadyRegistered', 'InvalidFeeRange', 'InvalidRiskRange',
    'InvalidPoolType', 'InvalidPositionKind', 'CollateralModeMismatch',
    'InsufficientCollateral', 'ExceedsLtv', 'WithdrawalWouldUndercollateralize',
    'PositionHealthy', 'SelfLiquidation', 'PoolError',
    # Classifier
    'classify', 'resolve_kind', 'counterpart', 'direction_of', 'debt_pool_of',
    'collateral_kind_of', 'debt_kind_of',
    # Configuration
    'ProtocolConfigStore',
    # Positions
    'AccountPositionLedger', 'calculate_max_debt', 'calculate_required_collateral',
    'calculate_debt_ratio', 'calculate_liquidation', 'is_breached',
    # Market
    'MarketOrchestrator',
    # Collaborators
    'AdminAccessControl', 'InMemoryPoolLedger', 'MemoryAuditLog', 'LoggingAuditLog',
]

__version__ = '1.0.0'
