"""
config.py - Protocol Configuration Store

Holds the singleton ProtocolFees and one AssetRiskConfig per registered
asset. It is the only module that mutates configuration.

Every mutation follows the same order under the store lock:
    1. authorize (AccessControl.assert_is_admin)
    2. validate the complete new value
    3. replace the frozen record in one assignment
    4. bump the version
    5. notify the Audit Log (best-effort, after commit)

A failure in steps 1-2 leaves the store exactly as it was.
"""

from __future__ import annotations
import logging
import threading
from typing import Dict, List, Optional

from .core import (
    # Types
    ProtocolFees, AssetRiskConfig, ConfigChanged,
    AccessControl, AuditLog, Identity,
    # Helpers
    mul_ratio_up, validate_amount, format_ratio,
    # Exceptions
    NotInitialized, AlreadyInitialized, UnknownAsset,
    AssetAlreadyRegistered, InvalidFeeRange, InvalidRiskRange,
)

logger = logging.getLogger(__name__)

FEES_SUBJECT = "fees"


class ProtocolConfigStore:
    """
    Global fee parameters and per-asset risk parameters.

    Thread Safety:
        Mutations are serialized by a store-level RLock. Reads return frozen
        records, so a reader always sees a complete old or new value.

    Example:
        store = ProtocolConfigStore(AdminAccessControl("admin"))
        store.initialize("admin")
        store.register_asset("admin", "WETH")
        store.update_asset_risk("admin", "WETH", AssetRiskConfig(ltv=..., liquidation_threshold=...))
    """

    def __init__(
        self,
        access_control: AccessControl,
        audit_log: Optional[AuditLog] = None,
        default_fees: Optional[ProtocolFees] = None,
        default_risk: Optional[AssetRiskConfig] = None,
    ):
        """
        Create an uninitialized store.

        Args:
            access_control: Authorization collaborator for every mutation
            audit_log: Optional sink for ConfigChanged events
            default_fees: Fees installed by initialize() (protocol defaults if None)
            default_risk: Risk config installed by register_asset() (protocol defaults if None)
        """
        default_fees = default_fees or ProtocolFees()
        default_risk = default_risk or AssetRiskConfig()
        if default_fees.out_of_range():
            raise InvalidFeeRange(f"Default fees out of range: {default_fees.out_of_range()}")
        if not default_risk.is_valid():
            raise InvalidRiskRange(f"Default risk config out of range: {default_risk}")

        self._access_control = access_control
        self._audit_log = audit_log
        self._default_fees = default_fees
        self._default_risk = default_risk
        self._fees: Optional[ProtocolFees] = None
        self._risk: Dict[str, AssetRiskConfig] = {}
        self._version = 0
        self._lock = threading.RLock()

    # ========================================================================
    # READS
    # ========================================================================

    @property
    def is_initialized(self) -> bool:
        return self._fees is not None

    @property
    def version(self) -> int:
        """Number of committed mutations since creation."""
        return self._version

    def fees(self) -> ProtocolFees:
        """Current fee record. Raises NotInitialized before initialize()."""
        fees = self._fees
        if fees is None:
            raise NotInitialized("Protocol fees not initialized")
        return fees

    @property
    def entry_fee(self) -> int:
        return self.fees().entry_fee

    @property
    def share_fee(self) -> int:
        return self.fees().share_fee

    @property
    def liquidation_fee(self) -> int:
        return self.fees().liquidation_fee

    def risk_config(self, asset_id: str) -> AssetRiskConfig:
        """Current risk record for an asset. Raises UnknownAsset if unregistered."""
        config = self._risk.get(asset_id)
        if config is None:
            raise UnknownAsset(f"Asset {asset_id} not registered")
        return config

    def ltv(self, asset_id: str) -> int:
        return self.risk_config(asset_id).ltv

    def liquidation_threshold(self, asset_id: str) -> int:
        return self.risk_config(asset_id).liquidation_threshold

    def is_registered(self, asset_id: str) -> bool:
        return asset_id in self._risk

    def list_assets(self) -> List[str]:
        """List all registered asset ids."""
        return sorted(self._risk.keys())

    # ========================================================================
    # FEE CALCULATIONS
    # ========================================================================

    def calculate_entry_fee(self, amount: int) -> int:
        """Entry fee owed on a borrow of `amount`, rounded up."""
        return mul_ratio_up(validate_amount(amount), self.entry_fee)

    def calculate_share_fee(self, amount: int) -> int:
        """Protocol share of `amount` of collected interest, rounded up."""
        return mul_ratio_up(validate_amount(amount), self.share_fee)

    def calculate_liquidation_fee(self, amount: int) -> int:
        """Liquidation premium on `amount` of repaid debt, rounded up."""
        return mul_ratio_up(validate_amount(amount), self.liquidation_fee)

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def initialize(self, admin: Identity) -> None:
        """
        Install the default ProtocolFees and an empty risk map.

        Raises:
            Unauthorized: If admin is not the protocol administrator
            AlreadyInitialized: If called more than once
        """
        with self._lock:
            self._access_control.assert_is_admin(admin)
            if self._fees is not None:
                raise AlreadyInitialized("Protocol configuration already initialized")
            self._fees = self._default_fees
            self._risk = {}
            version = self._commit()
        logger.info("Protocol initialized by %s (version %d)", admin, version)
        self._notify(ConfigChanged(admin, FEES_SUBJECT, self._default_fees.snapshot(), version))

    def register_asset(self, admin: Identity, asset_id: str) -> None:
        """
        Create the default AssetRiskConfig for an asset.

        Raises:
            Unauthorized: If admin is not the protocol administrator
            NotInitialized: If initialize() has not been called
            AssetAlreadyRegistered: If the asset already has a risk config
        """
        if not isinstance(asset_id, str):
            raise TypeError(f"asset_id must be str, got {type(asset_id).__name__}")
        if not asset_id.strip():
            raise ValueError("asset_id cannot be empty")
        with self._lock:
            self._access_control.assert_is_admin(admin)
            self._require_initialized()
            if asset_id in self._risk:
                raise AssetAlreadyRegistered(f"Asset {asset_id} already registered")
            config = self._default_risk
            self._risk = {**self._risk, asset_id: config}
            version = self._commit()
        logger.info("Registered asset %s (ltv=%s, threshold=%s)",
                    asset_id, format_ratio(config.ltv), format_ratio(config.liquidation_threshold))
        self._notify(ConfigChanged(admin, asset_id, config.snapshot(), version))

    def update_protocol_fees(self, admin: Identity, new_fees: ProtocolFees) -> None:
        """
        Replace all three fee ratios at once.

        Raises:
            Unauthorized: If admin is not the protocol administrator
            NotInitialized: If initialize() has not been called
            InvalidFeeRange: If any ratio is outside [0, PRECISION]
        """
        with self._lock:
            self._access_control.assert_is_admin(admin)
            self._require_initialized()
            bad = new_fees.out_of_range()
            if bad:
                raise InvalidFeeRange(f"Fee ratios out of range [0, 1]: {', '.join(bad)}")
            self._fees = new_fees
            version = self._commit()
        logger.info("Protocol fees updated by %s: entry=%s share=%s liquidation=%s",
                    admin, format_ratio(new_fees.entry_fee), format_ratio(new_fees.share_fee),
                    format_ratio(new_fees.liquidation_fee))
        self._notify(ConfigChanged(admin, FEES_SUBJECT, new_fees.snapshot(), version))

    def update_asset_risk(self, admin: Identity, asset_id: str, new_config: AssetRiskConfig) -> None:
        """
        Replace ltv and liquidation_threshold for one asset.

        Raises:
            Unauthorized: If admin is not the protocol administrator
            NotInitialized: If initialize() has not been called
            UnknownAsset: If the asset was never registered
            InvalidRiskRange: Unless 0 < ltv <= liquidation_threshold <= PRECISION
        """
        with self._lock:
            self._access_control.assert_is_admin(admin)
            self._require_initialized()
            if asset_id not in self._risk:
                raise UnknownAsset(f"Asset {asset_id} not registered")
            if not new_config.is_valid():
                raise InvalidRiskRange(
                    f"Invalid risk range for {asset_id}: ltv={new_config.ltv}, "
                    f"liquidation_threshold={new_config.liquidation_threshold}"
                )
            self._risk = {**self._risk, asset_id: new_config}
            version = self._commit()
        logger.info("Risk config for %s updated by %s: ltv=%s threshold=%s",
                    asset_id, admin, format_ratio(new_config.ltv),
                    format_ratio(new_config.liquidation_threshold))
        self._notify(ConfigChanged(admin, asset_id, new_config.snapshot(), version))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_initialized(self) -> None:
        if self._fees is None:
            raise NotInitialized("Protocol configuration not initialized")

    def _commit(self) -> int:
        self._version += 1
        return self._version

    def _notify(self, event: ConfigChanged) -> None:
        if self._audit_log is None:
            return
        try:
            self._audit_log.emit(event)
        except Exception:
            logger.exception("Audit log failed to record %s for %s", type(event).__name__, event.subject)
