"""
support.py - Shared builders for lending core tests

Pool constants, percentage-to-ratio conversion and pre-wired stores.
"""

from decimal import Decimal

from lending import (
    AdminAccessControl, ProtocolConfigStore, AssetRiskConfig,
    AssetKind, Pool, PRECISION,
)


ADMIN = "admin"

WETH = Pool("WETH", AssetKind.ASSET)
WETH_SHADOW = Pool("WETH", AssetKind.SHADOW)
USDC = Pool("USDC", AssetKind.ASSET)
USDC_SHADOW = Pool("USDC", AssetKind.SHADOW)


def ratio(percent) -> int:
    """Convert a percentage (may be fractional, e.g. 0.5) to a PRECISION ratio."""
    return int(Decimal(str(percent)) * PRECISION / 100)


def build_store(access=None, audit=None, fees=None) -> ProtocolConfigStore:
    """Initialized store with WETH and USDC registered at the default 50% / 70%."""
    access = access or AdminAccessControl(ADMIN)
    store = ProtocolConfigStore(access, audit)
    store.initialize(ADMIN)
    if fees is not None:
        store.update_protocol_fees(ADMIN, fees)
    store.register_asset(ADMIN, "WETH")
    store.register_asset(ADMIN, "USDC")
    return store


def set_risk(store: ProtocolConfigStore, asset_id: str, ltv_pct, threshold_pct) -> None:
    store.update_asset_risk(ADMIN, asset_id, AssetRiskConfig(ratio(ltv_pct), ratio(threshold_pct)))
