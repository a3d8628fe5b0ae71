"""
classifier.py - Position Classifier

Pure classification of pools and positions. No state, no side effects;
every function here is safe to call from any thread.

Rules:
    Asset collateral  + Shadow debt  -> ASSET_TO_SHADOW
    Shadow collateral + Asset debt   -> SHADOW_TO_ASSET
    anything else                    -> InvalidPositionKind

Same-kind pairs never reach this core; they belong to plain same-asset
pool mechanics.
"""

from __future__ import annotations
from typing import Dict, Tuple, Union

from .core import (
    AssetKind, PositionDirection, Pool,
    InvalidPoolType, InvalidPositionKind,
)


_DIRECTIONS: Dict[Tuple[AssetKind, AssetKind], PositionDirection] = {
    (AssetKind.ASSET, AssetKind.SHADOW): PositionDirection.ASSET_TO_SHADOW,
    (AssetKind.SHADOW, AssetKind.ASSET): PositionDirection.SHADOW_TO_ASSET,
}

_KINDS_BY_DIRECTION: Dict[PositionDirection, Tuple[AssetKind, AssetKind]] = {
    direction: pair for pair, direction in _DIRECTIONS.items()
}


def resolve_kind(pool_type: Union[AssetKind, str]) -> AssetKind:
    """
    Resolve a pool type tag to an AssetKind.

    Accepts an AssetKind member or its value ("asset", "shadow").

    Raises:
        InvalidPoolType: If the tag names no known kind.
    """
    if isinstance(pool_type, AssetKind):
        return pool_type
    if isinstance(pool_type, str):
        try:
            return AssetKind(pool_type)
        except ValueError:
            pass
    raise InvalidPoolType(f"Unknown pool type: {pool_type!r}")


def classify(collateral_kind: AssetKind, debt_kind: AssetKind) -> PositionDirection:
    """
    Classify a (collateral, debt) pool-kind pair.

    Raises:
        InvalidPositionKind: If the pair is not one asset and one shadow.
    """
    direction = _DIRECTIONS.get((collateral_kind, debt_kind))
    if direction is None:
        raise InvalidPositionKind(
            f"Cannot borrow {_name(debt_kind)} against {_name(collateral_kind)}"
        )
    return direction


def counterpart(kind: AssetKind) -> AssetKind:
    """Return the opposite kind."""
    if kind is AssetKind.ASSET:
        return AssetKind.SHADOW
    if kind is AssetKind.SHADOW:
        return AssetKind.ASSET
    raise InvalidPoolType(f"Unknown pool type: {kind!r}")


def direction_of(pool: Pool) -> PositionDirection:
    """Direction of positions that use this pool as collateral."""
    return classify(pool.kind, counterpart(pool.kind))


def debt_pool_of(pool: Pool) -> Pool:
    """Pool that lends against collateral held in this pool."""
    return Pool(pool.asset_id, counterpart(pool.kind))


def collateral_kind_of(direction: PositionDirection) -> AssetKind:
    return _KINDS_BY_DIRECTION[direction][0]


def debt_kind_of(direction: PositionDirection) -> AssetKind:
    return _KINDS_BY_DIRECTION[direction][1]


def _name(kind: object) -> str:
    return kind.value if isinstance(kind, AssetKind) else repr(kind)
