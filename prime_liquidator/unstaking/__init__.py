"""Collateral unwind adapters."""
from __future__ import annotations

from ..config import UnstakingConfig
from ..interfaces.unstaking import UnstakingAdapter
from .lp import LpUnwinder
from .staked_positions import StakedPositionsUnwinder
from .tokens import TokenUnwinder


def build_adapters(config: UnstakingConfig) -> list[UnstakingAdapter]:
    """Adapters in the order they run: staked positions, receipt tokens, LP."""
    adapters: list[UnstakingAdapter] = []
    if config.staked_positions:
        adapters.append(StakedPositionsUnwinder())
    if config.tokens:
        adapters.append(TokenUnwinder(config.tokens))
    if config.lp_positions:
        adapters.append(LpUnwinder(config.lp_positions))
    return adapters


__all__ = ["LpUnwinder", "StakedPositionsUnwinder", "TokenUnwinder", "build_adapters"]
