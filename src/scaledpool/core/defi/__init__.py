"""
scaledpool DeFi Accounting.

This module provides the reserve accounting primitives:
- Wad/Ray Math: 1e18 and 1e27 fixed-point arithmetic
- Reserve Index: monotonic liquidity index with premium cumulation
- Scaled Balance: index-scaled share ledger
- Rebasing Assets: stETH-style share tokens and the reconciling wrapper
- Reward Index: lifetime-index reward forwarding
- Deposit Tokens: pool-facing interest-bearing token adapters
- Static Token: non-rebasing wrapper with reward forwarding
- Dust Sweeper: explicit rounding-surplus reconciliation
- Simulation: YAML scenario runner
"""

from .dust_sweeper import DustReport, DustSweeper
from .interest_token import InterestBearingToken, RewardAwareToken, TokenEvent
from .rebase_wrapper import RateSnapshot, RebaseReconcilingWrapper
from .rebasing_asset import RebasingAsset, ShareRebasingToken
from .reserve_index import IndexSnapshot, ReserveIndex
from .reward_index import HolderRewardState, RewardClaim, RewardIndexTracker, RewardTokenState
from .scaled_balance import ALL, BalanceChange, ScaledBalanceLedger
from .simulation import ScenarioReport, ScenarioRunner, StepResult
from .static_token import StaticInterestToken
from .wad_ray_math import (
    HALF_RAY,
    HALF_WAD,
    PERCENTAGE_FACTOR,
    RAY,
    WAD,
    WAD_RAY_RATIO,
    percent_mul,
    ray_div,
    ray_div_floor,
    ray_mul,
    ray_to_wad,
    wad_div,
    wad_mul,
    wad_to_ray,
)

__all__ = [
    # Math
    "WAD",
    "HALF_WAD",
    "RAY",
    "HALF_RAY",
    "WAD_RAY_RATIO",
    "PERCENTAGE_FACTOR",
    "ray_mul",
    "ray_div",
    "ray_div_floor",
    "wad_mul",
    "wad_div",
    "wad_to_ray",
    "ray_to_wad",
    "percent_mul",
    # Reserve Index
    "ReserveIndex",
    "IndexSnapshot",
    # Scaled Balance
    "ScaledBalanceLedger",
    "BalanceChange",
    "ALL",
    # Rebasing
    "RebasingAsset",
    "ShareRebasingToken",
    "RebaseReconcilingWrapper",
    "RateSnapshot",
    # Rewards
    "RewardIndexTracker",
    "RewardTokenState",
    "HolderRewardState",
    "RewardClaim",
    # Deposit Tokens
    "InterestBearingToken",
    "RewardAwareToken",
    "TokenEvent",
    "StaticInterestToken",
    # Dust
    "DustSweeper",
    "DustReport",
    # Simulation
    "ScenarioRunner",
    "ScenarioReport",
    "StepResult",
]
