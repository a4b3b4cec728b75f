"""
Test configuration and fixtures
"""
import sys
from pathlib import Path

# Add project root and src to Python path
project_root = Path(__file__).parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(project_root))
sys.path.insert(0, str(src_path))

import pytest

from scaledpool.core.defi.interest_token import InterestBearingToken, RewardAwareToken
from scaledpool.core.defi.rebasing_asset import ShareRebasingToken
from scaledpool.core.defi.reserve_index import ReserveIndex
from scaledpool.core.defi.reward_index import RewardIndexTracker
from scaledpool.core.defi.scaled_balance import ScaledBalanceLedger

POOL = "0x" + "a1" * 20
TREASURY = "0x" + "7e" * 20
ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
CAROL = "0x" + "33" * 20


@pytest.fixture
def pool():
    return POOL


@pytest.fixture
def treasury():
    return TREASURY


@pytest.fixture
def ledger():
    return ScaledBalanceLedger()


@pytest.fixture
def reserve():
    return ReserveIndex(asset="USDC")


@pytest.fixture
def atoken():
    """Plain reserve deposit token without rewards."""
    return InterestBearingToken.create(
        name="Interest bearing USDC",
        symbol="aUSDC",
        underlying="USDC",
        pool=POOL,
        treasury=TREASURY,
    )


@pytest.fixture
def reward_token():
    """Plain reserve deposit token forwarding one reward stream."""
    token = RewardAwareToken.create(
        name="Interest bearing USDC",
        symbol="aUSDC",
        underlying="USDC",
        pool=POOL,
        treasury=TREASURY,
        rewards=RewardIndexTracker(capacity=9),
        rewards_reserve_factor_bps=0,
    )
    token.register_reward_token("LDO")
    return token


@pytest.fixture
def steth():
    return ShareRebasingToken(symbol="stETH")


@pytest.fixture
def steth_token(steth):
    """Rebasing reserve deposit token with one reward stream."""
    token = RewardAwareToken.for_rebasing_asset(
        steth,
        pool=POOL,
        treasury=TREASURY,
        rewards=RewardIndexTracker(capacity=9),
        rewards_reserve_factor_bps=0,
    )
    token.register_reward_token("LDO")
    return token
