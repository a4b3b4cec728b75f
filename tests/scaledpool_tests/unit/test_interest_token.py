"""
Unit tests for the interest-bearing deposit token adapters.

Covers authorization, index handling, liquidation transfers, flash-loan
premiums, reward checkpoints around balance changes and serialization.
"""

import threading

import pytest

from scaledpool.core.accounting_exceptions import (
    AuthorizationError,
    CapacityExceededError,
    IndexRegressionError,
    InsufficientBalanceError,
    InvalidMintAmountError,
    PreconditionViolation,
)
from scaledpool.core.defi.interest_token import InterestBearingToken, RewardAwareToken
from scaledpool.core.defi.reward_index import RewardIndexTracker
from scaledpool.core.defi.scaled_balance import ALL
from scaledpool.core.defi.wad_ray_math import RAY, WAD

POOL = "0x" + "a1" * 20
TREASURY = "0x" + "7e" * 20
ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
CAROL = "0x" + "33" * 20
MALLORY = "0x" + "66" * 20


class TestAuthorization:
    """Pool-gated operations."""

    def test_mint_requires_pool(self, atoken):
        with pytest.raises(AuthorizationError):
            atoken.mint(MALLORY, ALICE, WAD, RAY)
        assert atoken.total_supply() == 0
        assert atoken.events == []

    def test_burn_requires_pool(self, atoken):
        atoken.mint(POOL, ALICE, WAD, RAY)
        with pytest.raises(AuthorizationError):
            atoken.burn(MALLORY, ALICE, MALLORY, WAD, RAY)
        assert atoken.balance_of(ALICE) == WAD

    def test_liquidation_requires_pool(self, atoken):
        atoken.mint(POOL, ALICE, WAD, RAY)
        with pytest.raises(AuthorizationError):
            atoken.transfer_on_liquidation(MALLORY, ALICE, MALLORY, WAD)

    def test_premium_requires_pool(self, atoken):
        atoken.mint(POOL, ALICE, WAD, RAY)
        with pytest.raises(AuthorizationError):
            atoken.inject_flash_loan_premium(MALLORY, WAD)
        assert atoken.reserve.current == RAY

    def test_pool_address_case_insensitive(self, atoken):
        assert atoken.mint(POOL.upper().replace("0X", "0x"), ALICE, WAD, RAY) is True


class TestMintAndBurn:
    """Pool mint/burn through the plain ledger."""

    def test_mint_commits_index(self, atoken):
        atoken.mint(POOL, ALICE, 10 * WAD, 2 * RAY)
        assert atoken.reserve.current == 2 * RAY
        assert atoken.scaled_balance_of(ALICE) == 5 * WAD
        assert atoken.balance_of(ALICE) == 10 * WAD

    def test_mint_emits_events(self, atoken):
        atoken.mint(POOL, ALICE, 10 * WAD, RAY)
        assert [e.event_type for e in atoken.events] == ["Transfer", "Mint"]
        assert atoken.events[1].to_address == ALICE
        assert atoken.events[1].value == 10 * WAD

    def test_regressing_index_rejected(self, atoken):
        atoken.mint(POOL, ALICE, 10 * WAD, 2 * RAY)
        with pytest.raises(IndexRegressionError):
            atoken.mint(POOL, BOB, 10 * WAD, RAY)
        assert atoken.scaled_balance_of(BOB) == 0
        assert atoken.reserve.current == 2 * RAY

    def test_failed_mint_does_not_commit_index(self, atoken):
        with pytest.raises(InvalidMintAmountError):
            atoken.mint(POOL, ALICE, 1, 3 * RAY)
        assert atoken.reserve.current == RAY
        assert atoken.events == []

    def test_burn_all(self, atoken):
        atoken.mint(POOL, ALICE, 10 * WAD, RAY)
        burned = atoken.burn(POOL, ALICE, ALICE, ALL, RAY * 3 // 2)
        assert burned == 15 * WAD
        assert atoken.balance_of(ALICE) == 0
        assert atoken.events[-1].event_type == "Burn"

    def test_mint_to_treasury(self, atoken):
        assert atoken.mint_to_treasury(POOL, 0, RAY) is False
        assert atoken.events == []
        atoken.mint_to_treasury(POOL, 3 * WAD, RAY)
        assert atoken.balance_of(TREASURY) == 3 * WAD


class TestTransfers:
    """Holder and liquidation transfers."""

    def test_transfer_at_current_index(self, atoken):
        atoken.mint(POOL, ALICE, 10 * WAD, 2 * RAY)
        atoken.transfer(ALICE, BOB, 4 * WAD)
        assert atoken.balance_of(BOB) == 4 * WAD
        assert atoken.balance_of(ALICE) == 6 * WAD
        assert atoken.scaled_total_supply() == 5 * WAD

    def test_transfer_exceeding_balance(self, atoken):
        atoken.mint(POOL, ALICE, WAD, RAY)
        with pytest.raises(InsufficientBalanceError):
            atoken.transfer(ALICE, BOB, 2 * WAD)

    def test_transfer_to_zero_address_rejected(self, atoken):
        atoken.mint(POOL, ALICE, WAD, RAY)
        with pytest.raises(PreconditionViolation):
            atoken.transfer(ALICE, "0x" + "0" * 40, WAD)

    def test_liquidation_conserves_supply(self, atoken):
        atoken.mint(POOL, ALICE, 10 * WAD, RAY)
        supply = atoken.total_supply()
        atoken.transfer_on_liquidation(POOL, ALICE, CAROL, 7 * WAD)
        assert atoken.total_supply() == supply
        assert atoken.balance_of(CAROL) == 7 * WAD
        assert atoken.events[-1].event_type == "BalanceTransfer"


class TestFlashLoanPremium:
    """Premium injection raises every balance pro rata."""

    def test_premium_distributed_pro_rata(self, atoken):
        atoken.mint(POOL, ALICE, 600 * WAD, RAY)
        atoken.mint(POOL, BOB, 400 * WAD, RAY)
        new_index = atoken.inject_flash_loan_premium(POOL, 9 * WAD)
        assert new_index == RAY + 9 * RAY // 1000
        assert atoken.balance_of(ALICE) == 605_400_000_000_000_000_000
        assert atoken.balance_of(BOB) == 403_600_000_000_000_000_000
        assert atoken.total_supply() == 1009 * WAD
        assert atoken.scaled_total_supply() == 1000 * WAD

    def test_premium_into_empty_reserve_rejected(self, atoken):
        with pytest.raises(PreconditionViolation):
            atoken.inject_flash_loan_premium(POOL, WAD)


class TestRewardAwareToken:
    """Reward accrual around balance changes."""

    def test_split_follows_balances(self, reward_token):
        reward_token.mint(POOL, ALICE, 100 * WAD, RAY)
        reward_token.mint(POOL, BOB, 50 * WAD, RAY)
        reward_token.distribute_rewards("LDO", 30 * WAD)
        assert reward_token.get_claimable_rewards(ALICE, "LDO") == 20 * WAD
        assert reward_token.get_claimable_rewards(BOB, "LDO") == 10 * WAD

    def test_checkpoint_uses_balance_before_change(self, reward_token):
        reward_token.mint(POOL, ALICE, 100 * WAD, RAY)
        reward_token.distribute_rewards("LDO", 10 * WAD)
        # a new depositor must not share in rewards distributed before
        reward_token.mint(POOL, BOB, 100 * WAD, RAY)
        assert reward_token.get_user_rewards_accrued(BOB, "LDO") == 0
        assert reward_token.get_claimable_rewards(BOB, "LDO") == 0
        assert reward_token.get_claimable_rewards(ALICE, "LDO") == 10 * WAD

    def test_transfer_checkpoints_both_sides(self, reward_token):
        reward_token.mint(POOL, ALICE, 100 * WAD, RAY)
        reward_token.distribute_rewards("LDO", 10 * WAD)
        reward_token.transfer(ALICE, BOB, 100 * WAD)
        assert reward_token.get_user_rewards_accrued(ALICE, "LDO") == 10 * WAD
        assert reward_token.get_user_index(BOB, "LDO") == reward_token.rewards.get_lifetime_index("LDO")

        reward_token.distribute_rewards("LDO", 5 * WAD)
        assert reward_token.get_claimable_rewards(ALICE, "LDO") == 10 * WAD
        assert reward_token.get_claimable_rewards(BOB, "LDO") == 5 * WAD

    def test_rejected_change_leaves_rewards_untouched(self, reward_token):
        reward_token.mint(POOL, ALICE, 10 * WAD, RAY)
        reward_token.distribute_rewards("LDO", 10 * WAD)
        with pytest.raises(InsufficientBalanceError):
            reward_token.transfer(ALICE, BOB, 11 * WAD)
        assert reward_token.get_user_rewards_accrued(ALICE, "LDO") == 0
        assert BOB not in reward_token.rewards.holder_states["ldo"]

    def test_claim_applies_reserve_factor(self, reward_token):
        reward_token.set_rewards_reserve_factor(POOL, 1_000)
        reward_token.mint(POOL, ALICE, 10 * WAD, RAY)
        reward_token.distribute_rewards("LDO", 10 * WAD)
        claim = reward_token.claim(ALICE, "LDO")
        assert claim.claimable == 10 * WAD
        assert claim.treasury_cut == WAD
        assert claim.to_holder == 9 * WAD
        assert reward_token.get_treasury_claimed_rewards("LDO") == WAD
        assert reward_token.get_claimable_rewards(ALICE, "LDO") == 0

    def test_treasury_cut_is_not_accrued_twice(self, reward_token):
        reward_token.set_rewards_reserve_factor(POOL, 1_000)
        reward_token.mint(POOL, ALICE, 100 * WAD, RAY)
        reward_token.distribute_rewards("LDO", 100 * WAD)
        reward_token.claim(ALICE, "LDO")

        holder_states = reward_token.rewards.holder_states["ldo"]
        assert TREASURY not in holder_states
        assert sum(s.accrued for s in holder_states.values()) <= reward_token.get_lifetime_rewards("LDO")
        assert reward_token.get_user_rewards_accrued(ALICE, "LDO") == 100 * WAD
        assert reward_token.get_treasury_claimed_rewards("LDO") == 10 * WAD

    def test_claimable_view_waits_for_lock(self, reward_token):
        reward_token.mint(POOL, ALICE, 10 * WAD, RAY)
        reward_token.distribute_rewards("LDO", 10 * WAD)
        seen = []
        reader = threading.Thread(
            target=lambda: seen.append(reward_token.get_claimable_rewards(ALICE, "LDO"))
        )
        with reward_token._lock:
            reader.start()
            reader.join(timeout=0.2)
            assert reader.is_alive()
            assert seen == []
        reader.join(timeout=5)
        assert seen == [10 * WAD]

    def test_reserve_factor_setter_requires_pool(self, reward_token):
        with pytest.raises(AuthorizationError):
            reward_token.set_rewards_reserve_factor(MALLORY, 500)
        assert reward_token.get_rewards_reserve_factor() == 0

    def test_rewards_parked_until_first_holder(self, reward_token):
        reward_token.distribute_rewards("LDO", 10 * WAD)
        reward_token.mint(POOL, ALICE, 10 * WAD, RAY)
        reward_token.distribute_rewards("LDO", 10 * WAD)
        assert reward_token.get_claimable_rewards(ALICE, "LDO") == 20 * WAD
        assert reward_token.get_lifetime_rewards("LDO") == 20 * WAD

    def test_capacity(self):
        token = RewardAwareToken.create(
            name="Interest bearing DAI",
            symbol="aDAI",
            underlying="DAI",
            pool=POOL,
            rewards=RewardIndexTracker(capacity=1),
        )
        token.register_reward_token("LDO")
        token.register_reward_token("LDO")
        with pytest.raises(CapacityExceededError):
            token.register_reward_token("CRV")
        assert token.get_rewards_token_address_list() == ["ldo"]


class TestRebasingToken:
    """Deposit token over a rebasing reserve."""

    def test_rebasing_scenario(self, steth, steth_token):
        steth.submit(POOL, 10 * WAD)
        steth_token.mint(POOL, ALICE, 10 * WAD, RAY)
        steth.rebase("0.6")
        steth.submit(POOL, 10 * WAD)
        steth_token.mint(POOL, ALICE, 10 * WAD, RAY)

        assert steth_token.is_rebasing
        assert steth_token.model.internal_balance_of(ALICE) == 16_250_000_000_000_000_000
        assert steth_token.scaled_balance_of(ALICE) == 26 * WAD
        assert steth_token.balance_of(ALICE) == 26 * WAD

    def test_scaled_balance_and_supply_share_a_rate_read(self, steth, steth_token):
        steth.submit(POOL, 10 * WAD)
        steth_token.mint(POOL, ALICE, 10 * WAD, RAY)
        reads = steth_token.model.rate_reads
        assert steth_token.get_scaled_user_balance_and_supply(ALICE) == (10 * WAD, 10 * WAD)
        assert steth_token.model.rate_reads == reads + 1

    def test_mint_reads_rate_once_with_rewards(self, steth, steth_token):
        steth.submit(POOL, 10 * WAD)
        reads = steth_token.model.rate_reads
        steth_token.mint(POOL, ALICE, 10 * WAD, RAY)
        assert steth_token.model.rate_reads == reads + 1

    @pytest.mark.parametrize("fraction", ["0.6", "-0.5"])
    def test_rebase_between_distribute_and_claim(self, steth, steth_token, fraction):
        steth.submit(POOL, 100 * WAD)
        steth_token.mint(POOL, ALICE, 100 * WAD, RAY)
        steth_token.distribute_rewards("LDO", 100 * WAD)
        steth.rebase(fraction)
        assert steth_token.get_claimable_rewards(ALICE, "LDO") == 100 * WAD
        assert steth_token.claim(ALICE, "LDO").claimable == 100 * WAD

    @pytest.mark.parametrize("fraction", ["0.6", "-0.5"])
    def test_rebase_keeps_reward_split(self, steth, steth_token, fraction):
        steth.submit(POOL, 150 * WAD)
        steth_token.mint(POOL, ALICE, 100 * WAD, RAY)
        steth_token.mint(POOL, BOB, 50 * WAD, RAY)
        steth_token.distribute_rewards("LDO", 90 * WAD)
        steth.rebase(fraction)

        alice = steth_token.claim(ALICE, "LDO").claimable
        bob = steth_token.claim(BOB, "LDO").claimable
        assert (alice, bob) == (60 * WAD, 30 * WAD)
        assert alice + bob <= steth_token.get_lifetime_rewards("LDO")

    def test_rebase_between_distributions(self, steth, steth_token):
        steth.submit(POOL, 100 * WAD)
        steth_token.mint(POOL, ALICE, 100 * WAD, RAY)
        steth_token.distribute_rewards("LDO", 10 * WAD)
        steth.rebase("0.6")
        steth.submit(POOL, 160 * WAD)
        steth_token.mint(POOL, BOB, 160 * WAD, RAY)
        steth_token.distribute_rewards("LDO", 10 * WAD)

        # equal stETH balances after the rebase split the second stream evenly
        assert steth_token.get_claimable_rewards(ALICE, "LDO") == 15 * WAD
        assert steth_token.get_claimable_rewards(BOB, "LDO") == 5 * WAD


class TestSerialization:
    """Token snapshots."""

    def test_plain_round_trip(self, atoken):
        atoken.mint(POOL, ALICE, 10 * WAD, 2 * RAY)
        restored = InterestBearingToken.from_dict(atoken.to_dict())
        assert restored.balance_of(ALICE) == 10 * WAD
        assert restored.reserve.current == 2 * RAY
        assert restored.pool == POOL

    def test_reward_round_trip(self, reward_token):
        reward_token.mint(POOL, ALICE, 10 * WAD, RAY)
        reward_token.distribute_rewards("LDO", 10 * WAD)
        restored = RewardAwareToken.from_dict(reward_token.to_dict())
        assert restored.get_claimable_rewards(ALICE, "LDO") == 10 * WAD
        assert restored.get_rewards_token_address_list() == ["ldo"]

    def test_rebasing_needs_asset(self, steth, steth_token):
        steth.submit(POOL, 10 * WAD)
        steth_token.mint(POOL, ALICE, 10 * WAD, RAY)
        data = steth_token.to_dict()
        with pytest.raises(PreconditionViolation):
            RewardAwareToken.from_dict(data)
        restored = RewardAwareToken.from_dict(data, asset=steth)
        assert restored.balance_of(ALICE) == 10 * WAD
