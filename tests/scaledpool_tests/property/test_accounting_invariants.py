"""
Accounting Invariant Tests using Property-Based Testing

These tests check the properties every reserve must keep regardless of the
amounts, indices and rebases involved:
- share conservation across interleaved mints, burns and transfers
- liquidity index monotonicity
- rebase reconciliation for reserve-asset shares
- pro rata reward and premium distribution, including across rebases
- rejected rounding-to-zero operations leave no trace
"""

import pytest
from hypothesis import given, settings, strategies as st
from decimal import Decimal

from scaledpool.core.accounting_exceptions import (
    IndexRegressionError,
    InvalidBurnAmountError,
    RoundingUnderflowError,
)
from scaledpool.core.defi.interest_token import InterestBearingToken, RewardAwareToken
from scaledpool.core.defi.rebase_wrapper import RebaseReconcilingWrapper
from scaledpool.core.defi.rebasing_asset import ShareRebasingToken
from scaledpool.core.defi.reserve_index import ReserveIndex
from scaledpool.core.defi.reward_index import RewardIndexTracker
from scaledpool.core.defi.scaled_balance import ALL, ScaledBalanceLedger
from scaledpool.core.defi.wad_ray_math import RAY

POOL = "0x" + "a1" * 20
TREASURY = "0x" + "7e" * 20
HOLDERS = ["0x" + f"{n:02x}" * 20 for n in range(1, 6)]

# Indices between 1.0 and 3.0
index_strategy = st.integers(min_value=RAY, max_value=3 * RAY)
# Presentation amounts large enough to survive any index above
amount_strategy = st.integers(min_value=10**6, max_value=10**24)
rebase_strategy = st.decimals(
    min_value=Decimal("-0.9"), max_value=Decimal("5"), places=4, allow_nan=False, allow_infinity=False
)
# Ledger operations: (kind, holder, counterparty, amount or percent)
ledger_op_strategy = st.one_of(
    st.tuples(st.just("mint"), st.integers(0, 4), st.just(0), amount_strategy),
    st.tuples(st.just("burn"), st.integers(0, 4), st.just(0), st.integers(1, 100)),
    st.tuples(st.just("transfer"), st.integers(0, 4), st.integers(0, 4), st.integers(0, 100)),
    st.tuples(st.just("accrue"), st.just(0), st.just(0), st.integers(0, RAY // 10)),
)
# Milder rebases, so a long sequence never drains the pool
repeated_rebase_strategy = st.decimals(
    min_value=Decimal("-0.3"), max_value=Decimal("1"), places=4, allow_nan=False, allow_infinity=False
)
# Reward operations over a rebasing reserve
reward_op_strategy = st.one_of(
    st.tuples(st.just("mint"), st.integers(0, 4), st.integers(0, 4), amount_strategy),
    st.tuples(st.just("burn"), st.integers(0, 4), st.integers(0, 4), st.integers(1, 100)),
    st.tuples(st.just("transfer"), st.integers(0, 4), st.integers(0, 4), st.integers(0, 100)),
    st.tuples(st.just("distribute"), st.just(0), st.just(0), st.integers(0, 10**24)),
    st.tuples(st.just("claim"), st.integers(0, 4), st.just(0), st.just(0)),
    st.tuples(st.just("rebase"), st.just(0), st.just(0), repeated_rebase_strategy),
)

pytestmark = pytest.mark.property


def _plain_token(**kwargs):
    return InterestBearingToken.create(
        name="Interest bearing USDC",
        symbol="aUSDC",
        underlying="USDC",
        pool=POOL,
        treasury=TREASURY,
        **kwargs,
    )


class TestLedgerInvariants:
    """Share conservation in the scaled ledger."""

    @given(ops=st.lists(ledger_op_strategy, min_size=1, max_size=25))
    @settings(max_examples=200)
    def test_interleaved_operations_conserve_shares(self, ops):
        """Mints and burns move the supply by exactly the holder's delta; transfers never do."""
        token = _plain_token()
        shares = token.model.shares

        for kind, holder_n, other_n, value in ops:
            holder = HOLDERS[holder_n]
            before = dict(shares)
            total_before = token.scaled_total_supply()
            index = token.reserve.current

            try:
                if kind == "mint":
                    token.mint(POOL, holder, value, index)
                elif kind == "burn":
                    amount = ALL if value == 100 else token.balance_of(holder) * value // 100
                    if amount == 0 or token.balance_of(holder) == 0:
                        continue
                    token.burn(POOL, holder, holder, amount, index)
                elif kind == "transfer":
                    amount = token.balance_of(holder) * value // 100
                    token.transfer(holder, HOLDERS[other_n], amount)
                else:
                    token.reserve.update(index + value, reason="accrual")
            except RoundingUnderflowError:
                assert shares == before
                continue

            delta = {h: shares.get(h, 0) - before.get(h, 0) for h in shares}
            supply_delta = token.scaled_total_supply() - total_before
            if kind == "mint":
                assert delta[holder] > 0
                assert supply_delta == delta[holder]
            elif kind == "burn":
                assert delta[holder] < 0
                assert supply_delta == delta[holder]
            else:
                assert supply_delta == 0
                assert sum(delta.values()) == 0

            assert sum(shares.values()) == token.scaled_total_supply()
            assert all(balance >= 0 for balance in shares.values())

        holders = token.holders()
        presented = sum(token.balance_of(holder) for holder in holders)
        assert abs(presented - token.total_supply()) <= len(holders)

    @given(amount=amount_strategy, mint_index=index_strategy, growth=st.integers(0, RAY))
    @settings(max_examples=200)
    def test_withdraw_all_empties_holder(self, amount, mint_index, growth):
        """Withdrawing ALL at any later index leaves nothing behind."""
        ledger = ScaledBalanceLedger()
        ledger.mint(HOLDERS[0], amount, mint_index)
        burn_index = mint_index + growth
        burned = ledger.burn(HOLDERS[0], ALL, burn_index)

        assert ledger.balance_of(HOLDERS[0], burn_index) <= 2
        assert burned >= amount - 2


class TestIndexInvariants:
    """The liquidity index only moves forward."""

    @given(st.lists(st.integers(min_value=1, max_value=5 * RAY), min_size=1, max_size=20))
    @settings(max_examples=200)
    def test_index_never_regresses(self, candidates):
        reserve = ReserveIndex(asset="USDC")
        for candidate in candidates:
            current = reserve.current
            if candidate < current:
                with pytest.raises(IndexRegressionError):
                    reserve.update(candidate)
                assert reserve.current == current
            else:
                assert reserve.update(candidate) == candidate

        recorded = [snapshot.index for snapshot in reserve.history]
        assert recorded == sorted(recorded)


class TestRebaseInvariants:
    """Reserve-share accounting follows the reserve asset's rebases."""

    @given(amount=amount_strategy, fraction=rebase_strategy)
    @settings(max_examples=200)
    def test_balance_tracks_rebased_value(self, amount, fraction):
        steth = ShareRebasingToken(symbol="stETH")
        wrapper = RebaseReconcilingWrapper(steth)
        steth.submit(POOL, amount)
        wrapper.deposit_external(HOLDERS[0], amount, RAY)

        steth.rebase(fraction)
        assert abs(wrapper.balance_of(HOLDERS[0], RAY) - steth.balance_of(POOL)) <= 2

    @given(first=amount_strategy, second=amount_strategy, fraction=rebase_strategy)
    @settings(max_examples=200)
    def test_late_deposit_never_overcredited(self, first, second, fraction):
        """A deposit after a rebase is credited at most what was paid in."""
        steth = ShareRebasingToken(symbol="stETH")
        wrapper = RebaseReconcilingWrapper(steth)
        steth.submit(POOL, first)
        wrapper.deposit_external(HOLDERS[0], first, RAY)
        rate = steth.rebase(fraction)

        steth.submit(POOL, second)
        wrapper.deposit_external(HOLDERS[1], second, RAY)
        balance = wrapper.balance_of(HOLDERS[1], RAY)

        assert balance <= second
        assert second - balance <= rate // RAY + 1

    @given(amount=amount_strategy, fraction=rebase_strategy)
    @settings(max_examples=200)
    def test_withdraw_all_after_rebase(self, amount, fraction):
        steth = ShareRebasingToken(symbol="stETH")
        wrapper = RebaseReconcilingWrapper(steth)
        steth.submit(POOL, amount)
        wrapper.deposit_external(HOLDERS[0], amount, RAY)
        steth.rebase(fraction)

        wrapper.withdraw_external(HOLDERS[0], ALL, RAY)
        assert wrapper.balance_of(HOLDERS[0], RAY) <= 2

    @given(
        amount=amount_strategy,
        fraction=st.decimals(min_value=Decimal("1.01"), max_value=Decimal("10"), places=2),
    )
    @settings(max_examples=100)
    def test_dust_withdrawal_rejected_without_side_effects(self, amount, fraction):
        steth = ShareRebasingToken(symbol="stETH")
        token = RewardAwareToken.for_rebasing_asset(
            steth, pool=POOL, treasury=TREASURY, rewards=RewardIndexTracker(capacity=9)
        )
        token.register_reward_token("LDO")
        steth.submit(POOL, amount)
        token.mint(POOL, HOLDERS[0], amount, RAY)
        steth.rebase(fraction)

        before = (
            token.model.internal_balance_of(HOLDERS[0]),
            token.model.internal_total_supply(),
            len(token.events),
            token.get_user_index(HOLDERS[0], "LDO"),
        )
        with pytest.raises(InvalidBurnAmountError):
            token.burn(POOL, HOLDERS[0], HOLDERS[0], 1, RAY)
        after = (
            token.model.internal_balance_of(HOLDERS[0]),
            token.model.internal_total_supply(),
            len(token.events),
            token.get_user_index(HOLDERS[0], "LDO"),
        )
        assert after == before


class TestDistributionInvariants:
    """Rewards and premiums are shared pro rata."""

    @given(a=amount_strategy, b=amount_strategy, reward=st.integers(min_value=1, max_value=10**24))
    @settings(max_examples=200)
    def test_rewards_split_by_scaled_balance(self, a, b, reward):
        tracker = RewardIndexTracker()
        tracker.register_reward_token("LDO")
        supply = a + b
        tracker.distribute("LDO", reward, supply)

        accrued_a = tracker.checkpoint(HOLDERS[0], "LDO", a)
        accrued_b = tracker.checkpoint(HOLDERS[1], "LDO", b)

        assert abs(accrued_a * supply - reward * a) <= supply
        assert abs(accrued_b * supply - reward * b) <= supply
        assert abs(accrued_a + accrued_b - reward) <= 2

    @given(a=amount_strategy, b=amount_strategy, premium=st.integers(min_value=0, max_value=10**24))
    @settings(max_examples=200)
    def test_flash_premium_is_pro_rata(self, a, b, premium):
        token = _plain_token()
        token.mint(POOL, HOLDERS[0], a, RAY)
        token.mint(POOL, HOLDERS[1], b, RAY)
        supply = token.total_supply()

        token.inject_flash_loan_premium(POOL, premium)

        gain_a = token.balance_of(HOLDERS[0]) - a
        gain_b = token.balance_of(HOLDERS[1]) - b
        assert abs(gain_a * supply - premium * a) <= 2 * supply
        assert abs(gain_b * supply - premium * b) <= 2 * supply
        assert abs(token.total_supply() - supply - premium) <= 2
        assert token.scaled_total_supply() == a + b

    @given(ops=st.lists(reward_op_strategy, min_size=1, max_size=20))
    @settings(max_examples=150)
    def test_rebasing_rewards_never_exceed_distribution(self, ops):
        """
        Rewards owed on a rebasing reserve stay within what was distributed,
        up to one unit of rounding per checkpoint and per distribution.
        """
        steth = ShareRebasingToken(symbol="stETH")
        token = RewardAwareToken.for_rebasing_asset(
            steth, pool=POOL, treasury=TREASURY, rewards=RewardIndexTracker(capacity=9)
        )
        token.register_reward_token("LDO")
        slack = 0

        for kind, holder_n, other_n, value in ops:
            holder = HOLDERS[holder_n]
            try:
                if kind == "mint":
                    steth.submit(POOL, value)
                    token.mint(POOL, holder, value, RAY)
                    slack += 1
                elif kind == "burn":
                    balance = token.balance_of(holder)
                    if balance == 0:
                        continue
                    token.burn(POOL, holder, holder, ALL if value == 100 else max(balance * value // 100, 1), RAY)
                    slack += 1
                elif kind == "transfer":
                    token.transfer(holder, HOLDERS[other_n], token.balance_of(holder) * value // 100)
                    slack += 2
                elif kind == "distribute":
                    slack += token.model.reward_basis_supply() // RAY + 1
                    token.distribute_rewards("LDO", value)
                elif kind == "claim":
                    token.claim(holder, "LDO")
                    slack += 1
                else:
                    steth.rebase(value)
            except RoundingUnderflowError:
                continue

        owed = sum(
            token.get_user_claimed_rewards(holder, "LDO") + token.get_claimable_rewards(holder, "LDO")
            for holder in HOLDERS
        )
        slack += len(HOLDERS)
        assert owed <= token.get_lifetime_rewards("LDO") + slack
