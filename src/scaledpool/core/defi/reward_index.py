"""
Reward Index Tracker.

Forwards externally farmed rewards to depositors pro rata without touching
every holder on each distribution. Each reward token keeps a lifetime
index (reward per unit of reward basis, ray); each holder remembers the index at
their last checkpoint and the rewards accrued up to it:

    accrued += ray_mul(basis before the change, lifetime - user index)

The basis is the holder's scaled balance on plain reserves and their
reserve shares on rebasing ones; it may only move at a checkpoint. A
checkpoint must run before every balance change, with the basis the holder
had before that change.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from ..accounting_exceptions import CapacityExceededError, PreconditionViolation
from ..config import MAX_BPS, MAX_REWARD_TOKENS
from .wad_ray_math import percent_mul, ray_div, ray_mul

logger = logging.getLogger(__name__)


@dataclass
class RewardTokenState:
    """Global accounting for one reward token."""

    lifetime_index: int = 0
    lifetime_rewards: int = 0
    # Rewards received while nobody held a scaled balance
    undistributed: int = 0
    # Reserve-factor cuts taken out of holder claims
    treasury_claimed: int = 0


@dataclass
class HolderRewardState:
    """Per-holder accounting for one reward token."""

    index: int = 0
    accrued: int = 0
    claimed: int = 0


@dataclass(frozen=True)
class RewardClaim:
    """Outcome of a claim."""

    holder: str
    token: str
    claimable: int
    treasury_cut: int

    @property
    def to_holder(self) -> int:
        return self.claimable - self.treasury_cut

    def to_dict(self) -> dict:
        return {
            "holder": self.holder,
            "token": self.token,
            "claimable": self.claimable,
            "treasury_cut": self.treasury_cut,
            "to_holder": self.to_holder,
        }


@dataclass
class RewardIndexTracker:
    """
    Lifetime-index reward accounting for a fixed set of reward tokens.

    Attributes:
        capacity: Maximum number of reward tokens
        reward_tokens: Registered reward tokens in registration order
        token_states: Global state per reward token
        holder_states: Per reward token, per holder state
    """

    capacity: int = MAX_REWARD_TOKENS
    reward_tokens: list[str] = field(default_factory=list)
    token_states: dict[str, RewardTokenState] = field(default_factory=dict)
    holder_states: dict[str, dict[str, HolderRewardState]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lock = threading.RLock()

    # ==================== Registration ====================

    def register_reward_token(self, token: str) -> bool:
        """
        Add a reward token to the tracked list.

        Returns:
            True if the token was added, False if it was already registered

        Raises:
            CapacityExceededError: If all slots are taken
        """
        token_norm = token.lower()
        with self._lock:
            if token_norm in self.token_states:
                return False
            if len(self.reward_tokens) >= self.capacity:
                raise CapacityExceededError(
                    f"Reward token capacity reached ({self.capacity})",
                    details={"token": token_norm, "capacity": self.capacity},
                )
            self.reward_tokens.append(token_norm)
            self.token_states[token_norm] = RewardTokenState()
            self.holder_states[token_norm] = {}

        logger.info(
            "Reward token registered",
            extra={
                "event": "rewards.token_registered",
                "token": token_norm,
                "slot": len(self.reward_tokens) - 1,
            },
        )
        return True

    # ==================== Accrual ====================

    def checkpoint(self, holder: str, token: str, holder_scaled_balance: int) -> int:
        """
        Accrue a holder's rewards up to the current lifetime index.

        Args:
            holder: Holder address
            token: Reward token
            holder_scaled_balance: Scaled balance *before* the pending change

        Returns:
            Rewards accrued by this checkpoint
        """
        with self._lock:
            state = self._token_state(token)
            holder_state = self._holder_state(holder, token)
            accrued_delta = ray_mul(holder_scaled_balance, state.lifetime_index - holder_state.index)
            holder_state.accrued += accrued_delta
            holder_state.index = state.lifetime_index
            return accrued_delta

    def checkpoint_all(self, holder: str, holder_scaled_balance: int) -> None:
        with self._lock:
            for token in self.reward_tokens:
                self.checkpoint(holder, token, holder_scaled_balance)

    def distribute(self, token: str, amount: int, total_scaled_supply: int) -> int:
        """
        Spread ``amount`` over every scaled unit outstanding.

        With no scaled supply the amount is parked and released with the
        next distribution that has holders.

        Args:
            token: Reward token
            amount: Reward amount received
            total_scaled_supply: Scaled supply of the interest-bearing token

        Returns:
            The lifetime index after distribution
        """
        if amount < 0:
            raise PreconditionViolation(
                "Reward amount cannot be negative",
                details={"token": token, "amount": amount},
            )
        with self._lock:
            state = self._token_state(token)
            state.lifetime_rewards += amount
            pending = amount + state.undistributed
            increment = ray_div(pending, total_scaled_supply) if total_scaled_supply > 0 else 0

            if increment == 0:
                state.undistributed = pending
                logger.info(
                    "Reward held undistributed",
                    extra={
                        "event": "rewards.parked",
                        "token": token.lower(),
                        "amount": amount,
                        "undistributed": state.undistributed,
                    },
                )
                return state.lifetime_index

            state.undistributed = 0
            state.lifetime_index += increment

        logger.info(
            "Rewards distributed",
            extra={
                "event": "rewards.distributed",
                "token": token.lower(),
                "amount": pending,
                "scaled_supply": total_scaled_supply,
                "lifetime_index": state.lifetime_index,
            },
        )
        return state.lifetime_index

    def claim(self, holder: str, token: str, reserve_factor_bps: int = 0) -> RewardClaim:
        """
        Mark everything accrued as claimed.

        The holder must have been checkpointed first.

        Args:
            holder: Claiming holder
            token: Reward token
            reserve_factor_bps: Treasury cut applied to this claim only

        Returns:
            RewardClaim with the claimable amount and the treasury cut
        """
        if not 0 <= reserve_factor_bps <= MAX_BPS:
            raise PreconditionViolation(
                f"Reserve factor out of range: {reserve_factor_bps}",
                details={"reserve_factor_bps": reserve_factor_bps},
            )
        with self._lock:
            holder_state = self._holder_state(holder, token)
            claimable = holder_state.accrued - holder_state.claimed
            holder_state.claimed = holder_state.accrued
        cut = percent_mul(claimable, reserve_factor_bps)
        return RewardClaim(holder=holder.lower(), token=token.lower(), claimable=claimable, treasury_cut=cut)

    def record_treasury_cut(self, token: str, amount: int) -> None:
        """
        Tally a reserve-factor cut for the treasury.

        The cut is part of a holder's accrued total already, so it is kept
        apart from every holder state.
        """
        with self._lock:
            self._token_state(token).treasury_claimed += amount

    # ==================== Read Projections ====================

    def get_reward_tokens(self) -> list[str]:
        return list(self.reward_tokens)

    def get_lifetime_index(self, token: str) -> int:
        return self._token_state(token).lifetime_index

    def get_lifetime_rewards(self, token: str) -> int:
        return self._token_state(token).lifetime_rewards

    def get_undistributed(self, token: str) -> int:
        return self._token_state(token).undistributed

    def get_treasury_claimed(self, token: str) -> int:
        return self._token_state(token).treasury_claimed

    def get_user_index(self, holder: str, token: str) -> int:
        return self._peek(holder, token).index

    def get_user_rewards_accrued(self, holder: str, token: str) -> int:
        return self._peek(holder, token).accrued

    def get_user_claimed_rewards(self, holder: str, token: str) -> int:
        return self._peek(holder, token).claimed

    def get_claimable(self, holder: str, token: str) -> int:
        holder_state = self._peek(holder, token)
        return holder_state.accrued - holder_state.claimed

    def preview_accrual(self, holder: str, token: str, holder_scaled_balance: int) -> int:
        """Rewards a checkpoint would add right now, without applying them."""
        state = self._token_state(token)
        return ray_mul(holder_scaled_balance, state.lifetime_index - self._peek(holder, token).index)

    # ==================== Helpers ====================

    def _token_state(self, token: str) -> RewardTokenState:
        state = self.token_states.get(token.lower())
        if state is None:
            raise PreconditionViolation(
                f"Unknown reward token {token}",
                details={"token": token},
            )
        return state

    def _holder_state(self, holder: str, token: str) -> HolderRewardState:
        self._token_state(token)
        return self.holder_states[token.lower()].setdefault(holder.lower(), HolderRewardState())

    def _peek(self, holder: str, token: str) -> HolderRewardState:
        self._token_state(token)
        return self.holder_states[token.lower()].get(holder.lower(), HolderRewardState())

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        return {
            "capacity": self.capacity,
            "reward_tokens": list(self.reward_tokens),
            "token_states": {
                token: {
                    "lifetime_index": state.lifetime_index,
                    "lifetime_rewards": state.lifetime_rewards,
                    "undistributed": state.undistributed,
                    "treasury_claimed": state.treasury_claimed,
                }
                for token, state in self.token_states.items()
            },
            "holder_states": {
                token: {
                    holder: {"index": s.index, "accrued": s.accrued, "claimed": s.claimed}
                    for holder, s in holders.items()
                }
                for token, holders in self.holder_states.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RewardIndexTracker":
        tracker = cls(capacity=data.get("capacity", MAX_REWARD_TOKENS))
        tracker.reward_tokens = list(data.get("reward_tokens", []))
        tracker.token_states = {
            token: RewardTokenState(**state) for token, state in data.get("token_states", {}).items()
        }
        tracker.holder_states = {token: {} for token in tracker.reward_tokens}
        for token, holders in data.get("holder_states", {}).items():
            tracker.holder_states[token] = {
                holder: HolderRewardState(**state) for holder, state in holders.items()
            }
        return tracker
