"""
Static Deposit Token.

Non-rebasing wrapper around an interest-bearing deposit token. The wrapper
holds deposit tokens at its own address and issues static units that never
change with the liquidity index (or with the reserve asset's rebases):

    dynamic amount = ray_mul(static amount, rate)
    rate           = liquidity index                    (plain reserves)
                   = ray_mul(exchange rate, index)      (rebasing reserves)

A static unit is therefore one scaled unit of the deposit token on a plain
reserve and one reserve share on a rebasing one, so the static supply
tracks the wrapper's reward basis in the deposit token.

Rewards farmed by the wrapper's deposit-token balance are collected into
the wrapper and forwarded to static holders through a second
``RewardIndexTracker`` keyed on static balances.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ..accounting_exceptions import (
    AccountingError,
    InsufficientBalanceError,
    InvalidBurnAmountError,
    InvalidMintAmountError,
    PreconditionViolation,
)
from .interest_token import ZERO_ADDRESS, InterestBearingToken, RewardAwareToken, TokenEvent
from .reward_index import RewardClaim, RewardIndexTracker
from .scaled_balance import ALL, BalanceChange, ScaledBalanceLedger
from .wad_ray_math import percent_mul, ray_div, ray_mul

logger = logging.getLogger(__name__)


@dataclass
class StaticInterestToken:
    """
    Static (non-rebasing) view of a deposit token.

    Attributes:
        atoken: Wrapped deposit token
        address: Address holding the wrapped deposit tokens
        name: Token name
        symbol: Token symbol
        balances: Static balance per holder
        rewards: Reward tracker over static balances
        reward_balances: Collected rewards not yet paid to holders
        events: Event log
    """

    atoken: InterestBearingToken
    address: str
    name: str = ""
    symbol: str = ""
    balances: ScaledBalanceLedger = field(default_factory=ScaledBalanceLedger)
    rewards: RewardIndexTracker = field(default_factory=RewardIndexTracker)
    reward_balances: dict[str, int] = field(default_factory=dict)
    events: list[TokenEvent] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.address = self.address.lower()
        if not self.address or self.address == ZERO_ADDRESS:
            raise PreconditionViolation("Static token needs a holding address")
        self.name = self.name or f"Static {self.atoken.name}"
        self.symbol = self.symbol or f"stat{self.atoken.symbol}"
        self._lock = threading.RLock()

    # ==================== Conversions ====================

    def rate(self) -> int:
        """Dynamic value of one static unit (ray)."""
        index = self.atoken.reserve.current
        if self.atoken.is_rebasing:
            return ray_mul(self.atoken.model.snapshot().rate, index)
        return index

    def static_to_dynamic_amount(self, amount: int) -> int:
        return ray_mul(amount, self.rate())

    def dynamic_to_static_amount(self, amount: int) -> int:
        return ray_div(amount, self.rate())

    # ==================== View Functions ====================

    def balance_of(self, holder: str) -> int:
        return self.balances.scaled_balance_of(holder)

    def total_supply(self) -> int:
        return self.balances.scaled_total_supply()

    def dynamic_balance_of(self, holder: str) -> int:
        return self.static_to_dynamic_amount(self.balance_of(holder))

    def holders(self) -> list[str]:
        return self.balances.holders()

    # ==================== Deposits and Withdrawals ====================

    def deposit(self, depositor: str, recipient: str, amount: int, from_underlying: bool = False) -> int:
        """
        Wrap ``amount`` of dynamic value into static units for ``recipient``.

        With ``from_underlying`` the pool mints fresh deposit tokens to the
        wrapper; otherwise ``depositor`` hands over deposit tokens it holds.

        Returns:
            Static units minted

        Raises:
            PreconditionViolation: If recipient is the zero address or
                amount is not positive
            InvalidMintAmountError: If amount rounds to zero static units
            InsufficientBalanceError: If the depositor holds too little
        """
        depositor_norm = depositor.lower()
        recipient_norm = self._require_recipient(recipient)
        if amount <= 0:
            raise PreconditionViolation(
                "deposit amount must be positive",
                details={"depositor": depositor_norm, "amount": amount},
            )

        with self._lock:
            static_amount = self.dynamic_to_static_amount(amount)
            if static_amount == 0:
                raise InvalidMintAmountError(
                    f"Deposit {amount} rounds to zero static units",
                    details={"depositor": depositor_norm, "amount": amount, "rate": self.rate()},
                )

            def action() -> None:
                if from_underlying:
                    self.atoken.mint(self.atoken.pool, self.address, amount, self.atoken.reserve.current)
                else:
                    self.atoken.transfer(depositor_norm, self.address, amount)
                self.balances.apply_balance_delta(recipient_norm, static_amount, BalanceChange.MINT)

            self._apply_change((recipient_norm,), action)
            self._emit("Deposit", depositor_norm, recipient_norm, static_amount)

        logger.info(
            "Static deposit",
            extra={
                "event": "static.deposit",
                "token": self.symbol,
                "to": recipient_norm[:10],
                "dynamic": amount,
                "static": static_amount,
                "from_underlying": from_underlying,
            },
        )
        return static_amount

    def withdraw(self, owner: str, recipient: str, static_amount: int, to_underlying: bool = False) -> tuple[int, int]:
        """
        Burn ``static_amount`` (or ``ALL``) and release its dynamic value.

        Returns:
            (static units burned, dynamic amount released)
        """
        with self._lock:
            owner_norm = owner.lower()
            if static_amount == ALL:
                static_amount = self.balance_of(owner_norm)
            return self._withdraw(
                owner_norm, recipient, static_amount, self.static_to_dynamic_amount(static_amount), to_underlying
            )

    def withdraw_dynamic_amount(
        self, owner: str, recipient: str, dynamic_amount: int, to_underlying: bool = False
    ) -> tuple[int, int]:
        """Withdraw by dynamic value; the static units burned are derived from the rate."""
        with self._lock:
            return self._withdraw(
                owner.lower(),
                recipient,
                self.dynamic_to_static_amount(dynamic_amount),
                dynamic_amount,
                to_underlying,
            )

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Move static units between holders.

        Raises:
            InsufficientBalanceError: If amount exceeds the sender's balance
        """
        sender_norm = sender.lower()
        recipient_norm = self._require_recipient(recipient)
        with self._lock:
            self._apply_change(
                (sender_norm, recipient_norm),
                lambda: self.balances.move_shares(sender_norm, recipient_norm, amount),
            )
            self._emit("Transfer", sender_norm, recipient_norm, amount)
        return True

    # ==================== Rewards ====================

    def collect_and_update_rewards(self, token: str | None = None) -> dict[str, int]:
        """
        Claim the wrapper's deposit-token rewards and spread them over the
        static supply.

        Returns:
            Amount collected per reward token
        """
        with self._lock:
            return self._collect(token)

    def claim_rewards(self, holder: str, token: str, force_update: bool = True) -> RewardClaim:
        """
        Pay ``holder`` everything accrued in ``token``.

        Without ``force_update`` only rewards already collected are paid.
        """
        holder_norm = holder.lower()
        with self._lock:
            if force_update:
                self._collect(token)
            self.rewards.checkpoint(holder_norm, token, self.balance_of(holder_norm))
            result = self.rewards.claim(holder_norm, token)
            token_norm = token.lower()
            self.reward_balances[token_norm] = self.reward_balances.get(token_norm, 0) - result.claimable
            self._emit("RewardsClaimed", holder_norm, token_norm, result.claimable)

        logger.info(
            "Static rewards claimed",
            extra={
                "event": "static.rewards_claimed",
                "token": token.lower(),
                "holder": holder_norm[:10],
                "claimable": result.claimable,
            },
        )
        return result

    def get_claimable_rewards(self, holder: str, token: str) -> int:
        """Accrued, pending and not-yet-collected rewards of ``holder``."""
        token_norm = token.lower()
        with self._lock:
            if token_norm not in self.rewards.token_states:
                return 0
            balance = self.balance_of(holder)
            claimable = self.rewards.get_claimable(holder, token_norm)
            claimable += self.rewards.preview_accrual(holder, token_norm, balance)
            supply = self.total_supply()
            if supply:
                pending = self._uncollected(token_norm) + self.rewards.get_undistributed(token_norm)
                claimable += ray_mul(balance, ray_div(pending, supply))
            return claimable

    def get_total_claimable_rewards(self, token: str) -> int:
        """Rewards held by the wrapper plus those still waiting in the deposit token."""
        token_norm = token.lower()
        with self._lock:
            return self.reward_balances.get(token_norm, 0) + self._uncollected(token_norm)

    # ==================== Helpers ====================

    def _withdraw(
        self, owner: str, recipient: str, static_amount: int, dynamic_amount: int, to_underlying: bool
    ) -> tuple[int, int]:
        recipient_norm = self._require_recipient(recipient)
        if static_amount <= 0 and dynamic_amount <= 0:
            raise PreconditionViolation(
                "withdraw amount must be positive",
                details={"owner": owner, "static": static_amount, "dynamic": dynamic_amount},
            )
        balance = self.balance_of(owner)
        if static_amount > balance:
            raise InsufficientBalanceError(
                f"Withdraw exceeds static balance ({static_amount} > {balance})",
                details={"owner": owner, "static": static_amount, "balance": balance},
            )
        # Rate rounding may price the last units above what the wrapper holds
        dynamic_amount = min(dynamic_amount, self.atoken.balance_of(self.address))
        if static_amount == 0 or dynamic_amount == 0:
            raise InvalidBurnAmountError(
                "Withdraw rounds to zero",
                details={"owner": owner, "static": static_amount, "dynamic": dynamic_amount},
            )

        def action() -> None:
            if to_underlying:
                self.atoken.burn(
                    self.atoken.pool, self.address, recipient_norm, dynamic_amount, self.atoken.reserve.current
                )
            else:
                self.atoken.transfer(self.address, recipient_norm, dynamic_amount)
            self.balances.apply_balance_delta(owner, -static_amount, BalanceChange.BURN)

        self._apply_change((owner,), action)
        self._emit("Withdraw", owner, recipient_norm, static_amount)

        logger.info(
            "Static withdrawal",
            extra={
                "event": "static.withdraw",
                "token": self.symbol,
                "from": owner[:10],
                "to": recipient_norm[:10],
                "static": static_amount,
                "dynamic": dynamic_amount,
                "to_underlying": to_underlying,
            },
        )
        return static_amount, dynamic_amount

    def _apply_change(self, holders: Iterable[str], action: Callable[[], Any]) -> None:
        """
        Collect, checkpoint static holders, then run ``action``.

        ``action`` moves deposit tokens before static balances, so a failure
        leaves only the checkpoints to undo.
        """
        self._collect(None)
        saved = []
        for holder in dict.fromkeys(holders):
            for token in self.rewards.reward_tokens:
                saved.append((token, holder, copy.copy(self.rewards.holder_states[token].get(holder))))
            self.rewards.checkpoint_all(holder, self.balance_of(holder))
        try:
            action()
        except AccountingError:
            for token, holder, previous in saved:
                if previous is None:
                    self.rewards.holder_states[token].pop(holder, None)
                else:
                    self.rewards.holder_states[token][holder] = previous
            raise

    def _collect(self, token: str | None) -> dict[str, int]:
        if not isinstance(self.atoken, RewardAwareToken):
            return {}
        tokens = [token.lower()] if token else self.atoken.get_rewards_token_address_list()
        collected = {}
        for reward_token in tokens:
            pending = self.atoken.get_claimable_rewards(self.address, reward_token)
            self._register(reward_token)
            if pending == 0:
                continue
            received = self.atoken.claim(self.address, reward_token).to_holder
            self.reward_balances[reward_token] = self.reward_balances.get(reward_token, 0) + received
            self.rewards.distribute(reward_token, received, self.total_supply())
            collected[reward_token] = received
        if collected:
            logger.debug(
                "Static wrapper rewards collected",
                extra={"event": "static.rewards_collected", "token": self.symbol, "collected": collected},
            )
        return collected

    def _uncollected(self, token: str) -> int:
        if not isinstance(self.atoken, RewardAwareToken) or token not in self.atoken.rewards.token_states:
            return 0
        pending = self.atoken.get_claimable_rewards(self.address, token)
        return pending - percent_mul(pending, self.atoken.rewards_reserve_factor_bps)

    def _register(self, token: str) -> None:
        self.rewards.register_reward_token(token)

    def _require_recipient(self, recipient: str) -> str:
        recipient_norm = recipient.lower()
        if not recipient_norm or recipient_norm == ZERO_ADDRESS:
            raise PreconditionViolation(
                f"{self.symbol}: recipient is zero address",
                details={"field": "recipient"},
            )
        return recipient_norm

    def _emit(self, event_type: str, from_addr: str, to_addr: str, value: int) -> None:
        self.events.append(
            TokenEvent(
                event_type=event_type,
                from_address=from_addr,
                to_address=to_addr,
                value=value,
                index=self.atoken.reserve.current,
            )
        )

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "address": self.address,
            "balances": self.balances.to_dict(),
            "rewards": self.rewards.to_dict(),
            "reward_balances": dict(self.reward_balances),
        }

    @classmethod
    def from_dict(cls, data: dict, atoken: InterestBearingToken) -> "StaticInterestToken":
        return cls(
            atoken=atoken,
            address=data["address"],
            name=data.get("name", ""),
            symbol=data.get("symbol", ""),
            balances=ScaledBalanceLedger.from_dict(data.get("balances", {})),
            rewards=RewardIndexTracker.from_dict(data.get("rewards", {})),
            reward_balances=dict(data.get("reward_balances", {})),
        )
