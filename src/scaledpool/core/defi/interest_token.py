"""
Interest-Bearing Deposit Token.

Adapter between the lending pool and the balance models. The pool calls
mint, burn, liquidation transfers and premium injection; holders call
transfer. Each call:

- checks the caller before reading any share state
- validates the supplied liquidity index before changing anything
- checkpoints reward accrual for every affected holder (reward-aware
  tokens) using balances from before the change
- applies the change through the balance model
- commits the index, appends events and logs a structured record

The balance model is either a ``ScaledBalanceLedger`` (plain reserves) or a
``RebaseReconcilingWrapper`` (self-rebasing reserves).
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ..accounting_exceptions import AccountingError, AuthorizationError, PreconditionViolation
from ..config import MAX_BPS, REWARDS_RESERVE_FACTOR_BPS, TREASURY_ADDRESS
from .rebase_wrapper import RebaseReconcilingWrapper
from .rebasing_asset import RebasingAsset
from .reserve_index import ReserveIndex
from .reward_index import RewardClaim, RewardIndexTracker
from .scaled_balance import ScaledBalanceLedger

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


@dataclass
class TokenEvent:
    """Represents an interest-bearing token event."""

    event_type: str  # Mint, Burn, Transfer, BalanceTransfer, FlashLoanPremium, RewardsClaimed
    from_address: str
    to_address: str
    value: int
    index: int = 0
    timestamp: float = field(default_factory=time.time)


@dataclass
class InterestBearingToken:
    """
    Interest-bearing deposit token for one reserve.

    Attributes:
        name: Token name
        symbol: Token symbol
        underlying: Reserve asset identifier
        pool: Address allowed to mint, burn and liquidate
        treasury: Sink for reserve surplus and reward cuts
        reserve: Liquidity index of the reserve
        model: Balance model (ledger or rebasing wrapper)
        events: Event log
    """

    name: str
    symbol: str
    underlying: str
    pool: str
    treasury: str = TREASURY_ADDRESS
    reserve: ReserveIndex = field(default_factory=ReserveIndex)
    model: Any = field(default_factory=ScaledBalanceLedger)
    decimals: int = 18
    events: list[TokenEvent] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.pool = self._normalize(self.pool)
        self.treasury = self._normalize(self.treasury)
        if not self.reserve.asset:
            self.reserve.asset = self.underlying
        self._lock = threading.RLock()

    @classmethod
    def create(
        cls,
        name: str,
        symbol: str,
        underlying: str,
        pool: str,
        treasury: str | None = None,
        reserve: ReserveIndex | None = None,
        decimals: int = 18,
        **kwargs: Any,
    ):
        """Create a token for a plain (non-rebasing) reserve."""
        return cls(
            name=name,
            symbol=symbol,
            underlying=underlying,
            pool=pool,
            treasury=treasury or TREASURY_ADDRESS,
            reserve=reserve or ReserveIndex(asset=underlying),
            model=ScaledBalanceLedger(),
            decimals=decimals,
            **kwargs,
        )

    @classmethod
    def for_rebasing_asset(
        cls,
        asset: RebasingAsset,
        pool: str,
        name: str | None = None,
        symbol: str | None = None,
        treasury: str | None = None,
        reserve: ReserveIndex | None = None,
        decimals: int = 18,
        **kwargs: Any,
    ):
        """Create a token for a reserve asset that rebases on its own."""
        return cls(
            name=name or f"Interest bearing {asset.symbol}",
            symbol=symbol or f"a{asset.symbol}",
            underlying=asset.symbol,
            pool=pool,
            treasury=treasury or TREASURY_ADDRESS,
            reserve=reserve or ReserveIndex(asset=asset.symbol),
            model=RebaseReconcilingWrapper(asset),
            decimals=decimals,
            **kwargs,
        )

    # ==================== View Functions ====================

    def balance_of(self, holder: str) -> int:
        return self.model.balance_of(holder, self.reserve.current)

    def scaled_balance_of(self, holder: str) -> int:
        return self.model.scaled_balance_of(holder)

    def total_supply(self) -> int:
        return self.model.total_supply(self.reserve.current)

    def scaled_total_supply(self) -> int:
        return self.model.scaled_total_supply()

    def get_scaled_user_balance_and_supply(self, holder: str) -> tuple[int, int]:
        """
        Scaled balance of ``holder`` and scaled total supply.

        Both values come from the same exchange-rate read.
        """
        with self.model.pinned_rate():
            return self.model.scaled_balance_of(holder), self.model.scaled_total_supply()

    def holders(self) -> list[str]:
        return self.model.holders()

    @property
    def is_rebasing(self) -> bool:
        return isinstance(self.model, RebaseReconcilingWrapper)

    # ==================== Pool Operations ====================

    def mint(self, caller: str, holder: str, amount: int, index: int) -> bool:
        """
        Mint deposit tokens (pool only).

        Args:
            caller: Must be the pool
            holder: Depositor
            amount: Presentation amount deposited
            index: Current liquidity index (ray)

        Returns:
            True if the holder had no balance before

        Raises:
            AuthorizationError: If caller is not the pool
            IndexRegressionError: If index is below the stored one
            InvalidMintAmountError: If amount rounds to zero shares
        """
        with self._lock:
            self._require_pool(caller)
            holder_norm = self._normalize(holder)
            self.reserve.validate(index)

            first_balance = self._apply_change(
                (holder_norm,), lambda: self.model.mint(holder_norm, amount, index)
            )
            self.reserve.update(index, reason="mint")

            self._emit("Transfer", ZERO_ADDRESS, holder_norm, amount, index)
            self._emit("Mint", self.pool, holder_norm, amount, index)

        logger.info(
            "Deposit token mint",
            extra={
                "event": "atoken.mint",
                "token": self.symbol,
                "to": holder_norm[:10],
                "amount": amount,
                "index": index,
                "first_balance": first_balance,
            },
        )
        return first_balance

    def burn(self, caller: str, holder: str, receiver: str, amount: int, index: int) -> int:
        """
        Burn deposit tokens and release the underlying to ``receiver`` (pool only).

        Args:
            caller: Must be the pool
            holder: Holder whose tokens are burned
            receiver: Recipient of the underlying
            amount: Presentation amount or ``ALL``
            index: Current liquidity index (ray)

        Returns:
            Presentation amount burned

        Raises:
            AuthorizationError: If caller is not the pool
            InsufficientBalanceError: If amount exceeds the balance
            InvalidBurnAmountError: If amount rounds to zero shares
        """
        with self._lock:
            self._require_pool(caller)
            holder_norm = self._normalize(holder)
            receiver_norm = self._normalize(receiver)
            self.reserve.validate(index)

            burned = self._apply_change(
                (holder_norm,), lambda: self.model.burn(holder_norm, amount, index)
            )
            self.reserve.update(index, reason="burn")

            self._emit("Transfer", holder_norm, ZERO_ADDRESS, burned, index)
            self._emit("Burn", holder_norm, receiver_norm, burned, index)

        logger.info(
            "Deposit token burn",
            extra={
                "event": "atoken.burn",
                "token": self.symbol,
                "from": holder_norm[:10],
                "receiver": receiver_norm[:10],
                "amount": burned,
                "index": index,
            },
        )
        return burned

    def mint_to_treasury(self, caller: str, amount: int, index: int) -> bool:
        """
        Mint reserve surplus to the treasury (pool only).

        A zero amount is accepted and changes nothing.
        """
        with self._lock:
            self._require_pool(caller)
            if amount == 0:
                return False
            return self.mint(caller, self.treasury, amount, index)

    def transfer_on_liquidation(self, caller: str, sender: str, recipient: str, amount: int) -> bool:
        """
        Move seized collateral from ``sender`` to ``recipient`` (pool only).

        Accounting is the same as an ordinary transfer.
        """
        with self._lock:
            self._require_pool(caller)
            self._transfer(sender, recipient, amount, liquidation=True)
        return True

    def inject_flash_loan_premium(self, caller: str, premium: int) -> int:
        """
        Distribute a flash-loan premium to every holder (pool only).

        No holder entry changes; the liquidity index rises so that the
        total supply grows by ``premium``.

        Returns:
            The new liquidity index

        Raises:
            PreconditionViolation: If the reserve has no supply
        """
        with self._lock:
            self._require_pool(caller)
            total_liquidity = self.total_supply()
            new_index = self.reserve.cumulate_to_liquidity_index(total_liquidity, premium)
            self._emit("FlashLoanPremium", self.pool, ZERO_ADDRESS, premium, new_index)

        logger.info(
            "Flash loan premium injected",
            extra={
                "event": "atoken.flash_premium",
                "token": self.symbol,
                "premium": premium,
                "total_liquidity": total_liquidity,
                "index": new_index,
            },
        )
        return new_index

    # ==================== Holder Operations ====================

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Transfer deposit tokens at the reserve's current index.

        Raises:
            InsufficientBalanceError: If amount exceeds the sender's balance
        """
        with self._lock:
            self._transfer(sender, recipient, amount, liquidation=False)
        return True

    # ==================== Helpers ====================

    def _transfer(self, sender: str, recipient: str, amount: int, liquidation: bool) -> None:
        sender_norm = self._normalize(sender)
        recipient_norm = self._normalize(recipient)
        self._validate_address(recipient_norm, "recipient")
        index = self.reserve.current

        self._apply_change(
            (sender_norm, recipient_norm),
            lambda: self.model.transfer(sender_norm, recipient_norm, amount, index),
        )

        self._emit("Transfer", sender_norm, recipient_norm, amount, index)
        self._emit("BalanceTransfer", sender_norm, recipient_norm, amount, index)

        logger.debug(
            "Deposit token transfer",
            extra={
                "event": "atoken.liquidation_transfer" if liquidation else "atoken.transfer",
                "token": self.symbol,
                "from": sender_norm[:10],
                "to": recipient_norm[:10],
                "amount": amount,
                "index": index,
            },
        )

    def _apply_change(self, holders: Iterable[str], action: Callable[[], Any]) -> Any:
        """Run a balance change with one pinned exchange rate and pre-change checkpoints."""
        with self.model.pinned_rate():
            restore = self._checkpoint_holders(holders)
            try:
                return action()
            except AccountingError:
                restore()
                raise

    def _checkpoint_holders(self, holders: Iterable[str]) -> Callable[[], None]:
        """Hook for reward accrual; returns a callable that undoes it."""
        return lambda: None

    def _emit(self, event_type: str, from_addr: str, to_addr: str, value: int, index: int) -> None:
        self.events.append(
            TokenEvent(
                event_type=event_type,
                from_address=from_addr,
                to_address=to_addr,
                value=value,
                index=index,
            )
        )

    def _normalize(self, address: str) -> str:
        """Normalize address to lowercase."""
        return address.lower()

    def _validate_address(self, address: str, field_name: str) -> None:
        if not address or address == ZERO_ADDRESS:
            raise PreconditionViolation(
                f"{self.symbol}: {field_name} is zero address",
                details={"field": field_name},
            )

    def _require_pool(self, caller: str) -> None:
        """Require caller is the pool."""
        if self._normalize(caller) != self.pool:
            raise AuthorizationError(
                f"{self.symbol}: caller is not the pool",
                details={"caller": caller, "token": self.symbol},
            )

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        """Serialize token state to dictionary."""
        return {
            "name": self.name,
            "symbol": self.symbol,
            "underlying": self.underlying,
            "pool": self.pool,
            "treasury": self.treasury,
            "decimals": self.decimals,
            "reserve": self.reserve.to_dict(),
            "model_type": "rebasing" if self.is_rebasing else "ledger",
            "model": self.model.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict, asset: RebasingAsset | None = None):
        """
        Deserialize token state from dictionary.

        Args:
            data: Output of ``to_dict``
            asset: Live rebasing asset, required for rebasing tokens
        """
        if data.get("model_type") == "rebasing":
            if asset is None:
                raise PreconditionViolation(
                    "Rebasing token state needs its reserve asset",
                    details={"symbol": data.get("symbol")},
                )
            model = RebaseReconcilingWrapper.from_dict(data["model"], asset)
        else:
            model = ScaledBalanceLedger.from_dict(data.get("model", {}))

        return cls(
            name=data["name"],
            symbol=data["symbol"],
            underlying=data["underlying"],
            pool=data["pool"],
            treasury=data.get("treasury", TREASURY_ADDRESS),
            reserve=ReserveIndex.from_dict(data.get("reserve", {})),
            model=model,
            decimals=data.get("decimals", 18),
            **cls._extra_from_dict(data),
        )

    @classmethod
    def _extra_from_dict(cls, data: dict) -> dict:
        return {}


@dataclass
class RewardAwareToken(InterestBearingToken):
    """
    Interest-bearing token that forwards farmed rewards to its holders.

    Attributes:
        rewards: Lifetime-index reward tracker
        rewards_reserve_factor_bps: Treasury cut applied at claim time
    """

    rewards: RewardIndexTracker = field(default_factory=RewardIndexTracker)
    rewards_reserve_factor_bps: int = REWARDS_RESERVE_FACTOR_BPS

    def __post_init__(self) -> None:
        super().__post_init__()
        self._check_bps(self.rewards_reserve_factor_bps)

    # ==================== Reward Operations ====================

    def register_reward_token(self, token: str) -> bool:
        """
        Track a reward token. Registering a known token is a no-op.

        Raises:
            CapacityExceededError: If every reward slot is taken
        """
        with self._lock:
            return self.rewards.register_reward_token(token)

    def distribute_rewards(self, token: str, amount: int) -> int:
        """
        Forward ``amount`` of a reward token to current holders.

        Returns:
            The reward token's lifetime index after distribution
        """
        with self._lock:
            return self.rewards.distribute(token, amount, self.model.reward_basis_supply())

    def claim(self, holder: str, token: str) -> RewardClaim:
        """
        Claim everything ``holder`` has accrued in ``token``.

        The reserve-factor cut comes out of the holder's claim and is
        tallied per reward token for the treasury.

        Returns:
            RewardClaim with the holder's share and the treasury cut
        """
        with self._lock:
            holder_norm = self._normalize(holder)
            self.rewards.checkpoint(holder_norm, token, self.model.reward_basis_of(holder_norm))
            result = self.rewards.claim(holder_norm, token, self.rewards_reserve_factor_bps)
            if result.treasury_cut:
                self.rewards.record_treasury_cut(token, result.treasury_cut)
            self._emit("RewardsClaimed", holder_norm, token.lower(), result.claimable, self.reserve.current)

        logger.info(
            "Rewards claimed",
            extra={
                "event": "rewards.claimed",
                "token": token.lower(),
                "holder": holder_norm[:10],
                "claimable": result.claimable,
                "treasury_cut": result.treasury_cut,
            },
        )
        return result

    def set_rewards_reserve_factor(self, caller: str, bps: int) -> None:
        with self._lock:
            self._require_pool(caller)
            self._check_bps(bps)
            self.rewards_reserve_factor_bps = bps

    # ==================== Reward Views ====================

    def get_claimable_rewards(self, holder: str, token: str) -> int:
        """Claimed-to-date excluded, pending accrual since the last checkpoint included."""
        with self._lock:
            pending = self.rewards.preview_accrual(holder, token, self.model.reward_basis_of(holder))
            return self.rewards.get_claimable(holder, token) + pending

    def get_user_rewards_accrued(self, holder: str, token: str) -> int:
        return self.rewards.get_user_rewards_accrued(holder, token)

    def get_user_index(self, holder: str, token: str) -> int:
        return self.rewards.get_user_index(holder, token)

    def get_user_claimed_rewards(self, holder: str, token: str) -> int:
        return self.rewards.get_user_claimed_rewards(holder, token)

    def get_lifetime_rewards(self, token: str) -> int:
        return self.rewards.get_lifetime_rewards(token)

    def get_treasury_claimed_rewards(self, token: str) -> int:
        return self.rewards.get_treasury_claimed(token)

    def get_rewards_token_address_list(self) -> list[str]:
        return self.rewards.get_reward_tokens()

    def get_rewards_reserve_factor(self) -> int:
        return self.rewards_reserve_factor_bps

    # ==================== Helpers ====================

    def _checkpoint_holders(self, holders: Iterable[str]) -> Callable[[], None]:
        saved = []
        for holder in dict.fromkeys(holders):
            for token in self.rewards.reward_tokens:
                saved.append((token, holder, copy.copy(self.rewards.holder_states[token].get(holder))))
            self.rewards.checkpoint_all(holder, self.model.reward_basis_of(holder))

        def restore() -> None:
            for token, holder, previous in saved:
                if previous is None:
                    self.rewards.holder_states[token].pop(holder, None)
                else:
                    self.rewards.holder_states[token][holder] = previous

        return restore

    def _check_bps(self, bps: int) -> None:
        if not 0 <= bps <= MAX_BPS:
            raise PreconditionViolation(
                f"Reserve factor out of range: {bps}",
                details={"bps": bps},
            )

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["rewards"] = self.rewards.to_dict()
        data["rewards_reserve_factor_bps"] = self.rewards_reserve_factor_bps
        return data

    @classmethod
    def _extra_from_dict(cls, data: dict) -> dict:
        return {
            "rewards": RewardIndexTracker.from_dict(data.get("rewards", {})),
            "rewards_reserve_factor_bps": data.get("rewards_reserve_factor_bps", 0),
        }
