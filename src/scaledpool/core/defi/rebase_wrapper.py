"""
Rebase-Reconciling Wrapper.

Deposits of a rebasing reserve asset are booked in reserve-asset shares,
and the two growth factors are composed only when a value is read:

    scaled balance       = ray_mul(internal shares, exchange rate)
    presentation balance = ray_mul(scaled balance, liquidity index)

The exchange rate is read from the asset once per logical operation and
reused for every conversion inside it. If the asset rebased between two
reads of the same operation the legs would disagree permanently.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from ..accounting_exceptions import (
    DivisionByZeroError,
    InsufficientBalanceError,
    InvalidBurnAmountError,
    InvalidMintAmountError,
    PreconditionViolation,
)
from .rebasing_asset import RebasingAsset
from .scaled_balance import ALL, BalanceChange, ScaledBalanceLedger
from .wad_ray_math import ray_div, ray_div_floor, ray_mul

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateSnapshot:
    """Exchange rate read once and reused within one operation."""

    rate: int

    def to_scaled(self, internal_shares: int) -> int:
        return ray_mul(internal_shares, self.rate)

    def to_internal(self, scaled: int) -> int:
        return ray_div(scaled, self.rate)

    def to_internal_floor(self, scaled: int) -> int:
        return ray_div_floor(scaled, self.rate)


class RebaseReconcilingWrapper:
    """
    Scaled-balance model for a reserve asset that rebases on its own.

    Exposes the same method names as ``ScaledBalanceLedger`` so the token
    adapter can hold either one.
    """

    def __init__(self, asset: RebasingAsset, ledger: ScaledBalanceLedger | None = None) -> None:
        self.asset = asset
        self.ledger = ledger or ScaledBalanceLedger()
        self._pinned: RateSnapshot | None = None
        self.rate_reads = 0

    # ==================== Exchange Rate ====================

    def snapshot(self) -> RateSnapshot:
        """
        Return the exchange rate for the current operation.

        Inside ``pinned_rate()`` the pinned value is returned; otherwise the
        asset is read.
        """
        if self._pinned is not None:
            return self._pinned
        rate = self.asset.exchange_rate()
        self.rate_reads += 1
        if rate <= 0:
            raise DivisionByZeroError(
                f"{self.asset.symbol}: exchange rate must be positive",
                details={"rate": rate},
            )
        return RateSnapshot(rate)

    @contextmanager
    def pinned_rate(self) -> Iterator[RateSnapshot]:
        """Pin one exchange rate read for every conversion in the block."""
        if self._pinned is not None:
            yield self._pinned
            return
        snap = self.snapshot()
        self._pinned = snap
        try:
            yield snap
        finally:
            self._pinned = None

    # ==================== View Functions ====================

    def internal_balance_of(self, holder: str) -> int:
        return self.ledger.scaled_balance_of(holder)

    def internal_total_supply(self) -> int:
        return self.ledger.total_shares

    def reward_basis_of(self, holder: str) -> int:
        """Reward weight of a holder: reserve shares, which only move at checkpoints."""
        return self.internal_balance_of(holder)

    def reward_basis_supply(self) -> int:
        return self.internal_total_supply()

    def scaled_balance_of(self, holder: str) -> int:
        return self.snapshot().to_scaled(self.internal_balance_of(holder))

    def scaled_total_supply(self) -> int:
        return self.snapshot().to_scaled(self.internal_total_supply())

    def balance_of(self, holder: str, index: int) -> int:
        return ray_mul(self.scaled_balance_of(holder), index)

    def total_supply(self, index: int) -> int:
        return ray_mul(self.scaled_total_supply(), index)

    def holders(self) -> list[str]:
        return self.ledger.holders()

    # ==================== Balance Changes ====================

    def deposit_external(self, holder: str, amount: int, index: int) -> bool:
        """
        Book a deposit of ``amount`` reserve-asset value.

        Args:
            holder: Depositor
            amount: Presentation amount deposited
            index: Liquidity index (ray)

        Returns:
            True if the holder had no balance before

        Raises:
            PreconditionViolation: If amount is not positive
            InvalidMintAmountError: If the amount rounds to zero scaled
                units or to zero reserve shares
        """
        if amount <= 0:
            raise PreconditionViolation(
                "deposit amount must be positive",
                details={"holder": holder, "amount": amount},
            )
        with self.pinned_rate() as snap:
            scaled = ray_div(amount, index)
            if scaled == 0:
                raise InvalidMintAmountError(
                    f"Deposit {amount} rounds to zero at index {index}",
                    details={"holder": holder, "amount": amount, "index": index},
                )
            reserve_shares = snap.to_internal_floor(scaled)
            if reserve_shares == 0:
                raise InvalidMintAmountError(
                    f"Deposit {amount} rounds to zero reserve shares at rate {snap.rate}",
                    details={"holder": holder, "amount": amount, "rate": snap.rate},
                )

            first_balance = self.internal_balance_of(holder) == 0
            self.ledger.apply_balance_delta(holder, reserve_shares, BalanceChange.MINT)

        logger.debug(
            "Rebasing deposit booked",
            extra={
                "event": "wrapper.deposit",
                "holder": holder.lower()[:10],
                "amount": amount,
                "reserve_shares": reserve_shares,
                "rate": snap.rate,
            },
        )
        return first_balance

    def withdraw_external(self, holder: str, amount: int, index: int) -> int:
        """
        Book a withdrawal of ``amount`` (or ``ALL``).

        Returns:
            The presentation amount withdrawn

        Raises:
            PreconditionViolation: If amount is not positive
            InsufficientBalanceError: If amount exceeds the balance
            InvalidBurnAmountError: If amount rounds to zero reserve shares
        """
        with self.pinned_rate() as snap:
            internal = self.internal_balance_of(holder)
            balance = ray_mul(snap.to_scaled(internal), index)
            if amount == ALL:
                amount = balance
            if amount <= 0:
                raise PreconditionViolation(
                    "withdraw amount must be positive",
                    details={"holder": holder, "amount": amount},
                )
            if amount > balance:
                raise InsufficientBalanceError(
                    f"Withdraw amount exceeds balance ({amount} > {balance})",
                    details={"holder": holder, "amount": amount, "balance": balance},
                )

            reserve_shares = snap.to_internal(ray_div(amount, index))
            if reserve_shares == 0:
                raise InvalidBurnAmountError(
                    f"Withdraw {amount} rounds to zero reserve shares at rate {snap.rate}",
                    details={"holder": holder, "amount": amount, "rate": snap.rate},
                )
            reserve_shares = min(reserve_shares, internal)
            self.ledger.apply_balance_delta(holder, -reserve_shares, BalanceChange.BURN)

        logger.debug(
            "Rebasing withdrawal booked",
            extra={
                "event": "wrapper.withdraw",
                "holder": holder.lower()[:10],
                "amount": amount,
                "reserve_shares": reserve_shares,
                "rate": snap.rate,
            },
        )
        return amount

    def transfer(self, sender: str, recipient: str, amount: int, index: int) -> int:
        """
        Move presentation value between holders.

        Returns:
            Reserve shares moved
        """
        if amount < 0:
            raise PreconditionViolation(
                "Transfer amount cannot be negative",
                details={"sender": sender, "amount": amount},
            )
        with self.pinned_rate() as snap:
            internal = self.internal_balance_of(sender)
            balance = ray_mul(snap.to_scaled(internal), index)
            if amount > balance:
                raise InsufficientBalanceError(
                    f"Transfer amount exceeds balance ({amount} > {balance})",
                    details={"sender": sender, "amount": amount, "balance": balance},
                )
            reserve_shares = min(snap.to_internal(ray_div(amount, index)), internal)
            self.ledger.move_shares(sender, recipient, reserve_shares)
        return reserve_shares

    # Ledger-compatible names
    mint = deposit_external
    burn = withdraw_external

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        return {
            "asset": self.asset.symbol,
            "ledger": self.ledger.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict, asset: RebasingAsset) -> "RebaseReconcilingWrapper":
        return cls(asset, ScaledBalanceLedger.from_dict(data.get("ledger", {})))
