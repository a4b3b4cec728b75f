"""
Rebasing reserve assets.

A rebasing asset changes every holder's balance without transfers: the
asset keeps shares per holder and a pooled total, and balances are shares
times the pooled-per-share exchange rate (stETH style).

``RebasingAsset`` is the only surface the accounting engine reads.
``ShareRebasingToken`` is an in-memory implementation used for
simulation and reconciliation runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Protocol, runtime_checkable

from ..accounting_exceptions import InsufficientBalanceError, PreconditionViolation
from .wad_ray_math import RAY, ray_div

logger = logging.getLogger(__name__)


@runtime_checkable
class RebasingAsset(Protocol):
    """Reserve asset whose value per share drifts over time."""

    symbol: str

    def exchange_rate(self) -> int:
        """Current value per reserve share, in ray."""
        ...


@dataclass
class ShareRebasingToken:
    """
    In-memory share-based rebasing token.

    Attributes:
        symbol: Token symbol
        decimals: Display decimals
        shares: Asset shares per holder
        total_shares: Sum of holder shares
        total_pooled: Underlying value backing all shares
    """

    symbol: str = "stETH"
    decimals: int = 18
    shares: dict[str, int] = field(default_factory=dict)
    total_shares: int = 0
    total_pooled: int = 0
    rebase_count: int = 0

    # ==================== View Functions ====================

    def exchange_rate(self) -> int:
        if self.total_shares == 0:
            return RAY
        return ray_div(self.total_pooled, self.total_shares)

    def get_shares_by_pooled(self, amount: int) -> int:
        if self.total_shares == 0 or self.total_pooled == 0:
            return amount
        return amount * self.total_shares // self.total_pooled

    def get_pooled_by_shares(self, share_amount: int) -> int:
        if self.total_shares == 0:
            return share_amount
        return share_amount * self.total_pooled // self.total_shares

    def shares_of(self, holder: str) -> int:
        return self.shares.get(holder.lower(), 0)

    def balance_of(self, holder: str) -> int:
        return self.get_pooled_by_shares(self.shares_of(holder))

    # ==================== State-Changing Functions ====================

    def submit(self, holder: str, amount: int) -> int:
        """
        Deposit ``amount`` of underlying value and mint shares for it.

        Returns:
            Shares minted
        """
        if amount <= 0:
            raise PreconditionViolation(
                f"{self.symbol}: submit amount must be positive",
                details={"holder": holder, "amount": amount},
            )
        minted = self.get_shares_by_pooled(amount)
        self.mint_shares(holder, minted)
        self.total_pooled += amount
        return minted

    def mint_shares(self, holder: str, share_amount: int) -> None:
        holder_norm = holder.lower()
        self.shares[holder_norm] = self.shares.get(holder_norm, 0) + share_amount
        self.total_shares += share_amount

    def transfer(self, sender: str, recipient: str, amount: int) -> int:
        """
        Transfer ``amount`` of value, moving the equivalent shares.

        Returns:
            Shares moved

        Raises:
            InsufficientBalanceError: If the sender holds too little
        """
        share_amount = self.get_shares_by_pooled(amount)
        return self.transfer_shares(sender, recipient, share_amount)

    def transfer_shares(self, sender: str, recipient: str, share_amount: int) -> int:
        sender_norm = sender.lower()
        recipient_norm = recipient.lower()
        available = self.shares.get(sender_norm, 0)
        if share_amount > available:
            raise InsufficientBalanceError(
                f"{self.symbol}: transfer exceeds shares ({share_amount} > {available})",
                details={"sender": sender_norm, "shares": share_amount},
            )
        self.shares[sender_norm] = available - share_amount
        self.shares[recipient_norm] = self.shares.get(recipient_norm, 0) + share_amount
        return share_amount

    def rebase(self, fraction: Decimal | str | float) -> int:
        """
        Scale the pooled total by ``1 + fraction``.

        Args:
            fraction: Relative change, e.g. ``Decimal("0.6")`` for +60% or
                ``Decimal("-0.1")`` for a 10% slashing

        Returns:
            The new exchange rate (ray)
        """
        fraction = Decimal(str(fraction))
        if fraction <= -1:
            raise PreconditionViolation(
                f"{self.symbol}: rebase cannot wipe out the pool",
                details={"fraction": str(fraction)},
            )
        delta = (Decimal(self.total_pooled) * fraction).to_integral_value(rounding=ROUND_DOWN)
        self.total_pooled += int(delta)
        self.rebase_count += 1

        rate = self.exchange_rate()
        logger.info(
            "Reserve asset rebased",
            extra={
                "event": "asset.rebase",
                "symbol": self.symbol,
                "fraction": str(fraction),
                "total_pooled": self.total_pooled,
                "exchange_rate": rate,
            },
        )
        return rate
