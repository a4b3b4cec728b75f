"""
Scaled-Balance Ledger.

Holds internal shares per holder. A holder's presentation balance is never
stored: it is always ``ray_mul(shares, index)`` for the index supplied by
the caller. Interest and flash-loan premiums reach every holder by the
index rising, so no operation here iterates over holders.

All balance changes go through ``apply_balance_delta``; ``mint``, ``burn``
and ``transfer`` only size the share delta and check their guards.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from ..accounting_exceptions import (
    InsufficientBalanceError,
    InvalidBurnAmountError,
    InvalidMintAmountError,
    PreconditionViolation,
)
from .wad_ray_math import MAX_UINT256, ray_div, ray_mul

logger = logging.getLogger(__name__)

# Sentinel for "withdraw everything the holder has"
ALL = MAX_UINT256


class BalanceChange(Enum):
    """Reason tag for a share delta."""

    MINT = "mint"
    BURN = "burn"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"

    @property
    def is_credit(self) -> bool:
        return self in (BalanceChange.MINT, BalanceChange.TRANSFER_IN)

    @property
    def changes_supply(self) -> bool:
        return self in (BalanceChange.MINT, BalanceChange.BURN)


@dataclass
class ScaledBalanceLedger:
    """
    Index-scaled share ledger.

    Holder entries are created on first credit and kept at zero afterwards
    rather than deleted.

    Attributes:
        shares: Internal shares per (lowercased) holder
        total_shares: Sum of all holder shares
    """

    shares: dict[str, int] = field(default_factory=dict)
    total_shares: int = 0

    # ==================== View Functions ====================

    def scaled_balance_of(self, holder: str) -> int:
        return self.shares.get(self._normalize(holder), 0)

    def scaled_total_supply(self) -> int:
        return self.total_shares

    def balance_of(self, holder: str, index: int) -> int:
        """
        Presentation balance of a holder.

        Args:
            holder: Holder address
            index: Liquidity index (ray)

        Returns:
            ray_mul(shares, index)
        """
        return ray_mul(self.scaled_balance_of(holder), index)

    def total_supply(self, index: int) -> int:
        return ray_mul(self.total_shares, index)

    def reward_basis_of(self, holder: str) -> int:
        return self.scaled_balance_of(holder)

    def reward_basis_supply(self) -> int:
        return self.total_shares

    def holders(self) -> list[str]:
        return list(self.shares)

    @contextmanager
    def pinned_rate(self) -> Iterator[None]:
        """No exchange rate to pin; present for parity with the rebasing wrapper."""
        yield None

    # ==================== Balance Changes ====================

    def mint(self, holder: str, amount: int, index: int) -> bool:
        """
        Credit ``amount`` of presentation value to a holder.

        Args:
            holder: Recipient
            amount: Presentation amount, must be positive
            index: Liquidity index (ray)

        Returns:
            True if the holder had no shares before this mint

        Raises:
            PreconditionViolation: If amount is not positive
            InvalidMintAmountError: If amount rounds to zero shares
        """
        self._require_positive(amount, "mint")
        share_delta = ray_div(amount, index)
        if share_delta == 0:
            raise InvalidMintAmountError(
                f"Mint amount {amount} rounds to zero shares at index {index}",
                details={"holder": holder, "amount": amount, "index": index},
            )

        first_balance = self.scaled_balance_of(holder) == 0
        self.apply_balance_delta(holder, share_delta, BalanceChange.MINT)
        return first_balance

    def burn(self, holder: str, amount: int, index: int) -> int:
        """
        Remove ``amount`` of presentation value from a holder.

        ``ALL`` resolves to the holder's whole presentation balance.

        Args:
            holder: Holder to debit
            amount: Presentation amount or ``ALL``
            index: Liquidity index (ray)

        Returns:
            The presentation amount burned

        Raises:
            PreconditionViolation: If amount is not positive
            InsufficientBalanceError: If amount exceeds the balance
            InvalidBurnAmountError: If amount rounds to zero shares
        """
        balance = self.balance_of(holder, index)
        if amount == ALL:
            amount = balance
        self._require_positive(amount, "burn")
        if amount > balance:
            raise InsufficientBalanceError(
                f"Burn amount exceeds balance ({amount} > {balance})",
                details={"holder": holder, "amount": amount, "balance": balance},
            )

        share_delta = ray_div(amount, index)
        if share_delta == 0:
            raise InvalidBurnAmountError(
                f"Burn amount {amount} rounds to zero shares at index {index}",
                details={"holder": holder, "amount": amount, "index": index},
            )
        # Half-up rounding may ask for one share more than the holder owns
        share_delta = min(share_delta, self.scaled_balance_of(holder))

        self.apply_balance_delta(holder, -share_delta, BalanceChange.BURN)
        return amount

    def transfer(self, sender: str, recipient: str, amount: int, index: int) -> int:
        """
        Move presentation value between holders.

        The share delta is computed once and moved as a whole, so total
        shares never change.

        Returns:
            Number of shares moved

        Raises:
            PreconditionViolation: If amount is negative
            InsufficientBalanceError: If amount exceeds the sender's balance
        """
        if amount < 0:
            raise PreconditionViolation(
                "Transfer amount cannot be negative",
                details={"sender": sender, "amount": amount},
            )
        balance = self.balance_of(sender, index)
        if amount > balance:
            raise InsufficientBalanceError(
                f"Transfer amount exceeds balance ({amount} > {balance})",
                details={"sender": sender, "amount": amount, "balance": balance},
            )

        share_delta = min(ray_div(amount, index), self.scaled_balance_of(sender))
        self.move_shares(sender, recipient, share_delta)
        return share_delta

    def move_shares(self, sender: str, recipient: str, share_delta: int) -> None:
        """
        Move raw shares between holders.

        Raises:
            InsufficientBalanceError: If the sender holds fewer shares
        """
        sender_shares = self.scaled_balance_of(sender)
        if share_delta > sender_shares:
            raise InsufficientBalanceError(
                f"Share transfer exceeds holdings ({share_delta} > {sender_shares})",
                details={"sender": sender, "shares": share_delta},
            )
        if share_delta == 0:
            self.shares.setdefault(self._normalize(recipient), 0)
            return
        self.apply_balance_delta(sender, -share_delta, BalanceChange.TRANSFER_OUT)
        self.apply_balance_delta(recipient, share_delta, BalanceChange.TRANSFER_IN)

    def apply_balance_delta(self, holder: str, share_delta: int, reason: BalanceChange) -> int:
        """
        Apply a signed share delta to one holder.

        Args:
            holder: Holder address
            share_delta: Positive for credits, negative for debits
            reason: Why the balance changes; must agree with the sign

        Returns:
            The holder's new share balance

        Raises:
            PreconditionViolation: If the sign disagrees with the reason
            InsufficientBalanceError: If a debit exceeds the holder's shares
        """
        if share_delta == 0 or (share_delta > 0) != reason.is_credit:
            raise PreconditionViolation(
                f"Share delta {share_delta} does not match {reason.value}",
                details={"holder": holder, "delta": share_delta, "reason": reason.value},
            )

        holder_norm = self._normalize(holder)
        current = self.shares.get(holder_norm, 0)
        updated = current + share_delta
        if updated < 0:
            raise InsufficientBalanceError(
                f"Share balance would go negative ({current} + {share_delta})",
                details={"holder": holder_norm, "delta": share_delta},
            )

        self.shares[holder_norm] = updated
        if reason.changes_supply:
            self.total_shares += share_delta

        logger.debug(
            "Balance delta applied",
            extra={
                "event": "ledger.delta",
                "holder": holder_norm[:10],
                "delta": share_delta,
                "reason": reason.value,
                "total_shares": self.total_shares,
            },
        )
        return updated

    # ==================== Helpers ====================

    def _normalize(self, holder: str) -> str:
        """Normalize address to lowercase."""
        return holder.lower()

    def _require_positive(self, amount: int, op: str) -> None:
        if amount <= 0:
            raise PreconditionViolation(
                f"{op} amount must be positive",
                details={"op": op, "amount": amount},
            )

    # ==================== Serialization ====================

    def to_dict(self) -> dict:
        return {
            "shares": dict(self.shares),
            "total_shares": self.total_shares,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScaledBalanceLedger":
        shares = {k.lower(): int(v) for k, v in data.get("shares", {}).items()}
        return cls(shares=shares, total_shares=int(data.get("total_shares", sum(shares.values()))))
