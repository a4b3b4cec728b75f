"""
Dust reconciliation.

Rounding in the ledger always favours the reserve, so the underlying held
for a token slowly drifts above the token's total supply. The sweeper
measures that surplus and, on request, mints the part above a retained
buffer to the treasury. It never runs on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..accounting_exceptions import PreconditionViolation, RoundingUnderflowError
from ..config import DUST_THRESHOLD
from .interest_token import InterestBearingToken

logger = logging.getLogger(__name__)


@dataclass
class DustReport:
    """Result of one measurement or sweep."""

    token: str
    backing: int
    total_supply: int
    surplus: int
    threshold: int
    swept: int = 0

    @property
    def is_deficit(self) -> bool:
        return self.surplus < 0

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "backing": self.backing,
            "total_supply": self.total_supply,
            "surplus": self.surplus,
            "threshold": self.threshold,
            "swept": self.swept,
            "deficit": self.is_deficit,
        }


class DustSweeper:
    """
    Explicit maintenance operation for rounding surplus.

    Args:
        threshold: Surplus kept in the reserve as a rounding buffer; only
            the part above it is swept
    """

    def __init__(self, threshold: int = DUST_THRESHOLD) -> None:
        if threshold < 0:
            raise PreconditionViolation(
                "Dust threshold cannot be negative", details={"threshold": threshold}
            )
        self.threshold = threshold

    def measure(self, token: InterestBearingToken, backing_balance: int) -> DustReport:
        """
        Compare the underlying held for ``token`` with its total supply.

        Args:
            token: Interest-bearing token
            backing_balance: Underlying currently held by the reserve

        Returns:
            DustReport; a negative surplus is a deficit
        """
        total_supply = token.total_supply()
        report = DustReport(
            token=token.symbol,
            backing=backing_balance,
            total_supply=total_supply,
            surplus=backing_balance - total_supply,
            threshold=self.threshold,
        )
        if report.is_deficit:
            logger.warning(
                "Reserve backing below token supply",
                extra={
                    "event": "dust.deficit",
                    "token": token.symbol,
                    "backing": backing_balance,
                    "total_supply": total_supply,
                },
            )
        return report

    def sweep(self, caller: str, token: InterestBearingToken, backing_balance: int) -> DustReport:
        """
        Mint the surplus above the threshold to the treasury.

        Args:
            caller: Pool address (mint_to_treasury is pool-gated)
            token: Interest-bearing token
            backing_balance: Underlying currently held by the reserve

        Returns:
            DustReport with ``swept`` set to the amount minted
        """
        report = self.measure(token, backing_balance)
        excess = report.surplus - self.threshold
        if excess <= 0:
            return report

        try:
            token.mint_to_treasury(caller, excess, token.reserve.current)
        except RoundingUnderflowError as e:
            logger.info(
                "Dust surplus below one share, left in reserve",
                extra={"event": "dust.unrepresentable", "token": token.symbol, "excess": excess, "error": e.message},
            )
            return report

        report.swept = excess
        logger.info(
            "Dust swept to treasury",
            extra={
                "event": "dust.swept",
                "token": token.symbol,
                "amount": excess,
                "treasury": token.treasury[:10],
            },
        )
        return report
