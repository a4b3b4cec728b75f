"""
Reserve liquidity index.

The liquidity index is the cumulative growth factor (ray) that converts
scaled shares into presentation balances. It only ever increases: interest
accrual and flash-loan premiums push it up, nothing pulls it down.

One ReserveIndex exists per reserve and is passed by handle into every
token operation; there is no module-level index state.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from ..accounting_exceptions import IndexRegressionError, PreconditionViolation
from ..config import INDEX_HISTORY_SIZE
from .wad_ray_math import RAY, ray_div, ray_mul, wad_to_ray

logger = logging.getLogger(__name__)


@dataclass
class IndexSnapshot:
    """One committed liquidity index value."""

    index: int
    reason: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ReserveIndex:
    """
    Monotonic liquidity index for a single reserve.

    Attributes:
        asset: Underlying asset identifier
        liquidity_index: Current index in ray, starts at 1.0
        history: Bounded list of committed values for diagnostics
    """

    asset: str = ""
    liquidity_index: int = RAY
    history: list[IndexSnapshot] = field(default_factory=list)
    max_history_size: int = INDEX_HISTORY_SIZE

    def __post_init__(self) -> None:
        self._lock = threading.RLock()
        if self.liquidity_index <= 0:
            raise IndexRegressionError(
                "Liquidity index must be positive",
                details={"asset": self.asset, "index": self.liquidity_index},
            )
        if not self.history:
            self.history.append(IndexSnapshot(self.liquidity_index, "init"))

    @property
    def current(self) -> int:
        with self._lock:
            return self.liquidity_index

    def validate(self, index: int) -> None:
        """
        Check that ``index`` may be committed without moving backwards.

        Raises:
            IndexRegressionError: If index is zero or below the stored value
        """
        with self._lock:
            if index <= 0:
                raise IndexRegressionError(
                    "Liquidity index must be positive",
                    details={"asset": self.asset, "index": index},
                )
            if index < self.liquidity_index:
                raise IndexRegressionError(
                    f"Liquidity index regression ({index} < {self.liquidity_index})",
                    details={
                        "asset": self.asset,
                        "index": index,
                        "current": self.liquidity_index,
                    },
                )

    def update(self, index: int, reason: str = "accrual") -> int:
        """
        Commit a new liquidity index.

        Args:
            index: New index in ray, must not be below the current one
            reason: Label stored in history

        Returns:
            The committed index
        """
        with self._lock:
            self.validate(index)
            if index != self.liquidity_index:
                previous = self.liquidity_index
                self.liquidity_index = index
                self._record(reason)
                logger.debug(
                    "Liquidity index updated",
                    extra={
                        "event": "reserve.index_updated",
                        "asset": self.asset,
                        "previous": previous,
                        "index": index,
                        "reason": reason,
                    },
                )
            return self.liquidity_index

    def cumulate_to_liquidity_index(self, total_liquidity: int, amount: int) -> int:
        """
        Spread ``amount`` over ``total_liquidity`` by raising the index.

        Used for flash-loan premiums: every holder's balance grows pro rata
        without touching any holder entry.

        Args:
            total_liquidity: Current presentation supply of the reserve
            amount: Premium to distribute

        Returns:
            The new liquidity index

        Raises:
            PreconditionViolation: If total_liquidity is zero or amount negative
        """
        if total_liquidity <= 0:
            raise PreconditionViolation(
                "Cannot cumulate into a reserve with no liquidity",
                details={"asset": self.asset, "amount": amount},
            )
        if amount < 0:
            raise PreconditionViolation(
                "Premium cannot be negative",
                details={"asset": self.asset, "amount": amount},
            )

        with self._lock:
            amount_to_liquidity_ratio = ray_div(wad_to_ray(amount), wad_to_ray(total_liquidity))
            new_index = ray_mul(amount_to_liquidity_ratio + RAY, self.liquidity_index)
            return self.update(new_index, reason="premium")

    def _record(self, reason: str) -> None:
        self.history.append(IndexSnapshot(self.liquidity_index, reason))
        if len(self.history) > self.max_history_size:
            self.history = self.history[-self.max_history_size:]

    def to_dict(self) -> dict:
        return {
            "asset": self.asset,
            "liquidity_index": self.liquidity_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReserveIndex":
        return cls(
            asset=data.get("asset", ""),
            liquidity_index=int(data.get("liquidity_index", RAY)),
        )
