"""
Scenario runner.

Replays a YAML scenario against one reserve and reports the resulting
balances, reward state and dust position. The runner is the single writer
for everything it creates: steps execute strictly one after another.

Scenario format::

    reserve:
      asset: stETH
      rebasing: true
      decimals: 18
      reward_tokens: [LDO]
      reserve_factor_bps: 1000
    steps:
      - {action: deposit, holder: alice, amount: "10"}
      - {action: rebase, fraction: "0.6"}
      - {action: accrue, index: "1.05"}
      - {action: withdraw, holder: alice, amount: all}
      - {action: withdraw, holder: bob, amount: "0.000000000000000001",
         expect_error: InvalidBurnAmountError}

Amounts are decimal strings in whole units of the reserve asset; ``accrue``
takes the new liquidity index as a decimal multiplier of 1.0.

``wrap``, ``unwrap`` and ``claim_static`` go through a static wrapper created
on first use; ``unwrap`` amounts are dynamic values (or ``all``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable

import yaml

from ..accounting_exceptions import AccountingError, ScenarioError, get_error_context
from ..config import get_config
from .dust_sweeper import DustReport, DustSweeper
from .interest_token import InterestBearingToken, RewardAwareToken
from .rebasing_asset import ShareRebasingToken
from .reserve_index import ReserveIndex
from .reward_index import RewardIndexTracker
from .scaled_balance import ALL
from .static_token import StaticInterestToken
from .wad_ray_math import RAY

logger = logging.getLogger(__name__)

DEFAULT_POOL = "pool"


@dataclass
class StepResult:
    """Outcome of one scenario step."""

    number: int
    action: str
    ok: bool
    result: Any = None
    error: str = ""

    def to_dict(self) -> dict:
        data = {"step": self.number, "action": self.action, "ok": self.ok}
        if self.result is not None:
            data["result"] = self.result
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ScenarioReport:
    """Final state of a scenario run."""

    name: str
    token: str
    decimals: int
    liquidity_index: int
    exchange_rate: int | None
    total_supply: int
    scaled_total_supply: int
    backing: int
    balances: dict[str, dict[str, int]] = field(default_factory=dict)
    rewards: dict[str, dict[str, Any]] = field(default_factory=dict)
    static: dict[str, Any] | None = None
    steps: list[StepResult] = field(default_factory=list)
    dust: DustReport | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "token": self.token,
            "decimals": self.decimals,
            "liquidity_index": self.liquidity_index,
            "exchange_rate": self.exchange_rate,
            "total_supply": self.total_supply,
            "scaled_total_supply": self.scaled_total_supply,
            "backing": self.backing,
            "balances": self.balances,
            "rewards": self.rewards,
            "static": self.static,
            "steps": [step.to_dict() for step in self.steps],
            "dust": self.dust.to_dict() if self.dust else None,
        }


class ScenarioRunner:
    """
    Build a reserve from a scenario description and replay its steps.

    Args:
        scenario: Parsed scenario mapping
        name: Label used in logs and the report
    """

    def __init__(self, scenario: dict[str, Any], name: str = "scenario") -> None:
        if not isinstance(scenario, dict):
            raise ScenarioError("Scenario must be a mapping", details={"name": name})
        self.name = name
        self.scenario = scenario
        self.config = get_config()

        reserve_cfg = scenario.get("reserve") or {}
        self.decimals = int(reserve_cfg.get("decimals", 18))
        self.pool = str(scenario.get("pool", DEFAULT_POOL)).lower()
        self.asset: ShareRebasingToken | None = None
        self.backing = 0

        asset_symbol = str(reserve_cfg.get("asset", "USDC"))
        treasury = scenario.get("treasury") or self.config.treasury_address
        reserve = ReserveIndex(asset=asset_symbol, max_history_size=self.config.index_history_size)
        rewards = RewardIndexTracker(capacity=self.config.max_reward_tokens)
        reserve_factor = int(reserve_cfg.get("reserve_factor_bps", self.config.rewards_reserve_factor_bps))

        if reserve_cfg.get("rebasing", False):
            self.asset = ShareRebasingToken(symbol=asset_symbol, decimals=self.decimals)
            self.token: RewardAwareToken = RewardAwareToken.for_rebasing_asset(
                self.asset,
                pool=self.pool,
                treasury=treasury,
                reserve=reserve,
                decimals=self.decimals,
                rewards=rewards,
                rewards_reserve_factor_bps=reserve_factor,
            )
        else:
            self.token = RewardAwareToken.create(
                name=f"Interest bearing {asset_symbol}",
                symbol=f"a{asset_symbol}",
                underlying=asset_symbol,
                pool=self.pool,
                treasury=treasury,
                reserve=reserve,
                decimals=self.decimals,
                rewards=rewards,
                rewards_reserve_factor_bps=reserve_factor,
            )

        for reward_token in reserve_cfg.get("reward_tokens", []) or []:
            self.token.register_reward_token(str(reward_token))

        self.static: StaticInterestToken | None = None
        self.sweeper = DustSweeper(int(reserve_cfg.get("dust_threshold", self.config.dust_threshold)))
        self.results: list[StepResult] = []
        self._handlers: dict[str, Callable[[dict[str, Any]], Any]] = {
            "deposit": self._deposit,
            "withdraw": self._withdraw,
            "transfer": self._transfer,
            "liquidate": self._liquidate,
            "accrue": self._accrue,
            "rebase": self._rebase,
            "flash_loan": self._flash_loan,
            "distribute": self._distribute,
            "claim": self._claim,
            "wrap": self._wrap,
            "unwrap": self._unwrap,
            "claim_static": self._claim_static,
            "sweep_dust": self._sweep_dust,
        }

    @classmethod
    def from_file(cls, path: str | Path) -> "ScenarioRunner":
        """Load a scenario from a YAML file."""
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as e:
            raise ScenarioError(f"Invalid YAML in {path}: {e}", details={"path": str(path)}) from e
        if not isinstance(data, dict):
            raise ScenarioError(f"Scenario file {path} must contain a mapping.", details={"path": str(path)})
        return cls(data, name=str(data.get("name", path.stem)))

    # ==================== Execution ====================

    def run(self) -> ScenarioReport:
        """
        Execute every step in order.

        A step may declare ``expect_error: <ExceptionName>``; the step then
        passes only if exactly that error is raised.

        Raises:
            ScenarioError: On unknown actions, malformed steps or
                unexpected errors
        """
        steps = self.scenario.get("steps") or []
        logger.info(
            "Scenario started",
            extra={"event": "scenario.start", "scenario": self.name, "steps": len(steps)},
        )
        for number, step in enumerate(steps, start=1):
            self.results.append(self.execute(number, step))

        report = self.report()
        logger.info(
            "Scenario finished",
            extra={
                "event": "scenario.finish",
                "scenario": self.name,
                "total_supply": report.total_supply,
                "backing": report.backing,
            },
        )
        return report

    def execute(self, number: int, step: dict[str, Any]) -> StepResult:
        if not isinstance(step, dict) or "action" not in step:
            raise ScenarioError(f"Step {number} must be a mapping with an action", details={"step": number})
        action = str(step["action"])
        handler = self._handlers.get(action)
        if handler is None:
            raise ScenarioError(f"Step {number}: unknown action {action!r}", details={"step": number})

        expected = step.get("expect_error")
        try:
            result = handler(step)
        except AccountingError as e:
            if expected and type(e).__name__ == expected:
                logger.debug(
                    "Expected step failure",
                    extra={"event": "scenario.expected_error", "step": number, **get_error_context(e)},
                )
                return StepResult(number, action, ok=False, error=type(e).__name__)
            raise ScenarioError(
                f"Step {number} ({action}) failed: {e}",
                details={"step": number, **get_error_context(e)},
            ) from e

        if expected:
            raise ScenarioError(
                f"Step {number} ({action}) expected {expected} but succeeded",
                details={"step": number},
            )
        return StepResult(number, action, ok=True, result=result)

    # ==================== Step Handlers ====================

    def _deposit(self, step: dict[str, Any]) -> bool:
        holder = self._holder(step)
        amount = self._amount(step)
        index = self.token.reserve.current
        if self.asset is not None:
            self.asset.submit(holder, amount)
            self.asset.transfer(holder, self.pool, amount)
        first = self.token.mint(self.pool, holder, amount, index)
        if self.asset is None:
            self.backing += amount
        return first

    def _withdraw(self, step: dict[str, Any]) -> int:
        holder = self._holder(step)
        receiver = str(step.get("receiver", holder)).lower()
        amount = self._amount(step, allow_all=True)
        burned = self.token.burn(self.pool, holder, receiver, amount, self.token.reserve.current)
        if self.asset is not None:
            self.asset.transfer(self.pool, receiver, min(burned, self.asset.balance_of(self.pool)))
        else:
            self.backing -= burned
        return burned

    def _transfer(self, step: dict[str, Any]) -> bool:
        return self.token.transfer(self._field(step, "from"), self._field(step, "to"), self._amount(step))

    def _liquidate(self, step: dict[str, Any]) -> bool:
        return self.token.transfer_on_liquidation(
            self.pool, self._field(step, "from"), self._field(step, "to"), self._amount(step)
        )

    def _accrue(self, step: dict[str, Any]) -> int:
        new_index = int(self._decimal(step, "index") * RAY)
        supply_before = self.token.total_supply()
        index = self.token.reserve.update(new_index, reason="accrual")
        # Borrowers pay the interest the index just credited
        interest = self.token.total_supply() - supply_before
        self._add_backing(interest)
        return index

    def _rebase(self, step: dict[str, Any]) -> int:
        if self.asset is None:
            raise ScenarioError("rebase step needs a rebasing reserve", details={"action": "rebase"})
        return self.asset.rebase(self._decimal(step, "fraction"))

    def _flash_loan(self, step: dict[str, Any]) -> int:
        premium = self._amount(step, key="premium")
        new_index = self.token.inject_flash_loan_premium(self.pool, premium)
        self._add_backing(premium)
        return new_index

    def _distribute(self, step: dict[str, Any]) -> int:
        return self.token.distribute_rewards(self._field(step, "token"), self._amount(step))

    def _claim(self, step: dict[str, Any]) -> dict:
        return self.token.claim(self._holder(step), self._field(step, "token")).to_dict()

    def _wrap(self, step: dict[str, Any]) -> int:
        holder = self._holder(step)
        return self._static_token().deposit(holder, holder, self._amount(step))

    def _unwrap(self, step: dict[str, Any]) -> dict:
        holder = self._holder(step)
        static = self._static_token()
        amount = self._amount(step, allow_all=True)
        if amount == ALL:
            burned, released = static.withdraw(holder, holder, ALL)
        else:
            burned, released = static.withdraw_dynamic_amount(holder, holder, amount)
        return {"static": burned, "dynamic": released}

    def _claim_static(self, step: dict[str, Any]) -> dict:
        return self._static_token().claim_rewards(self._holder(step), self._field(step, "token")).to_dict()

    def _sweep_dust(self, step: dict[str, Any]) -> dict:
        return self.sweeper.sweep(self.pool, self.token, self.backing_balance()).to_dict()

    # ==================== Reporting ====================

    def backing_balance(self) -> int:
        if self.asset is not None:
            return self.asset.balance_of(self.pool)
        return self.backing

    def report(self) -> ScenarioReport:
        token = self.token
        balances = {}
        for holder in token.holders():
            entry = {
                "balance": token.balance_of(holder),
                "scaled": token.scaled_balance_of(holder),
            }
            if token.is_rebasing:
                entry["internal"] = token.model.internal_balance_of(holder)
            balances[holder] = entry

        rewards = {}
        for reward_token in token.get_rewards_token_address_list():
            rewards[reward_token] = {
                "lifetime_index": token.rewards.get_lifetime_index(reward_token),
                "lifetime_rewards": token.get_lifetime_rewards(reward_token),
                "undistributed": token.rewards.get_undistributed(reward_token),
                "treasury_claimed": token.get_treasury_claimed_rewards(reward_token),
                "holders": {
                    holder: {
                        "accrued": token.get_user_rewards_accrued(holder, reward_token),
                        "claimed": token.get_user_claimed_rewards(holder, reward_token),
                        "claimable": token.get_claimable_rewards(holder, reward_token),
                    }
                    for holder in token.rewards.holder_states[reward_token]
                },
            }

        return ScenarioReport(
            name=self.name,
            token=token.symbol,
            decimals=self.decimals,
            liquidity_index=token.reserve.current,
            exchange_rate=self.asset.exchange_rate() if self.asset is not None else None,
            total_supply=token.total_supply(),
            scaled_total_supply=token.scaled_total_supply(),
            backing=self.backing_balance(),
            balances=balances,
            rewards=rewards,
            steps=list(self.results),
            static=self._static_report(),
            dust=self.sweeper.measure(token, self.backing_balance()),
        )

    def _static_report(self) -> dict[str, Any] | None:
        static = self.static
        if static is None:
            return None
        return {
            "symbol": static.symbol,
            "rate": static.rate(),
            "total_supply": static.total_supply(),
            "wrapped": self.token.balance_of(static.address),
            "balances": {
                holder: {"static": static.balance_of(holder), "dynamic": static.dynamic_balance_of(holder)}
                for holder in static.holders()
            },
            "rewards": {
                token: {
                    "total_claimable": static.get_total_claimable_rewards(token),
                    "holders": {
                        holder: static.get_claimable_rewards(holder, token) for holder in static.holders()
                    },
                }
                for token in static.rewards.get_reward_tokens()
            },
        }

    # ==================== Helpers ====================

    def _static_token(self) -> StaticInterestToken:
        if self.static is None:
            self.static = StaticInterestToken(
                self.token,
                address=f"stat{self.token.symbol}".lower(),
                rewards=RewardIndexTracker(capacity=self.config.max_reward_tokens),
            )
        return self.static

    def _add_backing(self, amount: int) -> None:
        if amount <= 0:
            return
        if self.asset is not None:
            self.asset.submit(self.pool, amount)
        else:
            self.backing += amount

    def _field(self, step: dict[str, Any], key: str) -> str:
        if key not in step:
            raise ScenarioError(
                f"{step.get('action')} step is missing {key!r}",
                details={"action": step.get("action"), "field": key},
            )
        return str(step[key]).lower()

    def _holder(self, step: dict[str, Any]) -> str:
        return self._field(step, "holder")

    def _decimal(self, step: dict[str, Any], key: str) -> Decimal:
        raw = self._field(step, key)
        try:
            return Decimal(raw)
        except InvalidOperation as e:
            raise ScenarioError(
                f"{step.get('action')} step: {key}={raw!r} is not a number",
                details={"field": key, "value": raw},
            ) from e

    def _amount(self, step: dict[str, Any], key: str = "amount", allow_all: bool = False) -> int:
        if allow_all and str(step.get(key, "")).lower() == "all":
            return ALL
        value = self._decimal(step, key)
        return to_base_units(value, self.decimals)


def to_base_units(value: Decimal | str, decimals: int) -> int:
    """Convert a whole-unit decimal amount to integer base units (rounded down)."""
    scaled = Decimal(str(value)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(value: int, decimals: int) -> Decimal:
    return Decimal(value) / (Decimal(10) ** decimals)
