"""
scaledpool Configuration

All settings come from environment variables so the same engine can run in
tests, in the simulator and inside a reconciliation service without code
changes.

Module-level constants are read once at import. Components that need to be
configured in isolation (tests, embedded services) call ``load_config()``
and pass the resulting ``AccountingConfig`` explicitly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .accounting_exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "SCALEDPOOL_"

# Reward-aware tokens forward at most this many reward streams
DEFAULT_MAX_REWARD_TOKENS = 9
DEFAULT_TREASURY_ADDRESS = "0x" + "7e" * 20
MAX_BPS = 10_000


def _get_int_env(name: str, default: int, minimum: int = 0, maximum: int | None = None) -> int:
    """Read an integer environment variable and enforce its bounds.

    Raises:
        ConfigurationError: If the value is not an integer or out of range
    """
    env_var = f"{ENV_PREFIX}{name}"
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{env_var} must be an integer, got {raw!r}",
            details={"env_var": env_var, "value": raw},
        ) from exc
    if value < minimum or (maximum is not None and value > maximum):
        raise ConfigurationError(
            f"{env_var}={value} outside allowed range [{minimum}, {maximum if maximum is not None else 'inf'}]",
            details={"env_var": env_var, "value": value},
        )
    return value


def _get_str_env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", "").strip() or default


@dataclass(frozen=True)
class AccountingConfig:
    """Resolved configuration for one accounting engine instance."""

    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""
    max_reward_tokens: int = DEFAULT_MAX_REWARD_TOKENS
    rewards_reserve_factor_bps: int = 0
    treasury_address: str = DEFAULT_TREASURY_ADDRESS
    dust_threshold: int = 2
    index_history_size: int = 1000


def load_config() -> AccountingConfig:
    """
    Build an AccountingConfig from the current environment.

    Returns:
        Frozen configuration snapshot

    Raises:
        ConfigurationError: If any variable is malformed
    """
    log_level = _get_str_env("LOG_LEVEL", "INFO").upper()
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError(
            f"{ENV_PREFIX}LOG_LEVEL must be a standard level name, got {log_level!r}",
            details={"env_var": f"{ENV_PREFIX}LOG_LEVEL", "value": log_level},
        )

    config = AccountingConfig(
        environment=_get_str_env("ENVIRONMENT", "development"),
        log_level=log_level,
        log_file=_get_str_env("LOG_FILE", ""),
        max_reward_tokens=_get_int_env("MAX_REWARD_TOKENS", DEFAULT_MAX_REWARD_TOKENS, minimum=1),
        rewards_reserve_factor_bps=_get_int_env(
            "REWARDS_RESERVE_FACTOR_BPS", 0, minimum=0, maximum=MAX_BPS
        ),
        treasury_address=_get_str_env("TREASURY_ADDRESS", DEFAULT_TREASURY_ADDRESS).lower(),
        dust_threshold=_get_int_env("DUST_THRESHOLD", 2, minimum=0),
        index_history_size=_get_int_env("INDEX_HISTORY_SIZE", 1000, minimum=1),
    )

    logger.debug(
        "Configuration loaded",
        extra={
            "event": "config.loaded",
            "environment": config.environment,
            "max_reward_tokens": config.max_reward_tokens,
            "rewards_reserve_factor_bps": config.rewards_reserve_factor_bps,
        },
    )
    return config


_CONFIG = load_config()

ENVIRONMENT = _CONFIG.environment
LOG_LEVEL = _CONFIG.log_level
LOG_FILE = _CONFIG.log_file
MAX_REWARD_TOKENS = _CONFIG.max_reward_tokens
REWARDS_RESERVE_FACTOR_BPS = _CONFIG.rewards_reserve_factor_bps
TREASURY_ADDRESS = _CONFIG.treasury_address
DUST_THRESHOLD = _CONFIG.dust_threshold
INDEX_HISTORY_SIZE = _CONFIG.index_history_size


def get_config() -> AccountingConfig:
    """Return the configuration resolved at import time."""
    return _CONFIG
