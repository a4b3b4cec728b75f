"""
Wad/Ray fixed-point arithmetic.

Two precision levels are used throughout the accounting engine:
- WAD: 18 decimals (token amounts, reward amounts)
- RAY: 27 decimals (liquidity index, exchange rates)

Rounding:
    Multiplication and division round half up:
    - ray_mul: (a * b + HALF_RAY) // RAY
    - ray_div: (a * RAY + b // 2) // b

    ``ray_div_floor`` rounds down and is used where a holder must never be
    credited more reserve shares than the amount covers.

All operands and results are bounded by 2**256 - 1 so balances produced here
match what a 256-bit ledger would store.
"""

from __future__ import annotations

from ..accounting_exceptions import DivisionByZeroError, MathOverflowError, PreconditionViolation

MAX_UINT256 = 2**256 - 1

# Wad: decimal numbers with 18 digits of precision
WAD = 10**18
HALF_WAD = WAD // 2

# Ray: decimal numbers with 27 digits of precision
RAY = 10**27
HALF_RAY = RAY // 2

# Ratio to convert between wad and ray
WAD_RAY_RATIO = 10**9

# Basis points
PERCENTAGE_FACTOR = 10_000
HALF_PERCENT = PERCENTAGE_FACTOR // 2


def _check_operands(op: str, *values: int) -> None:
    for value in values:
        if value < 0:
            raise PreconditionViolation(
                f"{op}: negative operand {value}",
                details={"op": op, "operand": value},
            )
        if value > MAX_UINT256:
            raise MathOverflowError(
                f"{op}: operand exceeds uint256",
                details={"op": op},
            )


def _check_result(op: str, value: int) -> int:
    if value > MAX_UINT256:
        raise MathOverflowError(f"{op}: result exceeds uint256", details={"op": op})
    return value


# ==================== Ray ====================


def ray_mul(a: int, b: int) -> int:
    """Multiply two rays, rounding half up."""
    _check_operands("ray_mul", a, b)
    if b != 0 and a > (MAX_UINT256 - HALF_RAY) // b:
        raise MathOverflowError("ray_mul: multiplication overflow", details={"op": "ray_mul"})
    return (a * b + HALF_RAY) // RAY


def ray_div(a: int, b: int) -> int:
    """
    Divide two rays, rounding half up.

    Raises:
        DivisionByZeroError: If b is zero
        MathOverflowError: If a * RAY would overflow
    """
    _check_operands("ray_div", a, b)
    if b == 0:
        raise DivisionByZeroError("ray_div: division by zero", details={"op": "ray_div", "a": a})
    if a > (MAX_UINT256 - b // 2) // RAY:
        raise MathOverflowError("ray_div: internal overflow", details={"op": "ray_div"})
    return (a * RAY + b // 2) // b


def ray_div_floor(a: int, b: int) -> int:
    """Divide two rays, rounding down."""
    _check_operands("ray_div_floor", a, b)
    if b == 0:
        raise DivisionByZeroError(
            "ray_div_floor: division by zero", details={"op": "ray_div_floor", "a": a}
        )
    if a > MAX_UINT256 // RAY:
        raise MathOverflowError("ray_div_floor: internal overflow", details={"op": "ray_div_floor"})
    return (a * RAY) // b


# ==================== Wad ====================


def wad_mul(a: int, b: int) -> int:
    """Multiply two wads, rounding half up."""
    _check_operands("wad_mul", a, b)
    if b != 0 and a > (MAX_UINT256 - HALF_WAD) // b:
        raise MathOverflowError("wad_mul: multiplication overflow", details={"op": "wad_mul"})
    return (a * b + HALF_WAD) // WAD


def wad_div(a: int, b: int) -> int:
    """Divide two wads, rounding half up."""
    _check_operands("wad_div", a, b)
    if b == 0:
        raise DivisionByZeroError("wad_div: division by zero", details={"op": "wad_div", "a": a})
    if a > (MAX_UINT256 - b // 2) // WAD:
        raise MathOverflowError("wad_div: internal overflow", details={"op": "wad_div"})
    return (a * WAD + b // 2) // b


# ==================== Conversions ====================


def wad_to_ray(a: int) -> int:
    _check_operands("wad_to_ray", a)
    return _check_result("wad_to_ray", a * WAD_RAY_RATIO)


def ray_to_wad(a: int) -> int:
    """Convert a ray to a wad, rounding half up."""
    _check_operands("ray_to_wad", a)
    quotient, remainder = divmod(a, WAD_RAY_RATIO)
    if remainder >= WAD_RAY_RATIO // 2:
        quotient += 1
    return quotient


def percent_mul(value: int, bps: int) -> int:
    """
    Apply a basis-point percentage, rounding half up.

    Args:
        value: Amount to scale
        bps: Percentage in basis points (10_000 = 100%)

    Returns:
        value * bps / 10_000
    """
    _check_operands("percent_mul", value, bps)
    if bps != 0 and value > (MAX_UINT256 - HALF_PERCENT) // bps:
        raise MathOverflowError("percent_mul: multiplication overflow", details={"op": "percent_mul"})
    return (value * bps + HALF_PERCENT) // PERCENTAGE_FACTOR
