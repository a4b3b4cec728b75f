"""
Accounting exception hierarchy for scaledpool.

Provides typed exceptions for ledger, wrapper and reward operations so that
callers can tell a dust-sized request apart from a logic error, and a
configuration mistake apart from a rejected runtime call.

Every exception here is raised before any state is mutated: a rejected
operation never leaves partial changes behind.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class AccountingError(Exception):
    """Base exception for all accounting errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the caller may retry with different input
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Precondition Errors ====================


class PreconditionViolation(AccountingError):
    """Raised when an operation's inputs break its preconditions.

    Examples: zero or negative amount, unknown reward token, premium
    injected into an empty reserve.
    """
    pass


class InsufficientBalanceError(PreconditionViolation):
    """Raised when an amount exceeds the holder's presentation balance."""
    pass


class IndexRegressionError(PreconditionViolation):
    """Raised when a supplied index is zero or lower than the stored one."""
    pass


class DivisionByZeroError(PreconditionViolation):
    """Raised when a fixed-point division is asked to divide by zero."""
    pass


class MathOverflowError(PreconditionViolation):
    """Raised when a fixed-point result would not fit in 256 bits."""
    pass


# ==================== Rounding Errors ====================


class RoundingUnderflowError(AccountingError):
    """Raised when an amount rounds to zero internal units.

    Signals a caller-side dust problem: batch or resize the request
    instead of retrying it unchanged.
    """

    recoverable = True


class InvalidMintAmountError(RoundingUnderflowError):
    """Raised when a mint or deposit would create zero shares."""
    pass


class InvalidBurnAmountError(RoundingUnderflowError):
    """Raised when a burn or withdrawal would destroy zero shares."""
    pass


# ==================== Configuration & Authorization Errors ====================


class CapacityExceededError(AccountingError):
    """Raised when the reward token slot list is already full."""
    pass


class AuthorizationError(AccountingError):
    """Raised when the caller is not the permitted pool logic."""
    pass


class ConfigurationError(AccountingError):
    """Raised when required configuration is missing or invalid."""
    pass


class ScenarioError(AccountingError):
    """Raised when a simulation scenario is malformed or a step fails unexpectedly."""
    pass


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a recoverable error.

    Args:
        exc: The exception to check

    Returns:
        True if the caller can retry with adjusted input
    """
    if isinstance(exc, AccountingError):
        return exc.recoverable
    return False


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, AccountingError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    return context
