"""
Error taxonomy for the chain boundary.

Read failures are recoverable and degrade to staleness; submission failures
are terminal for one intent; quote failures fail the requesting call only.
"""

from __future__ import annotations

from typing import Optional


class ChainError(Exception):
    """Base class for every error raised by the client."""


class ReadError(ChainError):
    """A contract view could not be read (RPC/node failure, bad payload)."""

    def __init__(self, view: str, reason: str):
        super().__init__(f"{view}: {reason}")
        self.view = view
        self.reason = reason


class SubmitError(ChainError):
    """The wallet refused the call or it reverted in pre-flight."""

    def __init__(self, reason: str, *, raw: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class UserRejected(SubmitError):
    """The user declined the request in the wallet."""

    def __init__(self, raw: Optional[str] = None):
        super().__init__("User rejected the request", raw=raw)


class QuoteError(ChainError):
    """A pricing probe returned a degenerate (zero) result."""


class InsufficientFunds(ChainError):
    def __init__(self, required: int, available: int, asset: str = "ETH"):
        super().__init__(
            f"Insufficient {asset}: need {required}, have {available}"
        )
        self.required = required
        self.available = available
        self.asset = asset


class InsufficientAllowance(ChainError):
    def __init__(self, required: int, allowance: int, spender: str):
        super().__init__(
            f"Allowance for {spender} is {allowance}, need {required}"
        )
        self.required = required
        self.allowance = allowance
        self.spender = spender


class InvalidTransition(ChainError, ValueError):
    """A PendingIntent was asked to leave a terminal state or skip a step."""


class IllegalAction(ChainError):
    """The current game/market view does not allow this action right now."""

    def __init__(self, action: str, phase: str):
        super().__init__(f"{action} is not allowed while {phase}")
        self.action = action
        self.phase = phase
