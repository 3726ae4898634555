from enum import Enum
from typing import Optional


class RevertReason(str, Enum):
    """On-chain assertions the arbitrage contract can fail with."""
    INVALID_PATH = "ARB: invalid path"
    INVALID_AMOUNT = "ARB: invalid amount"
    PATH_MISMATCH = "ARB: path mismatch"
    UNKNOWN_VENUE = "ARB: unknown venue"
    SWAP_FAILED = "ARB: swap failed"
    INSUFFICIENT_PROFIT = "ARB: insufficient profit"
    REPAYMENT_FAILED = "ARB: repayment failed"
    UNAUTHORIZED = "ARB: unauthorized"
    REENTRANCY = "ARB: reentrancy"
    UNKNOWN = "unknown"

    @classmethod
    def from_message(cls, message: Optional[str]) -> "RevertReason":
        """Map an RPC revert message onto a known reason by exact lookup."""
        if not message:
            return cls.UNKNOWN
        text = message.strip()
        for prefix in ("execution reverted: ", "execution reverted:"):
            if text.startswith(prefix):
                text = text[len(prefix):].strip()
                break
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN


class ArbitrageError(Exception):
    """Base class for all engine errors."""


class DiscoveryFailure(ArbitrageError):
    """A pool or quote lookup failed."""


class SubmissionFailure(ArbitrageError):
    """Sending a transaction failed before it reached the chain."""


class ChainRevert(ArbitrageError):
    """An on-chain assertion failed and the transaction was undone."""

    def __init__(self, reason: RevertReason, message: Optional[str] = None):
        self.reason = reason
        self.message = message or reason.value
        super().__init__(self.message)


class AuthorizationFailure(ChainRevert):
    """Wrong caller or initiator. Never retried."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(RevertReason.UNAUTHORIZED, message)
