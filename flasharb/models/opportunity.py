from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum, IntEnum
import time

from ..core.errors import RevertReason


class RouteLayout(IntEnum):
    """Callback parameter layout; also the leading type tag on-chain."""
    PLAIN = 0
    TRIANGLE = 1


class RejectionKind(str, Enum):
    BELOW_MIN_USD = "below_min_usd"
    UNPROFITABLE_AFTER_GAS = "unprofitable_after_gas"
    BELOW_MIN_PERCENTAGE = "below_min_percentage"
    TIMEOUT = "timeout"


class FailureKind(str, Enum):
    SUBMISSION = "submission_failure"
    REVERTED = "chain_revert"
    UNAUTHORIZED = "authorization_failure"
    GAS_BUDGET_EXCEEDED = "gas_budget_exceeded"
    SIMULATION_FAILED = "simulation_failed"
    NOT_INCLUDED = "not_included"
    NOT_EXECUTABLE = "not_executable"
    UNCONFIRMED = "unconfirmed"


@dataclass(frozen=True)
class Pool:
    dex: str
    address: str
    id: str
    tokens: Tuple[str, ...]
    fee: Optional[int] = None  # hundredths of a basis point, Uniswap style
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class ArbitragePath:
    tokens: Tuple[str, ...]
    pools: Tuple[Pool, ...]

    def __post_init__(self):
        if len(self.pools) != len(self.tokens) - 1:
            raise ValueError(
                "Invalid path configuration: path length should be pools length + 1"
            )


@dataclass(frozen=True)
class ArbitrageOpportunity:
    token_borrow: str
    loan_amount: int
    path: ArbitragePath
    venue_selectors: Tuple[Optional[int], ...]
    expected_profit: int
    profit_usd: float
    price_difference_pct: float
    source_dex: str
    destination_dex: str
    token_symbol: str = "tokens"
    fee_tiers: Tuple[int, ...] = ()
    layout: RouteLayout = RouteLayout.PLAIN
    estimated: bool = False
    adjusted_profit: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if len(self.venue_selectors) != len(self.path.tokens) - 1:
            raise ValueError("One venue selector is required per hop")
        if self.fee_tiers and len(self.fee_tiers) != len(self.venue_selectors):
            raise ValueError("Fee tiers must be empty or one per hop")

    @property
    def executable(self) -> bool:
        """Whether the execution contract can route every hop of this opportunity."""
        return not self.estimated and all(s is not None for s in self.venue_selectors)

    @property
    def route(self) -> List[str]:
        return [pool.dex for pool in self.path.pools]


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    reason: Optional[str] = None
    rejection: Optional[RejectionKind] = None
    adjusted_profit: Optional[int] = None
    gas_cost: Optional[int] = None
    profit_percent: Optional[float] = None
    # Expected profit in wei, the unit gas bids are tiered in
    native_profit: Optional[int] = None


@dataclass(frozen=True)
class ExecutionOutcome:
    tx_hash: Optional[str]
    success: bool
    realized_profit: Optional[int] = None
    failure: Optional[FailureKind] = None
    revert_reason: Optional[RevertReason] = None
    attempts: int = 0
    error: Optional[str] = None
