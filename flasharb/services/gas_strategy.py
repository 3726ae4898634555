from abc import ABC, abstractmethod
from typing import List, Optional, Sequence
from web3 import Web3
import logging

from ..config.settings import GasConfig

# Profit thresholds (wei) for the dynamic premium tiers
DEFAULT_TIER_THRESHOLDS = [
    50000000000000000,   # 0.05 ETH
    100000000000000000,  # 0.1 ETH
    500000000000000000,  # 0.5 ETH
]
DEFAULT_TIER_PREMIUMS = [5, 15, 25, 40]


class GasStrategy(ABC):
    """Profit-aware gas bidding policy.

    ``bid`` is a pure function of the network base price and the expected
    profit, so validation stays deterministic for a fixed chain snapshot.
    """

    default_max_gas_percentage: float = 25

    def __init__(self, max_gas_percentage: Optional[float] = None):
        if max_gas_percentage is None:
            max_gas_percentage = self.default_max_gas_percentage
        if max_gas_percentage <= 0 or max_gas_percentage > 100:
            raise ValueError("max_gas_percentage must be in (0, 100]")

        self.max_gas_percentage = max_gas_percentage
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    def premium_percent(self, profit: int) -> int:
        """Premium over the base gas price, in percent."""

    def bid(self, base_gas_price: int, profit: int) -> int:
        return base_gas_price * (100 + self.premium_percent(profit)) // 100

    async def get_gas_price(self, web3: Web3, profit: int) -> int:
        """Current network price plus this strategy's premium."""
        base_gas_price = await web3.eth.gas_price
        return self.bid(base_gas_price, profit)

    def get_max_gas_spend(self, profit: int) -> int:
        # percentage kept to two decimals so the math stays integral
        return profit * round(self.max_gas_percentage * 100) // 10000

    @staticmethod
    def is_profitable_after_gas(profit: int, gas_price: int, gas_limit: int) -> bool:
        return profit > gas_price * gas_limit

    @staticmethod
    def profit_after_gas(profit: int, gas_price: int, gas_limit: int) -> int:
        gas_cost = gas_price * gas_limit
        if profit <= gas_cost:
            return 0
        return profit - gas_cost


class DynamicGasStrategy(GasStrategy):
    """Bids a larger premium as the expected profit grows."""

    default_max_gas_percentage = 25

    def __init__(
        self,
        max_gas_percentage: Optional[float] = None,
        tier_thresholds: Optional[Sequence[int]] = None,
        tier_premiums: Optional[Sequence[int]] = None
    ):
        super().__init__(max_gas_percentage)
        self.tier_thresholds: List[int] = list(tier_thresholds or DEFAULT_TIER_THRESHOLDS)
        self.tier_premiums: List[int] = list(tier_premiums or DEFAULT_TIER_PREMIUMS)

        if len(self.tier_premiums) != len(self.tier_thresholds) + 1:
            raise ValueError("tier_premiums needs one entry more than tier_thresholds")
        if self.tier_thresholds != sorted(self.tier_thresholds):
            raise ValueError("tier_thresholds must be ascending")
        if self.tier_premiums != sorted(self.tier_premiums):
            raise ValueError("tier_premiums must be non-decreasing")

    def premium_percent(self, profit: int) -> int:
        for threshold, premium in zip(self.tier_thresholds, self.tier_premiums):
            if profit < threshold:
                return premium
        return self.tier_premiums[-1]


class ConservativeGasStrategy(GasStrategy):
    """Just above the base price; slower inclusion, smaller spend."""

    default_max_gas_percentage = 10

    def premium_percent(self, profit: int) -> int:
        return 2


class AggressiveGasStrategy(GasStrategy):
    """Outbids competing executors for contested opportunities."""

    default_max_gas_percentage = 50

    def premium_percent(self, profit: int) -> int:
        return 50


def build_gas_strategy(config: GasConfig) -> GasStrategy:
    strategy = config.strategy.lower()
    if strategy == "dynamic":
        return DynamicGasStrategy(
            config.max_gas_percentage,
            config.tier_thresholds,
            config.tier_premiums
        )
    if strategy == "conservative":
        return ConservativeGasStrategy(config.max_gas_percentage)
    if strategy == "aggressive":
        return AggressiveGasStrategy(config.max_gas_percentage)
    raise ValueError(f"Unknown gas strategy: {config.strategy}")
