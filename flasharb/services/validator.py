from typing import Optional
from dataclasses import dataclass
import logging
import math

from ..config.settings import ValidatorConfig
from ..models.opportunity import ArbitrageOpportunity, RejectionKind, ValidationResult
from .gas_strategy import GasStrategy

NATIVE_SYMBOLS = ("ETH", "WETH")


@dataclass(frozen=True)
class ChainConditions:
    """Chain snapshot taken once per scan tick."""
    base_gas_price: int
    block_number: int = 0
    # Native token price, used to express gas cost in loan-token units
    native_price_usd: Optional[float] = None


def profit_in_native(
    opportunity: ArbitrageOpportunity,
    conditions: ChainConditions,
    profit_usd: Optional[float] = None
) -> int:
    """Expected profit in wei, for gas bidding on non-native loans.

    Falls back to the raw expected profit when the loan asset is native or
    no native price is known.
    """
    if opportunity.token_symbol in NATIVE_SYMBOLS or not conditions.native_price_usd:
        return opportunity.expected_profit
    if profit_usd is None:
        profit_usd = opportunity.profit_usd
    return int(profit_usd / conditions.native_price_usd * 10 ** 18)


class OpportunityValidator:
    """Filters opportunities on USD profit, slippage, gas and margin.

    ``validate`` is synchronous and touches no shared state, so repeated
    calls with the same inputs return equal results.
    """

    def __init__(
        self,
        gas_strategy: GasStrategy,
        min_profit_usd: float = 10.0,
        slippage_tolerance: float = 3.0,
        min_profit_percentage: float = 0.5
    ):
        self.gas_strategy = gas_strategy
        self.logger = logging.getLogger(__name__)
        self.min_profit_usd = min_profit_usd
        self.set_slippage_tolerance(slippage_tolerance)
        self.min_profit_percentage = min_profit_percentage

    @classmethod
    def from_config(cls, gas_strategy: GasStrategy, config: ValidatorConfig) -> "OpportunityValidator":
        return cls(
            gas_strategy,
            min_profit_usd=config.min_profit_usd,
            slippage_tolerance=config.slippage_tolerance,
            min_profit_percentage=config.min_profit_percentage
        )

    def validate(
        self,
        opportunity: ArbitrageOpportunity,
        conditions: ChainConditions,
        gas_limit: int,
        token_price_usd: float,
        token_decimals: int = 18
    ) -> ValidationResult:
        usd_value = self.usd_value(opportunity.expected_profit, token_price_usd, token_decimals)

        # 1. Minimum USD profit
        if usd_value < self.min_profit_usd:
            shortfall = self.min_profit_usd - usd_value
            return ValidationResult(
                accepted=False,
                rejection=RejectionKind.BELOW_MIN_USD,
                reason=(
                    f"Profit too low: ${usd_value:.2f} < ${self.min_profit_usd:.2f} "
                    f"(short by ${shortfall:.2f})"
                )
            )

        # 2. Slippage haircut
        adjusted_profit = self.apply_slippage(opportunity.expected_profit)

        # 3. Gas cost at the strategy's bid, tiered on profit in wei
        native_profit = profit_in_native(opportunity, conditions, usd_value)
        gas_price = self.gas_strategy.bid(conditions.base_gas_price, native_profit)
        gas_cost = self.gas_cost_in_token(
            gas_price * gas_limit, conditions, token_price_usd, token_decimals
        )

        # 4. Still profitable after slippage and gas
        if adjusted_profit <= gas_cost:
            return ValidationResult(
                accepted=False,
                rejection=RejectionKind.UNPROFITABLE_AFTER_GAS,
                reason=(
                    f"Not profitable after gas costs and slippage: "
                    f"adjusted profit {adjusted_profit} {opportunity.token_symbol} <= "
                    f"gas cost {gas_cost} {opportunity.token_symbol}"
                ),
                adjusted_profit=adjusted_profit,
                gas_cost=gas_cost,
                native_profit=native_profit
            )

        # 5-6. Margin over the borrowed principal
        profit_percent = self.profit_percentage(adjusted_profit - gas_cost, opportunity.loan_amount)
        if profit_percent < self.min_profit_percentage:
            return ValidationResult(
                accepted=False,
                rejection=RejectionKind.BELOW_MIN_PERCENTAGE,
                reason=(
                    f"Profit percentage too low: {profit_percent:.4f}% < "
                    f"{self.min_profit_percentage}%"
                ),
                adjusted_profit=adjusted_profit,
                gas_cost=gas_cost,
                profit_percent=profit_percent,
                native_profit=native_profit
            )

        return ValidationResult(
            accepted=True,
            adjusted_profit=adjusted_profit,
            gas_cost=gas_cost,
            profit_percent=profit_percent,
            native_profit=native_profit
        )

    def apply_slippage(self, profit: int) -> int:
        """profit * (100 - tolerance) / 100, at 0.1% resolution rounded down."""
        multiplier = math.floor((100 - self.slippage_tolerance) * 10)
        return profit * multiplier // 1000

    @staticmethod
    def usd_value(amount: int, token_price_usd: float, decimals: int = 18) -> float:
        return amount / 10 ** decimals * token_price_usd

    @staticmethod
    def gas_cost_in_token(
        gas_cost_wei: int,
        conditions: ChainConditions,
        token_price_usd: float,
        token_decimals: int
    ) -> int:
        """Gas is paid in the native token; convert when a native price is known."""
        if not conditions.native_price_usd or token_price_usd <= 0:
            return gas_cost_wei

        gas_cost_usd = gas_cost_wei / 10 ** 18 * conditions.native_price_usd
        return math.ceil(gas_cost_usd / token_price_usd * 10 ** token_decimals)

    @staticmethod
    def profit_percentage(profit: int, principal: int) -> float:
        if principal <= 0:
            return 0.0
        return (profit * 10000 // principal) / 100

    def set_slippage_tolerance(self, slippage_tolerance: float):
        if slippage_tolerance < 0 or slippage_tolerance > 100:
            raise ValueError("Slippage tolerance must be between 0 and 100")
        self.slippage_tolerance = slippage_tolerance
