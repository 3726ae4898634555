from typing import List, Optional, Sequence, Tuple
import asyncio
import logging
import time

from web3 import Web3

from ..config.settings import ArbitrageConfig
from ..contracts.client import ArbitrageContractClient
from ..models.opportunity import (
    ArbitrageOpportunity,
    ExecutionOutcome,
    RouteLayout,
    ValidationResult,
)
from ..models.token import TokenRegistry
from ..protocols.aave_v2 import AaveV2LendingPool, flash_loan_premium
from ..services.metrics import MetricsService
from ..services.opportunity_log import LoggingOpportunitySink, OpportunityRecord, OpportunitySink
from ..services.path_finder import ArbitrageScanner
from ..services.price_feed import PriceProvider
from ..services.simulator import ArbitrageSimulator
from ..services.transaction_executor import TransactionExecutor
from ..services.validator import ChainConditions, profit_in_native

Pair = Tuple[str, str]
Triangle = Tuple[str, Sequence[str]]


class ArbitrageEngine:
    """One scan, validate and execute cycle per tick.

    A tick never raises: a failing scan, validation or submission is
    logged and recorded, and the next tick starts fresh.
    """

    def __init__(
        self,
        web3: Web3,
        scanner: ArbitrageScanner,
        price_provider: PriceProvider,
        tokens: TokenRegistry,
        executor: Optional[TransactionExecutor] = None,
        client: Optional[ArbitrageContractClient] = None,
        lending_pool: Optional[AaveV2LendingPool] = None,
        simulator: Optional[ArbitrageSimulator] = None,
        metrics: Optional[MetricsService] = None,
        sink: Optional[OpportunitySink] = None,
        config: Optional[ArbitrageConfig] = None,
        dry_run: bool = False
    ):
        self.web3 = web3
        self.scanner = scanner
        self.price_provider = price_provider
        self.tokens = tokens
        self.executor = executor
        self.client = client
        self.lending_pool = lending_pool
        self.simulator = simulator
        self.metrics = metrics
        self.sink = sink or LoggingOpportunitySink()
        self.config = config or ArbitrageConfig()
        self.dry_run = dry_run or executor is None or client is None
        self.running = False
        self.logger = logging.getLogger(__name__)

    def scan_targets(self) -> Tuple[List[Pair], List[Triangle]]:
        """Configured pairs and triangle routes, resolved to addresses."""
        pairs: List[Pair] = []
        for symbols in self.config.direct_pairs:
            try:
                a, b = (self.tokens.by_symbol(s).address for s in symbols)
                pairs.append((a, b))
            except (KeyError, ValueError) as e:
                self.logger.error(f"Skipping pair {symbols}: {str(e)}")

        triangles: List[Triangle] = []
        if self.config.triangle_start:
            try:
                start = self.tokens.by_symbol(self.config.triangle_start).address
                intermediates = [
                    self.tokens.by_symbol(s).address for s in self.config.triangle_intermediates
                ]
                triangles.append((start, intermediates))
            except KeyError as e:
                self.logger.error(f"Skipping triangle scan: {str(e)}")

        return pairs, triangles

    def loan_amount(self, token: str) -> int:
        """Configured loan size, one whole token by default."""
        symbol = self.tokens.symbol(token)
        if symbol in self.config.loan_amounts:
            return self.config.loan_amounts[symbol]
        return 10 ** self.tokens.decimals(token)

    async def chain_conditions(self) -> ChainConditions:
        """Snapshot taken once per tick so every validation sees the same chain."""
        gas_price = await self.web3.eth.gas_price
        block_number = await self.web3.eth.block_number

        native_price = None
        try:
            native_price = await self.price_provider.get_usd_price("ETH")
        except Exception as e:
            self.logger.error(f"Error getting native price: {str(e)}")

        if self.metrics:
            self.metrics.update_gas_price(gas_price / 10 ** 9)
        return ChainConditions(
            base_gas_price=gas_price,
            block_number=block_number,
            native_price_usd=native_price
        )

    async def find_opportunities(
        self,
        pairs: Sequence[Pair],
        triangles: Sequence[Triangle]
    ) -> List[ArbitrageOpportunity]:
        scans = [
            self.scanner.scan_direct(a, b, self.loan_amount(a)) for a, b in pairs
        ] + [
            self.scanner.scan_triangle(start, intermediates, self.loan_amount(start))
            for start, intermediates in triangles
        ]

        candidates: List[ArbitrageOpportunity] = []
        for result in await asyncio.gather(*scans, return_exceptions=True):
            if isinstance(result, BaseException):
                self.logger.error(f"Scan failed: {str(result)}")
                continue
            candidates.extend(result)

        if self.metrics:
            for layout in RouteLayout:
                count = sum(1 for c in candidates if c.layout == layout)
                if count:
                    self.metrics.record_opportunity_found(layout.name.lower(), count)
        return candidates

    @staticmethod
    def net_profit(result: ValidationResult) -> int:
        return (result.adjusted_profit or 0) - (result.gas_cost or 0)

    def select(
        self,
        validated: Sequence[Tuple[ArbitrageOpportunity, ValidationResult]]
    ) -> Optional[Tuple[ArbitrageOpportunity, ValidationResult]]:
        """Best accepted opportunity the contract can actually execute."""
        executable = [
            (o, r) for o, r in validated if r.accepted and o.executable
        ]
        for o, r in validated:
            if r.accepted and not o.executable:
                self.record(o, "estimated" if o.estimated else "not_executable")

        if not executable:
            return None
        return max(executable, key=lambda pair: self.net_profit(pair[1]))

    async def flash_loan_premium(self, opportunity: ArbitrageOpportunity) -> Optional[int]:
        """Premium owed on the loan, or None when the asset cannot be borrowed."""
        if self.lending_pool is None:
            return flash_loan_premium(opportunity.loan_amount)

        available, premium = await self.lending_pool.simulate_flash_loan(
            opportunity.token_borrow, opportunity.loan_amount
        )
        return premium if available else None

    def record(
        self,
        opportunity: ArbitrageOpportunity,
        outcome: str,
        profit_percentage: Optional[float] = None,
        tx_hash: Optional[str] = None
    ):
        pair = "/".join(self.tokens.symbol(t) for t in opportunity.path.tokens[:-1])
        try:
            self.sink.record(OpportunityRecord.from_opportunity(
                opportunity, outcome, profit_percentage, tx_hash, pair=pair
            ))
        except Exception as e:
            self.logger.error(f"Error recording opportunity: {str(e)}")

    async def execute(
        self,
        opportunity: ArbitrageOpportunity,
        conditions: ChainConditions,
        native_profit: Optional[int] = None
    ) -> Optional[ExecutionOutcome]:
        """Submit ``opportunity``; ``native_profit`` is the validated profit in wei."""
        if self.dry_run:
            if self.simulator is None:
                self.logger.info(f"Dry run: would execute {' -> '.join(opportunity.route)}")
                return None
            return self.simulator.simulate(opportunity)

        return await self.executor.execute_opportunity(
            opportunity,
            self.client,
            profit_wei=(
                profit_in_native(opportunity, conditions) if native_profit is None else native_profit
            )
        )

    async def run_tick(
        self,
        pairs: Optional[Sequence[Pair]] = None,
        triangles: Optional[Sequence[Triangle]] = None
    ) -> Optional[ExecutionOutcome]:
        """Scan, validate and execute at most one opportunity."""
        if pairs is None and triangles is None:
            pairs, triangles = self.scan_targets()
        pairs, triangles = pairs or [], triangles or []

        started = time.monotonic()
        try:
            conditions = await self.chain_conditions()
            candidates = await self.find_opportunities(pairs, triangles)
            if not candidates:
                self.logger.info("No arbitrage opportunities found")
                return None

            validated = await self.scanner.validate_candidates(candidates, conditions)
            for opportunity, result in validated:
                if result.accepted:
                    if self.metrics:
                        self.metrics.record_opportunity_validated()
                else:
                    if self.metrics:
                        self.metrics.record_opportunity_rejected(result.rejection.value)
                    self.record(opportunity, f"rejected: {result.rejection.value}")

            chosen = self.select(validated)
            if chosen is None:
                self.logger.info("No executable opportunity passed validation")
                return None
            opportunity, result = chosen

            premium = await self.flash_loan_premium(opportunity)
            if premium is None:
                self.logger.warning(f"Flash loan unavailable for {opportunity.token_symbol}")
                self.record(opportunity, "flash_loan_unavailable", result.profit_percent)
                return None
            if self.net_profit(result) <= premium:
                self.logger.info(
                    f"Profit {self.net_profit(result)} does not cover flash loan premium {premium}"
                )
                self.record(opportunity, "premium_exceeds_profit", result.profit_percent)
                return None

            self.logger.info(
                f"Executing {' -> '.join(opportunity.route)} for expected profit "
                f"{opportunity.expected_profit} {opportunity.token_symbol} (${opportunity.profit_usd:.2f})"
            )
            outcome = await self.execute(opportunity, conditions, result.native_profit)
            if outcome is None:
                self.record(opportunity, "dry_run", result.profit_percent)
                return None

            self.record(
                opportunity,
                OpportunityRecord.outcome_label(outcome),
                result.profit_percent,
                outcome.tx_hash
            )
            if self.metrics:
                if outcome.success:
                    self.metrics.record_opportunity_executed(opportunity.profit_usd)
                else:
                    self.metrics.record_execution_failed(
                        outcome.failure.value if outcome.failure else "unknown"
                    )
            return outcome

        except Exception as e:
            self.logger.error(f"Error in scan tick: {str(e)}")
            return None
        finally:
            if self.metrics:
                self.metrics.record_scan_time(time.monotonic() - started)

    async def run(self, interval: Optional[float] = None, max_ticks: Optional[int] = None):
        """Tick until stopped; ``max_ticks`` bounds the loop."""
        interval = self.config.scanner.interval if interval is None else interval
        self.running = True
        ticks = 0
        self.logger.info("Starting arbitrage monitoring...")

        while self.running:
            await self.run_tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            await asyncio.sleep(interval)

        self.running = False

    def stop(self):
        self.running = False
