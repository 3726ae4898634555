from typing import Any, Awaitable, Dict, Iterable, List, Optional, Sequence, Tuple
from dataclasses import dataclass, replace
import asyncio
import itertools
import logging

from ..config.chains import VenueFamily
from ..config.settings import ScannerConfig
from ..core.amm_math import price_difference_pct
from ..core.errors import DiscoveryFailure
from ..models.opportunity import (
    ArbitrageOpportunity,
    ArbitragePath,
    Pool,
    RejectionKind,
    RouteLayout,
    ValidationResult,
)
from ..models.token import TokenRegistry
from ..protocols.base import DexAdapter, NO_QUOTE, Quote
from .price_feed import PriceProvider
from .validator import ChainConditions, OpportunityValidator


@dataclass(frozen=True)
class Leg:
    """One quoted hop: which venue and pool, and what it returned."""
    adapter: DexAdapter
    pool: Pool
    token_in: str
    token_out: str
    quote: Quote


class ArbitrageScanner:
    """Finds direct and triangular arbitrage candidates across all venues.

    Every adapter call is bounded by a timeout and degrades to an empty or
    zero result, so one slow venue never stalls a scan. Independent routes
    are quoted concurrently; only the hops within one route wait on each
    other.
    """

    def __init__(
        self,
        adapters: Iterable[DexAdapter],
        validator: OpportunityValidator,
        price_provider: PriceProvider,
        tokens: TokenRegistry,
        config: Optional[ScannerConfig] = None
    ):
        self.adapters: Dict[str, DexAdapter] = {}
        for adapter in adapters:
            self.register_adapter(adapter)
        self.validator = validator
        self.price_provider = price_provider
        self.tokens = tokens
        self.config = config or ScannerConfig()
        self.logger = logging.getLogger(__name__)

    def register_adapter(self, adapter: DexAdapter):
        """Add a venue; an adapter with the same name is replaced."""
        self.adapters[adapter.name] = adapter

    async def _with_timeout(self, awaitable: Awaitable, timeout: float, default: Any, label: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"{label} timed out after {timeout}s")
            return default
        except DiscoveryFailure as e:
            self.logger.warning(f"{label} failed: {str(e)}")
            return default
        except Exception as e:
            self.logger.error(f"{label} failed: {str(e)}")
            return default

    async def _find_pools(self, adapter: DexAdapter, token_a: str, token_b: str) -> List[Pool]:
        return await self._with_timeout(
            adapter.find_pools(token_a, token_b),
            self.config.discovery_timeout,
            [],
            f"Pool discovery on {adapter.name}"
        )

    async def _quote(
        self,
        adapter: DexAdapter,
        pool: Pool,
        token_in: str,
        token_out: str,
        amount_in: int
    ) -> Leg:
        quote = await self._with_timeout(
            adapter.quote(pool, token_in, token_out, amount_in),
            self.config.quote_timeout,
            NO_QUOTE,
            f"Quote on {adapter.name} pool {pool.id}"
        )
        return Leg(adapter, pool, token_in, token_out, quote)

    async def _pools_by_adapter(self, token_a: str, token_b: str) -> List[Tuple[DexAdapter, List[Pool]]]:
        adapters = list(self.adapters.values())
        pools = await asyncio.gather(*[
            self._find_pools(adapter, token_a, token_b) for adapter in adapters
        ])
        for adapter, found in zip(adapters, pools):
            self.logger.debug(f"Found {len(found)} pools in {adapter.name}")
        return list(zip(adapters, pools))

    async def _token_price(self, symbol: str) -> float:
        try:
            price = await self.price_provider.get_usd_price(symbol)
        except Exception as e:
            self.logger.error(f"Error getting token price for {symbol}: {str(e)}")
            price = None
        if price is None:
            self.logger.warning(f"No USD price for {symbol}")
            return 0.0
        return price

    @staticmethod
    def _hop_fee(leg: Leg) -> int:
        """Fee tier the contract needs for this hop; 0 lets it fall back."""
        if leg.adapter.family != VenueFamily.CONCENTRATED_LIQUIDITY:
            return 0
        return leg.quote.fee or leg.pool.fee or 0

    def _build_opportunity(
        self,
        token: str,
        amount_in: int,
        legs: Sequence[Leg],
        layout: RouteLayout,
        price_usd: float
    ) -> ArbitrageOpportunity:
        amount_out = legs[-1].quote.amount
        profit = amount_out - amount_in
        decimals = self.tokens.decimals(token)
        fees = tuple(self._hop_fee(leg) for leg in legs)

        return ArbitrageOpportunity(
            token_borrow=token,
            loan_amount=amount_in,
            path=ArbitragePath(
                tokens=tuple([legs[0].token_in] + [leg.token_out for leg in legs]),
                pools=tuple(leg.pool for leg in legs)
            ),
            venue_selectors=tuple(leg.adapter.venue_id for leg in legs),
            fee_tiers=fees if any(fees) else (),
            expected_profit=profit,
            profit_usd=profit / 10 ** decimals * price_usd,
            price_difference_pct=price_difference_pct(amount_in, amount_out),
            source_dex=legs[0].adapter.name,
            destination_dex=legs[-1].adapter.name,
            token_symbol=self.tokens.symbol(token),
            layout=layout,
            estimated=any(leg.quote.estimated for leg in legs)
        )

    def _log_candidate(self, opportunity: ArbitrageOpportunity):
        self.logger.info(
            f"Found arbitrage opportunity: {' -> '.join(opportunity.route)} "
            f"profit {opportunity.expected_profit} {opportunity.token_symbol} "
            f"({opportunity.price_difference_pct:.2f}%, ${opportunity.profit_usd:.2f})"
            + (" [estimated]" if opportunity.estimated else "")
        )

    @staticmethod
    def _sorted(candidates: List[ArbitrageOpportunity]) -> List[ArbitrageOpportunity]:
        return sorted(candidates, key=lambda o: o.price_difference_pct, reverse=True)

    async def _cross_venue_round_trips(
        self,
        token_a: str,
        token_b: str,
        amount_in: int,
        price_usd: float
    ) -> List[ArbitrageOpportunity]:
        """A -> B on one venue, B -> A on a different venue."""
        by_adapter = await self._pools_by_adapter(token_a, token_b)

        first_legs = await asyncio.gather(*[
            self._quote(adapter, pool, token_a, token_b, amount_in)
            for adapter, pools in by_adapter
            for pool in pools
        ])

        tasks = []
        for first in first_legs:
            if not first.quote.ok:
                continue
            for adapter, pools in by_adapter:
                if adapter is first.adapter:
                    continue
                for pool in pools:
                    tasks.append((first, self._quote(adapter, pool, token_b, token_a, first.quote.amount)))

        second_legs = await asyncio.gather(*[task for _, task in tasks])

        candidates = []
        for (first, _), second in zip(tasks, second_legs):
            if second.quote.amount > amount_in:
                opportunity = self._build_opportunity(
                    token_a, amount_in, [first, second], RouteLayout.PLAIN, price_usd
                )
                self._log_candidate(opportunity)
                candidates.append(opportunity)
        return candidates

    async def scan_direct(self, token_a: str, token_b: str, amount_in: int) -> List[ArbitrageOpportunity]:
        """Round trips A -> B -> A across every ordered pair of distinct venues."""
        symbol_a, symbol_b = self.tokens.symbol(token_a), self.tokens.symbol(token_b)
        self.logger.info(f"Scanning for direct arbitrage between {symbol_a} and {symbol_b}")

        try:
            price_usd = await self._token_price(symbol_a)
            candidates = await self._cross_venue_round_trips(token_a, token_b, amount_in, price_usd)
        except Exception as e:
            self.logger.error(f"Error in scanning direct arbitrage: {str(e)}")
            return []

        self.logger.info(f"Found {len(candidates)} potential direct opportunities")
        return self._sorted(candidates)

    async def _two_hop_loop(
        self,
        adapter: DexAdapter,
        path: ArbitragePath,
        amount_in: int
    ) -> Optional[List[Leg]]:
        start, middle = path.tokens[0], path.tokens[1]
        first = await self._quote(adapter, path.pools[0], start, middle, amount_in)
        if not first.quote.ok:
            return None
        second = await self._quote(adapter, path.pools[1], middle, start, first.quote.amount)
        return [first, second]

    async def _single_venue_loops(
        self,
        start: str,
        middle: str,
        amount_in: int,
        price_usd: float
    ) -> List[ArbitrageOpportunity]:
        adapters = list(self.adapters.values())
        discovered = await asyncio.gather(*[
            self._with_timeout(
                adapter.find_arbitrage_paths(start, middle, start),
                self.config.discovery_timeout,
                [],
                f"Path discovery on {adapter.name}"
            )
            for adapter in adapters
        ])

        loops = await asyncio.gather(*[
            self._two_hop_loop(adapter, path, amount_in)
            for adapter, paths in zip(adapters, discovered)
            for path in paths
        ])

        candidates = []
        for legs in loops:
            if legs is not None and legs[-1].quote.amount > amount_in:
                opportunity = self._build_opportunity(
                    start, amount_in, legs, RouteLayout.PLAIN, price_usd
                )
                self._log_candidate(opportunity)
                candidates.append(opportunity)
        return candidates

    async def _best_leg(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        executable_only: bool = False
    ) -> Optional[Leg]:
        """Highest-output hop across every venue and pool."""
        legs = []
        for adapter, pools in await self._pools_by_adapter(token_in, token_out):
            if executable_only and not adapter.executable:
                continue
            legs.extend(
                self._quote(adapter, pool, token_in, token_out, amount_in) for pool in pools
            )

        quoted = [
            leg for leg in await asyncio.gather(*legs)
            if leg.quote.ok and not (executable_only and leg.quote.estimated)
        ]
        if not quoted:
            return None
        return max(quoted, key=lambda leg: leg.quote.amount)

    async def _three_hop_loop(
        self,
        start: str,
        first_mid: str,
        second_mid: str,
        amount_in: int,
        executable_only: bool
    ) -> Optional[List[Leg]]:
        legs = []
        amount = amount_in
        for token_in, token_out in ((start, first_mid), (first_mid, second_mid), (second_mid, start)):
            leg = await self._best_leg(token_in, token_out, amount, executable_only)
            if leg is None:
                return None
            legs.append(leg)
            amount = leg.quote.amount
        return legs

    async def _three_hop_routes(
        self,
        start: str,
        first_mid: str,
        second_mid: str,
        amount_in: int
    ) -> List[List[Leg]]:
        best = await self._three_hop_loop(start, first_mid, second_mid, amount_in, False)
        if best is None:
            return []

        routes = [best]
        if not all(leg.adapter.executable and not leg.quote.estimated for leg in best):
            fallback = await self._three_hop_loop(start, first_mid, second_mid, amount_in, True)
            if fallback is not None:
                routes.append(fallback)
        return routes

    async def _three_hop_loops(
        self,
        start: str,
        intermediates: Sequence[str],
        amount_in: int,
        price_usd: float
    ) -> List[ArbitrageOpportunity]:
        """A -> B -> C -> A, each hop on whichever venue pays most.

        Quotes grow with their input, so taking the best venue hop by hop
        maximizes the final amount. When that route is not executable an
        executable-only route is tried as well.
        """
        found = await asyncio.gather(*[
            self._three_hop_routes(start, first_mid, second_mid, amount_in)
            for first_mid, second_mid in itertools.permutations(intermediates, 2)
        ])

        candidates = []
        for routes in found:
            for legs in routes:
                if legs[-1].quote.amount > amount_in:
                    opportunity = self._build_opportunity(
                        start, amount_in, legs, RouteLayout.TRIANGLE, price_usd
                    )
                    self._log_candidate(opportunity)
                    candidates.append(opportunity)
        return candidates

    async def scan_triangle(
        self,
        start: str,
        intermediates: Sequence[str],
        amount_in: int
    ) -> List[ArbitrageOpportunity]:
        """Closed loops from ``start`` through one or two intermediate tokens."""
        intermediates = [t for t in intermediates if t.lower() != start.lower()]
        self.logger.info(
            f"Scanning for triangle arbitrage from {self.tokens.symbol(start)} "
            f"through {len(intermediates)} intermediate tokens"
        )

        candidates: List[ArbitrageOpportunity] = []
        try:
            price_usd = await self._token_price(self.tokens.symbol(start))
            batches = await asyncio.gather(
                *[
                    self._single_venue_loops(start, middle, amount_in, price_usd)
                    for middle in intermediates
                ],
                *[
                    self._cross_venue_round_trips(start, middle, amount_in, price_usd)
                    for middle in intermediates
                ],
                self._three_hop_loops(start, intermediates, amount_in, price_usd)
            )
            for batch in batches:
                candidates.extend(batch)
        except Exception as e:
            self.logger.error(f"Error in scanning triangle arbitrage: {str(e)}")

        self.logger.info(f"Found {len(candidates)} potential triangle opportunities")
        return self._sorted(candidates)

    async def _validate_one(
        self,
        opportunity: ArbitrageOpportunity,
        conditions: ChainConditions,
        gas_limit: int
    ) -> ValidationResult:
        price_usd = await self._token_price(opportunity.token_symbol)
        return self.validator.validate(
            opportunity,
            conditions,
            gas_limit,
            price_usd,
            self.tokens.decimals(opportunity.token_borrow)
        )

    async def validate_candidates(
        self,
        candidates: List[ArbitrageOpportunity],
        conditions: ChainConditions,
        gas_limit: Optional[int] = None
    ) -> List[Tuple[ArbitrageOpportunity, ValidationResult]]:
        """Validate the best ``top_n`` candidates concurrently.

        Every validated candidate is returned with its result. Accepted
        opportunities come back as new objects carrying the adjusted
        profit; the inputs are left untouched.
        """
        gas_limit = gas_limit or self.config.default_gas_limit
        top = self._sorted(candidates)[:self.config.top_n]
        semaphore = asyncio.Semaphore(self.config.max_concurrent_validations)

        async def validate(opportunity: ArbitrageOpportunity) -> ValidationResult:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        self._validate_one(opportunity, conditions, gas_limit),
                        self.config.validation_timeout
                    )
                except asyncio.TimeoutError:
                    return ValidationResult(
                        accepted=False,
                        rejection=RejectionKind.TIMEOUT,
                        reason=f"Validation timed out after {self.config.validation_timeout}s"
                    )

        results = await asyncio.gather(*[validate(o) for o in top])

        validated = []
        for opportunity, result in zip(top, results):
            if result.accepted:
                opportunity = replace(opportunity, adjusted_profit=result.adjusted_profit)
            else:
                self.logger.info(
                    f"Rejected {' -> '.join(opportunity.route)}: {result.reason}"
                )
            validated.append((opportunity, result))

        accepted = sum(1 for _, result in validated if result.accepted)
        self.logger.info(f"{accepted}/{len(top)} opportunities passed validation")
        return validated

    async def validate_top(
        self,
        candidates: List[ArbitrageOpportunity],
        conditions: ChainConditions,
        gas_limit: Optional[int] = None
    ) -> List[Tuple[ArbitrageOpportunity, ValidationResult]]:
        """Only the accepted ``(opportunity, result)`` pairs."""
        validated = await self.validate_candidates(candidates, conditions, gas_limit)
        return [(o, r) for o, r in validated if r.accepted]
