import asyncio
import logging
import time

import pytest

from flasharb.config.chains import VenueFamily
from flasharb.config.settings import ScannerConfig, ValidatorConfig
from flasharb.core.errors import DiscoveryFailure
from flasharb.models.opportunity import (
    ArbitrageOpportunity,
    ArbitragePath,
    Pool,
    RejectionKind,
    RouteLayout,
)
from flasharb.services.path_finder import ArbitrageScanner
from flasharb.services.validator import ChainConditions, OpportunityValidator, profit_in_native

from conftest import DAI, ETHER, GWEI, USDC, WETH, FailingAdapter, StubAdapter


class UnreachableAdapter(StubAdapter):
    async def find_pools(self, token_a, token_b):
        raise DiscoveryFailure("pair lookup failed")


def make_scanner(adapters, validator, prices, tokens, **config):
    return ArbitrageScanner(adapters, validator, prices, tokens, ScannerConfig(**config))


def make_opportunity(profit: int, loan: int = ETHER, symbol: str = "WETH", token: str = WETH):
    pools = (
        Pool(dex="Uniswap V2", address="0xpool1", id="p1", tokens=(token, DAI)),
        Pool(dex="SushiSwap", address="0xpool2", id="p2", tokens=(token, DAI)),
    )
    return ArbitrageOpportunity(
        token_borrow=token,
        loan_amount=loan,
        path=ArbitragePath(tokens=(token, DAI, token), pools=pools),
        venue_selectors=(0, 1),
        expected_profit=profit,
        profit_usd=0.0,
        price_difference_pct=profit * 100 / loan,
        source_dex="Uniswap V2",
        destination_dex="SushiSwap",
        token_symbol=symbol
    )


def assert_closed_paths(candidates):
    for candidate in candidates:
        tokens = candidate.path.tokens
        assert tokens[0].lower() == tokens[-1].lower()
        assert len(candidate.venue_selectors) == len(tokens) - 1


async def test_direct_scan_surfaces_cross_venue_spread(spread_venues, validator, prices, tokens):
    """2000 vs 2100 on two venues: one profitable round trip, sized by spread minus fees."""
    scanner = make_scanner(spread_venues, validator, prices, tokens)

    candidates = await scanner.scan_direct(WETH, DAI, ETHER)

    assert len(candidates) == 1
    best = candidates[0]
    assert best.expected_profit > 0
    assert best.route == ["Uniswap V2", "SushiSwap"]
    assert best.venue_selectors == (0, 1)
    assert best.layout == RouteLayout.PLAIN
    assert best.executable

    # ~5% spread less two 0.3% fees and a little price impact
    ideal = ETHER * 105 * 997 * 997 // (100 * 1000 * 1000)
    amount_out = ETHER + best.expected_profit
    assert abs(amount_out - ideal) / ideal < 0.005
    assert best.profit_usd == pytest.approx(best.expected_profit / ETHER * 3000)
    assert_closed_paths(candidates)


async def test_direct_scan_without_spread_finds_nothing(validator, prices, tokens):
    venues = [
        StubAdapter("A", venue_id=0).add_pool(WETH, 1000 * ETHER, DAI, 2_000_000 * ETHER),
        StubAdapter("B", venue_id=1).add_pool(WETH, 1000 * ETHER, DAI, 2_000_000 * ETHER),
    ]
    scanner = make_scanner(venues, validator, prices, tokens)

    assert await scanner.scan_direct(WETH, DAI, ETHER) == []


async def test_triangle_scan_matches_round_trip_mismatch(validator, prices, tokens):
    """A -> B -> C -> A with 0.3% per hop and a 5% mismatch on the last leg."""
    venue = StubAdapter("Uniswap V2", venue_id=0)
    venue.add_pool(WETH, 10 ** 30, DAI, 10 ** 30)
    venue.add_pool(DAI, 10 ** 30, USDC, 10 ** 30)
    venue.add_pool(USDC, 10 ** 30, WETH, 105 * 10 ** 28)
    scanner = make_scanner([venue], validator, prices, tokens)

    candidates = await scanner.scan_triangle(WETH, [DAI, USDC], ETHER)

    assert len(candidates) == 1
    triangle = candidates[0]
    assert triangle.layout == RouteLayout.TRIANGLE
    assert triangle.path.tokens == (WETH, DAI, USDC, WETH)
    assert triangle.venue_selectors == (0, 0, 0)

    expected = ETHER * 105 * 997 ** 3 // (100 * 1000 ** 3)
    assert abs(ETHER + triangle.expected_profit - expected) <= expected // 10 ** 6
    assert_closed_paths(candidates)


async def test_triangle_scan_skips_start_token_as_intermediate(validator, prices, tokens):
    venue = StubAdapter("Uniswap V2", venue_id=0).add_pool(WETH, 10 ** 30, DAI, 10 ** 30)
    scanner = make_scanner([venue], validator, prices, tokens)

    assert await scanner.scan_triangle(WETH, [WETH, DAI], ETHER) == []


async def test_concentrated_liquidity_hops_carry_fee_tier(validator, prices, tokens):
    venues = [
        StubAdapter("Uniswap V2", venue_id=0).add_pool(WETH, 1000 * ETHER, DAI, 2_000_000 * ETHER),
        StubAdapter(
            "Uniswap V3", venue_id=2, fee_bps=5, family=VenueFamily.CONCENTRATED_LIQUIDITY
        ).add_pool(WETH, 1000 * ETHER, DAI, 2_100_000 * ETHER),
    ]
    scanner = make_scanner(venues, validator, prices, tokens)

    candidates = await scanner.scan_direct(WETH, DAI, ETHER)

    assert len(candidates) == 1
    assert candidates[0].route == ["Uniswap V3", "Uniswap V2"]
    assert candidates[0].fee_tiers == (500, 0)


async def test_estimated_quotes_taint_the_opportunity(validator, prices, tokens):
    venues = [
        StubAdapter("Balancer", estimated=True).add_pool(WETH, 1000 * ETHER, DAI, 2_100_000 * ETHER),
        StubAdapter("SushiSwap", venue_id=1).add_pool(WETH, 1000 * ETHER, DAI, 2_000_000 * ETHER),
    ]
    scanner = make_scanner(venues, validator, prices, tokens)

    candidates = await scanner.scan_direct(WETH, DAI, ETHER)

    assert len(candidates) == 1
    assert candidates[0].estimated
    assert candidates[0].venue_selectors == (None, 1)
    assert not candidates[0].executable


async def test_slow_quotes_degrade_to_zero(spread_venues, validator, prices, tokens):
    slow = StubAdapter("Slow", venue_id=3, quote_delay=1.0).add_pool(
        WETH, 1000 * ETHER, DAI, 3_000_000 * ETHER
    )
    scanner = make_scanner(spread_venues + [slow], validator, prices, tokens, quote_timeout=0.05)

    candidates = await scanner.scan_direct(WETH, DAI, ETHER)

    assert [c.route for c in candidates] == [["Uniswap V2", "SushiSwap"]]


async def test_hung_venue_costs_a_triangle_scan_one_timeout_per_hop(validator, prices, tokens):
    fast = StubAdapter("Uniswap V2", venue_id=0)
    hung = StubAdapter("Hung", venue_id=1, quote_delay=60)
    for venue in (fast, hung):
        venue.add_pool(WETH, 10 ** 30, DAI, 10 ** 30)
        venue.add_pool(DAI, 10 ** 30, USDC, 10 ** 30)
        venue.add_pool(USDC, 10 ** 30, WETH, 105 * 10 ** 28)
    scanner = make_scanner([fast, hung], validator, prices, tokens, quote_timeout=0.2)

    started = time.monotonic()
    candidates = await scanner.scan_triangle(WETH, [DAI, USDC], ETHER)
    elapsed = time.monotonic() - started

    # three sequential hops at most; a serial scan would wait out every hung quote
    assert elapsed < 1.2
    assert [c.route for c in candidates] == [["Uniswap V2"] * 3]


async def test_failing_discovery_does_not_stop_the_scan(spread_venues, validator, prices, tokens):
    broken = FailingAdapter("Broken", venue_id=4)
    scanner = make_scanner(spread_venues + [broken], validator, prices, tokens)

    candidates = await scanner.scan_direct(WETH, DAI, ETHER)

    assert len(candidates) == 1


async def test_discovery_failure_skips_only_that_venue(spread_venues, validator, prices, tokens, caplog):
    unreachable = UnreachableAdapter("Unreachable", venue_id=5)
    scanner = make_scanner(spread_venues + [unreachable], validator, prices, tokens)

    with caplog.at_level(logging.WARNING, logger="flasharb.services.path_finder"):
        candidates = await scanner.scan_direct(WETH, DAI, ETHER)

    assert [c.route for c in candidates] == [["Uniswap V2", "SushiSwap"]]
    assert any(
        record.levelno == logging.WARNING and "Pool discovery on Unreachable failed" in record.getMessage()
        for record in caplog.records
    )


async def test_register_adapter_replaces_by_name(spread_venues, validator, prices, tokens):
    scanner = make_scanner(spread_venues, validator, prices, tokens)
    replacement = StubAdapter("SushiSwap", venue_id=1).add_pool(
        WETH, 1000 * ETHER, DAI, 2_100_000 * ETHER
    )

    scanner.register_adapter(replacement)

    assert len(scanner.adapters) == 2
    assert await scanner.scan_direct(WETH, DAI, ETHER) == []


async def test_validate_top_returns_new_opportunities(spread_venues, validator, prices, tokens):
    scanner = make_scanner(spread_venues, validator, prices, tokens)
    candidates = await scanner.scan_direct(WETH, DAI, ETHER)

    accepted = await scanner.validate_top(candidates, ChainConditions(base_gas_price=20 * GWEI))

    assert len(accepted) == 1
    opportunity, result = accepted[0]
    assert result.accepted
    assert opportunity.adjusted_profit == result.adjusted_profit
    assert candidates[0].adjusted_profit is None


async def test_validate_candidates_caps_at_top_n(validator, prices, tokens):
    scanner = make_scanner([], validator, prices, tokens, top_n=2)
    candidates = [make_opportunity(p * 10 ** 16) for p in (1, 5, 3, 4)]

    validated = await scanner.validate_candidates(
        candidates, ChainConditions(base_gas_price=GWEI)
    )

    assert [o.expected_profit for o, _ in validated] == [5 * 10 ** 16, 4 * 10 ** 16]


async def test_slow_validation_times_out(validator, tokens):
    class SlowPrices:
        async def get_usd_price(self, symbol):
            await asyncio.sleep(1.0)
            return 3000.0

    scanner = make_scanner([], validator, SlowPrices(), tokens, validation_timeout=0.05)

    validated = await scanner.validate_candidates(
        [make_opportunity(10 ** 17)], ChainConditions(base_gas_price=GWEI)
    )

    assert validated[0][1].rejection == RejectionKind.TIMEOUT


def test_validator_rejects_nine_dollars_against_ten_dollar_minimum(validator):
    opportunity = make_opportunity(3 * 10 ** 15)  # 0.003 WETH at $3000

    result = validator.validate(opportunity, ChainConditions(base_gas_price=20 * GWEI), 500000, 3000.0)

    assert not result.accepted
    assert result.rejection == RejectionKind.BELOW_MIN_USD
    assert "$9.00" in result.reason
    assert "short by $1.00" in result.reason


def test_validator_accepts_profitable_opportunity(validator):
    opportunity = make_opportunity(5 * 10 ** 16)

    result = validator.validate(opportunity, ChainConditions(base_gas_price=20 * GWEI), 500000, 3000.0)

    assert result.accepted
    assert result.adjusted_profit == 5 * 10 ** 16 * 970 // 1000
    # 0.05 ETH profit falls in the +15% tier
    assert result.gas_cost == 23 * GWEI * 500000
    assert result.profit_percent > 0.5


def test_validator_rejects_when_gas_eats_profit(validator):
    opportunity = make_opportunity(10 ** 16)

    result = validator.validate(opportunity, ChainConditions(base_gas_price=100 * GWEI), 500000, 3000.0)

    assert result.rejection == RejectionKind.UNPROFITABLE_AFTER_GAS


def test_validator_rejects_thin_margin(validator):
    opportunity = make_opportunity(10 ** 16, loan=100 * ETHER)

    result = validator.validate(opportunity, ChainConditions(base_gas_price=GWEI), 500000, 3000.0)

    assert result.rejection == RejectionKind.BELOW_MIN_PERCENTAGE
    assert result.profit_percent < 0.5


def test_validation_is_idempotent(validator):
    opportunity = make_opportunity(5 * 10 ** 16)
    conditions = ChainConditions(base_gas_price=20 * GWEI, block_number=123)

    first = validator.validate(opportunity, conditions, 500000, 3000.0)
    second = validator.validate(opportunity, conditions, 500000, 3000.0)

    assert first == second


def test_larger_slippage_tolerance_never_increases_adjusted_profit(gas_strategy):
    validator = OpportunityValidator(gas_strategy)
    profit = 123456789012345678

    adjusted = []
    for tolerance in range(0, 101, 5):
        validator.set_slippage_tolerance(tolerance)
        adjusted.append(validator.apply_slippage(profit))

    assert adjusted[0] == profit
    assert adjusted[-1] == 0
    assert all(a >= b for a, b in zip(adjusted, adjusted[1:]))


def test_slippage_tolerance_bounds(validator):
    with pytest.raises(ValueError):
        validator.set_slippage_tolerance(101)
    with pytest.raises(ValueError):
        validator.set_slippage_tolerance(-1)


def test_gas_cost_converted_for_non_native_loans():
    conditions = ChainConditions(base_gas_price=GWEI, native_price_usd=3000.0)

    cost = OpportunityValidator.gas_cost_in_token(10 ** 15, conditions, 1.0, 6)

    # 0.001 ETH at $3000 is 3 USDC
    assert 3_000_000 <= cost <= 3_000_001


def test_stablecoin_loan_bids_on_its_value_in_wei(validator):
    """$600 of USDC profit is 0.2 ETH at $3000: the 25% tier, not the 5% one its raw units suggest."""
    opportunity = make_opportunity(600 * 10 ** 6, loan=40_000 * 10 ** 6, symbol="USDC", token=USDC)
    conditions = ChainConditions(base_gas_price=20 * GWEI, native_price_usd=3000.0)

    result = validator.validate(opportunity, conditions, 500_000, 1.0, 6)

    assert result.accepted
    assert result.native_profit == profit_in_native(opportunity, conditions, 600.0)
    assert 19 * 10 ** 16 < result.native_profit <= 2 * 10 ** 17
    assert result.gas_cost == OpportunityValidator.gas_cost_in_token(
        25 * GWEI * 500_000, conditions, 1.0, 6
    )


def test_native_profit_falls_back_to_raw_units():
    usdc = make_opportunity(600 * 10 ** 6, symbol="USDC", token=USDC)
    weth = make_opportunity(ETHER // 10)
    priced = ChainConditions(base_gas_price=GWEI, native_price_usd=3000.0)

    assert profit_in_native(usdc, ChainConditions(base_gas_price=GWEI)) == 600 * 10 ** 6
    assert profit_in_native(weth, priced) == ETHER // 10


def test_validator_thresholds_come_from_config(gas_strategy):
    validator = OpportunityValidator.from_config(
        gas_strategy, ValidatorConfig(min_profit_usd=1000.0, min_profit_percentage=2.0)
    )
    conditions = ChainConditions(base_gas_price=GWEI)

    below_usd = validator.validate(make_opportunity(ETHER // 10), conditions, 500_000, 3000.0)
    below_margin = validator.validate(make_opportunity(ETHER // 2, loan=100 * ETHER), conditions, 500_000, 3000.0)

    assert below_usd.rejection == RejectionKind.BELOW_MIN_USD
    assert below_margin.rejection == RejectionKind.BELOW_MIN_PERCENTAGE
