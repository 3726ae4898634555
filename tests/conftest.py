import asyncio
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from eth_account import Account
from prometheus_client import CollectorRegistry
from web3.exceptions import ContractLogicError, TransactionNotFound

from flasharb.config.chains import MAINNET_TOKENS, VenueFamily
from flasharb.contracts.flash_arbitrage import FlashArbitrageContract, RouterKind
from flasharb.contracts.ledger import LocalChain
from flasharb.contracts.venues import ConcentratedLiquidityRouter, ConstantProductRouter, LendingPool
from flasharb.core.amm_math import constant_product_amount_out
from flasharb.models.opportunity import Pool
from flasharb.models.token import TokenRegistry
from flasharb.protocols.base import DexAdapter, NO_QUOTE, Quote, SwapCall
from flasharb.services.gas_strategy import DynamicGasStrategy
from flasharb.services.price_feed import StaticPriceProvider
from flasharb.services.validator import OpportunityValidator

# Test constants
TEST_PRIVATE_KEY = "0x" + "1" * 64
TEST_ADDRESS = Account.from_key(TEST_PRIVATE_KEY).address
OWNER = "0x1111111111111111111111111111111111111111"
OUTSIDER = "0x2222222222222222222222222222222222222222"

ETHER = 10 ** 18
GWEI = 10 ** 9

# Test tokens (Mainnet addresses)
WETH = MAINNET_TOKENS["WETH"].address
DAI = MAINNET_TOKENS["DAI"].address
USDC = MAINNET_TOKENS["USDC"].address
USDT = MAINNET_TOKENS["USDT"].address

TEST_PRICES = {"ETH": 3000.0, "WETH": 3000.0, "DAI": 1.0, "USDC": 1.0, "USDT": 1.0}


class FakeFunction:
    """One bound contract call; ``call()`` dispatches to a registered handler."""

    def __init__(self, eth: "FakeEth", address: str, name: str, args: tuple):
        self.eth = eth
        self.address = address
        self.name = name
        self.args = args

    async def call(self, *args, **kwargs):
        self.eth.calls.append((self.address.lower(), self.name, self.args))
        handler = self.eth.handlers.get(self.address.lower(), {}).get(self.name)
        if handler is None:
            raise ContractLogicError("execution reverted")
        result = handler(*self.args)
        if isinstance(result, Exception):
            raise result
        return result


class FakeFunctions:
    def __init__(self, eth: "FakeEth", address: str):
        self._eth = eth
        self._address = address

    def __getattr__(self, name: str):
        return lambda *args: FakeFunction(self._eth, self._address, name, args)


class FakeContract:
    def __init__(self, eth: "FakeEth", address: str):
        self.address = address
        self.functions = FakeFunctions(eth, address)


class FakeEth:
    """Async ``web3.eth`` stand-in with programmable contract calls."""

    def __init__(self, gas_price: int = 20 * GWEI, block_number: int = 100, chain_id: int = 1):
        self.gas_price_value = gas_price
        self.block_number_value = block_number
        self.chain_id_value = chain_id
        self.handlers: Dict[str, Dict[str, Callable]] = {}
        self.calls: List[Tuple[str, str, tuple]] = []
        self.sent: List[bytes] = []
        self.receipts: Dict[str, Dict] = {}
        self.call_error: Optional[Exception] = None

    @staticmethod
    async def _value(value):
        if callable(value):
            value = value()
        if isinstance(value, Exception):
            raise value
        return value

    @property
    def gas_price(self):
        return self._value(self.gas_price_value)

    @property
    def block_number(self):
        return self._value(self.block_number_value)

    @property
    def chain_id(self):
        return self._value(self.chain_id_value)

    def contract(self, address=None, abi=None):
        return FakeContract(self, address)

    def on(self, address: str, function: str, handler: Callable):
        self.handlers.setdefault(address.lower(), {})[function] = handler

    def call_count(self, address: str, function: str) -> int:
        return sum(1 for a, f, _ in self.calls if a == address.lower() and f == function)

    async def get_transaction_count(self, address, block_identifier="latest"):
        return 7

    async def send_raw_transaction(self, raw):
        self.sent.append(raw)
        return "0x" + "ab" * 32

    async def wait_for_transaction_receipt(self, tx_hash, timeout=120):
        return self.receipts.get(
            tx_hash, {"status": 1, "blockNumber": self.block_number_value, "logs": []}
        )

    async def get_transaction(self, tx_hash):
        return {"from": OWNER, "to": OUTSIDER, "input": "0x", "value": 0, "gas": 500000}

    async def call(self, transaction, block_identifier=None):
        if self.call_error is not None:
            raise self.call_error
        return b""

    async def get_transaction_receipt(self, tx_hash):
        if tx_hash not in self.receipts:
            raise TransactionNotFound(f"Transaction {tx_hash} not found")
        return self.receipts[tx_hash]


class FakeWeb3:
    def __init__(self, **kwargs):
        self.eth = FakeEth(**kwargs)


class StubAdapter(DexAdapter):
    """Constant-product venue over fixed reserves, no network."""

    family = VenueFamily.CONSTANT_PRODUCT

    def __init__(
        self,
        name: str,
        venue_id: Optional[int] = None,
        fee_bps: int = 30,
        estimated: bool = False,
        quote_delay: float = 0,
        family: Optional[VenueFamily] = None
    ):
        super().__init__(name, None, venue_id)
        self.fee_bps = fee_bps
        self.estimated = estimated
        self.quote_delay = quote_delay
        if family is not None:
            self.family = family
        self.reserves: Dict[Tuple[str, str], Tuple[int, int]] = {}

    def add_pool(self, token_a: str, reserve_a: int, token_b: str, reserve_b: int) -> "StubAdapter":
        self.reserves[(token_a.lower(), token_b.lower())] = (reserve_a, reserve_b)
        self.reserves[(token_b.lower(), token_a.lower())] = (reserve_b, reserve_a)
        return self

    async def find_pools(self, token_a: str, token_b: str) -> List[Pool]:
        if (token_a.lower(), token_b.lower()) not in self.reserves:
            return []
        a, b = sorted((token_a.lower(), token_b.lower()))
        return [
            Pool(
                dex=self.name,
                address=f"{self.name}:{a}:{b}",
                id=f"{self.name}:{a}:{b}",
                tokens=(a, b),
                fee=self.fee_bps * 100
            )
        ]

    async def quote(self, pool: Pool, token_in: str, token_out: str, amount_in: int) -> Quote:
        if self.quote_delay:
            await asyncio.sleep(self.quote_delay)
        reserves = self.reserves.get((token_in.lower(), token_out.lower()))
        if not reserves:
            return NO_QUOTE
        amount_out = constant_product_amount_out(amount_in, *reserves, self.fee_bps)
        return Quote(amount_out, estimated=self.estimated)

    def create_swap_transaction(
        self, pool, token_in, token_out, amount_in, min_amount_out, recipient, deadline=None
    ) -> SwapCall:
        return SwapCall(to=pool.address, data="0x")


class FailingAdapter(StubAdapter):
    async def find_pools(self, token_a: str, token_b: str) -> List[Pool]:
        raise ConnectionError("node unreachable")


class RecordingSink:
    def __init__(self):
        self.records = []

    def record(self, record):
        self.records.append(record)

    @property
    def outcomes(self) -> List[str]:
        return [r.outcome for r in self.records]


@pytest.fixture
def tokens():
    return TokenRegistry.from_config(MAINNET_TOKENS)


@pytest.fixture
def prices():
    return StaticPriceProvider(TEST_PRICES)


@pytest.fixture
def fake_web3():
    return FakeWeb3()


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def gas_strategy():
    return DynamicGasStrategy()


@pytest.fixture
def validator(gas_strategy):
    return OpportunityValidator(gas_strategy)


@pytest.fixture
def account():
    """Get test account."""
    return Account.from_key(TEST_PRIVATE_KEY)


@pytest.fixture
def spread_venues():
    """WETH/DAI quoted at 2100 on one venue and 2000 on the other."""
    return [
        StubAdapter("Uniswap V2", venue_id=0).add_pool(WETH, 1000 * ETHER, DAI, 2_100_000 * ETHER),
        StubAdapter("SushiSwap", venue_id=1).add_pool(WETH, 1000 * ETHER, DAI, 2_000_000 * ETHER),
    ]


@pytest.fixture
def market():
    """Local chain with the same WETH/DAI spread as ``spread_venues``."""
    chain = LocalChain(timestamp=1_700_000_000)

    lending_pool = LendingPool(chain)
    lending_pool.fund(WETH, 10_000 * ETHER)

    uniswap = ConstantProductRouter(chain)
    uniswap.add_liquidity(WETH, 1000 * ETHER, DAI, 2_100_000 * ETHER)
    sushiswap = ConstantProductRouter(chain)
    sushiswap.add_liquidity(WETH, 1000 * ETHER, DAI, 2_000_000 * ETHER)
    uniswap_v3 = ConcentratedLiquidityRouter(chain)
    uniswap_v3.add_liquidity(WETH, 1000 * ETHER, DAI, 2_100_000 * ETHER, 500)
    uniswap_v3.add_liquidity(WETH, 1000 * ETHER, DAI, 2_100_000 * ETHER, 3000)

    contract = FlashArbitrageContract(chain, OWNER, lending_pool.address)
    chain.transact(contract.set_router, OWNER, 0, uniswap.address, RouterKind.CONSTANT_PRODUCT)
    chain.transact(contract.set_router, OWNER, 1, sushiswap.address, RouterKind.CONSTANT_PRODUCT)
    chain.transact(contract.set_router, OWNER, 2, uniswap_v3.address, RouterKind.CONCENTRATED_LIQUIDITY)

    return SimpleNamespace(
        chain=chain,
        lending_pool=lending_pool,
        uniswap=uniswap,
        sushiswap=sushiswap,
        uniswap_v3=uniswap_v3,
        contract=contract
    )
