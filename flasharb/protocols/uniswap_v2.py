from typing import Dict, List, Optional, Tuple
from web3 import Web3
import logging

from ..config.chains import VenueFamily, ZERO_ADDRESS
from ..core.amm_math import DEFAULT_CONSTANT_PRODUCT_FEE_BPS, constant_product_amount_out
from ..core.cache import TTLCache
from ..core.errors import DiscoveryFailure
from ..models.opportunity import Pool
from ..models.token import TokenRegistry
from .base import DexAdapter, NO_QUOTE, Quote, SwapCall

# Minimal ABIs for interaction
UNISWAP_V2_ROUTER_ABI = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"}
        ],
        "name": "getAmountsOut",
        "outputs": [
            {"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactTokensForTokens",
        "outputs": [
            {"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}
        ],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]

UNISWAP_V2_FACTORY_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "tokenA", "type": "address"},
            {"internalType": "address", "name": "tokenB", "type": "address"}
        ],
        "name": "getPair",
        "outputs": [{"internalType": "address", "name": "pair", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    }
]

UNISWAP_V2_PAIR_ABI = [
    {
        "inputs": [],
        "name": "getReserves",
        "outputs": [
            {"internalType": "uint112", "name": "reserve0", "type": "uint112"},
            {"internalType": "uint112", "name": "reserve1", "type": "uint112"},
            {"internalType": "uint32", "name": "blockTimestampLast", "type": "uint32"}
        ],
        "stateMutability": "view",
        "type": "function"
    }
]


def sort_tokens(token_a: str, token_b: str) -> Tuple[str, str]:
    """Uniswap orders pair tokens by numeric address."""
    if int(token_a, 16) < int(token_b, 16):
        return token_a, token_b
    return token_b, token_a


class UniswapV2Adapter(DexAdapter):
    """Constant-product venue (Uniswap V2 and its forks)."""

    family = VenueFamily.CONSTANT_PRODUCT

    def __init__(
        self,
        name: str,
        web3: Web3,
        router: str,
        factory: str,
        venue_id: Optional[int] = None,
        tokens: Optional[TokenRegistry] = None,
        fee_bps: int = DEFAULT_CONSTANT_PRODUCT_FEE_BPS,
        known_pairs: Optional[Dict[frozenset, str]] = None,
        reserve_ttl: float = 60.0,
        pair_cache: Optional[TTLCache] = None,
        reserve_cache: Optional[TTLCache] = None
    ):
        super().__init__(name, web3, venue_id, tokens)
        self.logger = logging.getLogger(__name__)
        self.fee_bps = fee_bps
        self.known_pairs = known_pairs or {}

        # Pair identity never changes; reserves go stale quickly
        self.pair_cache = pair_cache or TTLCache()
        self.reserve_cache = reserve_cache or TTLCache(ttl=reserve_ttl)

        self.router = web3.eth.contract(
            address=Web3.to_checksum_address(router),
            abi=UNISWAP_V2_ROUTER_ABI
        )
        self.factory = web3.eth.contract(
            address=Web3.to_checksum_address(factory),
            abi=UNISWAP_V2_FACTORY_ABI
        )

    async def get_pair_address(self, token_a: str, token_b: str) -> Optional[str]:
        """Get the pair address for two tokens."""
        key = frozenset({token_a.lower(), token_b.lower()})
        cached = self.pair_cache.get(key)
        if cached is not None:
            return cached

        pair_address = None
        try:
            pair_address = await self.factory.functions.getPair(
                Web3.to_checksum_address(token_a),
                Web3.to_checksum_address(token_b)
            ).call()
        except Exception as e:
            self.logger.error(f"Error getting pair address on {self.name}: {str(e)}")

        if not pair_address or pair_address.lower() == ZERO_ADDRESS:
            pair_address = self.known_pairs.get(key)
            if pair_address is None:
                return None
            self.logger.info(f"Using known pair address on {self.name}: {pair_address}")

        self.pair_cache.set(key, pair_address)
        return pair_address

    async def get_reserves(self, pair_address: str) -> Tuple[int, int]:
        """Get reserves for a pair; raises DiscoveryFailure when they cannot be read."""
        cached = self.reserve_cache.get(pair_address.lower())
        if cached is not None:
            return cached

        try:
            pair_contract = self.web3.eth.contract(
                address=Web3.to_checksum_address(pair_address),
                abi=UNISWAP_V2_PAIR_ABI
            )
            reserves = await pair_contract.functions.getReserves().call()
            result = (reserves[0], reserves[1])
            self.reserve_cache.set(pair_address.lower(), result)
            return result
        except Exception as e:
            raise DiscoveryFailure(
                f"Error getting reserves for {pair_address} on {self.name}: {str(e)}"
            ) from e

    async def find_pools(self, token_a: str, token_b: str) -> List[Pool]:
        pair_address = await self.get_pair_address(token_a, token_b)
        if not pair_address:
            return []

        return [
            Pool(
                dex=self.name,
                address=pair_address,
                id=pair_address,
                tokens=sort_tokens(token_a, token_b),
                fee=self.fee_bps * 100,
                metadata={"fee_bps": self.fee_bps}
            )
        ]

    async def quote(
        self,
        pool: Pool,
        token_in: str,
        token_out: str,
        amount_in: int
    ) -> Quote:
        if amount_in <= 0:
            return NO_QUOTE

        try:
            amounts = await self.router.functions.getAmountsOut(
                amount_in,
                [
                    Web3.to_checksum_address(token_in),
                    Web3.to_checksum_address(token_out)
                ]
            ).call()
            return Quote(amounts[-1])
        except Exception as e:
            self.logger.warning(
                f"Router quote failed on {self.name}, using reserves: {str(e)}"
            )

        return await self._quote_from_reserves(pool, token_in, amount_in)

    async def _quote_from_reserves(self, pool: Pool, token_in: str, amount_in: int) -> Quote:
        try:
            reserves = await self.get_reserves(pool.address)
        except DiscoveryFailure as e:
            self.logger.error(str(e))
            return NO_QUOTE

        token0, _ = sort_tokens(*pool.tokens)
        if token0.lower() == token_in.lower():
            reserve_in, reserve_out = reserves
        else:
            reserve_out, reserve_in = reserves

        return Quote(
            constant_product_amount_out(amount_in, reserve_in, reserve_out, self.fee_bps)
        )

    def create_swap_transaction(
        self,
        pool: Pool,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_amount_out: int,
        recipient: str,
        deadline: Optional[int] = None
    ) -> SwapCall:
        data = self.router.encode_abi(
            "swapExactTokensForTokens",
            args=[
                amount_in,
                min_amount_out,
                [
                    Web3.to_checksum_address(token_in),
                    Web3.to_checksum_address(token_out)
                ],
                Web3.to_checksum_address(recipient),
                deadline or self.default_deadline()
            ]
        )
        return SwapCall(to=self.router.address, data=data)
