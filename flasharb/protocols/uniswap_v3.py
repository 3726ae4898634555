from typing import List, Optional
from web3 import Web3
import logging

from ..config.chains import UNISWAP_V3_FEE_TIERS, VenueFamily, ZERO_ADDRESS
from ..core.cache import TTLCache
from ..models.opportunity import Pool
from ..models.token import TokenRegistry
from .base import DexAdapter, NO_QUOTE, Quote, SwapCall
from .uniswap_v2 import sort_tokens

UNISWAP_V3_FACTORY_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "tokenA", "type": "address"},
            {"internalType": "address", "name": "tokenB", "type": "address"},
            {"internalType": "uint24", "name": "fee", "type": "uint24"}
        ],
        "name": "getPool",
        "outputs": [{"internalType": "address", "name": "pool", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    }
]

# Quoter V1 is not a view contract, but eth_call on it is side-effect free
UNISWAP_V3_QUOTER_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "tokenIn", "type": "address"},
            {"internalType": "address", "name": "tokenOut", "type": "address"},
            {"internalType": "uint24", "name": "fee", "type": "uint24"},
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "uint160", "name": "sqrtPriceLimitX96", "type": "uint160"}
        ],
        "name": "quoteExactInputSingle",
        "outputs": [{"internalType": "uint256", "name": "amountOut", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]

UNISWAP_V3_ROUTER_ABI = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "tokenIn", "type": "address"},
                    {"internalType": "address", "name": "tokenOut", "type": "address"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"},
                    {"internalType": "address", "name": "recipient", "type": "address"},
                    {"internalType": "uint256", "name": "deadline", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountOutMinimum", "type": "uint256"},
                    {"internalType": "uint160", "name": "sqrtPriceLimitX96", "type": "uint160"}
                ],
                "internalType": "struct ISwapRouter.ExactInputSingleParams",
                "name": "params",
                "type": "tuple"
            }
        ],
        "name": "exactInputSingle",
        "outputs": [{"internalType": "uint256", "name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function"
    }
]


class UniswapV3Adapter(DexAdapter):
    """Concentrated-liquidity venue quoted once per fee tier."""

    family = VenueFamily.CONCENTRATED_LIQUIDITY

    def __init__(
        self,
        name: str,
        web3: Web3,
        router: str,
        factory: str,
        quoter: str,
        venue_id: Optional[int] = None,
        tokens: Optional[TokenRegistry] = None,
        fee_tiers: Optional[List[int]] = None,
        pool_cache: Optional[TTLCache] = None
    ):
        super().__init__(name, web3, venue_id, tokens)
        self.logger = logging.getLogger(__name__)
        self.fee_tiers = list(fee_tiers or UNISWAP_V3_FEE_TIERS)
        self.pool_cache = pool_cache or TTLCache()

        self.router = web3.eth.contract(
            address=Web3.to_checksum_address(router),
            abi=UNISWAP_V3_ROUTER_ABI
        )
        self.factory = web3.eth.contract(
            address=Web3.to_checksum_address(factory),
            abi=UNISWAP_V3_FACTORY_ABI
        )
        self.quoter = web3.eth.contract(
            address=Web3.to_checksum_address(quoter),
            abi=UNISWAP_V3_QUOTER_ABI
        )

    async def get_pool_address(self, token_a: str, token_b: str, fee: int) -> Optional[str]:
        key = (frozenset({token_a.lower(), token_b.lower()}), fee)
        if key in self.pool_cache:
            return self.pool_cache.get(key)

        try:
            pool_address = await self.factory.functions.getPool(
                Web3.to_checksum_address(token_a),
                Web3.to_checksum_address(token_b),
                fee
            ).call()
        except Exception as e:
            self.logger.error(f"Error getting pool for fee tier {fee}: {str(e)}")
            return None

        if not pool_address or pool_address.lower() == ZERO_ADDRESS:
            pool_address = None

        # Missing tiers are cached too, so they are not looked up every tick
        self.pool_cache.set(key, pool_address)
        return pool_address

    async def find_pools(self, token_a: str, token_b: str) -> List[Pool]:
        pools = []
        ordered = sort_tokens(token_a, token_b)
        for fee in self.fee_tiers:
            pool_address = await self.get_pool_address(token_a, token_b, fee)
            if pool_address:
                pools.append(
                    Pool(
                        dex=self.name,
                        address=pool_address,
                        id=f"{pool_address}:{fee}",
                        tokens=ordered,
                        fee=fee
                    )
                )
        return pools

    async def quote_tier(self, token_in: str, token_out: str, fee: int, amount_in: int) -> int:
        """Quote a single fee tier; a missing pool is a zero, not an error."""
        try:
            return await self.quoter.functions.quoteExactInputSingle(
                Web3.to_checksum_address(token_in),
                Web3.to_checksum_address(token_out),
                fee,
                amount_in,
                0
            ).call()
        except Exception as e:
            self.logger.debug(f"No quote for fee tier {fee} on {self.name}: {str(e)}")
            return 0

    async def quote(
        self,
        pool: Pool,
        token_in: str,
        token_out: str,
        amount_in: int
    ) -> Quote:
        if amount_in <= 0:
            return NO_QUOTE

        tiers = [pool.fee] if pool.fee else self.fee_tiers
        best_amount, best_fee = 0, None
        for fee in tiers:
            amount_out = await self.quote_tier(token_in, token_out, fee, amount_in)
            if amount_out > best_amount:
                best_amount, best_fee = amount_out, fee

        if best_fee is None:
            return NO_QUOTE
        return Quote(best_amount, fee=best_fee)

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
        fee = pool.fee or self.fee_tiers[0]
        data = self.router.encode_abi(
            "exactInputSingle",
            args=[(
                Web3.to_checksum_address(token_in),
                Web3.to_checksum_address(token_out),
                fee,
                Web3.to_checksum_address(recipient),
                deadline or self.default_deadline(),
                amount_in,
                min_amount_out,
                0
            )]
        )
        return SwapCall(to=self.router.address, data=data)
