from typing import List, Optional
from web3 import Web3
import logging

from ..config.chains import CURVE_KNOWN_POOLS, KnownPool, VenueFamily
from ..core.amm_math import stable_amount_out_estimate
from ..models.opportunity import Pool
from ..models.token import TokenRegistry
from .base import DexAdapter, NO_QUOTE, Quote, SwapCall

CURVE_POOL_ABI = [
    {
        "name": "get_dy",
        "inputs": [
            {"name": "i", "type": "int128"},
            {"name": "j", "type": "int128"},
            {"name": "dx", "type": "uint256"}
        ],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "name": "exchange",
        "inputs": [
            {"name": "i", "type": "int128"},
            {"name": "j", "type": "int128"},
            {"name": "dx", "type": "uint256"},
            {"name": "min_dy", "type": "uint256"}
        ],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


class CurveAdapter(DexAdapter):
    """Stable-swap pools, coins addressed by index."""

    family = VenueFamily.STABLE_SWAP

    def __init__(
        self,
        name: str,
        web3: Web3,
        venue_id: Optional[int] = None,
        tokens: Optional[TokenRegistry] = None,
        known_pools: Optional[List[KnownPool]] = None
    ):
        super().__init__(name, web3, venue_id, tokens)
        self.logger = logging.getLogger(__name__)
        self.known_pools = list(CURVE_KNOWN_POOLS if known_pools is None else known_pools)

    def _pool_contract(self, pool: Pool):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(pool.address),
            abi=CURVE_POOL_ABI
        )

    @staticmethod
    def coin_index(pool: Pool, token: str) -> int:
        return pool.metadata["coins"].index(token.lower())

    async def find_pools(self, token_a: str, token_b: str) -> List[Pool]:
        pools = []
        for known in self.known_pools:
            coins = [t.lower() for t in known.tokens]
            if token_a.lower() in coins and token_b.lower() in coins:
                pools.append(
                    Pool(
                        dex=self.name,
                        address=known.address,
                        id=known.address,
                        tokens=tuple(known.tokens),
                        fee=known.fee_bps * 100,
                        metadata={"coins": coins, "fee_bps": known.fee_bps}
                    )
                )
        return pools

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
            i = self.coin_index(pool, token_in)
            j = self.coin_index(pool, token_out)
        except (KeyError, ValueError):
            return NO_QUOTE

        try:
            amount_out = await self._pool_contract(pool).functions.get_dy(i, j, amount_in).call()
            if amount_out > 0:
                return Quote(amount_out)
        except Exception as e:
            self.logger.warning(f"get_dy failed for Curve pool {pool.address}: {str(e)}")

        amount_out = stable_amount_out_estimate(
            amount_in,
            pool.metadata.get("fee_bps", 4),
            self.tokens.decimals(token_in),
            self.tokens.decimals(token_out)
        )
        self.logger.warning(f"Using estimated quote for stable pool {pool.address}: {amount_out}")
        return Quote(amount_out, estimated=True)

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
        # Curve pools pay the caller; recipient and deadline do not apply
        contract = self._pool_contract(pool)
        data = contract.encode_abi(
            "exchange",
            args=[
                self.coin_index(pool, token_in),
                self.coin_index(pool, token_out),
                amount_in,
                min_amount_out
            ]
        )
        return SwapCall(to=contract.address, data=data)
