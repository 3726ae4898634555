from typing import List, Optional
from web3 import Web3
import logging

from ..config.chains import BALANCER_KNOWN_POOLS, KnownPool, VenueFamily
from ..core.amm_math import (
    conservative_amount_out_estimate,
    rescale,
    stable_amount_out_estimate,
    weighted_amount_out_estimate,
)
from ..models.opportunity import Pool
from ..models.token import TokenRegistry
from .base import DexAdapter, NO_QUOTE, Quote, SwapCall

# Balancer V2 SwapKind
GIVEN_IN = 0

_SINGLE_SWAP = {
    "components": [
        {"internalType": "bytes32", "name": "poolId", "type": "bytes32"},
        {"internalType": "enum IVault.SwapKind", "name": "kind", "type": "uint8"},
        {"internalType": "contract IAsset", "name": "assetIn", "type": "address"},
        {"internalType": "contract IAsset", "name": "assetOut", "type": "address"},
        {"internalType": "uint256", "name": "amount", "type": "uint256"},
        {"internalType": "bytes", "name": "userData", "type": "bytes"}
    ],
    "internalType": "struct IVault.SingleSwap",
    "name": "singleSwap",
    "type": "tuple"
}

_BATCH_SWAP_STEPS = {
    "components": [
        {"internalType": "bytes32", "name": "poolId", "type": "bytes32"},
        {"internalType": "uint256", "name": "assetInIndex", "type": "uint256"},
        {"internalType": "uint256", "name": "assetOutIndex", "type": "uint256"},
        {"internalType": "uint256", "name": "amount", "type": "uint256"},
        {"internalType": "bytes", "name": "userData", "type": "bytes"}
    ],
    "internalType": "struct IVault.BatchSwapStep[]",
    "name": "swaps",
    "type": "tuple[]"
}

_FUND_MANAGEMENT = {
    "components": [
        {"internalType": "address", "name": "sender", "type": "address"},
        {"internalType": "bool", "name": "fromInternalBalance", "type": "bool"},
        {"internalType": "address payable", "name": "recipient", "type": "address"},
        {"internalType": "bool", "name": "toInternalBalance", "type": "bool"}
    ],
    "internalType": "struct IVault.FundManagement",
    "name": "funds",
    "type": "tuple"
}

BALANCER_VAULT_ABI = [
    {
        "inputs": [
            {"internalType": "enum IVault.SwapKind", "name": "kind", "type": "uint8"},
            _BATCH_SWAP_STEPS,
            {"internalType": "contract IAsset[]", "name": "assets", "type": "address[]"},
            _FUND_MANAGEMENT
        ],
        "name": "queryBatchSwap",
        "outputs": [{"internalType": "int256[]", "name": "", "type": "int256[]"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            _SINGLE_SWAP,
            _FUND_MANAGEMENT,
            {"internalType": "uint256", "name": "limit", "type": "uint256"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "swap",
        "outputs": [{"internalType": "uint256", "name": "amountCalculated", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function"
    }
]


class BalancerAdapter(DexAdapter):
    """Weighted and stable invariant pools behind the Balancer V2 vault."""

    family = VenueFamily.WEIGHTED

    def __init__(
        self,
        name: str,
        web3: Web3,
        vault: str,
        venue_id: Optional[int] = None,
        tokens: Optional[TokenRegistry] = None,
        known_pools: Optional[List[KnownPool]] = None
    ):
        super().__init__(name, web3, venue_id, tokens)
        self.logger = logging.getLogger(__name__)
        self.known_pools = list(BALANCER_KNOWN_POOLS if known_pools is None else known_pools)

        self.vault = web3.eth.contract(
            address=Web3.to_checksum_address(vault),
            abi=BALANCER_VAULT_ABI
        )

    async def find_pools(self, token_a: str, token_b: str) -> List[Pool]:
        pools = []
        for known in self.known_pools:
            members = {t.lower() for t in known.tokens}
            if token_a.lower() in members and token_b.lower() in members:
                pools.append(
                    Pool(
                        dex=self.name,
                        address=known.address,
                        id=known.pool_id or known.address,
                        tokens=tuple(known.tokens),
                        fee=known.fee_bps * 100,
                        metadata={
                            "pool_type": known.pool_type,
                            "weights": dict(known.weights),
                            "fee_bps": known.fee_bps,
                        }
                    )
                )
        return pools

    async def query_batch_swap(
        self,
        pool: Pool,
        token_in: str,
        token_out: str,
        amount_in: int
    ) -> int:
        """Authoritative vault quote. The vault reports the out leg as a negative delta."""
        sender = Web3.to_checksum_address(self.vault.address)
        deltas = await self.vault.functions.queryBatchSwap(
            GIVEN_IN,
            [(pool.id, 0, 1, amount_in, b"")],
            [Web3.to_checksum_address(token_in), Web3.to_checksum_address(token_out)],
            (sender, False, sender, False)
        ).call()
        return max(-deltas[1], 0)

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
            amount_out = await self.query_batch_swap(pool, token_in, token_out, amount_in)
            if amount_out > 0:
                return Quote(amount_out)
        except Exception as e:
            self.logger.warning(f"queryBatchSwap failed for pool {pool.id}: {str(e)}")

        return self.estimate(pool, token_in, token_out, amount_in)

    def estimate(self, pool: Pool, token_in: str, token_out: str, amount_in: int) -> Quote:
        """Closed-form fallback selected by pool type. Never authoritative."""
        pool_type = pool.metadata.get("pool_type", "unknown")
        fee_bps = pool.metadata.get("fee_bps", 0)
        decimals_in = self.tokens.decimals(token_in)
        decimals_out = self.tokens.decimals(token_out)

        if pool_type == "weighted":
            weights = pool.metadata.get("weights", {})
            amount_out = weighted_amount_out_estimate(
                rescale(amount_in, decimals_in, decimals_out),
                weights.get(token_in.lower(), 0),
                weights.get(token_out.lower(), 0),
                fee_bps
            )
        elif pool_type == "stable":
            amount_out = stable_amount_out_estimate(amount_in, fee_bps, decimals_in, decimals_out)
        else:
            amount_out = conservative_amount_out_estimate(
                rescale(amount_in, decimals_in, decimals_out)
            )

        self.logger.warning(
            f"Using estimated quote for {pool_type} pool {pool.id}: {amount_out}"
        )
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
        recipient = Web3.to_checksum_address(recipient)
        data = self.vault.encode_abi(
            "swap",
            args=[
                (
                    pool.id,
                    GIVEN_IN,
                    Web3.to_checksum_address(token_in),
                    Web3.to_checksum_address(token_out),
                    amount_in,
                    b""
                ),
                (recipient, False, recipient, False),
                min_amount_out,
                deadline or self.default_deadline()
            ]
        )
        return SwapCall(to=self.vault.address, data=data)
