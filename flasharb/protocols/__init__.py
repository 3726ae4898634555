from typing import List, Optional
import logging

from web3 import Web3

from ..config.chains import UNISWAP_V2_FACTORY, UNISWAP_V2_KNOWN_PAIRS, VenueFamily
from ..config.settings import ArbitrageConfig, DexConfig
from ..models.token import TokenRegistry
from .base import DexAdapter, Quote, SwapCall, NO_QUOTE
from .uniswap_v2 import UniswapV2Adapter
from .uniswap_v3 import UniswapV3Adapter
from .balancer import BalancerAdapter
from .curve import CurveAdapter
from .aave_v2 import AaveV2LendingPool

logger = logging.getLogger(__name__)


def build_adapter(
    dex: DexConfig,
    web3: Web3,
    tokens: TokenRegistry,
    reserve_ttl: float = 60.0
) -> DexAdapter:
    """Construct the adapter variant for one configured venue."""
    family = VenueFamily(dex.family)

    if family == VenueFamily.CONSTANT_PRODUCT:
        known_pairs = None
        if dex.factory and dex.factory.lower() == UNISWAP_V2_FACTORY.lower():
            known_pairs = UNISWAP_V2_KNOWN_PAIRS
        return UniswapV2Adapter(
            dex.name,
            web3,
            router=dex.router,
            factory=dex.factory,
            venue_id=dex.venue_id,
            tokens=tokens,
            known_pairs=known_pairs,
            reserve_ttl=reserve_ttl
        )

    if family == VenueFamily.CONCENTRATED_LIQUIDITY:
        return UniswapV3Adapter(
            dex.name,
            web3,
            router=dex.router,
            factory=dex.factory,
            quoter=dex.quoter,
            venue_id=dex.venue_id,
            tokens=tokens,
            fee_tiers=dex.fee_tiers or None
        )

    if family == VenueFamily.WEIGHTED:
        return BalancerAdapter(dex.name, web3, vault=dex.vault, venue_id=dex.venue_id, tokens=tokens)

    return CurveAdapter(dex.name, web3, venue_id=dex.venue_id, tokens=tokens)


def build_adapters(
    config: ArbitrageConfig,
    web3: Web3,
    tokens: Optional[TokenRegistry] = None
) -> List[DexAdapter]:
    """Adapters for every enabled venue in the configuration."""
    tokens = tokens or TokenRegistry.from_config(config.tokens)
    adapters = []
    for dex in config.dexes:
        if not dex.enabled:
            continue
        try:
            adapters.append(build_adapter(dex, web3, tokens, config.scanner.reserve_ttl))
        except Exception as e:
            logger.error(f"Error initializing {dex.name}: {str(e)}")
    return adapters


__all__ = [
    "DexAdapter",
    "Quote",
    "SwapCall",
    "NO_QUOTE",
    "UniswapV2Adapter",
    "UniswapV3Adapter",
    "BalancerAdapter",
    "CurveAdapter",
    "AaveV2LendingPool",
    "build_adapter",
    "build_adapters",
]
