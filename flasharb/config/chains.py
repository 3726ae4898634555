from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class VenueFamily(str, Enum):
    CONSTANT_PRODUCT = "constant_product"
    CONCENTRATED_LIQUIDITY = "concentrated_liquidity"
    WEIGHTED = "weighted"
    STABLE_SWAP = "stable_swap"


class TokenInfo(BaseModel):
    address: str
    decimals: int = 18


class KnownPool(BaseModel):
    """Statically known pool, used where on-chain discovery is impractical."""
    address: str
    pool_id: Optional[str] = None
    pool_type: str = "weighted"
    tokens: List[str]
    weights: Dict[str, int] = Field(default_factory=dict)
    fee_bps: int = 30


# Ethereum mainnet tokens
MAINNET_TOKENS: Dict[str, TokenInfo] = {
    "WETH": TokenInfo(address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", decimals=18),
    "DAI": TokenInfo(address="0x6B175474E89094C44Da98b954EedeAC495271d0F", decimals=18),
    "USDC": TokenInfo(address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", decimals=6),
    "USDT": TokenInfo(address="0xdAC17F958D2ee523a2206206994597C13D831ec7", decimals=6),
    "WBTC": TokenInfo(address="0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", decimals=8),
    "stETH": TokenInfo(address="0xae7ab96520DE3A18E5e111B5EaAb095312D7fE84", decimals=18),
}

# Uniswap V2
UNISWAP_V2_ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
UNISWAP_V2_FACTORY = "0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f"

# SushiSwap (Uniswap V2 fork)
SUSHISWAP_ROUTER = "0xd9e1cE17f2641f24aE83637ab66a2cca9C378B9F"
SUSHISWAP_FACTORY = "0xC0AEe478e3658e2610c5F7A4A2E1777cE9e4f2Ac"

# Uniswap V3
UNISWAP_V3_FACTORY = "0x1F98431c8aD98523631AE4a59f267346ea31F984"
UNISWAP_V3_QUOTER = "0xb27308f9F90D607463bb33eA1BeBb41C27CE5AB6"
UNISWAP_V3_ROUTER = "0xE592427A0AEce92B3Edc1f35C5C2a7dB7a6DE2F8"
UNISWAP_V3_FEE_TIERS = [100, 500, 3000, 10000]

# Balancer V2
BALANCER_VAULT = "0xBA12222222228d8Ba445958a75a0704d566BF2C8"

# Aave V2
AAVE_V2_LENDING_POOL = "0x7d2768dE32b0b80b7a3454c06BdAc94A69DDc7A9"
AAVE_V2_PROTOCOL_DATA_PROVIDER = "0x057835Ad21a177dbdd3090bB1CAE03EaCF78Fc6d"

# Flashbots relays
FLASHBOTS_RELAYS = {
    "mainnet": "https://relay.flashbots.net",
    "goerli": "https://relay-goerli.flashbots.net",
}

# Well known Uniswap V2 pairs, used when the factory lookup fails on forks
UNISWAP_V2_KNOWN_PAIRS: Dict[frozenset, str] = {
    frozenset({MAINNET_TOKENS["WETH"].address.lower(), MAINNET_TOKENS["USDC"].address.lower()}):
        "0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc",
    frozenset({MAINNET_TOKENS["WETH"].address.lower(), MAINNET_TOKENS["USDT"].address.lower()}):
        "0x0d4a11d5EEaaC28EC3F61d100daF4d40471f1852",
    frozenset({MAINNET_TOKENS["WETH"].address.lower(), MAINNET_TOKENS["DAI"].address.lower()}):
        "0xA478c2975Ab1Ea89e8196811F51A7B7Ade33eB11",
    frozenset({MAINNET_TOKENS["WETH"].address.lower(), MAINNET_TOKENS["WBTC"].address.lower()}):
        "0xBb2b8038a1640196FbE3e38816F3e67Cba72D940",
    frozenset({MAINNET_TOKENS["USDC"].address.lower(), MAINNET_TOKENS["USDT"].address.lower()}):
        "0x3041CbD36888bECc7bbCBc0045E3B1f144466f5f",
    frozenset({MAINNET_TOKENS["DAI"].address.lower(), MAINNET_TOKENS["USDC"].address.lower()}):
        "0xAE461cA67B15dc8dc81CE7615e0320dA1A9aB8D5",
}

BALANCER_KNOWN_POOLS: List[KnownPool] = [
    # WETH-DAI 80/20
    KnownPool(
        address="0x0b09deA16768f0799065C475bE02919503cB2a35",
        pool_id="0x0b09dea16768f0799065c475be02919503cb2a3500020000000000000000001a",
        pool_type="weighted",
        tokens=[MAINNET_TOKENS["WETH"].address, MAINNET_TOKENS["DAI"].address],
        weights={MAINNET_TOKENS["WETH"].address.lower(): 80, MAINNET_TOKENS["DAI"].address.lower(): 20},
        fee_bps=50,
    ),
    # WETH-USDC 80/20
    KnownPool(
        address="0x96646936b91d6B9D7D0c47C496AfBF3D6ec7B6f8",
        pool_id="0x96646936b91d6b9d7d0c47c496afbf3d6ec7b6f8000200000000000000000019",
        pool_type="weighted",
        tokens=[MAINNET_TOKENS["WETH"].address, MAINNET_TOKENS["USDC"].address],
        weights={MAINNET_TOKENS["WETH"].address.lower(): 80, MAINNET_TOKENS["USDC"].address.lower(): 20},
        fee_bps=50,
    ),
    # DAI-USDC-USDT stable
    KnownPool(
        address="0x06Df3b2bbB68adc8B0e302443692037ED9f91b42",
        pool_id="0x06df3b2bbb68adc8b0e302443692037ed9f91b42000000000000000000000063",
        pool_type="stable",
        tokens=[
            MAINNET_TOKENS["DAI"].address,
            MAINNET_TOKENS["USDC"].address,
            MAINNET_TOKENS["USDT"].address,
        ],
        fee_bps=4,
    ),
]

CURVE_KNOWN_POOLS: List[KnownPool] = [
    # 3pool: DAI=0, USDC=1, USDT=2
    KnownPool(
        address="0xbEbc44782C7dB0a1A60Cb6fe97d0b483032FF1C7",
        pool_type="stable",
        tokens=[
            MAINNET_TOKENS["DAI"].address,
            MAINNET_TOKENS["USDC"].address,
            MAINNET_TOKENS["USDT"].address,
        ],
        fee_bps=4,
    ),
    # ETH/stETH, coin 0 is native ETH and is routed as WETH
    KnownPool(
        address="0xDC24316b9AE028F1497c275EB9192a3Ea0f67022",
        pool_type="stable",
        tokens=[MAINNET_TOKENS["WETH"].address, MAINNET_TOKENS["stETH"].address],
        fee_bps=4,
    ),
]


def token_decimals() -> Dict[str, int]:
    """Lower-cased address -> decimals for the mainnet token table."""
    return {info.address.lower(): info.decimals for info in MAINNET_TOKENS.values()}
