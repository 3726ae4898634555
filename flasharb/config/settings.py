from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
import yaml
import os
from web3 import Web3

from .chains import (
    VenueFamily,
    TokenInfo,
    MAINNET_TOKENS,
    UNISWAP_V2_ROUTER,
    UNISWAP_V2_FACTORY,
    SUSHISWAP_ROUTER,
    SUSHISWAP_FACTORY,
    UNISWAP_V3_FACTORY,
    UNISWAP_V3_QUOTER,
    UNISWAP_V3_ROUTER,
    UNISWAP_V3_FEE_TIERS,
    BALANCER_VAULT,
    AAVE_V2_LENDING_POOL,
    FLASHBOTS_RELAYS,
)


class NetworkConfig(BaseModel):
    """Network configuration."""
    rpc_url: str = Field("http://localhost:8545", description="RPC endpoint URL")
    chain_id: int = Field(1, description="Chain ID")
    relay_url: str = Field(FLASHBOTS_RELAYS["mainnet"], description="Private relay endpoint")
    receipt_timeout: int = Field(120, description="Seconds to wait for a receipt")


class ScannerConfig(BaseModel):
    """Opportunity discovery configuration."""
    quote_timeout: float = Field(5.0, gt=0, description="Per-quote timeout in seconds")
    discovery_timeout: float = Field(10.0, gt=0, description="Per-adapter pool discovery timeout")
    top_n: int = Field(10, ge=1, description="Candidates validated per scan")
    max_concurrent_validations: int = Field(5, ge=1)
    validation_timeout: float = Field(5.0, gt=0)
    default_gas_limit: int = Field(500000, ge=21000, description="Gas limit assumed while validating")
    reserve_ttl: float = Field(60.0, gt=0, description="Reserve snapshot TTL in seconds")
    interval: float = Field(1.0, gt=0, description="Seconds between scan ticks")


class ValidatorConfig(BaseModel):
    """Profitability thresholds."""
    min_profit_usd: float = Field(10.0, ge=0)
    slippage_tolerance: float = Field(3.0, ge=0, le=100, description="Slippage haircut in percent")
    min_profit_percentage: float = Field(0.5, ge=0)


class GasConfig(BaseModel):
    """Gas bidding policy."""
    strategy: str = Field("dynamic", description="dynamic / conservative / aggressive")
    max_gas_percentage: Optional[float] = Field(None, gt=0, le=100)
    tier_thresholds: List[int] = Field(
        default_factory=lambda: [
            50000000000000000,   # 0.05 ETH
            100000000000000000,  # 0.1 ETH
            500000000000000000,  # 0.5 ETH
        ]
    )
    tier_premiums: List[int] = Field(default_factory=lambda: [5, 15, 25, 40])


class ExecutorConfig(BaseModel):
    """Transaction submission."""
    max_attempts: int = Field(3, ge=1, le=10)
    backoff_ms: int = Field(2000, ge=0)
    backoff: str = Field("exponential", description="fixed / exponential")
    gas_limit: int = Field(1000000, ge=21000)
    use_private_relay: bool = False
    max_block_attempts: int = Field(5, ge=1)
    public_fallback: bool = False


class DexConfig(BaseModel):
    """One venue the scanner can quote."""
    name: str
    family: VenueFamily
    router: Optional[str] = None
    factory: Optional[str] = None
    quoter: Optional[str] = None
    vault: Optional[str] = None
    fee_tiers: List[int] = Field(default_factory=list)
    venue_id: Optional[int] = Field(None, description="Selector used by the arbitrage contract")
    enabled: bool = True

    model_config = ConfigDict(use_enum_values=True)


class ContractConfig(BaseModel):
    """Deployed arbitrage contract."""
    address: Optional[str] = None
    min_profit: int = Field(0, ge=0, description="On-chain profit floor in loan asset units")
    lending_pool: str = AAVE_V2_LENDING_POOL


def default_dexes() -> List[DexConfig]:
    return [
        DexConfig(
            name="Uniswap V2",
            family=VenueFamily.CONSTANT_PRODUCT,
            router=UNISWAP_V2_ROUTER,
            factory=UNISWAP_V2_FACTORY,
            venue_id=0,
        ),
        DexConfig(
            name="SushiSwap",
            family=VenueFamily.CONSTANT_PRODUCT,
            router=SUSHISWAP_ROUTER,
            factory=SUSHISWAP_FACTORY,
            venue_id=1,
        ),
        DexConfig(
            name="Uniswap V3",
            family=VenueFamily.CONCENTRATED_LIQUIDITY,
            router=UNISWAP_V3_ROUTER,
            factory=UNISWAP_V3_FACTORY,
            quoter=UNISWAP_V3_QUOTER,
            fee_tiers=list(UNISWAP_V3_FEE_TIERS),
            venue_id=2,
        ),
        DexConfig(name="Balancer", family=VenueFamily.WEIGHTED, vault=BALANCER_VAULT),
        DexConfig(name="Curve", family=VenueFamily.STABLE_SWAP),
    ]


class ArbitrageConfig(BaseModel):
    """Main configuration."""
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    gas: GasConfig = Field(default_factory=GasConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    contract: ContractConfig = Field(default_factory=ContractConfig)
    dexes: List[DexConfig] = Field(default_factory=default_dexes)
    tokens: Dict[str, TokenInfo] = Field(default_factory=lambda: dict(MAINNET_TOKENS))

    # Scan targets, by token symbol
    direct_pairs: List[List[str]] = Field(
        default_factory=lambda: [["WETH", "USDC"], ["WETH", "DAI"], ["WETH", "USDT"]]
    )
    triangle_start: Optional[str] = "WETH"
    triangle_intermediates: List[str] = Field(default_factory=lambda: ["DAI", "USDC", "USDT"])
    loan_amounts: Dict[str, int] = Field(
        default_factory=lambda: {"WETH": 10 ** 18},
        description="Flash loan size per borrowed token symbol"
    )


DEFAULT_CONFIG = ArbitrageConfig()


class ConfigManager:
    """Configuration manager."""
    def __init__(self, config_path: str = None):
        self.config_path = config_path or os.getenv(
            "CONFIG_PATH",
            "config/arbitrage.yaml"
        )
        self.config: Optional[ArbitrageConfig] = None
        self.load_config()

    def load_config(self):
        """Load configuration from file."""
        try:
            with open(self.config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}

            self._load_env_vars(config_data)

            self.config = ArbitrageConfig(**config_data)

            self._validate_addresses()

        except Exception as e:
            raise ValueError(f"Error loading config: {str(e)}") from e

    def _load_env_vars(self, config: Dict):
        """Load environment variables into config."""
        env_vars = {
            "NETWORK_RPC_URL": ("network", "rpc_url"),
            "RELAY_URL": ("network", "relay_url"),
            "ARBITRAGE_CONTRACT": ("contract", "address"),
        }

        for env_var, config_path in env_vars.items():
            value = os.getenv(env_var)
            if value:
                current = config
                for key in config_path[:-1]:
                    current = current.setdefault(key, {})
                current[config_path[-1]] = value

    def _validate_addresses(self):
        """Validate Ethereum addresses."""
        try:
            if self.config.contract.address is not None:
                assert Web3.is_address(self.config.contract.address), \
                    "Invalid arbitrage contract address"

            assert Web3.is_address(self.config.contract.lending_pool), \
                "Invalid lending pool address"

            for symbol, token in self.config.tokens.items():
                assert Web3.is_address(token.address), \
                    f"Invalid token address for {symbol}"

            for dex in self.config.dexes:
                for field in ("router", "factory", "quoter", "vault"):
                    address = getattr(dex, field)
                    if address is not None:
                        assert Web3.is_address(address), \
                            f"Invalid {field} address for {dex.name}"

        except AssertionError as e:
            raise ValueError(f"Address validation failed: {str(e)}")

    def save_config(self):
        """Save configuration to file."""
        try:
            config_dict = self.config.model_dump(mode="json")

            with open(self.config_path, "w") as f:
                yaml.safe_dump(config_dict, f, default_flow_style=False)

        except Exception as e:
            raise ValueError(f"Error saving config: {str(e)}") from e

    def get_network_config(self) -> NetworkConfig:
        return self.config.network

    def get_scanner_config(self) -> ScannerConfig:
        return self.config.scanner

    def get_validator_config(self) -> ValidatorConfig:
        return self.config.validator

    def get_gas_config(self) -> GasConfig:
        return self.config.gas

    def get_executor_config(self) -> ExecutorConfig:
        return self.config.executor
