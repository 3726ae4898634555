from typing import Optional, Tuple
from web3 import Web3
import logging

from ..config.chains import AAVE_V2_LENDING_POOL, AAVE_V2_PROTOCOL_DATA_PROVIDER

# Aave V2 charges 0.09% on flash loans
DEFAULT_FLASH_LOAN_PREMIUM_BPS = 9

# Minimal ABIs for interaction
AAVE_LENDING_POOL_ABI = [
    {
        "inputs": [],
        "name": "FLASHLOAN_PREMIUM_TOTAL",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    }
]

AAVE_PROTOCOL_DATA_PROVIDER_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "asset", "type": "address"}],
        "name": "getReserveConfigurationData",
        "outputs": [
            {"internalType": "uint256", "name": "decimals", "type": "uint256"},
            {"internalType": "uint256", "name": "ltv", "type": "uint256"},
            {"internalType": "uint256", "name": "liquidationThreshold", "type": "uint256"},
            {"internalType": "uint256", "name": "liquidationBonus", "type": "uint256"},
            {"internalType": "uint256", "name": "reserveFactor", "type": "uint256"},
            {"internalType": "bool", "name": "usageAsCollateralEnabled", "type": "bool"},
            {"internalType": "bool", "name": "borrowingEnabled", "type": "bool"},
            {"internalType": "bool", "name": "stableBorrowRateEnabled", "type": "bool"},
            {"internalType": "bool", "name": "isActive", "type": "bool"},
            {"internalType": "bool", "name": "isFrozen", "type": "bool"}
        ],
        "stateMutability": "view",
        "type": "function"
    }
]


def flash_loan_premium(amount: int, premium_bps: int = DEFAULT_FLASH_LOAN_PREMIUM_BPS) -> int:
    return amount * premium_bps // 10000


class AaveV2LendingPool:
    """Read-only view of the flash-loan source."""

    def __init__(
        self,
        web3: Web3,
        lending_pool: str = AAVE_V2_LENDING_POOL,
        data_provider: str = AAVE_V2_PROTOCOL_DATA_PROVIDER
    ):
        self.web3 = web3
        self.logger = logging.getLogger(__name__)
        self._premium_bps: Optional[int] = None

        self.lending_pool = web3.eth.contract(
            address=Web3.to_checksum_address(lending_pool),
            abi=AAVE_LENDING_POOL_ABI
        )
        self.data_provider = web3.eth.contract(
            address=Web3.to_checksum_address(data_provider),
            abi=AAVE_PROTOCOL_DATA_PROVIDER_ABI
        )

    async def check_token_availability(self, token: str) -> bool:
        """Check if a token is available for flash loans."""
        try:
            config = await self.data_provider.functions.getReserveConfigurationData(
                Web3.to_checksum_address(token)
            ).call()

            # isActive and not isFrozen
            return bool(config[8]) and not bool(config[9])
        except Exception as e:
            self.logger.error(f"Error checking token availability: {str(e)}")
            return False

    async def get_premium_bps(self) -> int:
        """Flash loan premium in basis points, read once per process."""
        if self._premium_bps is not None:
            return self._premium_bps

        try:
            self._premium_bps = int(
                await self.lending_pool.functions.FLASHLOAN_PREMIUM_TOTAL().call()
            )
        except Exception as e:
            self.logger.error(f"Error getting flash loan premium: {str(e)}")
            return DEFAULT_FLASH_LOAN_PREMIUM_BPS

        return self._premium_bps

    async def simulate_flash_loan(self, asset: str, amount: int) -> Tuple[bool, int]:
        """Check availability and return the premium owed on ``amount``."""
        try:
            if not await self.check_token_availability(asset):
                return False, 0

            premium_bps = await self.get_premium_bps()
            return True, flash_loan_premium(amount, premium_bps)

        except Exception as e:
            self.logger.error(f"Error simulating flash loan: {str(e)}")
            return False, 0
