from typing import Dict, List, Optional
from web3 import Web3
from web3.logs import DISCARD
import logging

from ..core.errors import RevertReason
from ..models.opportunity import ArbitrageOpportunity, RouteLayout

_ROUTE_INPUTS = [
    {"internalType": "address", "name": "loanAsset", "type": "address"},
    {"internalType": "uint256", "name": "loanAmount", "type": "uint256"},
    {"internalType": "address[]", "name": "path", "type": "address[]"},
    {"internalType": "uint8[]", "name": "venues", "type": "uint8[]"},
    {"internalType": "uint24[]", "name": "fees", "type": "uint24[]"}
]

FLASH_ARBITRAGE_ABI = [
    {
        "inputs": _ROUTE_INPUTS,
        "name": "executeArbitrage",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": _ROUTE_INPUTS,
        "name": "executeTriangleArbitrage",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "uint8", "name": "venueId", "type": "uint8"},
            {"internalType": "address", "name": "router", "type": "address"},
            {"internalType": "uint8", "name": "kind", "type": "uint8"}
        ],
        "name": "setRouter",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "tokenA", "type": "address"},
            {"internalType": "address", "name": "tokenB", "type": "address"},
            {"internalType": "uint24", "name": "fee", "type": "uint24"}
        ],
        "name": "setPairFee",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "uint24", "name": "fee", "type": "uint24"}],
        "name": "setDefaultFee",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "uint256", "name": "amount", "type": "uint256"}],
        "name": "setMinProfitAmount",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"}
        ],
        "name": "withdraw",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "asset", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "amount", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "profit", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "timestamp", "type": "uint256"}
        ],
        "name": "ArbitrageExecuted",
        "type": "event"
    }
]

ENTRY_POINTS = {
    RouteLayout.PLAIN: "executeArbitrage",
    RouteLayout.TRIANGLE: "executeTriangleArbitrage",
}


class ArbitrageContractClient:
    """Typed access to the deployed arbitrage contract."""

    def __init__(self, web3: Web3, address: str):
        self.web3 = web3
        self.logger = logging.getLogger(__name__)
        self.contract = web3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=FLASH_ARBITRAGE_ABI
        )

    @property
    def address(self) -> str:
        return self.contract.address

    @staticmethod
    def route_args(opportunity: ArbitrageOpportunity) -> List:
        """Entry point arguments; refuses hops the contract cannot route."""
        if not opportunity.executable:
            raise ValueError(
                f"Opportunity on {' -> '.join(opportunity.route)} is not executable"
            )

        hops = len(opportunity.venue_selectors)
        fees = list(opportunity.fee_tiers) if opportunity.fee_tiers else [0] * hops
        return [
            Web3.to_checksum_address(opportunity.token_borrow),
            opportunity.loan_amount,
            [Web3.to_checksum_address(token) for token in opportunity.path.tokens],
            list(opportunity.venue_selectors),
            fees
        ]

    def entry_point(self, opportunity: ArbitrageOpportunity):
        name = ENTRY_POINTS[opportunity.layout]
        return getattr(self.contract.functions, name)(*self.route_args(opportunity))

    def encode_call(self, opportunity: ArbitrageOpportunity) -> str:
        return self.contract.encode_abi(
            ENTRY_POINTS[opportunity.layout],
            args=self.route_args(opportunity)
        )

    async def build_transaction(self, opportunity: ArbitrageOpportunity, tx_params: Dict) -> Dict:
        return await self.entry_point(opportunity).build_transaction(tx_params)

    def set_router(self, venue_id: int, router: str, kind: int):
        return self.contract.functions.setRouter(venue_id, Web3.to_checksum_address(router), kind)

    def set_pair_fee(self, token_a: str, token_b: str, fee: int):
        return self.contract.functions.setPairFee(
            Web3.to_checksum_address(token_a), Web3.to_checksum_address(token_b), fee
        )

    def set_default_fee(self, fee: int):
        return self.contract.functions.setDefaultFee(fee)

    def set_min_profit(self, amount: int):
        return self.contract.functions.setMinProfitAmount(amount)

    def withdraw(self, token: str, amount: int):
        return self.contract.functions.withdraw(Web3.to_checksum_address(token), amount)

    def decode_profit(self, receipt) -> Optional[int]:
        """Realized profit from the ArbitrageExecuted event, if the receipt has one."""
        try:
            events = self.contract.events.ArbitrageExecuted().process_receipt(
                receipt, errors=DISCARD
            )
        except Exception as e:
            self.logger.error(f"Error decoding profit event: {str(e)}")
            return None

        if not events:
            return None
        return sum(event["args"]["profit"] for event in events)

    @staticmethod
    def decode_revert(message: Optional[str]) -> RevertReason:
        return RevertReason.from_message(message)
