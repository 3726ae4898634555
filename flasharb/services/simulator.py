from typing import Optional
import logging

from ..contracts.client import ArbitrageContractClient
from ..contracts.flash_arbitrage import FlashArbitrageContract
from ..contracts.ledger import LocalChain, Receipt
from ..core.errors import ChainRevert, RevertReason
from ..models.opportunity import (
    ArbitrageOpportunity,
    ExecutionOutcome,
    FailureKind,
    RouteLayout,
)


class ArbitrageSimulator:
    """Runs opportunities against the local contract model.

    Used for dry runs: the same entry points, fee resolution and profit
    checks as the deployed contract, without a network.
    """

    def __init__(self, chain: LocalChain, contract: FlashArbitrageContract, sender: str):
        self.chain = chain
        self.contract = contract
        self.sender = sender
        self.logger = logging.getLogger(__name__)

    def _entry_point(self, opportunity: ArbitrageOpportunity):
        if opportunity.layout == RouteLayout.TRIANGLE:
            return self.contract.execute_triangle_arbitrage
        return self.contract.execute_arbitrage

    @staticmethod
    def _failure(reason: Optional[RevertReason]) -> FailureKind:
        if reason == RevertReason.UNAUTHORIZED:
            return FailureKind.UNAUTHORIZED
        return FailureKind.REVERTED

    @staticmethod
    def realized_profit(receipt: Receipt) -> Optional[int]:
        events = receipt.events("ArbitrageExecuted")
        if not events:
            return None
        return sum(event.args["profit"] for event in events)

    def simulate(self, opportunity: ArbitrageOpportunity) -> ExecutionOutcome:
        """Execute as one local transaction; state changes persist on success."""
        if not opportunity.executable:
            return ExecutionOutcome(
                tx_hash=None,
                success=False,
                failure=FailureKind.NOT_EXECUTABLE,
                error="Route includes a venue the contract cannot execute"
            )

        receipt = self.chain.transact(
            self._entry_point(opportunity),
            self.sender,
            *ArbitrageContractClient.route_args(opportunity)
        )

        if receipt.status != 1:
            self.logger.info(f"Simulated transaction reverted: {receipt.revert_message}")
            return ExecutionOutcome(
                tx_hash=receipt.tx_hash,
                success=False,
                failure=self._failure(receipt.revert_reason),
                revert_reason=receipt.revert_reason,
                attempts=1,
                error=receipt.revert_message
            )

        profit = self.realized_profit(receipt)
        self.logger.info(f"Simulated arbitrage succeeded with profit {profit}")
        return ExecutionOutcome(
            tx_hash=receipt.tx_hash,
            success=True,
            realized_profit=profit,
            attempts=1
        )

    def preview(self, opportunity: ArbitrageOpportunity) -> ExecutionOutcome:
        """Like ``simulate`` but read-only: the chain is left untouched."""
        if not opportunity.executable:
            return self.simulate(opportunity)

        try:
            profit = self.chain.call(
                self._entry_point(opportunity),
                self.sender,
                *ArbitrageContractClient.route_args(opportunity)
            )
        except ChainRevert as e:
            return ExecutionOutcome(
                tx_hash=None,
                success=False,
                failure=self._failure(e.reason),
                revert_reason=e.reason,
                attempts=1,
                error=e.message
            )

        return ExecutionOutcome(tx_hash=None, success=True, realized_profit=profit, attempts=1)
