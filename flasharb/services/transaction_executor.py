from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from dataclasses import dataclass
import asyncio
import logging

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError

from ..config.settings import ExecutorConfig
from ..contracts.client import ArbitrageContractClient
from ..core.errors import ArbitrageError, AuthorizationFailure, ChainRevert, RevertReason
from ..models.opportunity import ArbitrageOpportunity, ExecutionOutcome, FailureKind
from .gas_strategy import GasStrategy
from .mev_protection import FlashbotsRelay

SendFunction = Callable[[int], Awaitable[str]]


class GasBudgetExceeded(ArbitrageError):
    """The gas bid would spend more of the profit than the strategy allows."""


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one submission attempt."""
    attempt: int
    tx_hash: Optional[str] = None
    receipt: Optional[Any] = None
    retryable: bool = False
    failure: Optional[FailureKind] = None
    revert_reason: Optional[RevertReason] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.receipt is not None and self.receipt["status"] == 1


def _revert_message(error: Exception) -> str:
    return getattr(error, "message", None) or str(error)


def _as_hex(value: Any) -> str:
    return value if isinstance(value, str) else Web3.to_hex(value)


class TransactionExecutor:
    """Submits arbitrage transactions with bounded retries.

    Node and network errors while sending are retried with backoff and a
    fresh gas bid. Once a transaction is broadcast it is never sent again,
    even if its receipt does not arrive in time. On-chain reverts are
    terminal: the same call against the same market would revert again.
    """

    def __init__(
        self,
        web3: Web3,
        account: LocalAccount,
        gas_strategy: GasStrategy,
        config: Optional[ExecutorConfig] = None,
        relay: Optional[FlashbotsRelay] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        receipt_timeout: float = 120
    ):
        self.web3 = web3
        self.account = account
        self.gas_strategy = gas_strategy
        self.config = config or ExecutorConfig()
        self.relay = relay
        self.sleep = sleep
        self.receipt_timeout = receipt_timeout
        self.logger = logging.getLogger(__name__)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay_ms = self.config.backoff_ms
        if self.config.backoff == "exponential":
            delay_ms = delay_ms * 2 ** (attempt - 1)
        return delay_ms / 1000

    async def revert_reason(self, tx_hash: str, receipt: Dict) -> Tuple[RevertReason, str]:
        """Replay a mined, reverted transaction to recover its revert string.

        Returns the classified reason and the node's message as given; the
        message falls back to the reason when the replay yields nothing.
        """
        try:
            tx = await self.web3.eth.get_transaction(tx_hash)
            await self.web3.eth.call(
                {
                    "from": tx["from"],
                    "to": tx["to"],
                    "data": tx["input"],
                    "value": tx.get("value", 0),
                    "gas": tx["gas"],
                },
                block_identifier=receipt["blockNumber"]
            )
        except ContractLogicError as e:
            message = _revert_message(e)
            return RevertReason.from_message(message), message
        except Exception as e:
            self.logger.error(f"Error replaying reverted transaction: {str(e)}")
        return RevertReason.UNKNOWN, RevertReason.UNKNOWN.value

    async def _confirm(self, attempt: int, tx_hash: str) -> AttemptResult:
        """Wait for a broadcast transaction.

        Nothing here is retryable: once broadcast, the transaction may still
        be mined, and a second copy would execute the same trade again.
        """
        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except Exception as e:
            self.logger.error(f"Transaction {tx_hash} not confirmed: {str(e)}")
            return AttemptResult(
                attempt,
                tx_hash=tx_hash,
                failure=FailureKind.UNCONFIRMED,
                error=str(e)
            )

        self.logger.info(f"Transaction confirmed in block {receipt['blockNumber']}")
        if receipt["status"] == 1:
            return AttemptResult(attempt, tx_hash=tx_hash, receipt=receipt)

        reason, message = await self.revert_reason(tx_hash, receipt)
        self.logger.warning(f"Transaction {tx_hash} reverted: {message}")
        return AttemptResult(
            attempt,
            tx_hash=tx_hash,
            failure=(
                FailureKind.UNAUTHORIZED if reason == RevertReason.UNAUTHORIZED
                else FailureKind.REVERTED
            ),
            revert_reason=reason,
            error=message
        )

    async def _attempt(self, attempt: int, send: SendFunction, profit: int) -> AttemptResult:
        try:
            gas_price = await self.gas_strategy.get_gas_price(self.web3, profit)
            tx_hash = _as_hex(await send(gas_price))
        except GasBudgetExceeded as e:
            return AttemptResult(attempt, failure=FailureKind.GAS_BUDGET_EXCEEDED, error=str(e))
        except AuthorizationFailure as e:
            return AttemptResult(
                attempt,
                failure=FailureKind.UNAUTHORIZED,
                revert_reason=e.reason,
                error=e.message
            )
        except ChainRevert as e:
            return AttemptResult(
                attempt,
                failure=FailureKind.REVERTED,
                revert_reason=e.reason,
                error=e.message
            )
        except ContractLogicError as e:
            reason = RevertReason.from_message(_revert_message(e))
            failure = (
                FailureKind.UNAUTHORIZED if reason == RevertReason.UNAUTHORIZED
                else FailureKind.REVERTED
            )
            return AttemptResult(attempt, failure=failure, revert_reason=reason, error=str(e))
        except Exception as e:
            self.logger.error(f"Attempt {attempt} failed: {str(e)}")
            return AttemptResult(
                attempt,
                retryable=True,
                failure=FailureKind.SUBMISSION,
                error=str(e)
            )

        self.logger.info(f"Transaction sent: {tx_hash}")
        return await self._confirm(attempt, tx_hash)

    async def execute_with_retry(
        self,
        send: SendFunction,
        profit: int,
        realized_profit: Optional[Callable[[Any], Optional[int]]] = None
    ) -> ExecutionOutcome:
        """Run ``send(gas_price)`` until it is mined or the attempt budget is spent."""
        max_attempts = self.config.max_attempts
        last: Optional[AttemptResult] = None

        for attempt in range(1, max_attempts + 1):
            self.logger.info(f"Attempt {attempt}/{max_attempts}")
            result = await self._attempt(attempt, send, profit)

            if result.success:
                return ExecutionOutcome(
                    tx_hash=result.tx_hash,
                    success=True,
                    realized_profit=realized_profit(result.receipt) if realized_profit else None,
                    attempts=attempt
                )

            last = result
            if not result.retryable:
                break

            if attempt < max_attempts:
                delay = self.backoff_delay(attempt)
                self.logger.info(f"Retrying in {delay:.1f}s...")
                await self.sleep(delay)
        else:
            self.logger.error(f"All {max_attempts} attempts failed")

        return ExecutionOutcome(
            tx_hash=last.tx_hash,
            success=False,
            failure=last.failure,
            revert_reason=last.revert_reason,
            attempts=last.attempt,
            error=last.error
        )

    async def _build_transaction(
        self,
        opportunity: ArbitrageOpportunity,
        client: ArbitrageContractClient,
        gas_price: int,
        gas_limit: int
    ) -> Dict:
        return await client.build_transaction(opportunity, {
            "from": self.account.address,
            "nonce": await self.web3.eth.get_transaction_count(self.account.address, "pending"),
            "gas": gas_limit,
            "gasPrice": gas_price,
            "chainId": await self.web3.eth.chain_id,
        })

    async def execute_opportunity(
        self,
        opportunity: ArbitrageOpportunity,
        client: ArbitrageContractClient,
        gas_limit: Optional[int] = None,
        profit_wei: Optional[int] = None
    ) -> ExecutionOutcome:
        """Sign and submit the contract call for ``opportunity``.

        ``profit_wei`` is the expected profit in native units, used for gas
        bidding and budgeting; it defaults to the raw expected profit, which
        is right when the loan asset is the wrapped native token.
        """
        if not opportunity.executable:
            return ExecutionOutcome(
                tx_hash=None,
                success=False,
                failure=FailureKind.NOT_EXECUTABLE,
                error="Route includes a venue the contract cannot execute"
            )

        gas_limit = gas_limit or self.config.gas_limit
        profit = opportunity.expected_profit if profit_wei is None else profit_wei
        max_gas_spend = self.gas_strategy.get_max_gas_spend(profit)

        if self.relay is not None and self.config.use_private_relay:
            outcome = await self._execute_private(
                opportunity, client, gas_limit, profit, max_gas_spend
            )
            if outcome.failure != FailureKind.NOT_INCLUDED or not self.config.public_fallback:
                return outcome
            self.logger.warning("Bundle not included, falling back to public submission")

        async def send(gas_price: int) -> str:
            if gas_price * gas_limit > max_gas_spend:
                raise GasBudgetExceeded(
                    f"Gas cost {gas_price * gas_limit} exceeds budget {max_gas_spend}"
                )
            tx = await self._build_transaction(opportunity, client, gas_price, gas_limit)
            signed = self.account.sign_transaction(tx)
            return await self.web3.eth.send_raw_transaction(signed.raw_transaction)

        return await self.execute_with_retry(send, profit, client.decode_profit)

    async def _execute_private(
        self,
        opportunity: ArbitrageOpportunity,
        client: ArbitrageContractClient,
        gas_limit: int,
        profit: int,
        max_gas_spend: int
    ) -> ExecutionOutcome:
        try:
            gas_price = await self.gas_strategy.get_gas_price(self.web3, profit)
            if gas_price * gas_limit > max_gas_spend:
                return ExecutionOutcome(
                    tx_hash=None,
                    success=False,
                    failure=FailureKind.GAS_BUDGET_EXCEEDED,
                    attempts=1,
                    error=f"Gas cost {gas_price * gas_limit} exceeds budget {max_gas_spend}"
                )

            target_block = await self.web3.eth.block_number + 1
            tx = await self._build_transaction(opportunity, client, gas_price, gas_limit)
            signed_bundle = self.relay.sign_bundle([tx])
            tx_hash = Web3.to_hex(Web3.keccak(hexstr=signed_bundle[0]))
        except Exception as e:
            self.logger.error(f"Error preparing bundle: {str(e)}")
            return ExecutionOutcome(
                tx_hash=None, success=False, failure=FailureKind.SUBMISSION, attempts=1, error=str(e)
            )

        try:
            await self.relay.simulate(signed_bundle, target_block)
        except ChainRevert as e:
            self.logger.warning(f"Bundle simulation reverted: {e.message}")
            return ExecutionOutcome(
                tx_hash=tx_hash,
                success=False,
                failure=FailureKind.SIMULATION_FAILED,
                revert_reason=e.reason,
                attempts=1,
                error=e.message
            )
        except Exception as e:
            self.logger.error(f"Bundle simulation failed: {str(e)}")
            return ExecutionOutcome(
                tx_hash=tx_hash,
                success=False,
                failure=FailureKind.SIMULATION_FAILED,
                attempts=1,
                error=str(e)
            )

        receipt = await self.relay.submit(
            signed_bundle, tx_hash, target_block, self.config.max_block_attempts
        )
        if receipt is None:
            return ExecutionOutcome(
                tx_hash=tx_hash,
                success=False,
                failure=FailureKind.NOT_INCLUDED,
                attempts=self.config.max_block_attempts,
                error="Bundle was not included"
            )

        if receipt["status"] != 1:
            reason, message = await self.revert_reason(tx_hash, receipt)
            return ExecutionOutcome(
                tx_hash=tx_hash,
                success=False,
                failure=FailureKind.REVERTED,
                revert_reason=reason,
                attempts=1,
                error=message
            )

        return ExecutionOutcome(
            tx_hash=tx_hash,
            success=True,
            realized_profit=client.decode_profit(receipt),
            attempts=1
        )
