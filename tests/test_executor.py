import pytest
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from flasharb.config.settings import ExecutorConfig
from flasharb.core.errors import ChainRevert, RevertReason
from flasharb.models.opportunity import ArbitrageOpportunity, ArbitragePath, FailureKind, Pool
from flasharb.services.transaction_executor import TransactionExecutor

from conftest import DAI, ETHER, GWEI, WETH

TX_HASH = "0x" + "ab" * 32
CONTRACT = Web3.to_checksum_address("0x" + "c0de" * 10)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FakeClient:
    """Stands in for ArbitrageContractClient; builds a plain legacy transaction."""

    def __init__(self, profit=None):
        self.profit = profit
        self.built = []

    async def build_transaction(self, opportunity, tx_params):
        self.built.append(tx_params)
        return dict(tx_params, to=CONTRACT, data="0x", value=0)

    def decode_profit(self, receipt):
        return self.profit


class FakeRelay:
    def __init__(self, simulation_error=None, receipt=None):
        self.simulation_error = simulation_error
        self.receipt = receipt
        self.submitted = []

    def sign_bundle(self, transactions):
        return ["0x" + "11" * 100 for _ in transactions]

    async def simulate(self, signed_bundle, block_number):
        if self.simulation_error is not None:
            raise self.simulation_error
        return {"results": []}

    async def submit(self, signed_bundle, tx_hash, start_block, max_blocks=5):
        self.submitted.append((tx_hash, start_block, max_blocks))
        return self.receipt


def make_opportunity(profit=2 * 10 ** 17, venues=(0, 1)):
    pools = (
        Pool(dex="Uniswap V2", address="0xpool1", id="p1", tokens=(WETH, DAI)),
        Pool(dex="SushiSwap", address="0xpool2", id="p2", tokens=(WETH, DAI)),
    )
    return ArbitrageOpportunity(
        token_borrow=WETH,
        loan_amount=ETHER,
        path=ArbitragePath(tokens=(WETH, DAI, WETH), pools=pools),
        venue_selectors=venues,
        expected_profit=profit,
        profit_usd=600.0,
        price_difference_pct=profit * 100 / ETHER,
        source_dex="Uniswap V2",
        destination_dex="SushiSwap",
        token_symbol="WETH"
    )


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def executor(fake_web3, account, gas_strategy, sleep):
    return TransactionExecutor(fake_web3, account, gas_strategy, ExecutorConfig(), sleep=sleep)


async def test_network_errors_are_retried_with_backoff(executor, sleep):
    """Two dropped submissions, then success on the third attempt."""
    bids = []

    async def send(gas_price):
        bids.append(gas_price)
        if len(bids) < 3:
            raise ConnectionError("connection reset by peer")
        return TX_HASH

    outcome = await executor.execute_with_retry(send, 10 ** 17, lambda receipt: 42)

    assert outcome.success
    assert outcome.attempts == 3
    assert outcome.tx_hash == TX_HASH
    assert outcome.realized_profit == 42
    assert sleep.delays == [2.0, 4.0]
    # 0.1 ETH profit bids 25% over the 20 gwei base
    assert bids == [25 * GWEI] * 3


async def test_attempt_budget_is_respected(fake_web3, account, gas_strategy, sleep):
    config = ExecutorConfig(max_attempts=3, backoff="fixed", backoff_ms=500)
    executor = TransactionExecutor(fake_web3, account, gas_strategy, config, sleep=sleep)

    async def send(gas_price):
        raise TimeoutError("node timed out")

    outcome = await executor.execute_with_retry(send, 10 ** 17)

    assert not outcome.success
    assert outcome.failure == FailureKind.SUBMISSION
    assert outcome.attempts == 3
    assert sleep.delays == [0.5, 0.5]


def test_backoff_schedule(executor):
    assert [executor.backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


@pytest.mark.parametrize("message, failure, reason", [
    ("execution reverted: ARB: insufficient profit", FailureKind.REVERTED, RevertReason.INSUFFICIENT_PROFIT),
    ("execution reverted: ARB: unauthorized", FailureKind.UNAUTHORIZED, RevertReason.UNAUTHORIZED),
    ("execution reverted", FailureKind.REVERTED, RevertReason.UNKNOWN),
])
async def test_reverts_are_terminal(executor, sleep, message, failure, reason):
    attempts = []

    async def send(gas_price):
        attempts.append(gas_price)
        raise ContractLogicError(message)

    outcome = await executor.execute_with_retry(send, 10 ** 17)

    assert outcome.failure == failure
    assert outcome.revert_reason == reason
    assert outcome.attempts == 1
    assert len(attempts) == 1
    assert sleep.delays == []


async def test_local_chain_revert_is_terminal(executor):
    async def send(gas_price):
        raise ChainRevert(RevertReason.PATH_MISMATCH)

    outcome = await executor.execute_with_retry(send, 10 ** 17)

    assert outcome.failure == FailureKind.REVERTED
    assert outcome.revert_reason == RevertReason.PATH_MISMATCH


async def test_mined_revert_is_replayed_for_its_reason(fake_web3, executor):
    fake_web3.eth.receipts[TX_HASH] = {"status": 0, "blockNumber": 100, "logs": []}
    fake_web3.eth.call_error = ContractLogicError("execution reverted: ARB: swap failed")

    async def send(gas_price):
        return TX_HASH

    outcome = await executor.execute_with_retry(send, 10 ** 17)

    assert not outcome.success
    assert outcome.tx_hash == TX_HASH
    assert outcome.failure == FailureKind.REVERTED
    assert outcome.revert_reason == RevertReason.SWAP_FAILED
    assert outcome.attempts == 1


async def test_mined_revert_without_reason_is_unknown(fake_web3, executor):
    fake_web3.eth.receipts[TX_HASH] = {"status": 0, "blockNumber": 100, "logs": []}

    async def send(gas_price):
        return bytes.fromhex("ab" * 32)

    outcome = await executor.execute_with_retry(send, 10 ** 17)

    assert outcome.tx_hash == TX_HASH
    assert outcome.revert_reason == RevertReason.UNKNOWN


async def test_foreign_revert_message_is_kept_verbatim(fake_web3, executor):
    fake_web3.eth.receipts[TX_HASH] = {"status": 0, "blockNumber": 100, "logs": []}
    fake_web3.eth.call_error = ContractLogicError(
        "execution reverted: UniswapV2: INSUFFICIENT_OUTPUT_AMOUNT"
    )

    async def send(gas_price):
        return TX_HASH

    outcome = await executor.execute_with_retry(send, 10 ** 17)

    assert outcome.failure == FailureKind.REVERTED
    assert outcome.revert_reason == RevertReason.UNKNOWN
    assert "UniswapV2: INSUFFICIENT_OUTPUT_AMOUNT" in outcome.error


async def test_unconfirmed_transaction_is_never_resent(fake_web3, executor, sleep):
    async def never_mined(tx_hash, timeout=120):
        raise TimeExhausted(f"Transaction {tx_hash} is not in the chain after {timeout} seconds")

    fake_web3.eth.wait_for_transaction_receipt = never_mined
    broadcasts = []

    async def send(gas_price):
        broadcasts.append(gas_price)
        return TX_HASH

    outcome = await executor.execute_with_retry(send, 10 ** 17)

    assert len(broadcasts) == 1
    assert not outcome.success
    assert outcome.failure == FailureKind.UNCONFIRMED
    assert outcome.tx_hash == TX_HASH
    assert outcome.attempts == 1
    assert sleep.delays == []


async def test_unconfirmed_opportunity_is_signed_once(fake_web3, executor):
    async def never_mined(tx_hash, timeout=120):
        raise TimeExhausted(f"Transaction {tx_hash} is not in the chain after {timeout} seconds")

    fake_web3.eth.wait_for_transaction_receipt = never_mined

    outcome = await executor.execute_opportunity(make_opportunity(), FakeClient())

    assert outcome.failure == FailureKind.UNCONFIRMED
    assert outcome.tx_hash == TX_HASH
    assert len(fake_web3.eth.sent) == 1


async def test_private_bundle_revert_keeps_message(fake_web3, account, gas_strategy, sleep):
    relay = FakeRelay(receipt={"status": 0, "blockNumber": 101, "logs": []})
    fake_web3.eth.call_error = ContractLogicError("execution reverted: ARB: repayment failed")
    executor = TransactionExecutor(
        fake_web3, account, gas_strategy, ExecutorConfig(use_private_relay=True), relay=relay, sleep=sleep
    )

    outcome = await executor.execute_opportunity(make_opportunity(), FakeClient())

    assert outcome.revert_reason == RevertReason.REPAYMENT_FAILED
    assert "ARB: repayment failed" in outcome.error


async def test_execute_opportunity_signs_and_submits(fake_web3, executor):
    client = FakeClient(profit=77)

    outcome = await executor.execute_opportunity(make_opportunity(), client)

    assert outcome.success
    assert outcome.realized_profit == 77
    assert len(fake_web3.eth.sent) == 1
    [params] = client.built
    assert params["gasPrice"] == 25 * GWEI
    assert params["gas"] == ExecutorConfig().gas_limit
    assert params["nonce"] == 7
    assert params["chainId"] == 1


async def test_gas_budget_is_enforced(fake_web3, executor):
    outcome = await executor.execute_opportunity(make_opportunity(profit=10 ** 15), FakeClient())

    assert outcome.failure == FailureKind.GAS_BUDGET_EXCEEDED
    assert outcome.attempts == 1
    assert fake_web3.eth.sent == []


async def test_profit_wei_overrides_expected_profit(fake_web3, executor):
    opportunity = make_opportunity(profit=10 ** 15)

    outcome = await executor.execute_opportunity(opportunity, FakeClient(), profit_wei=2 * 10 ** 17)

    assert outcome.success


async def test_non_executable_opportunity_is_refused(fake_web3, executor):
    outcome = await executor.execute_opportunity(make_opportunity(venues=(None, 1)), FakeClient())

    assert outcome.failure == FailureKind.NOT_EXECUTABLE
    assert fake_web3.eth.sent == []


async def test_private_simulation_failure_stops_submission(fake_web3, account, gas_strategy, sleep):
    relay = FakeRelay(simulation_error=ChainRevert(
        RevertReason.INSUFFICIENT_PROFIT, "Simulation error: ARB: insufficient profit"
    ))
    executor = TransactionExecutor(
        fake_web3, account, gas_strategy, ExecutorConfig(use_private_relay=True), relay=relay, sleep=sleep
    )

    outcome = await executor.execute_opportunity(make_opportunity(), FakeClient())

    assert outcome.failure == FailureKind.SIMULATION_FAILED
    assert outcome.revert_reason == RevertReason.INSUFFICIENT_PROFIT
    assert outcome.tx_hash == Web3.to_hex(Web3.keccak(hexstr="0x" + "11" * 100))
    assert relay.submitted == []
    assert fake_web3.eth.sent == []


async def test_private_bundle_included(fake_web3, account, gas_strategy, sleep):
    relay = FakeRelay(receipt={"status": 1, "blockNumber": 101, "logs": []})
    executor = TransactionExecutor(
        fake_web3, account, gas_strategy,
        ExecutorConfig(use_private_relay=True, max_block_attempts=3),
        relay=relay,
        sleep=sleep
    )

    outcome = await executor.execute_opportunity(make_opportunity(), FakeClient(profit=5))

    assert outcome.success
    assert outcome.realized_profit == 5
    [(tx_hash, start_block, max_blocks)] = relay.submitted
    assert start_block == 101
    assert max_blocks == 3
    assert fake_web3.eth.sent == []


async def test_missed_bundle_can_fall_back_to_public(fake_web3, account, gas_strategy, sleep):
    relay = FakeRelay(receipt=None)
    config = ExecutorConfig(use_private_relay=True, public_fallback=True)
    executor = TransactionExecutor(fake_web3, account, gas_strategy, config, relay=relay, sleep=sleep)

    outcome = await executor.execute_opportunity(make_opportunity(), FakeClient())

    assert outcome.success
    assert len(relay.submitted) == 1
    assert len(fake_web3.eth.sent) == 1


async def test_missed_bundle_without_fallback(fake_web3, account, gas_strategy, sleep):
    relay = FakeRelay(receipt=None)
    executor = TransactionExecutor(
        fake_web3, account, gas_strategy, ExecutorConfig(use_private_relay=True), relay=relay, sleep=sleep
    )

    outcome = await executor.execute_opportunity(make_opportunity(), FakeClient())

    assert outcome.failure == FailureKind.NOT_INCLUDED
    assert fake_web3.eth.sent == []
