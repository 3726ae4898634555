from typing import Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import copy
import logging
import time

from ..core.errors import ChainRevert, RevertReason


def norm(address: str) -> str:
    return address.lower()


@dataclass(frozen=True)
class Event:
    name: str
    address: str
    args: Dict[str, Any]


@dataclass
class Receipt:
    tx_hash: str
    status: int
    block_number: int
    logs: List[Event] = field(default_factory=list)
    revert_reason: Optional[RevertReason] = None
    revert_message: Optional[str] = None
    return_value: Any = None

    def events(self, name: str) -> List[Event]:
        return [log for log in self.logs if log.name == name]


class Ledger:
    """ERC-20 balances and allowances for every token on the local chain."""

    def __init__(self):
        self.balances: Dict[str, Dict[str, int]] = {}
        self.allowances: Dict[Tuple[str, str, str], int] = {}

    def balance_of(self, token: str, holder: str) -> int:
        return self.balances.get(norm(token), {}).get(norm(holder), 0)

    def mint(self, token: str, holder: str, amount: int):
        holders = self.balances.setdefault(norm(token), {})
        holders[norm(holder)] = holders.get(norm(holder), 0) + amount

    def transfer(self, token: str, sender: str, recipient: str, amount: int):
        if amount < 0:
            raise ChainRevert(RevertReason.UNKNOWN, "ERC20: negative amount")
        if self.balance_of(token, sender) < amount:
            raise ChainRevert(RevertReason.UNKNOWN, "ERC20: transfer amount exceeds balance")

        holders = self.balances.setdefault(norm(token), {})
        holders[norm(sender)] = holders.get(norm(sender), 0) - amount
        holders[norm(recipient)] = holders.get(norm(recipient), 0) + amount

    def approve(self, token: str, owner: str, spender: str, amount: int):
        self.allowances[(norm(token), norm(owner), norm(spender))] = amount

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get((norm(token), norm(owner), norm(spender)), 0)

    def transfer_from(self, token: str, spender: str, owner: str, recipient: str, amount: int):
        allowed = self.allowance(token, owner, spender)
        if allowed < amount:
            raise ChainRevert(RevertReason.UNKNOWN, "ERC20: transfer amount exceeds allowance")
        self.transfer(token, owner, recipient, amount)
        self.allowances[(norm(token), norm(owner), norm(spender))] = allowed - amount

    def snapshot(self) -> Tuple[Dict, Dict]:
        return copy.deepcopy(self.balances), dict(self.allowances)

    def restore(self, snapshot: Tuple[Dict, Dict]):
        balances, allowances = snapshot
        self.balances = copy.deepcopy(balances)
        self.allowances = dict(allowances)


class LocalContract:
    """Base for contracts deployed on a LocalChain.

    Storage is every instance attribute except the ones listed in
    ``_transient``; it is snapshotted before each transaction and restored
    if the transaction reverts. Contracts refer to each other by address.
    """

    _transient = ("chain", "address", "logger", "trace")

    def __init__(self, chain: "LocalChain"):
        self.chain = chain
        self.logger = logging.getLogger(__name__)
        self.address = chain.deploy(self)

    @property
    def ledger(self) -> Ledger:
        return self.chain.ledger

    def emit(self, name: str, **args):
        self.chain.emit(Event(name=name, address=self.address, args=args))

    def snapshot_state(self) -> Dict[str, Any]:
        return copy.deepcopy(
            {k: v for k, v in vars(self).items() if k not in self._transient}
        )

    def restore_state(self, state: Dict[str, Any]):
        vars(self).update(copy.deepcopy(state))


class LocalChain:
    """In-process chain: serialized transactions with all-or-nothing semantics."""

    def __init__(self, timestamp: Optional[int] = None):
        self.logger = logging.getLogger(__name__)
        self.ledger = Ledger()
        self.contracts: Dict[str, LocalContract] = {}
        self.block_number = 0
        self.timestamp = timestamp if timestamp is not None else int(time.time())
        self.receipts: List[Receipt] = []
        self._pending_events: List[Event] = []
        self._nonce = 0

    def deploy(self, contract: LocalContract) -> str:
        address = "0x" + f"{0xC0DE0000 + len(self.contracts) + 1:040x}"
        self.contracts[address] = contract
        return address

    def get(self, address: str) -> LocalContract:
        contract = self.contracts.get(norm(address))
        if contract is None:
            raise ChainRevert(RevertReason.UNKNOWN, f"No contract at {address}")
        return contract

    def emit(self, event: Event):
        self._pending_events.append(event)

    def _snapshot(self):
        return (
            self.ledger.snapshot(),
            {address: c.snapshot_state() for address, c in self.contracts.items()}
        )

    def _restore(self, snapshot):
        ledger_state, contract_states = snapshot
        self.ledger.restore(ledger_state)
        for address, state in contract_states.items():
            self.contracts[address].restore_state(state)

    def _next_tx_hash(self) -> str:
        self._nonce += 1
        return "0x" + f"{self._nonce:064x}"

    def transact(self, fn: Callable, *args, **kwargs) -> Receipt:
        """Run ``fn`` as one transaction, mining a block either way.

        A ChainRevert restores the ledger and every contract's storage and
        yields a receipt with status 0. Any other exception restores state
        and propagates.
        """
        snapshot = self._snapshot()
        self._pending_events = []
        self.block_number += 1
        self.timestamp += 12
        tx_hash = self._next_tx_hash()

        try:
            result = fn(*args, **kwargs)
        except ChainRevert as e:
            self._restore(snapshot)
            self._pending_events = []
            self.logger.info(f"Transaction {tx_hash} reverted: {e.message}")
            receipt = Receipt(
                tx_hash=tx_hash,
                status=0,
                block_number=self.block_number,
                revert_reason=e.reason,
                revert_message=e.message
            )
        except Exception:
            self._restore(snapshot)
            self._pending_events = []
            raise
        else:
            receipt = Receipt(
                tx_hash=tx_hash,
                status=1,
                block_number=self.block_number,
                logs=list(self._pending_events),
                return_value=result
            )
            self._pending_events = []

        self.receipts.append(receipt)
        return receipt

    def call(self, fn: Callable, *args, **kwargs) -> Any:
        """Read-only execution: state is always restored, reverts propagate."""
        snapshot = self._snapshot()
        try:
            return fn(*args, **kwargs)
        finally:
            self._restore(snapshot)
            self._pending_events = []
