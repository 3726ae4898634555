from typing import Dict, List, Optional, Sequence
from enum import Enum, IntEnum
import logging

from ..core.errors import AuthorizationFailure, ChainRevert, RevertReason
from ..models.opportunity import RouteLayout
from .ledger import LocalChain, LocalContract, norm
from .params import decode_params, encode_params

DEFAULT_FEE_TIER = 3000


class ContractState(str, Enum):
    IDLE = "idle"
    LOAN_REQUESTED = "loan_requested"
    CALLBACK_EXECUTING = "callback_executing"
    REPAID = "repaid"
    REVERTED = "reverted"


class RouterKind(IntEnum):
    CONSTANT_PRODUCT = 0
    CONCENTRATED_LIQUIDITY = 1


def resolve_fee_tier(*candidates: Optional[int]) -> Optional[int]:
    """First configured fee tier in priority order; 0 and None mean unset."""
    for fee in candidates:
        if fee:
            return fee
    return None


class FlashArbitrageContract(LocalContract):
    """Reference model of the on-chain flash-loan arbitrage contract.

    Borrow, every hop and repayment happen inside one LocalChain
    transaction, so any revert leaves no trace of the attempt.
    """

    def __init__(
        self,
        chain: LocalChain,
        owner: str,
        lending_pool: str,
        min_profit: int = 0,
        default_fee: int = DEFAULT_FEE_TIER
    ):
        super().__init__(chain)
        self.logger = logging.getLogger(__name__)
        self.owner = norm(owner)
        self.lending_pool = norm(lending_pool)
        self.min_profit = min_profit
        self.default_fee = default_fee
        self.routers: Dict[int, Dict] = {}
        self.pair_fees: Dict[str, int] = {}
        self.in_progress = False
        self.state = ContractState.IDLE
        self.pre_balance = 0
        self.last_profit = 0

        # Observed transitions; survives reverts, unlike storage
        self.trace: List[ContractState] = []

    # State machine

    def _enter(self, state: ContractState):
        self.state = state
        self.trace.append(state)

    def _only_owner(self, sender: str):
        if norm(sender) != self.owner:
            raise AuthorizationFailure()

    @staticmethod
    def _pair_key(token_a: str, token_b: str) -> str:
        a, b = sorted((norm(token_a), norm(token_b)))
        return f"{a}:{b}"

    def _validate_route(
        self,
        layout: RouteLayout,
        loan_asset: str,
        loan_amount: int,
        path: Sequence[str],
        venues: Sequence[int],
        fees: Sequence[int]
    ):
        if loan_amount <= 0:
            raise ChainRevert(RevertReason.INVALID_AMOUNT)

        min_length = 4 if layout == RouteLayout.TRIANGLE else 3
        if len(path) < min_length or len(venues) != len(path) - 1:
            raise ChainRevert(RevertReason.INVALID_PATH)
        if fees and len(fees) != len(venues):
            raise ChainRevert(RevertReason.INVALID_PATH)
        if norm(path[0]) != norm(loan_asset) or norm(path[-1]) != norm(loan_asset):
            raise ChainRevert(RevertReason.INVALID_PATH)

    def _start(
        self,
        sender: str,
        layout: RouteLayout,
        loan_asset: str,
        loan_amount: int,
        path: Sequence[str],
        venues: Sequence[int],
        fees: Sequence[int]
    ) -> int:
        self._only_owner(sender)
        if self.in_progress:
            raise ChainRevert(RevertReason.REENTRANCY)
        self._validate_route(layout, loan_asset, loan_amount, path, venues, fees)

        try:
            self.in_progress = True
            self.pre_balance = self.ledger.balance_of(loan_asset, self.address)
            self._enter(ContractState.LOAN_REQUESTED)

            params = encode_params(layout, path, venues, fees)
            self.chain.get(self.lending_pool).flash_loan(
                self.address, self.address, loan_asset, loan_amount, params
            )

            self._enter(ContractState.REPAID)
        except ChainRevert:
            self._enter(ContractState.REVERTED)
            self.in_progress = False
            self._enter(ContractState.IDLE)
            raise

        self.in_progress = False
        self._enter(ContractState.IDLE)
        return self.last_profit

    def execute_arbitrage(
        self,
        sender: str,
        loan_asset: str,
        loan_amount: int,
        path: Sequence[str],
        venues: Sequence[int],
        fees: Sequence[int] = ()
    ) -> int:
        return self._start(sender, RouteLayout.PLAIN, loan_asset, loan_amount, path, venues, fees)

    def execute_triangle_arbitrage(
        self,
        sender: str,
        loan_asset: str,
        loan_amount: int,
        path: Sequence[str],
        venues: Sequence[int],
        fees: Sequence[int] = ()
    ) -> int:
        return self._start(sender, RouteLayout.TRIANGLE, loan_asset, loan_amount, path, venues, fees)

    def execute_operation(
        self,
        sender: str,
        asset: str,
        amount: int,
        premium: int,
        initiator: str,
        params: bytes
    ) -> bool:
        """Flash loan callback: run every hop, check profit, approve repayment."""
        if norm(sender) != self.lending_pool or norm(initiator) != self.address:
            raise AuthorizationFailure()
        if not self.in_progress:
            raise AuthorizationFailure()
        if self.state != ContractState.LOAN_REQUESTED:
            raise ChainRevert(RevertReason.REENTRANCY)

        self._enter(ContractState.CALLBACK_EXECUTING)

        route = decode_params(params)
        if not route.path or {norm(route.path[0]), norm(route.path[-1])} != {norm(asset)}:
            raise ChainRevert(RevertReason.PATH_MISMATCH)
        self._validate_route(route.layout, asset, amount, route.path, route.venues, route.fees)

        # Each hop spends exactly what the previous hop delivered
        amount_in = amount
        for i, venue in enumerate(route.venues):
            explicit_fee = route.fees[i] if route.fees else None
            amount_in = self._swap(
                venue, route.path[i], route.path[i + 1], amount_in, explicit_fee
            )

        final_balance = self.ledger.balance_of(asset, self.address)
        profit = final_balance - self.pre_balance - amount - premium
        if profit <= 0 or profit < self.min_profit:
            self.logger.info(f"Insufficient profit: {profit} (floor {self.min_profit})")
            raise ChainRevert(RevertReason.INSUFFICIENT_PROFIT)

        self.ledger.approve(asset, self.address, self.lending_pool, amount + premium)
        self.last_profit = profit
        self.emit(
            "ArbitrageExecuted",
            asset=asset,
            amount=amount,
            profit=profit,
            timestamp=self.chain.timestamp
        )
        return True

    def _swap(
        self,
        venue: int,
        token_in: str,
        token_out: str,
        amount_in: int,
        explicit_fee: Optional[int]
    ) -> int:
        router = self.routers.get(venue)
        if router is None:
            raise ChainRevert(RevertReason.UNKNOWN_VENUE)

        target = self.chain.get(router["address"])
        balance_before = self.ledger.balance_of(token_out, self.address)
        self.ledger.approve(token_in, self.address, target.address, amount_in)

        try:
            if router["kind"] == RouterKind.CONCENTRATED_LIQUIDITY:
                fee = resolve_fee_tier(
                    explicit_fee,
                    self.pair_fees.get(self._pair_key(token_in, token_out)),
                    self.default_fee
                )
                target.exact_input_single(
                    self.address, token_in, token_out, fee, self.address,
                    self.chain.timestamp, amount_in, 1
                )
            else:
                target.swap_exact_tokens_for_tokens(
                    self.address, amount_in, 1, [token_in, token_out], self.address,
                    self.chain.timestamp
                )
        except (ChainRevert, AttributeError) as e:
            self.logger.info(f"Swap on venue {venue} failed: {str(e)}")
            raise ChainRevert(RevertReason.SWAP_FAILED) from e

        received = self.ledger.balance_of(token_out, self.address) - balance_before
        if received <= 0:
            raise ChainRevert(RevertReason.SWAP_FAILED)
        return received

    # Administration

    def set_router(self, sender: str, venue_id: int, router: str, kind: RouterKind):
        self._only_owner(sender)
        if not 0 <= venue_id <= 255:
            raise ChainRevert(RevertReason.UNKNOWN_VENUE)
        self.routers[venue_id] = {"address": norm(router), "kind": RouterKind(kind)}

    def set_pair_fee(self, sender: str, token_a: str, token_b: str, fee: int):
        self._only_owner(sender)
        self.pair_fees[self._pair_key(token_a, token_b)] = fee

    def set_default_fee(self, sender: str, fee: int):
        self._only_owner(sender)
        self.default_fee = fee

    def set_min_profit_amount(self, sender: str, amount: int):
        self._only_owner(sender)
        if amount < 0:
            raise ChainRevert(RevertReason.INVALID_AMOUNT)
        self.min_profit = amount

    def withdraw(self, sender: str, token: str, amount: Optional[int] = None) -> int:
        self._only_owner(sender)
        balance = self.ledger.balance_of(token, self.address)
        amount = balance if amount is None else amount
        if amount <= 0 or amount > balance:
            raise ChainRevert(RevertReason.INVALID_AMOUNT)

        self.ledger.transfer(token, self.address, self.owner, amount)
        self.emit("Withdrawn", token=token, amount=amount, to=self.owner)
        return amount

