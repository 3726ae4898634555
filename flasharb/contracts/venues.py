"""Local stand-ins for the external contracts the arbitrage contract talks to."""
from typing import Dict, List, Tuple

from ..core.amm_math import DEFAULT_CONSTANT_PRODUCT_FEE_BPS, constant_product_amount_out
from ..core.errors import ChainRevert, RevertReason
from .ledger import LocalChain, LocalContract, norm

DEFAULT_PREMIUM_BPS = 9


def _pair_key(token_a: str, token_b: str) -> str:
    a, b = sorted((norm(token_a), norm(token_b)))
    return f"{a}:{b}"


class _ReserveBook:
    """Reserves per pool key; the router contract itself custodies the tokens."""

    def __init__(self):
        self.reserves: Dict[str, Dict[str, int]] = {}

    def add(self, key: str, token_a: str, amount_a: int, token_b: str, amount_b: int):
        pool = self.reserves.setdefault(key, {norm(token_a): 0, norm(token_b): 0})
        pool[norm(token_a)] += amount_a
        pool[norm(token_b)] += amount_b

    def get(self, key: str, token_in: str, token_out: str) -> Tuple[int, int]:
        pool = self.reserves.get(key)
        if pool is None:
            return 0, 0
        return pool.get(norm(token_in), 0), pool.get(norm(token_out), 0)

    def settle(self, key: str, token_in: str, amount_in: int, token_out: str, amount_out: int):
        pool = self.reserves[key]
        pool[norm(token_in)] += amount_in
        pool[norm(token_out)] -= amount_out


class ConstantProductRouter(LocalContract):
    """Uniswap V2 style router over x*y=k pools."""

    def __init__(self, chain: LocalChain, fee_bps: int = DEFAULT_CONSTANT_PRODUCT_FEE_BPS):
        super().__init__(chain)
        self.fee_bps = fee_bps
        self.book = _ReserveBook()
        self.paused = False

    def add_liquidity(self, token_a: str, amount_a: int, token_b: str, amount_b: int):
        self.ledger.mint(token_a, self.address, amount_a)
        self.ledger.mint(token_b, self.address, amount_b)
        self.book.add(_pair_key(token_a, token_b), token_a, amount_a, token_b, amount_b)

    def get_reserves(self, token_in: str, token_out: str) -> Tuple[int, int]:
        return self.book.get(_pair_key(token_in, token_out), token_in, token_out)

    def get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        amounts = [amount_in]
        for token_in, token_out in zip(path, path[1:]):
            reserve_in, reserve_out = self.get_reserves(token_in, token_out)
            if reserve_in == 0 or reserve_out == 0:
                raise ChainRevert(RevertReason.UNKNOWN, "UniswapV2Library: INSUFFICIENT_LIQUIDITY")
            amounts.append(
                constant_product_amount_out(amounts[-1], reserve_in, reserve_out, self.fee_bps)
            )
        return amounts

    def swap_exact_tokens_for_tokens(
        self,
        sender: str,
        amount_in: int,
        amount_out_min: int,
        path: List[str],
        to: str,
        deadline: int
    ) -> List[int]:
        if self.paused:
            raise ChainRevert(RevertReason.UNKNOWN, "UniswapV2Router: PAUSED")
        if deadline < self.chain.timestamp:
            raise ChainRevert(RevertReason.UNKNOWN, "UniswapV2Router: EXPIRED")

        amounts = self.get_amounts_out(amount_in, path)
        if amounts[-1] < amount_out_min:
            raise ChainRevert(RevertReason.UNKNOWN, "UniswapV2Router: INSUFFICIENT_OUTPUT_AMOUNT")

        self.ledger.transfer_from(path[0], self.address, sender, self.address, amount_in)
        for i, (token_in, token_out) in enumerate(zip(path, path[1:])):
            self.book.settle(
                _pair_key(token_in, token_out), token_in, amounts[i], token_out, amounts[i + 1]
            )
        self.ledger.transfer(path[-1], self.address, to, amounts[-1])
        return amounts


class ConcentratedLiquidityRouter(LocalContract):
    """Uniswap V3 style router; one pool per (pair, fee tier).

    Pools are priced with the constant-product curve at the tier's fee,
    which is enough to exercise fee-tier routing.
    """

    def __init__(self, chain: LocalChain):
        super().__init__(chain)
        self.book = _ReserveBook()
        self.paused = False

    @staticmethod
    def _key(token_a: str, token_b: str, fee: int) -> str:
        return f"{_pair_key(token_a, token_b)}:{fee}"

    def add_liquidity(self, token_a: str, amount_a: int, token_b: str, amount_b: int, fee: int):
        self.ledger.mint(token_a, self.address, amount_a)
        self.ledger.mint(token_b, self.address, amount_b)
        self.book.add(self._key(token_a, token_b, fee), token_a, amount_a, token_b, amount_b)

    def quote_exact_input_single(self, token_in: str, token_out: str, fee: int, amount_in: int) -> int:
        reserve_in, reserve_out = self.book.get(self._key(token_in, token_out, fee), token_in, token_out)
        if reserve_in == 0 or reserve_out == 0:
            raise ChainRevert(RevertReason.UNKNOWN, "SwapRouter: pool does not exist")
        # fee tiers are in hundredths of a basis point
        return constant_product_amount_out(amount_in, reserve_in, reserve_out, fee // 100)

    def exact_input_single(
        self,
        sender: str,
        token_in: str,
        token_out: str,
        fee: int,
        recipient: str,
        deadline: int,
        amount_in: int,
        amount_out_minimum: int
    ) -> int:
        if self.paused:
            raise ChainRevert(RevertReason.UNKNOWN, "SwapRouter: PAUSED")
        if deadline < self.chain.timestamp:
            raise ChainRevert(RevertReason.UNKNOWN, "Transaction too old")

        amount_out = self.quote_exact_input_single(token_in, token_out, fee, amount_in)
        if amount_out < amount_out_minimum:
            raise ChainRevert(RevertReason.UNKNOWN, "Too little received")

        self.ledger.transfer_from(token_in, self.address, sender, self.address, amount_in)
        self.book.settle(self._key(token_in, token_out, fee), token_in, amount_in, token_out, amount_out)
        self.ledger.transfer(token_out, self.address, recipient, amount_out)
        return amount_out


class LendingPool(LocalContract):
    """Aave V2 style single-asset flash loans.

    The receiver gets the funds, its ``execute_operation`` callback runs, and
    the pool then pulls ``amount + premium`` through the receiver's allowance.
    """

    def __init__(self, chain: LocalChain, premium_bps: int = DEFAULT_PREMIUM_BPS):
        super().__init__(chain)
        self.premium_bps = premium_bps

    def fund(self, asset: str, amount: int):
        self.ledger.mint(asset, self.address, amount)

    def premium(self, amount: int) -> int:
        return amount * self.premium_bps // 10000

    def flash_loan(self, sender: str, receiver: str, asset: str, amount: int, params: bytes):
        if self.ledger.balance_of(asset, self.address) < amount:
            raise ChainRevert(RevertReason.UNKNOWN, "LendingPool: insufficient liquidity")

        premium = self.premium(amount)
        self.ledger.transfer(asset, self.address, receiver, amount)

        ok = self.chain.get(receiver).execute_operation(
            self.address, asset, amount, premium, sender, params
        )
        if not ok:
            raise ChainRevert(RevertReason.UNKNOWN, "LendingPool: invalid flash loan executor return")

        try:
            self.ledger.transfer_from(asset, self.address, receiver, self.address, amount + premium)
        except ChainRevert as e:
            raise ChainRevert(RevertReason.REPAYMENT_FAILED) from e

        self.emit(
            "FlashLoan",
            target=receiver,
            initiator=sender,
            asset=asset,
            amount=amount,
            premium=premium
        )
