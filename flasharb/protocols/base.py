from abc import ABC, abstractmethod
from typing import List, Optional
from dataclasses import dataclass
from web3 import Web3
import logging
import time

from ..config.chains import VenueFamily
from ..models.opportunity import ArbitragePath, Pool
from ..models.token import TokenRegistry

# Swap deadline used when the caller does not pass one
DEFAULT_DEADLINE_SECONDS = 300


@dataclass(frozen=True)
class Quote:
    """Read-only quote result.

    ``estimated`` marks closed-form approximations that must never be
    treated as authoritative for execution.
    """
    amount: int
    estimated: bool = False
    fee: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.amount > 0


NO_QUOTE = Quote(0)


@dataclass(frozen=True)
class SwapCall:
    """Encoded venue call, ready to be placed in a transaction."""
    to: str
    data: str
    value: int = 0


class DexAdapter(ABC):
    """Uniform quoting interface over one venue family.

    Subclasses implement pool discovery, quoting and swap encoding. Path
    discovery and path simulation are shared. No method raises on a pool
    or quote failure: the neutral result is an empty list or a zero amount.
    """

    family: VenueFamily

    def __init__(
        self,
        name: str,
        web3: Web3,
        venue_id: Optional[int] = None,
        tokens: Optional[TokenRegistry] = None
    ):
        self.name = name
        self.web3 = web3
        self.venue_id = venue_id
        self.tokens = tokens or TokenRegistry([])
        self.logger = logging.getLogger(__name__)

    @property
    def executable(self) -> bool:
        """Whether the arbitrage contract can route a hop through this venue."""
        return self.venue_id is not None

    @abstractmethod
    async def find_pools(self, token_a: str, token_b: str) -> List[Pool]:
        """Pools on this venue holding both tokens."""

    @abstractmethod
    async def quote(
        self,
        pool: Pool,
        token_in: str,
        token_out: str,
        amount_in: int
    ) -> Quote:
        """Quote an exact-input trade without touching venue state."""

    @abstractmethod
    def create_swap_transaction(
        self,
        pool: Pool,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_amount_out: int,
        recipient: str,
        deadline: Optional[int] = None
    ) -> SwapCall:
        """Encode the venue call that performs the swap."""

    async def get_amount_out(
        self,
        pool: Pool,
        token_in: str,
        token_out: str,
        amount_in: int
    ) -> int:
        return (await self.quote(pool, token_in, token_out, amount_in)).amount

    async def find_arbitrage_paths(
        self,
        start: str,
        middle: Optional[str],
        end: str
    ) -> List[ArbitragePath]:
        """Paths from ``start`` to ``end`` on this venue, optionally via ``middle``."""
        try:
            if middle is None:
                return [
                    ArbitragePath(tokens=(start, end), pools=(pool,))
                    for pool in await self.find_pools(start, end)
                ]

            first_legs = await self.find_pools(start, middle)
            if not first_legs:
                return []
            second_legs = await self.find_pools(middle, end)

            return [
                ArbitragePath(tokens=(start, middle, end), pools=(first, second))
                for first in first_legs
                for second in second_legs
            ]

        except Exception as e:
            self.logger.error(f"Error finding paths on {self.name}: {str(e)}")
            return []

    async def simulate_path(self, path: ArbitragePath, amount_in: int) -> Quote:
        """Chain quotes hop by hop; any estimated hop taints the result."""
        amount = amount_in
        estimated = False
        for i, pool in enumerate(path.pools):
            quote = await self.quote(pool, path.tokens[i], path.tokens[i + 1], amount)
            if not quote.ok:
                return NO_QUOTE
            amount = quote.amount
            estimated = estimated or quote.estimated
        return Quote(amount, estimated)

    async def simulate_path_swap(self, path: ArbitragePath, amount_in: int) -> int:
        return (await self.simulate_path(path, amount_in)).amount

    def default_deadline(self) -> int:
        return int(time.time()) + DEFAULT_DEADLINE_SECONDS

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, venue_id={self.venue_id})"
