from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict


class Token(BaseModel):
    address: str
    symbol: str
    decimals: int = 18

    model_config = ConfigDict(frozen=True)

    def to_units(self, amount: int) -> float:
        """Convert a raw integer amount into whole-token units."""
        return amount / 10 ** self.decimals


class TokenRegistry:
    """Immutable lookup of the configured tokens by address or symbol."""

    def __init__(self, tokens: List[Token]):
        self._by_address: Dict[str, Token] = {t.address.lower(): t for t in tokens}
        self._by_symbol: Dict[str, Token] = {t.symbol: t for t in tokens}

    @classmethod
    def from_config(cls, tokens: Dict) -> "TokenRegistry":
        """Build from a ``symbol -> TokenInfo`` mapping."""
        return cls([
            Token(address=info.address, symbol=symbol, decimals=info.decimals)
            for symbol, info in tokens.items()
        ])

    def get(self, address: str) -> Optional[Token]:
        return self._by_address.get(address.lower())

    def by_symbol(self, symbol: str) -> Token:
        token = self._by_symbol.get(symbol)
        if token is None:
            raise KeyError(f"Unknown token symbol: {symbol}")
        return token

    def symbol(self, address: str) -> str:
        token = self.get(address)
        if token:
            return token.symbol
        address = address.lower()
        return f"{address[:6]}...{address[-4:]}"

    def decimals(self, address: str, default: int = 18) -> int:
        token = self.get(address)
        return token.decimals if token else default

    def __iter__(self):
        return iter(self._by_symbol.values())

    def __len__(self) -> int:
        return len(self._by_symbol)
