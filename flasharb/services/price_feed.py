from typing import Callable, Dict, Iterable, Optional, Protocol
import logging
import time

import aiohttp

from ..core.cache import TTLCache

COINGECKO_API_URL = "https://api.coingecko.com/api/v3/simple/price"
PRICE_CACHE_TTL = 300

# Token symbol to CoinGecko id
TOKEN_ID_MAP: Dict[str, str] = {
    "WETH": "ethereum",
    "ETH": "ethereum",
    "DAI": "dai",
    "USDC": "usd-coin",
    "USDT": "tether",
    "WBTC": "wrapped-bitcoin",
    "BTC": "bitcoin",
    "stETH": "staked-ether",
    "UNI": "uniswap",
    "LINK": "chainlink",
    "AAVE": "aave",
    "CRV": "curve-dao-token",
    "MKR": "maker",
}

# Used when the API is unreachable
FALLBACK_PRICES: Dict[str, float] = {
    "ETH": 3000.0,
    "WETH": 3000.0,
    "stETH": 3000.0,
    "BTC": 50000.0,
    "WBTC": 50000.0,
    "DAI": 1.0,
    "USDC": 1.0,
    "USDT": 1.0,
}


class PriceProvider(Protocol):
    async def get_usd_price(self, symbol: str) -> Optional[float]:
        ...


class StaticPriceProvider:
    """Fixed prices, for dry runs and tests."""

    def __init__(self, prices: Dict[str, float]):
        self.prices = dict(prices)

    async def get_usd_price(self, symbol: str) -> Optional[float]:
        return self.prices.get(symbol)


class CoinGeckoPriceProvider:
    """USD prices from CoinGecko, cached for five minutes."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        cache_ttl: float = PRICE_CACHE_TTL,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = 10.0
    ):
        self.api_key = api_key
        self.session_factory = session_factory
        self.timeout = timeout
        self.cache = TTLCache(ttl=cache_ttl, clock=clock)
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def token_id(symbol: str) -> str:
        return TOKEN_ID_MAP.get(symbol, symbol.lower())

    async def _fetch(self, ids: Iterable[str]) -> Dict[str, float]:
        params = {"ids": ",".join(ids), "vs_currencies": "usd"}
        if self.api_key:
            params["x_cg_pro_api_key"] = self.api_key

        async with self.session_factory() as session:
            async with session.get(
                COINGECKO_API_URL,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status != 200:
                    raise aiohttp.ClientError(f"Price request failed with status {response.status}")
                data = await response.json()

        return {
            token_id: float(entry["usd"])
            for token_id, entry in data.items()
            if isinstance(entry, dict) and "usd" in entry
        }

    async def get_usd_price(self, symbol: str) -> Optional[float]:
        token_id = self.token_id(symbol)
        cached = self.cache.get(token_id)
        if cached is not None:
            return cached

        try:
            prices = await self._fetch([token_id])
            if token_id not in prices:
                raise KeyError(f"Price not found for token id: {token_id}")

            self.cache.set(token_id, prices[token_id])
            return prices[token_id]

        except Exception as e:
            self.logger.error(f"Error fetching price for {symbol}: {str(e)}")
            return FALLBACK_PRICES.get(symbol)

    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        """Prices for several symbols in one request where the cache misses."""
        result: Dict[str, float] = {}
        missing = []
        for symbol in symbols:
            cached = self.cache.get(self.token_id(symbol))
            if cached is not None:
                result[symbol] = cached
            else:
                missing.append(symbol)

        if not missing:
            return result

        try:
            prices = await self._fetch({self.token_id(s) for s in missing})
        except Exception as e:
            self.logger.error(f"Error fetching prices: {str(e)}")
            prices = {}

        for symbol in missing:
            price = prices.get(self.token_id(symbol))
            if price is not None:
                self.cache.set(self.token_id(symbol), price)
                result[symbol] = price
            elif symbol in FALLBACK_PRICES:
                result[symbol] = FALLBACK_PRICES[symbol]
        return result
