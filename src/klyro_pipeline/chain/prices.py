"""Spot price lookup with a process-wide cache.

Pricing never raises to callers: a failed refresh falls back to the last
known price, and a symbol that was never priced is worth zero.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DEFAULT_PRICE_URL = "https://min-api.cryptocompare.com/data/price"
DEFAULT_CACHE_TTL_SECONDS = 30 * 60
DEFAULT_QUOTE = "USD"


class PriceFeedError(Exception):
    """Raised when the spot price feed cannot return a price."""


@dataclass(frozen=True)
class CachedPrice:
    price: float
    fetched_at: float


# Shared by every PriceCache that is not given its own store.
_PROCESS_PRICE_CACHE: dict[tuple[str, str], CachedPrice] = {}


class CryptoComparePriceFeed:
    """Spot price lookup by symbol pair."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        url: str = DEFAULT_PRICE_URL,
        api_key: str | None = None,
    ) -> None:
        self._http = http
        self._url = url
        self._api_key = api_key

    async def fetch_price(self, symbol: str, quote: str = DEFAULT_QUOTE) -> float:
        params = {"fsym": symbol, "tsyms": quote}
        if self._api_key:
            params["api_key"] = self._api_key
        try:
            response = await self._http.get(self._url, params=params)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PriceFeedError(f"Price request for {symbol}-{quote} failed: {e}") from e

        price = body.get(quote) if isinstance(body, dict) else None
        if price is None:
            raise PriceFeedError(f"No {quote} price returned for {symbol}")
        return float(price)


class PriceCache:
    """Caches spot prices per (symbol, quote) with time-based expiry.

    Writes are last-write-wins per key, so concurrent refreshes of the same
    pair are harmless.
    """

    def __init__(
        self,
        feed: CryptoComparePriceFeed,
        *,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        store: MutableMapping[tuple[str, str], CachedPrice] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._feed = feed
        self._ttl = ttl_seconds
        self._store = store if store is not None else _PROCESS_PRICE_CACHE
        self._clock = clock

    async def get_price(self, symbol: str, quote: str = DEFAULT_QUOTE) -> float:
        key = (symbol.upper(), quote.upper())
        now = self._clock()
        cached = self._store.get(key)
        if cached is not None and now - cached.fetched_at < self._ttl:
            return cached.price

        try:
            price = await self._feed.fetch_price(key[0], key[1])
        except PriceFeedError as e:
            if cached is not None:
                logger.warning("Price refresh for %s-%s failed, using stale price: %s", *key, e)
                return cached.price
            logger.warning("Price refresh for %s-%s failed and nothing is cached: %s", *key, e)
            return 0.0

        self._store[key] = CachedPrice(price=price, fetched_at=now)
        logger.debug("Updated price for %s-%s: %s", key[0], key[1], price)
        return price

    async def convert_to_usd(self, amount: float, symbol: str) -> float:
        if amount == 0:
            return 0.0
        return amount * await self.get_price(symbol, DEFAULT_QUOTE)
