"""Price oracles and symbol normalisation used for valuation.

The ledger only needs "a price or nothing" for each symbol. Oracles return
partial mappings; a missing key means the price is unavailable right now.
Caching lives in :class:`CachingPriceOracle` so the engine itself holds no
price state between calls.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, Mapping, MutableMapping, Protocol, Sequence

import httpx
from opentelemetry.propagate import inject

from ..core.config import DEFAULT_QUOTE_ASSETS, DEFAULT_SYMBOL_ALIASES
from .errors import PriceUnavailable

logger = logging.getLogger(__name__)


class PriceOracle(Protocol):
    """Pluggable source of current market prices."""

    async def get_prices(self, symbols: Sequence[str]) -> Mapping[str, Decimal]:
        ...


async def price_of(oracle: PriceOracle, symbol: str) -> Decimal | None:
    """Fetch one quote through the batch interface.

    Convenience for callers that value a single symbol; recomputation batches
    every open symbol into one ``get_prices`` call instead.
    """

    prices = await oracle.get_prices([symbol])
    return prices.get(symbol)


def normalize_price_symbol(
    symbol: str,
    *,
    preferred_quote: str = "USDT",
    quote_assets: Iterable[str] = DEFAULT_QUOTE_ASSETS,
    aliases: Mapping[str, str] = DEFAULT_SYMBOL_ALIASES,
) -> str:
    """Map a trade symbol or bare asset onto the pair quoted in ``preferred_quote``.

    >>> normalize_price_symbol("SOLUSDC")
    'SOLUSDT'
    >>> normalize_price_symbol("BTC")
    'BTCUSDT'
    """

    upper = symbol.strip().upper()
    base = upper
    for quote in quote_assets:
        quote = quote.upper()
        if upper.endswith(quote) and len(upper) > len(quote):
            base = upper[: -len(quote)]
            break
    base = aliases.get(base, base)
    return f"{base}{preferred_quote.upper()}"


def _to_decimal(value: object) -> Decimal | None:
    if value is None:
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price < 0:
        return None
    return price


class InMemoryPriceOracle:
    """Fixed price table for tests and fixtures."""

    def __init__(self, prices: Mapping[str, Decimal | str | float] | None = None):
        self._prices: dict[str, Decimal] = {}
        for symbol, value in (prices or {}).items():
            self.set_price(symbol, value)

    def set_price(self, symbol: str, value: Decimal | str | float) -> None:
        self._prices[symbol.upper()] = Decimal(str(value))

    def remove_price(self, symbol: str) -> None:
        self._prices.pop(symbol.upper(), None)

    async def get_prices(self, symbols: Sequence[str]) -> Mapping[str, Decimal]:
        return {symbol: self._prices[symbol] for symbol in symbols if symbol in self._prices}


class CachingPriceOracle:
    """Time-windowed cache around another oracle.

    Fresh entries are served without calling the delegate. When the delegate
    fails, expired entries are served instead so valuation can continue.
    """

    def __init__(
        self,
        delegate: PriceOracle,
        *,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.delegate = delegate
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: MutableMapping[str, tuple[Decimal, float]] = {}

    async def get_prices(self, symbols: Sequence[str]) -> Mapping[str, Decimal]:
        now = self._clock()
        result: dict[str, Decimal] = {}
        missing: list[str] = []
        for symbol in dict.fromkeys(symbols):
            cached = self._cache.get(symbol)
            if cached and now - cached[1] < self.ttl_seconds:
                result[symbol] = cached[0]
            else:
                missing.append(symbol)
        if not missing:
            return result

        try:
            fetched = await self.delegate.get_prices(missing)
        except Exception as exc:  # delegate failures degrade to stale quotes
            logger.warning("Price lookup failed for %s: %s", ", ".join(missing), exc)
            for symbol in missing:
                cached = self._cache.get(symbol)
                if cached:
                    logger.info("Using expired cached price for %s", symbol)
                    result[symbol] = cached[0]
            return result

        for symbol in missing:
            price = fetched.get(symbol)
            if price is not None:
                self._cache[symbol] = (price, now)
                result[symbol] = price
            elif symbol in self._cache:
                result[symbol] = self._cache[symbol][0]
        return result

    def clear(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> dict[str, object]:
        return {"size": len(self._cache), "symbols": sorted(self._cache)}


class HttpPriceOracle:
    """Client for the internal price service.

    ``GET {base_url}/prices?symbols=A,B`` answers with ``{"prices": {"A": "1.0"}}``
    (a bare mapping is accepted too).
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def get_prices(self, symbols: Sequence[str]) -> Mapping[str, Decimal]:
        requested = list(dict.fromkeys(symbols))
        if not requested:
            return {}
        headers: dict[str, str] = {}
        if self.token:
            headers["X-Internal-Token"] = self.token
        # Propagate the current trace so price service spans join the recompute trace
        try:
            inject(headers)
        except Exception:
            pass
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/prices",
                    params={"symbols": ",".join(requested)},
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise PriceUnavailable(",".join(requested), str(exc)) from exc
        if response.status_code >= 400:
            raise PriceUnavailable(",".join(requested), f"price service returned {response.status_code}")

        payload = response.json()
        raw = payload.get("prices", payload) if isinstance(payload, dict) else {}
        prices: dict[str, Decimal] = {}
        for symbol in requested:
            price = _to_decimal(raw.get(symbol))
            if price is None:
                continue
            prices[symbol] = price
        return prices


__all__ = [
    "CachingPriceOracle",
    "HttpPriceOracle",
    "InMemoryPriceOracle",
    "PriceOracle",
    "normalize_price_symbol",
    "price_of",
]
