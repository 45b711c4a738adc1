"""Price oracles and symbol normalisation."""

from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from holdings_ledger.services.errors import PriceUnavailable
from holdings_ledger.services.pricing import (
    CachingPriceOracle,
    HttpPriceOracle,
    InMemoryPriceOracle,
    normalize_price_symbol,
    price_of,
)


@pytest.mark.parametrize(
    ("symbol", "expected"),
    [
        ("BTCUSDT", "BTCUSDT"),
        ("SOLUSDC", "SOLUSDT"),
        ("ethbtc", "ETHUSDT"),
        ("BTC", "BTCUSDT"),
        ("ADAFDUSD", "ADAUSDT"),
        ("BITCOIN", "BTCUSDT"),
        (" dot ", "DOTUSDT"),
    ],
)
def test_normalize_price_symbol(symbol, expected):
    assert normalize_price_symbol(symbol) == expected


def test_normalize_price_symbol_honours_preferred_quote():
    assert normalize_price_symbol("BTCUSDT", preferred_quote="eur") == "BTCEUR"


class CountingOracle:
    def __init__(self, prices: dict[str, Decimal]):
        self.prices = prices
        self.calls: list[list[str]] = []
        self.fail = False

    async def get_prices(self, symbols):
        self.calls.append(list(symbols))
        if self.fail:
            raise PriceUnavailable(",".join(symbols), "offline")
        return {symbol: self.prices[symbol] for symbol in symbols if symbol in self.prices}


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def test_in_memory_oracle_returns_partial_mapping():
    oracle = InMemoryPriceOracle({"btcusdt": "42000"})

    prices = await oracle.get_prices(["BTCUSDT", "ETHUSDT"])

    assert prices == {"BTCUSDT": Decimal("42000")}
    assert await price_of(oracle, "ETHUSDT") is None


async def test_price_of_asks_for_exactly_one_symbol():
    requested = []

    class RecordingOracle:
        async def get_prices(self, symbols):
            requested.append(list(symbols))
            return {"BTCUSDT": Decimal("42000")}

    assert await price_of(RecordingOracle(), "BTCUSDT") == Decimal("42000")
    assert requested == [["BTCUSDT"]]


async def test_caching_oracle_serves_fresh_entries_without_delegate_call():
    delegate = CountingOracle({"BTCUSDT": Decimal("100")})
    clock = FakeClock()
    oracle = CachingPriceOracle(delegate, ttl_seconds=30, clock=clock)

    assert await oracle.get_prices(["BTCUSDT"]) == {"BTCUSDT": Decimal("100")}
    clock.now = 10
    assert await oracle.get_prices(["BTCUSDT"]) == {"BTCUSDT": Decimal("100")}
    assert len(delegate.calls) == 1

    clock.now = 31
    delegate.prices["BTCUSDT"] = Decimal("105")
    assert await oracle.get_prices(["BTCUSDT"]) == {"BTCUSDT": Decimal("105")}
    assert len(delegate.calls) == 2
    assert oracle.cache_stats() == {"size": 1, "symbols": ["BTCUSDT"]}


async def test_caching_oracle_falls_back_to_expired_prices_on_failure():
    delegate = CountingOracle({"BTCUSDT": Decimal("100")})
    clock = FakeClock()
    oracle = CachingPriceOracle(delegate, ttl_seconds=30, clock=clock)
    await oracle.get_prices(["BTCUSDT"])

    clock.now = 120
    delegate.fail = True

    assert await oracle.get_prices(["BTCUSDT", "ETHUSDT"]) == {"BTCUSDT": Decimal("100")}

    oracle.clear()
    assert await oracle.get_prices(["BTCUSDT"]) == {}


async def test_http_oracle_parses_prices_and_sends_token():
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["symbols"] = request.url.params["symbols"]
        seen["token"] = request.headers.get("x-internal-token")
        return httpx.Response(200, json={"prices": {"BTCUSDT": "42000.5", "ETHUSDT": None, "SOLUSDT": "bad"}})

    oracle = HttpPriceOracle(
        "http://prices.local/",
        token="secret",
        transport=httpx.MockTransport(handler),
    )

    prices = await oracle.get_prices(["BTCUSDT", "ETHUSDT", "SOLUSDT", "BTCUSDT"])

    assert prices == {"BTCUSDT": Decimal("42000.5")}
    assert seen == {"path": "/prices", "symbols": "BTCUSDT,ETHUSDT,SOLUSDT", "token": "secret"}


async def test_http_oracle_raises_price_unavailable_on_error_status():
    oracle = HttpPriceOracle(
        "http://prices.local",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )

    with pytest.raises(PriceUnavailable):
        await oracle.get_prices(["BTCUSDT"])


async def test_http_oracle_skips_request_for_empty_symbol_list():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be called
        raise AssertionError("unexpected request")

    oracle = HttpPriceOracle("http://prices.local", transport=httpx.MockTransport(handler))

    assert await oracle.get_prices([]) == {}
