"""Portfolio recomputation: replay history, store closures, value open lots."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncIterator

from opentelemetry import trace

from ..core.config import LedgerSettings, get_settings
from ..core.telemetry import LedgerMetrics, get_ledger_metrics
from .closed_positions import ClosedPositionStore
from .errors import PriceUnavailable
from .ledger import (
    ZERO,
    ClosedPositionData,
    LedgerAnomaly,
    LedgerResult,
    process_events,
    profit_loss_percentage,
    quantize_amount,
    quantize_percentage,
)
from .pricing import PriceOracle, normalize_price_symbol
from .records import PortfolioTotals, TransferType
from .repository import LedgerRepository
from .timeline import build_timelines

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class PortfolioLocks:
    """One lock per portfolio so recomputations of the same portfolio never interleave.

    A lock is dropped as soon as no caller holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._waiters: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, portfolio_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(portfolio_id, asyncio.Lock())
        self._waiters[portfolio_id] = self._waiters.get(portfolio_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[portfolio_id] -= 1
            if not self._waiters[portfolio_id]:
                del self._waiters[portfolio_id]
                del self._locks[portfolio_id]


@dataclass(frozen=True)
class HoldingValuation:
    symbol: str
    price_symbol: str
    quantity: Decimal
    average_price: Decimal
    cost_basis: Decimal
    price: Decimal
    price_is_fallback: bool
    current_value: Decimal
    profit_loss: Decimal
    profit_loss_percentage: Decimal | None
    realized_to_date: Decimal


@dataclass
class PortfolioSummary:
    portfolio_id: int
    total_invested: Decimal
    current_value: Decimal
    profit_loss: Decimal
    unrealized_profit_loss: Decimal
    realized_profit_loss: Decimal
    holdings: list[HoldingValuation] = field(default_factory=list)
    closed_positions: list[ClosedPositionData] = field(default_factory=list)
    unpriced_symbols: list[str] = field(default_factory=list)
    anomalies: list[LedgerAnomaly] = field(default_factory=list)

    @property
    def totals(self) -> PortfolioTotals:
        return PortfolioTotals(
            total_invested=self.total_invested,
            current_value=self.current_value,
            profit_loss=self.profit_loss,
        )


@dataclass
class OwnerRecompute:
    owner_id: str
    summaries: list[PortfolioSummary] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OwnerStats:
    owner_id: str
    portfolio_count: int
    total_deposits: Decimal
    total_withdrawals: Decimal
    total_fees: Decimal
    total_realized_profit_loss: Decimal
    total_unrealized_profit_loss: Decimal
    total_profit_loss: Decimal


class PortfolioAggregator:
    """Drive a full recomputation for one portfolio at a time.

    The repository supplies records and stages writes; the oracle supplies
    current prices. Nothing is cached between calls.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        price_oracle: PriceOracle,
        settings: LedgerSettings | None = None,
        locks: PortfolioLocks | None = None,
        metrics: LedgerMetrics | None = None,
    ):
        self.repository = repository
        self.price_oracle = price_oracle
        self.settings = settings or get_settings()
        self.locks = locks or PortfolioLocks()
        self.metrics = metrics or get_ledger_metrics()
        self.closed_positions = ClosedPositionStore(repository, self.settings.closed_position_retention)

    async def recompute(self, portfolio_id: int) -> PortfolioSummary:
        """Rebuild closed positions and totals for ``portfolio_id`` in one commit."""

        started = time.perf_counter()
        async with self.locks.hold(portfolio_id):
            with tracer.start_as_current_span("portfolio.recompute") as span:
                span.set_attribute("portfolio.id", portfolio_id)
                try:
                    summary = await self._recompute(portfolio_id)
                except Exception:
                    await self.repository.rollback()
                    raise
                span.set_attribute("portfolio.open_positions", len(summary.holdings))
                span.set_attribute("portfolio.unpriced_symbols", len(summary.unpriced_symbols))
        self._record_metrics(summary, time.perf_counter() - started)
        logger.info(
            "Recomputed portfolio %s",
            portfolio_id,
            extra={
                "portfolio_id": portfolio_id,
                "total_invested": str(summary.total_invested),
                "current_value": str(summary.current_value),
                "profit_loss": str(summary.profit_loss),
                "closed_positions": len(summary.closed_positions),
            },
        )
        return summary

    def _record_metrics(self, summary: PortfolioSummary, elapsed: float) -> None:
        self.metrics.recompute_duration.record(elapsed)
        if summary.unpriced_symbols:
            self.metrics.price_fallbacks.add(len(summary.unpriced_symbols))
        if summary.anomalies:
            self.metrics.quantity_anomalies.add(len(summary.anomalies))
        if summary.closed_positions:
            self.metrics.closed_positions.add(len(summary.closed_positions))

    async def _recompute(self, portfolio_id: int) -> PortfolioSummary:
        results = await self._replay(portfolio_id)

        stored = await self.closed_positions.sync(
            portfolio_id, {symbol: result.closed_lots for symbol, result in results.items()}
        )
        closed = sorted(
            (row for rows in stored.values() for row in rows),
            key=lambda row: (row.closed_at, row.symbol),
            reverse=True,
        )
        realized = sum((row.realized_profit_loss for row in closed), ZERO)

        holdings, unpriced = await self._value(results)
        total_invested = sum((holding.cost_basis for holding in holdings), ZERO)
        current_value = sum((holding.current_value for holding in holdings), ZERO)
        unrealized = current_value - total_invested

        summary = PortfolioSummary(
            portfolio_id=portfolio_id,
            total_invested=total_invested,
            current_value=current_value,
            profit_loss=unrealized + realized,
            unrealized_profit_loss=unrealized,
            realized_profit_loss=realized,
            holdings=holdings,
            closed_positions=closed,
            unpriced_symbols=unpriced,
            anomalies=[anomaly for result in results.values() for anomaly in result.anomalies],
        )
        await self.repository.save_portfolio_summary(portfolio_id, summary.totals)
        await self.repository.commit()
        return summary

    async def holdings(self, portfolio_id: int) -> list[HoldingValuation]:
        """Value open positions from the current history without writing anything."""

        results = await self._replay(portfolio_id)
        holdings, _ = await self._value(results)
        return holdings

    async def recompute_owner(self, owner_id: str) -> OwnerRecompute:
        report = OwnerRecompute(owner_id=owner_id)
        for portfolio in await self.repository.list_portfolios(owner_id):
            try:
                report.summaries.append(await self.recompute(portfolio.id))
            except Exception as exc:  # one broken portfolio must not stop the batch
                logger.exception(
                    "Recompute failed for portfolio %s",
                    portfolio.id,
                    extra={"portfolio_id": portfolio.id, "owner_id": owner_id},
                )
                report.failed[portfolio.id] = str(exc)
        return report

    async def owner_stats(self, owner_id: str) -> OwnerStats:
        """Aggregate stored totals and raw flows across an owner's portfolios."""

        deposits = withdrawals = fees = realized = ZERO
        invested = current = profit_loss = ZERO
        portfolios = await self.repository.list_portfolios(owner_id)
        for portfolio in portfolios:
            for trade in await self.repository.load_trades(portfolio.id):
                fees += trade.fee or ZERO
            for transfer in await self.repository.load_transfers(portfolio.id):
                if TransferType(transfer.type) is TransferType.DEPOSIT:
                    deposits += transfer.amount
                else:
                    withdrawals += transfer.amount
                fees += transfer.fee or ZERO
            for row in await self.repository.list_closed_positions(portfolio.id):
                realized += row.realized_profit_loss
            invested += portfolio.total_invested
            current += portfolio.current_value
            profit_loss += portfolio.profit_loss
        return OwnerStats(
            owner_id=owner_id,
            portfolio_count=len(portfolios),
            total_deposits=deposits,
            total_withdrawals=withdrawals,
            total_fees=fees,
            total_realized_profit_loss=realized,
            total_unrealized_profit_loss=current - invested,
            total_profit_loss=profit_loss,
        )

    async def _replay(self, portfolio_id: int) -> dict[str, LedgerResult]:
        trades = await self.repository.load_trades(portfolio_id)
        transfers = await self.repository.load_transfers(portfolio_id)
        timelines = build_timelines(trades, transfers)
        return {
            symbol: process_events(
                events,
                symbol=symbol,
                dust_epsilon=self.settings.dust_epsilon,
                strict=self.settings.strict_quantities,
            )
            for symbol, events in timelines.items()
        }

    def _price_symbol(self, symbol: str) -> str:
        return normalize_price_symbol(
            symbol,
            preferred_quote=self.settings.preferred_quote_asset,
            quote_assets=self.settings.quote_assets,
            aliases=self.settings.symbol_aliases,
        )

    async def _fetch_prices(self, price_symbols: list[str]) -> dict[str, Decimal]:
        if not price_symbols:
            return {}
        try:
            prices = await asyncio.wait_for(
                self.price_oracle.get_prices(price_symbols),
                timeout=self.settings.price_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Price lookup timed out after %ss; valuing at average cost",
                self.settings.price_timeout_seconds,
                extra={"symbols": price_symbols},
            )
            return {}
        except Exception as exc:  # oracle outages degrade to average cost
            logger.warning(
                "Price lookup failed; valuing at average cost: %s",
                exc,
                extra={"symbols": price_symbols},
            )
            return {}
        return dict(prices)

    async def _value(self, results: dict[str, LedgerResult]) -> tuple[list[HoldingValuation], list[str]]:
        open_lots = {symbol: result for symbol, result in results.items() if result.final_lot.is_open}
        price_symbols = {symbol: self._price_symbol(symbol) for symbol in open_lots}
        prices = await self._fetch_prices(sorted(set(price_symbols.values())))

        holdings: list[HoldingValuation] = []
        unpriced: list[str] = []
        for symbol, result in open_lots.items():
            lot = result.final_lot
            price_symbol = price_symbols[symbol]
            price = prices.get(price_symbol)
            fallback = price is None
            if fallback:
                logger.info("%s", PriceUnavailable(price_symbol), extra={"symbol": symbol})
                unpriced.append(symbol)
                price = lot.average_price
            cost_basis = quantize_amount(lot.cost_basis)
            current_value = quantize_amount(lot.quantity * price)
            profit_loss = current_value - cost_basis
            holdings.append(
                HoldingValuation(
                    symbol=symbol,
                    price_symbol=price_symbol,
                    quantity=quantize_amount(lot.quantity),
                    average_price=quantize_amount(lot.average_price),
                    cost_basis=cost_basis,
                    price=quantize_amount(price),
                    price_is_fallback=fallback,
                    current_value=current_value,
                    profit_loss=profit_loss,
                    profit_loss_percentage=quantize_percentage(profit_loss_percentage(profit_loss, cost_basis)),
                    realized_to_date=quantize_amount(result.realized_profit_loss),
                )
            )
        holdings.sort(key=lambda holding: (-holding.current_value, holding.symbol))
        return holdings, unpriced


__all__ = [
    "HoldingValuation",
    "OwnerRecompute",
    "OwnerStats",
    "PortfolioAggregator",
    "PortfolioLocks",
    "PortfolioSummary",
]
