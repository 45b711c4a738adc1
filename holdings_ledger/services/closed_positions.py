"""Persistence of closed-lot summaries keyed by portfolio and symbol."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Literal, Sequence

from .ledger import ClosedPositionData, quantize_amount, quantize_percentage
from .repository import LedgerRepository

logger = logging.getLogger(__name__)

Retention = Literal["latest", "history"]


def quantize_closed_position(data: ClosedPositionData) -> ClosedPositionData:
    """Round every stored figure to its column precision."""

    return replace(
        data,
        total_bought=quantize_amount(data.total_bought),
        total_sold=quantize_amount(data.total_sold),
        average_buy_price=quantize_amount(data.average_buy_price),
        average_sell_price=quantize_amount(data.average_sell_price),
        total_invested=quantize_amount(data.total_invested),
        total_received=quantize_amount(data.total_received),
        realized_profit_loss=quantize_amount(data.realized_profit_loss),
        realized_profit_loss_percentage=quantize_percentage(data.realized_profit_loss_percentage),
    )


class ClosedPositionStore:
    """Replace closed positions for a symbol as a whole on every recompute.

    Writes are staged on the repository; the caller owns the commit.
    """

    def __init__(self, repository: LedgerRepository, retention: Retention = "latest"):
        if retention not in ("latest", "history"):
            raise ValueError(f"Unknown closed position retention {retention!r}")
        self.repository = repository
        self.retention = retention

    def retained(self, closed_lots: Sequence[ClosedPositionData]) -> list[ClosedPositionData]:
        if not closed_lots:
            return []
        if self.retention == "latest":
            return [closed_lots[-1]]
        return list(closed_lots)

    async def upsert(self, portfolio_id: int, symbol: str, data: ClosedPositionData) -> ClosedPositionData:
        row = quantize_closed_position(replace(data, symbol=symbol))
        await self.repository.delete_closed_positions(portfolio_id, symbol)
        await self.repository.save_closed_position(portfolio_id, symbol, row)
        return row

    async def replace(
        self, portfolio_id: int, symbol: str, closed_lots: Sequence[ClosedPositionData]
    ) -> list[ClosedPositionData]:
        """Store the retained closures for ``symbol`` and return them as stored."""

        await self.repository.delete_closed_positions(portfolio_id, symbol)
        rows = [quantize_closed_position(replace(lot, symbol=symbol)) for lot in self.retained(closed_lots)]
        for row in rows:
            await self.repository.save_closed_position(portfolio_id, symbol, row)
        return rows

    async def prune(self, portfolio_id: int, keep_symbols: Iterable[str]) -> list[str]:
        """Delete closed positions for symbols that no longer have any history."""

        keep = set(keep_symbols)
        stored = await self.repository.list_closed_positions(portfolio_id)
        stale = sorted({row.symbol for row in stored} - keep)
        for symbol in stale:
            await self.repository.delete_closed_positions(portfolio_id, symbol)
        if stale:
            logger.info(
                "Pruned closed positions for %d symbols",
                len(stale),
                extra={"portfolio_id": portfolio_id, "symbols": stale},
            )
        return stale

    async def sync(
        self, portfolio_id: int, closed_by_symbol: dict[str, Sequence[ClosedPositionData]]
    ) -> dict[str, list[ClosedPositionData]]:
        """Replace every symbol's closures and drop symbols absent from ``closed_by_symbol``."""

        await self.prune(portfolio_id, closed_by_symbol.keys())
        return {
            symbol: await self.replace(portfolio_id, symbol, lots)
            for symbol, lots in closed_by_symbol.items()
        }


__all__ = ["ClosedPositionStore", "Retention", "quantize_closed_position"]
